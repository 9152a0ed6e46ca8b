"""Route-aware session authentication middleware."""

from __future__ import annotations

import logging

from fastapi import Request, Response
from starlette.middleware.base import (
    BaseHTTPMiddleware,
    RequestResponseEndpoint,
)
from starlette.responses import JSONResponse

from lfx_server.api.middleware.session import (
    USERNAME_CLAIM,
    Session,
    SessionProvider,
    normalize_claims,
)
from lfx_server.constants import (
    AUTH_DEFAULT_MODE,
    AUTH_EXEMPT_PATHS,
    AUTH_ROUTE_MODES,
    AuthMode,
    HttpHeader,
)
from lfx_server.context import RequestContext
from lfx_server.errors import AuthenticationError, BaseApiError

logger = logging.getLogger(__name__)


def classify_route(path: str) -> AuthMode:
    """First matching prefix wins; unmatched paths require auth."""
    if path in AUTH_EXEMPT_PATHS:
        return AuthMode.PUBLIC
    for prefix, mode in AUTH_ROUTE_MODES:
        if path == prefix or path.startswith(prefix + "/"):
            return mode
    return AUTH_DEFAULT_MODE


def _context_for(
    request: Request, session: Session | None, token: str | None
) -> RequestContext:
    claims = normalize_claims(session.user) if session else {}
    ctx = RequestContext(
        bearer_token=token,
        username=claims.get(USERNAME_CLAIM)
        or claims.get("username")
        or claims.get("preferred_username")
        or claims.get("sub"),
        email=claims.get("email"),
        name=claims.get("name"),
        path=request.url.path,
        claims=claims,
    )
    request_id = request.headers.get(HttpHeader.REQUEST_ID)
    if request_id:
        ctx.request_id = request_id
    return ctx


def _unauthorized(path: str, message: str) -> JSONResponse:
    error = AuthenticationError(message)
    return JSONResponse(status_code=401, content=error.to_response(path))


class SessionAuthMiddleware(BaseHTTPMiddleware):
    """Attach a ``RequestContext`` to every request.

    - public: no session lookup.
    - optional: use the token when valid, never refresh.
    - required: expired tokens are refreshed once; no session or a
      failed refresh -> 401.

    Every response echoes the request id as ``X-Request-Id``.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        response = await self._authenticate(request, call_next)
        ctx: RequestContext | None = getattr(request.state, "context", None)
        request_id = (
            ctx.request_id
            if ctx is not None
            else request.headers.get(HttpHeader.REQUEST_ID)
        )
        if request_id:
            response.headers[HttpHeader.REQUEST_ID] = request_id
        return response

    async def _authenticate(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        path = request.url.path
        mode = classify_route(path)

        if mode is AuthMode.PUBLIC or request.method == "OPTIONS":
            request.state.context = _context_for(request, None, None)
            return await call_next(request)

        sessions: SessionProvider = request.app.state.typed.sessions
        try:
            session = await sessions.load(request)
        except BaseApiError as exc:
            logger.warning(
                "event=session_rejected path=%s code=%s", path, exc.code
            )
            if mode is not AuthMode.OPTIONAL:
                return JSONResponse(
                    status_code=exc.status_code,
                    content=exc.to_response(path),
                )
            session = None
        token = session.access_token if session else None

        if mode is AuthMode.OPTIONAL:
            usable = token is not None and not token.is_expired()
            request.state.context = _context_for(
                request,
                session if usable else None,
                token.value if usable and token else None,
            )
            return await call_next(request)

        if session is None or token is None:
            logger.warning("event=auth_required path=%s", path)
            return _unauthorized(path, "Authentication required")

        if token.is_expired():
            try:
                token = await token.refresh()
            except BaseApiError as exc:
                logger.warning(
                    "event=token_refresh_failed path=%s code=%s",
                    path,
                    exc.code,
                )
                return _unauthorized(
                    path, "Session expired. Please log in again."
                )
            session.access_token = token
            logger.info("event=token_refreshed path=%s", path)

        request.state.context = _context_for(request, session, token.value)
        return await call_next(request)

"""Caller sessions as seen by the auth middleware.

OIDC login and refresh happen in front of this service. A
``SessionProvider`` turns an incoming request into a ``Session``: the
user claims plus an access token that can report expiry and refresh
itself.

Claims are only trusted once verified: bearer tokens are checked
against the issuer's JWKS, and ``X-Auth-Request-*`` headers are read
only when the deployment sits behind an authenticating proxy that
strips them from client requests.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx
from fastapi import Request
from jose import jwt
from jose.exceptions import JWTError

from lfx_server.constants import JWKS_CACHE_SECONDS, ErrorCode, HttpHeader
from lfx_server.errors import AuthenticationError, MicroserviceError

logger = logging.getLogger(__name__)

USERNAME_CLAIM = "https://sso.linuxfoundation.org/claims/username"

# Set by the authenticating proxy; honoured only when it is trusted.
_PROXY_CLAIM_HEADERS = {
    "X-Auth-Request-User": "sub",
    "X-Auth-Request-Email": "email",
    "X-Auth-Request-Preferred-Username": "preferred_username",
}


class AccessToken(Protocol):
    @property
    def value(self) -> str: ...
    def is_expired(self) -> bool: ...
    async def refresh(self) -> AccessToken: ...


@dataclass
class Session:
    user: dict[str, Any] = field(default_factory=lambda: dict[str, Any]())
    access_token: AccessToken | None = None

    @property
    def authenticated(self) -> bool:
        return self.access_token is not None


class SessionProvider(Protocol):
    async def load(self, request: Request) -> Session | None: ...


def normalize_claims(claims: dict[str, Any]) -> dict[str, Any]:
    """Map plain OIDC claims onto the Auth0 claim shape.

    Auth0-issued claims are returned unchanged.
    """
    if "auth0.com" in str(claims.get("iss") or ""):
        return claims
    name_parts = str(claims.get("name") or "").split(" ")
    first = name_parts[0]
    last = " ".join(name_parts[1:])
    username = claims.get("preferred_username") or claims.get("sub")
    return {
        **claims,
        USERNAME_CLAIM: username,
        "username": username,
        "nickname": username,
        "given_name": first,
        "family_name": last,
        "first_name": first,
        "last_name": last,
        "picture": claims.get("picture") or "",
        "id": claims.get("sub"),
    }


class TokenVerifier(Protocol):
    async def verify(self, token: str) -> dict[str, Any]: ...


class JwksTokenVerifier:
    """Checks access-token signatures against the issuer's JWKS.

    The key set is fetched on first use and cached for
    ``cache_seconds``. Expiry is left to ``BearerToken`` so the
    middleware can tell an expired session from a forged one.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        jwks_url: str,
        *,
        issuer: str = "",
        audience: str = "",
        algorithms: Sequence[str] = ("RS256",),
        cache_seconds: float = JWKS_CACHE_SECONDS,
    ) -> None:
        self._http = http
        self._jwks_url = jwks_url
        self._issuer = issuer
        self._audience = audience
        self._algorithms = list(algorithms)
        self._cache_seconds = cache_seconds
        self._key_set: dict[str, Any] | None = None
        self._fetched_at = 0.0
        self._lock = asyncio.Lock()

    async def _keys(self) -> dict[str, Any]:
        async with self._lock:
            age = time.monotonic() - self._fetched_at
            if self._key_set is not None and age < self._cache_seconds:
                return self._key_set
            try:
                response = await self._http.get(self._jwks_url)
                response.raise_for_status()
                key_set = response.json()
                if not isinstance(key_set, dict):
                    raise ValueError("JWKS body is not an object")
            except (httpx.HTTPError, ValueError) as exc:
                logger.error(
                    "event=jwks_fetch_failed url=%s error=%s",
                    self._jwks_url,
                    exc,
                )
                raise MicroserviceError(
                    "Unable to load token signing keys",
                    code=ErrorCode.SERVICE_UNAVAILABLE,
                    status_code=503,
                    service="auth",
                    original_error=exc,
                ) from exc
            self._key_set = key_set
            self._fetched_at = time.monotonic()
            logger.info(
                "event=jwks_loaded keys=%d", len(key_set.get("keys", []))
            )
            return key_set

    async def verify(self, token: str) -> dict[str, Any]:
        key_set = await self._keys()
        try:
            claims: dict[str, Any] = jwt.decode(
                token,
                key_set,
                algorithms=self._algorithms,
                audience=self._audience or None,
                issuer=self._issuer or None,
                options={
                    "verify_exp": False,
                    "verify_aud": bool(self._audience),
                },
            )
        except JWTError as exc:
            logger.warning("event=token_rejected error=%s", exc)
            raise AuthenticationError("Invalid access token") from exc
        return claims


@dataclass
class BearerToken:
    """Token taken from the Authorization header. It cannot refresh."""

    value: str
    expires_at: float | None = None

    def is_expired(self) -> bool:
        return self.expires_at is not None and time.time() >= self.expires_at

    async def refresh(self) -> AccessToken:
        raise AuthenticationError("Session expired. Please log in again.")


class HeaderSessionProvider:
    """Sessions from ``Authorization: Bearer``.

    Without a verifier the token is only forwarded upstream and the
    session carries no identity. Proxy claim headers are read only when
    ``trust_proxy_headers`` is set.
    """

    def __init__(
        self,
        verifier: TokenVerifier | None = None,
        *,
        trust_proxy_headers: bool = False,
    ) -> None:
        self._verifier = verifier
        self._trust_proxy_headers = trust_proxy_headers

    async def load(self, request: Request) -> Session | None:
        header = request.headers.get(HttpHeader.AUTHORIZATION, "")
        scheme, _, token = header.partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            return None
        token = token.strip()
        claims: dict[str, Any] = {}
        if self._verifier is not None:
            claims = await self._verifier.verify(token)
        if self._trust_proxy_headers:
            for name, claim in _PROXY_CLAIM_HEADERS.items():
                value = request.headers.get(name)
                if value:
                    claims[claim] = value
        exp = claims.get("exp")
        return Session(
            user=claims,
            access_token=BearerToken(
                token, float(exp) if isinstance(exp, int | float) else None
            ),
        )

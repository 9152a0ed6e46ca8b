"""Machine-to-machine access tokens (OAuth2 client credentials).

Auth0 issuers take a JSON body at ``oauth/token``; the local Authelia
issuer takes a form body with HTTP Basic client auth at
``api/oidc/token``. Tokens are cached until shortly before expiry.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any

import httpx

from lfx_server.config import Settings
from lfx_server.constants import (
    AUTHELIA_ISSUER_MARKER,
    M2M_DEFAULT_EXPIRES_IN,
    M2M_TOKEN_EXPIRY_MARGIN,
    ErrorCode,
    HttpHeader,
)
from lfx_server.errors import MicroserviceError
from lfx_server.logger import OperationLogger

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _TokenRequest:
    provider: str
    endpoint: str
    failure_code: str


_AUTH0 = _TokenRequest("auth0", "oauth/token", ErrorCode.AUTH0_TOKEN_FAILED)
_AUTHELIA = _TokenRequest(
    "authelia", "api/oidc/token", ErrorCode.AUTHELIA_TOKEN_FAILED
)


@dataclass
class _CachedToken:
    value: str
    expires_at: float

    def fresh(self) -> bool:
        return time.monotonic() < self.expires_at - M2M_TOKEN_EXPIRY_MARGIN


class M2MTokenProvider:
    def __init__(
        self,
        settings: Settings,
        http: httpx.AsyncClient,
        ops_logger: OperationLogger | None = None,
    ) -> None:
        self._settings = settings
        self._http = http
        self._ops = ops_logger or OperationLogger()
        self._cached: _CachedToken | None = None
        self._refresh_lock = asyncio.Lock()

    @property
    def _flavor(self) -> _TokenRequest:
        if AUTHELIA_ISSUER_MARKER in self._settings.m2m_auth_issuer_base_url:
            return _AUTHELIA
        return _AUTH0

    async def get_token(self) -> str:
        """Return a cached token or fetch a new one.

        Concurrent callers during a refresh wait for the same fetch.
        """
        cached = self._cached
        if cached is not None and cached.fresh():
            return cached.value
        async with self._refresh_lock:
            cached = self._cached
            if cached is not None and cached.fresh():
                return cached.value
            self._cached = await self._fetch()
            return self._cached.value

    def invalidate(self) -> None:
        self._cached = None

    def _request_kwargs(self, flavor: _TokenRequest) -> dict[str, Any]:
        s = self._settings
        if flavor is _AUTHELIA:
            return {
                "data": {
                    "grant_type": "client_credentials",
                    "audience": s.m2m_auth_audience,
                },
                "auth": (s.m2m_auth_client_id, s.m2m_auth_client_secret),
            }
        return {
            "json": {
                "audience": s.m2m_auth_audience,
                "grant_type": "client_credentials",
                "client_id": s.m2m_auth_client_id,
                "client_secret": s.m2m_auth_client_secret,
            },
            "headers": {HttpHeader.CACHE_CONTROL: "no-cache"},
        }

    async def _fetch(self) -> _CachedToken:
        self._settings.require_m2m_credentials()
        flavor = self._flavor
        endpoint = (
            f"{self._settings.m2m_auth_issuer_base_url}/{flavor.endpoint}"
        )
        started = self._ops.start(
            None,
            "generate_m2m_token",
            audience=self._settings.m2m_auth_audience,
            provider=flavor.provider,
        )
        try:
            response = await self._http.post(
                endpoint, **self._request_kwargs(flavor)
            )
        except httpx.HTTPError as exc:
            self._ops.error(None, "generate_m2m_token", started, exc)
            raise MicroserviceError(
                "Unexpected error during M2M token generation",
                code=flavor.failure_code,
                status_code=502,
                service=flavor.provider,
                path=endpoint,
                operation="generate_m2m_token",
                original_error=exc,
            ) from exc

        if not response.is_success:
            error = MicroserviceError(
                "Failed to generate M2M token",
                code=flavor.failure_code,
                status_code=response.status_code,
                service=flavor.provider,
                path=endpoint,
                operation="generate_m2m_token",
                error_body=response.text,
            )
            self._ops.error(
                None,
                "generate_m2m_token",
                started,
                error,
                provider=flavor.provider,
            )
            raise error

        try:
            body = response.json()
        except ValueError:
            body = {}
        token = body.get("access_token") if isinstance(body, dict) else None
        if not token:
            error = MicroserviceError(
                "Invalid token response: missing access_token",
                code=ErrorCode.INVALID_TOKEN_RESPONSE,
                status_code=500,
                service=flavor.provider,
                path=endpoint,
                operation="generate_m2m_token",
            )
            self._ops.error(None, "generate_m2m_token", started, error)
            raise error

        expires_in = int(body.get("expires_in") or M2M_DEFAULT_EXPIRES_IN)
        self._ops.success(
            None,
            "generate_m2m_token",
            started,
            token_type=body.get("token_type"),
            expires_in=expires_in,
        )
        return _CachedToken(
            value=token, expires_at=time.monotonic() + expires_in
        )

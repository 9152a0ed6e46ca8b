"""HTTP client for upstream services with per-host circuit breaker.

Wraps one shared ``httpx.AsyncClient``. Non-2xx responses, timeouts
and transport failures are all raised as ``BaseApiError`` subclasses so
callers never see raw httpx exceptions.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Literal
from urllib.parse import urlsplit

import httpx
from circuitbreaker import (  # pyright: ignore[reportUnknownVariableType]
    CircuitBreaker,
)

from lfx_server.constants import (
    CB_UPSTREAM_FAILURE_THRESHOLD,
    CB_UPSTREAM_RECOVERY_TIMEOUT,
    DEFAULT_USER_AGENT,
    ErrorCode,
    HttpHeader,
)
from lfx_server.errors import MicroserviceError, ServiceTimeoutError
from lfx_server.resilience.errors import counts_as_outage

logger = logging.getLogger(__name__)

type HttpMethod = Literal["GET", "POST", "PUT", "PATCH", "DELETE"]

_BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})


@dataclass
class ApiResponse:
    """Parsed upstream response. Header names are lower-cased."""

    data: Any
    status: int
    headers: dict[str, str] = field(default_factory=lambda: dict[str, str]())

    def header(self, name: str) -> str | None:
        return self.headers.get(name.lower())


def _parse_body(response: httpx.Response) -> Any:
    text = response.text
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        return text


class ApiClient:
    """Thin async HTTP client shared by all upstream calls.

    Each upstream host gets its own circuit breaker so an outage in one
    service does not block calls to another. Only server errors,
    timeouts and transport failures count against a breaker.
    """

    def __init__(
        self,
        http: httpx.AsyncClient | None = None,
        *,
        timeout: float = 30.0,
        user_agent: str = DEFAULT_USER_AGENT,
    ) -> None:
        self._http = http or httpx.AsyncClient(timeout=timeout)
        self._owns_http = http is None
        self._timeout = timeout
        self._user_agent = user_agent
        self._breakers: dict[str, CircuitBreaker] = {}  # pyright: ignore[reportUnknownVariableType]

    def _get_breaker(self, host: str) -> CircuitBreaker:  # pyright: ignore[reportUnknownParameterType]
        """Get or create a circuit breaker for the given host."""
        if host not in self._breakers:
            self._breakers[host] = CircuitBreaker(  # pyright: ignore[reportUnknownMemberType]
                failure_threshold=CB_UPSTREAM_FAILURE_THRESHOLD,
                recovery_timeout=CB_UPSTREAM_RECOVERY_TIMEOUT,
                expected_exception=counts_as_outage,
                name=f"upstream_{host}",
            )
        return self._breakers[host]

    def _build_headers(
        self,
        bearer_token: str | None,
        custom: dict[str, str] | None,
    ) -> dict[str, str]:
        headers = {
            HttpHeader.ACCEPT: "application/json",
            HttpHeader.USER_AGENT: self._user_agent,
        }
        if not custom or HttpHeader.CONTENT_TYPE not in custom:
            headers[HttpHeader.CONTENT_TYPE] = "application/json"
        if custom:
            headers.update(custom)
        if bearer_token:
            headers[HttpHeader.AUTHORIZATION] = f"Bearer {bearer_token}"
        return {str(k): v for k, v in headers.items()}

    async def request(
        self,
        method: HttpMethod,
        url: str,
        bearer_token: str | None = None,
        query: dict[str, Any] | None = None,
        data: Any = None,
        headers: dict[str, str] | None = None,
    ) -> ApiResponse:
        """Send one request; raise on any non-2xx outcome."""
        host = urlsplit(url).netloc
        breaker = self._get_breaker(host)
        if breaker.opened:  # pyright: ignore[reportUnknownMemberType]
            raise MicroserviceError(
                f"Upstream {host} is temporarily unavailable",
                code=ErrorCode.SERVICE_UNAVAILABLE,
                status_code=503,
                service="api_client",
                path=url,
            )

        body: str | None = None
        if data is not None and method in _BODY_METHODS:
            body = json.dumps(data)

        with breaker:  # pyright: ignore[reportUnknownMemberType]
            return await self._send(
                method,
                url,
                query,
                body,
                self._build_headers(bearer_token, headers),
            )

    async def _send(
        self,
        method: str,
        url: str,
        query: dict[str, Any] | None,
        body: str | None,
        headers: dict[str, str],
    ) -> ApiResponse:
        try:
            response = await self._http.request(
                method,
                url,
                params=query or None,
                content=body,
                headers=headers,
                timeout=self._timeout,
            )
        except httpx.TimeoutException as exc:
            logger.warning(
                "event=upstream_timeout method=%s url=%s", method, url
            )
            raise ServiceTimeoutError(
                f"Request timeout after {self._timeout:g}s",
                service="api_client",
                path=url,
                original_error=exc,
            ) from exc
        except httpx.TransportError as exc:
            logger.warning(
                "event=upstream_network_error method=%s url=%s error=%s",
                method,
                url,
                exc,
            )
            raise MicroserviceError(
                f"Request failed: {exc}",
                code=ErrorCode.NETWORK_ERROR,
                status_code=502,
                service="api_client",
                path=url,
                original_error=exc,
            ) from exc

        if not response.is_success:
            raise MicroserviceError.from_upstream_response(
                response.status_code,
                _parse_body(response),
                reason=response.reason_phrase,
                service="api_client",
                path=url,
            )

        return ApiResponse(
            data=_parse_body(response),
            status=response.status_code,
            headers={k.lower(): v for k, v in response.headers.items()},
        )

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

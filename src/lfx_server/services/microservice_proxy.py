"""Forward requests to named upstream microservices."""

from __future__ import annotations

from typing import Any

from lfx_server.clients.api_client import ApiClient, ApiResponse, HttpMethod
from lfx_server.config import Settings
from lfx_server.constants import DEFAULT_QUERY_PARAMS
from lfx_server.context import RequestContext
from lfx_server.errors import BaseApiError, ConfigurationError

LFX_V2_SERVICE = "LFX_V2_SERVICE"


def operation_name(method: str, path: str) -> str:
    """``GET /committees/1`` -> ``get__committees_1``."""
    return f"{method.lower()}_{path.replace('/', '_')}"


class MicroserviceProxy:
    """Resolves service base URLs and forwards with the caller's token.

    Default query params are merged last, so callers cannot override
    them.
    """

    def __init__(self, api_client: ApiClient, settings: Settings) -> None:
        self._api = api_client
        self._urls = {LFX_V2_SERVICE: settings.lfx_v2_service}

    def _endpoint(self, service: str, path: str) -> str:
        base = self._urls.get(service)
        if not base:
            raise ConfigurationError(
                f"Unknown upstream service: {service}", service=service
            )
        return f"{base}{path}"

    async def proxy_request_with_response(
        self,
        ctx: RequestContext,
        service: str,
        path: str,
        method: HttpMethod = "GET",
        query: dict[str, Any] | None = None,
        data: Any = None,
        headers: dict[str, str] | None = None,
    ) -> ApiResponse:
        merged = {**(query or {}), **DEFAULT_QUERY_PARAMS}
        try:
            return await self._api.request(
                method,
                self._endpoint(service, path),
                ctx.bearer_token,
                merged,
                data,
                headers,
            )
        except BaseApiError as exc:
            exc.service = service
            exc.path = path
            exc.operation = exc.operation or operation_name(method, path)
            raise

    async def proxy_request(
        self,
        ctx: RequestContext,
        service: str,
        path: str,
        method: HttpMethod = "GET",
        query: dict[str, Any] | None = None,
        data: Any = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        """Forward and return only the response body."""
        response = await self.proxy_request_with_response(
            ctx, service, path, method, query, data, headers
        )
        return response.data

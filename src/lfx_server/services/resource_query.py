"""Read helpers for the v2 query service and access checks."""

from __future__ import annotations

import logging
from typing import Any

from lfx_server.constants import (
    ACCESS_CHECK_PATH,
    QUERY_RESOURCES_COUNT_PATH,
    QUERY_RESOURCES_PATH,
)
from lfx_server.context import RequestContext
from lfx_server.errors import BaseApiError
from lfx_server.services.microservice_proxy import (
    LFX_V2_SERVICE,
    MicroserviceProxy,
)

logger = logging.getLogger(__name__)


class ResourceQuery:
    """``/query/resources`` wrapper returning the unwrapped ``data`` items."""

    def __init__(self, proxy: MicroserviceProxy) -> None:
        self._proxy = proxy

    async def list(
        self,
        ctx: RequestContext,
        resource_type: str,
        params: dict[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        query = {**(params or {}), "type": resource_type}
        body = await self._proxy.proxy_request(
            ctx, LFX_V2_SERVICE, QUERY_RESOURCES_PATH, "GET", query
        )
        resources = (body or {}).get("resources") or []
        return [r.get("data") or {} for r in resources]

    async def count(
        self,
        ctx: RequestContext,
        resource_type: str,
        params: dict[str, Any] | None = None,
    ) -> int:
        query = {**(params or {}), "type": resource_type}
        body = await self._proxy.proxy_request(
            ctx, LFX_V2_SERVICE, QUERY_RESOURCES_COUNT_PATH, "GET", query
        )
        return int((body or {}).get("count") or 0)


class AccessCheckService:
    """Annotates resources with the caller's ``writer`` permission.

    A failed check degrades to "no access" rather than failing the read.
    """

    def __init__(self, proxy: MicroserviceProxy) -> None:
        self._proxy = proxy

    async def check_access(
        self,
        ctx: RequestContext,
        resource_type: str,
        ids: list[str],
        access: str = "writer",
    ) -> dict[str, bool]:
        if not ids:
            return {}
        payload = {
            "requests": [f"{resource_type}:{i}#{access}" for i in ids]
        }
        try:
            body = await self._proxy.proxy_request(
                ctx, LFX_V2_SERVICE, ACCESS_CHECK_PATH, "POST", None, payload
            )
        except BaseApiError as exc:
            logger.error(
                "event=access_check_failed resource_type=%s count=%d"
                " code=%s action=default_no_access",
                resource_type,
                len(ids),
                exc.code,
            )
            return dict.fromkeys(ids, False)

        results = (body or {}).get("results") or []
        granted: dict[str, bool] = {}
        for index, rid in enumerate(ids):
            entry = results[index] if index < len(results) else ""
            parts = entry.split("\t") if isinstance(entry, str) else []
            granted[rid] = len(parts) >= 2 and parts[1].lower() == "true"
        return granted

    async def add_access(
        self,
        ctx: RequestContext,
        resources: list[dict[str, Any]],
        resource_type: str,
        access: str = "writer",
    ) -> list[dict[str, Any]]:
        ids = [r["uid"] for r in resources if r.get("uid")]
        granted = await self.check_access(ctx, resource_type, ids, access)
        return [
            {**r, access: granted.get(r.get("uid", ""), False)}
            for r in resources
        ]

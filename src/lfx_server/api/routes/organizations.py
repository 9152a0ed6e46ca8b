"""Organization search routes."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query

from lfx_server.api.dependencies import (
    get_organization_service,
    get_request_context,
)
from lfx_server.context import RequestContext
from lfx_server.services.organization_service import OrganizationService

router = APIRouter(prefix="/api/organizations", tags=["organizations"])


@router.get("/search")
async def search_organizations(
    query: str = Query(min_length=1),
    ctx: RequestContext = Depends(get_request_context),
    service: OrganizationService = Depends(get_organization_service),
) -> dict[str, list[dict[str, Any]]]:
    suggestions = await service.search_organizations(ctx, query)
    return {"suggestions": suggestions}

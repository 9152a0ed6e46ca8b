"""Project lookup, settings and permission routes."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query, Request

from lfx_server.api.dependencies import (
    get_project_service,
    get_request_context,
)
from lfx_server.api.schemas import ProjectPermissionRequest, ProjectRoleUpdate
from lfx_server.context import RequestContext
from lfx_server.services.project_service import ProjectService

router = APIRouter(prefix="/api/projects", tags=["projects"])


@router.get("")
async def list_projects(
    request: Request,
    ctx: RequestContext = Depends(get_request_context),
    service: ProjectService = Depends(get_project_service),
) -> list[dict[str, Any]]:
    return await service.get_projects(ctx, dict(request.query_params))


@router.get("/search")
async def search_projects(
    q: str = Query(min_length=1),
    ctx: RequestContext = Depends(get_request_context),
    service: ProjectService = Depends(get_project_service),
) -> list[dict[str, Any]]:
    return await service.search_projects(ctx, q)


@router.get("/slug/{slug}")
async def get_project_by_slug(
    slug: str,
    ctx: RequestContext = Depends(get_request_context),
    service: ProjectService = Depends(get_project_service),
) -> dict[str, Any]:
    return await service.get_project_by_slug(ctx, slug)


@router.get("/{project_id}")
async def get_project(
    project_id: str,
    ctx: RequestContext = Depends(get_request_context),
    service: ProjectService = Depends(get_project_service),
) -> dict[str, Any]:
    return await service.get_project_by_id(ctx, project_id)


@router.get("/{project_id}/permissions")
async def get_project_permissions(
    project_id: str,
    ctx: RequestContext = Depends(get_request_context),
    service: ProjectService = Depends(get_project_service),
) -> dict[str, Any]:
    settings = await service.get_project_settings(ctx, project_id)
    return {
        "writers": settings.get("writers") or [],
        "auditors": settings.get("auditors") or [],
    }


@router.post("/{project_id}/permissions", status_code=201)
async def add_project_permission(
    project_id: str,
    body: ProjectPermissionRequest,
    ctx: RequestContext = Depends(get_request_context),
    service: ProjectService = Depends(get_project_service),
) -> dict[str, Any]:
    return await service.update_project_permissions(
        ctx,
        project_id,
        "add",
        body.username,
        body.role,
        body.manual_user_info(),
    )


@router.put("/{project_id}/permissions/{username}")
async def update_project_permission(
    project_id: str,
    username: str,
    body: ProjectRoleUpdate,
    ctx: RequestContext = Depends(get_request_context),
    service: ProjectService = Depends(get_project_service),
) -> dict[str, Any]:
    return await service.update_project_permissions(
        ctx,
        project_id,
        "update",
        username,
        body.role,
        body.manual_user_info(),
    )


@router.delete("/{project_id}/permissions/{username}")
async def remove_project_permission(
    project_id: str,
    username: str,
    ctx: RequestContext = Depends(get_request_context),
    service: ProjectService = Depends(get_project_service),
) -> dict[str, Any]:
    return await service.update_project_permissions(
        ctx, project_id, "remove", username
    )

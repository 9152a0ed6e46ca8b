"""Warehouse-backed analytics for dashboards.

User metrics are keyed by the caller's session email; project and
organization metrics take explicit identifiers.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query

from lfx_server.api.dependencies import (
    get_organization_service,
    get_project_service,
    get_request_context,
    get_user_service,
)
from lfx_server.context import RequestContext
from lfx_server.errors import AuthenticationError
from lfx_server.services.organization_service import OrganizationService
from lfx_server.services.project_service import ProjectService
from lfx_server.services.user_service import UserService

router = APIRouter(prefix="/api/analytics", tags=["analytics"])


def _session_email(ctx: RequestContext) -> str:
    if not ctx.email:
        raise AuthenticationError(
            "User email is missing from the session", path=ctx.path
        )
    return ctx.email


# ── User ─────────────────────────────────────────────────


@router.get("/active-weeks-streak")
async def active_weeks_streak(
    ctx: RequestContext = Depends(get_request_context),
    service: UserService = Depends(get_user_service),
) -> dict[str, Any]:
    return await service.get_active_weeks_streak(_session_email(ctx))


@router.get("/pull-requests-merged")
async def pull_requests_merged(
    ctx: RequestContext = Depends(get_request_context),
    service: UserService = Depends(get_user_service),
) -> dict[str, Any]:
    return await service.get_pull_requests_merged(_session_email(ctx))


@router.get("/code-commits")
async def code_commits(
    ctx: RequestContext = Depends(get_request_context),
    service: UserService = Depends(get_user_service),
) -> dict[str, Any]:
    return await service.get_code_commits(_session_email(ctx))


# ── Projects ─────────────────────────────────────────────


@router.get("/projects")
async def projects_list(
    service: ProjectService = Depends(get_project_service),
) -> dict[str, Any]:
    return await service.get_projects_list()


@router.get("/project-issues-resolution")
async def project_issues_resolution(
    project_id: str | None = Query(default=None, alias="projectId"),
    service: ProjectService = Depends(get_project_service),
) -> dict[str, Any]:
    return await service.get_issues_resolution(project_id)


@router.get("/project-pull-requests")
async def project_pull_requests(
    project_id: str = Query(alias="projectId", min_length=1),
    service: ProjectService = Depends(get_project_service),
) -> dict[str, Any]:
    return await service.get_pull_requests_weekly(project_id)


# ── Organizations ────────────────────────────────────────


@router.get("/organization-contributions-overview")
async def organization_contributions(
    account_id: str = Query(alias="accountId", min_length=1),
    service: OrganizationService = Depends(get_organization_service),
) -> dict[str, Any]:
    return await service.get_contributions_overview(account_id)


@router.get("/board-member-dashboard")
async def board_member_dashboard(
    account_id: str = Query(alias="accountId", min_length=1),
    project_id: str = Query(alias="projectId", min_length=1),
    service: OrganizationService = Depends(get_organization_service),
) -> dict[str, Any]:
    return await service.get_board_member_dashboard(account_id, project_id)

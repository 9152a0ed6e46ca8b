"""Committee and committee-member routes."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, Request, Response

from lfx_server.api.dependencies import (
    get_committee_service,
    get_request_context,
)
from lfx_server.api.schemas import CountResponse
from lfx_server.context import RequestContext
from lfx_server.services.committee_service import CommitteeService

router = APIRouter(prefix="/api/committees", tags=["committees"])


@router.get("")
async def list_committees(
    request: Request,
    ctx: RequestContext = Depends(get_request_context),
    service: CommitteeService = Depends(get_committee_service),
) -> list[dict[str, Any]]:
    """List committees with member counts and the caller's writer flag."""
    return await service.get_committees(ctx, dict(request.query_params))


@router.get("/count")
async def count_committees(
    request: Request,
    ctx: RequestContext = Depends(get_request_context),
    service: CommitteeService = Depends(get_committee_service),
) -> CountResponse:
    count = await service.get_committees_count(ctx, dict(request.query_params))
    return CountResponse(count=count)


@router.get("/{committee_id}")
async def get_committee(
    committee_id: str,
    ctx: RequestContext = Depends(get_request_context),
    service: CommitteeService = Depends(get_committee_service),
) -> dict[str, Any]:
    return await service.get_committee_by_id(ctx, committee_id)


@router.post("", status_code=201)
async def create_committee(
    body: dict[str, Any] = Body(...),
    ctx: RequestContext = Depends(get_request_context),
    service: CommitteeService = Depends(get_committee_service),
) -> dict[str, Any]:
    return await service.create_committee(ctx, body)


@router.put("/{committee_id}")
async def update_committee(
    committee_id: str,
    body: dict[str, Any] = Body(...),
    ctx: RequestContext = Depends(get_request_context),
    service: CommitteeService = Depends(get_committee_service),
) -> dict[str, Any]:
    return await service.update_committee(ctx, committee_id, body)


@router.delete("/{committee_id}", status_code=204)
async def delete_committee(
    committee_id: str,
    ctx: RequestContext = Depends(get_request_context),
    service: CommitteeService = Depends(get_committee_service),
) -> Response:
    await service.delete_committee(ctx, committee_id)
    return Response(status_code=204)


# ── Members ──────────────────────────────────────────────


@router.get("/{committee_id}/members")
async def list_members(
    committee_id: str,
    request: Request,
    ctx: RequestContext = Depends(get_request_context),
    service: CommitteeService = Depends(get_committee_service),
) -> list[dict[str, Any]]:
    return await service.get_committee_members(
        ctx, committee_id, dict(request.query_params)
    )


@router.get("/{committee_id}/members/{member_id}")
async def get_member(
    committee_id: str,
    member_id: str,
    ctx: RequestContext = Depends(get_request_context),
    service: CommitteeService = Depends(get_committee_service),
) -> dict[str, Any]:
    return await service.get_committee_member_by_id(
        ctx, committee_id, member_id
    )


@router.post("/{committee_id}/members", status_code=201)
async def create_member(
    committee_id: str,
    body: dict[str, Any] = Body(...),
    ctx: RequestContext = Depends(get_request_context),
    service: CommitteeService = Depends(get_committee_service),
) -> dict[str, Any]:
    return await service.create_committee_member(ctx, committee_id, body)


@router.put("/{committee_id}/members/{member_id}")
async def update_member(
    committee_id: str,
    member_id: str,
    body: dict[str, Any] = Body(...),
    ctx: RequestContext = Depends(get_request_context),
    service: CommitteeService = Depends(get_committee_service),
) -> dict[str, Any]:
    return await service.update_committee_member(
        ctx, committee_id, member_id, body
    )


@router.delete("/{committee_id}/members/{member_id}", status_code=204)
async def delete_member(
    committee_id: str,
    member_id: str,
    ctx: RequestContext = Depends(get_request_context),
    service: CommitteeService = Depends(get_committee_service),
) -> Response:
    await service.delete_committee_member(ctx, committee_id, member_id)
    return Response(status_code=204)

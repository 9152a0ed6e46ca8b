"""Meeting, occurrence and registrant routes."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, Query, Request, Response

from lfx_server.api.dependencies import (
    get_meeting_service,
    get_request_context,
)
from lfx_server.api.schemas import CountResponse
from lfx_server.constants import EditType
from lfx_server.context import RequestContext
from lfx_server.services.meeting_service import MeetingService

router = APIRouter(prefix="/api/meetings", tags=["meetings"])


@router.get("")
async def list_meetings(
    request: Request,
    ctx: RequestContext = Depends(get_request_context),
    service: MeetingService = Depends(get_meeting_service),
) -> list[dict[str, Any]]:
    return await service.get_meetings(ctx, dict(request.query_params))


@router.get("/count")
async def count_meetings(
    request: Request,
    ctx: RequestContext = Depends(get_request_context),
    service: MeetingService = Depends(get_meeting_service),
) -> CountResponse:
    count = await service.get_meetings_count(ctx, dict(request.query_params))
    return CountResponse(count=count)


@router.get("/{meeting_uid}")
async def get_meeting(
    meeting_uid: str,
    ctx: RequestContext = Depends(get_request_context),
    service: MeetingService = Depends(get_meeting_service),
) -> dict[str, Any]:
    return await service.get_meeting_by_id(ctx, meeting_uid)


@router.post("", status_code=201)
async def create_meeting(
    body: dict[str, Any] = Body(...),
    ctx: RequestContext = Depends(get_request_context),
    service: MeetingService = Depends(get_meeting_service),
) -> dict[str, Any]:
    return await service.create_meeting(ctx, body)


@router.put("/{meeting_uid}")
async def update_meeting(
    meeting_uid: str,
    body: dict[str, Any] = Body(...),
    edit_type: EditType | None = Query(default=None, alias="editType"),
    ctx: RequestContext = Depends(get_request_context),
    service: MeetingService = Depends(get_meeting_service),
) -> dict[str, Any]:
    return await service.update_meeting(ctx, meeting_uid, body, edit_type)


@router.delete("/{meeting_uid}", status_code=204)
async def delete_meeting(
    meeting_uid: str,
    ctx: RequestContext = Depends(get_request_context),
    service: MeetingService = Depends(get_meeting_service),
) -> Response:
    await service.delete_meeting(ctx, meeting_uid)
    return Response(status_code=204)


@router.delete("/{meeting_uid}/occurrences/{occurrence_id}", status_code=204)
async def cancel_occurrence(
    meeting_uid: str,
    occurrence_id: str,
    ctx: RequestContext = Depends(get_request_context),
    service: MeetingService = Depends(get_meeting_service),
) -> Response:
    await service.cancel_occurrence(ctx, meeting_uid, occurrence_id)
    return Response(status_code=204)


# ── Registrants ──────────────────────────────────────────


@router.get("/{meeting_uid}/registrants")
async def list_registrants(
    meeting_uid: str,
    ctx: RequestContext = Depends(get_request_context),
    service: MeetingService = Depends(get_meeting_service),
) -> list[dict[str, Any]]:
    return await service.get_meeting_registrants(ctx, meeting_uid)


@router.post("/{meeting_uid}/registrants", status_code=201)
async def add_registrant(
    meeting_uid: str,
    body: dict[str, Any] = Body(...),
    ctx: RequestContext = Depends(get_request_context),
    service: MeetingService = Depends(get_meeting_service),
) -> dict[str, Any]:
    return await service.add_meeting_registrant(
        ctx, {**body, "meeting_uid": meeting_uid}
    )


@router.put("/{meeting_uid}/registrants/{registrant_uid}")
async def update_registrant(
    meeting_uid: str,
    registrant_uid: str,
    body: dict[str, Any] = Body(...),
    ctx: RequestContext = Depends(get_request_context),
    service: MeetingService = Depends(get_meeting_service),
) -> dict[str, Any]:
    return await service.update_meeting_registrant(
        ctx, meeting_uid, registrant_uid, body
    )


@router.delete("/{meeting_uid}/registrants/{registrant_uid}", status_code=204)
async def delete_registrant(
    meeting_uid: str,
    registrant_uid: str,
    ctx: RequestContext = Depends(get_request_context),
    service: MeetingService = Depends(get_meeting_service),
) -> Response:
    await service.delete_meeting_registrant(ctx, meeting_uid, registrant_uid)
    return Response(status_code=204)

"""Past meeting routes: history, attendance, recordings and summaries."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, Request

from lfx_server.api.dependencies import (
    get_meeting_service,
    get_request_context,
)
from lfx_server.context import RequestContext
from lfx_server.services.meeting_service import MeetingService

router = APIRouter(prefix="/api/past-meetings", tags=["past-meetings"])


@router.get("")
async def list_past_meetings(
    request: Request,
    ctx: RequestContext = Depends(get_request_context),
    service: MeetingService = Depends(get_meeting_service),
) -> list[dict[str, Any]]:
    return await service.get_past_meetings(ctx, dict(request.query_params))


@router.get("/{past_meeting_uid}/participants")
async def list_participants(
    past_meeting_uid: str,
    ctx: RequestContext = Depends(get_request_context),
    service: MeetingService = Depends(get_meeting_service),
) -> list[dict[str, Any]]:
    return await service.get_past_meeting_participants(ctx, past_meeting_uid)


@router.get("/{past_meeting_uid}/attachments")
async def list_attachments(
    past_meeting_uid: str,
    ctx: RequestContext = Depends(get_request_context),
    service: MeetingService = Depends(get_meeting_service),
) -> list[dict[str, Any]]:
    return await service.get_past_meeting_attachments(ctx, past_meeting_uid)


@router.get("/{past_meeting_uid}/recording")
async def get_recording(
    past_meeting_uid: str,
    ctx: RequestContext = Depends(get_request_context),
    service: MeetingService = Depends(get_meeting_service),
) -> dict[str, Any]:
    return await service.get_past_meeting_recording(ctx, past_meeting_uid)


@router.get("/{past_meeting_uid}/summary")
async def get_summary(
    past_meeting_uid: str,
    ctx: RequestContext = Depends(get_request_context),
    service: MeetingService = Depends(get_meeting_service),
) -> dict[str, Any]:
    return await service.get_past_meeting_summary(ctx, past_meeting_uid)


@router.put("/{past_meeting_uid}/summary/{summary_uid}")
async def update_summary(
    past_meeting_uid: str,
    summary_uid: str,
    body: dict[str, Any] = Body(...),
    ctx: RequestContext = Depends(get_request_context),
    service: MeetingService = Depends(get_meeting_service),
) -> dict[str, Any]:
    return await service.update_past_meeting_summary(
        ctx, past_meeting_uid, summary_uid, body
    )

"""Public meeting page data; signed-in callers are optional."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query

from lfx_server.api.dependencies import (
    get_meeting_service,
    get_request_context,
)
from lfx_server.context import RequestContext
from lfx_server.services.meeting_service import MeetingService

router = APIRouter(prefix="/public/api/meetings", tags=["public"])


@router.get("/{meeting_uid}")
async def get_public_meeting(
    meeting_uid: str,
    password: str | None = Query(default=None),
    ctx: RequestContext = Depends(get_request_context),
    service: MeetingService = Depends(get_meeting_service),
) -> dict[str, Any]:
    return await service.get_public_meeting(ctx, meeting_uid, password)

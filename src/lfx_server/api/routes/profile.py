"""The signed-in user's own profile."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from lfx_server.api.dependencies import get_request_context, get_user_service
from lfx_server.api.schemas import UserMetadataUpdate
from lfx_server.context import RequestContext
from lfx_server.errors import AuthenticationError
from lfx_server.services.user_service import UserService

router = APIRouter(prefix="/api/profile", tags=["profile"])


def _require_user(ctx: RequestContext) -> str:
    if not ctx.username:
        raise AuthenticationError("User identity is missing from the session")
    return ctx.username


@router.get("")
async def get_profile(
    ctx: RequestContext = Depends(get_request_context),
    service: UserService = Depends(get_user_service),
) -> dict[str, Any]:
    """Profile metadata, looked up with the caller's own token."""
    _require_user(ctx)
    return await service.get_user_info(ctx.bearer_token or "")


@router.put("")
async def update_profile(
    body: UserMetadataUpdate,
    ctx: RequestContext = Depends(get_request_context),
    service: UserService = Depends(get_user_service),
) -> dict[str, Any]:
    username = _require_user(ctx)
    return await service.update_user_metadata(
        ctx, username, body.user_metadata
    )

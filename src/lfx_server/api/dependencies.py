"""FastAPI dependency injection for services and the caller context."""

from __future__ import annotations

from fastapi import Request

from lfx_server.api.app_state import AppState
from lfx_server.context import RequestContext
from lfx_server.services.committee_service import CommitteeService
from lfx_server.services.meeting_service import MeetingService
from lfx_server.services.organization_service import OrganizationService
from lfx_server.services.project_service import ProjectService
from lfx_server.services.user_service import UserService


def get_state(request: Request) -> AppState:
    return request.app.state.typed  # type: ignore[no-any-return]


def get_request_context(request: Request) -> RequestContext:
    """Context set by the auth middleware, anonymous if absent."""
    ctx = getattr(request.state, "context", None)
    if ctx is None:
        ctx = RequestContext(path=request.url.path)
    return ctx  # type: ignore[no-any-return]


def get_committee_service(request: Request) -> CommitteeService:
    return get_state(request).committees


def get_meeting_service(request: Request) -> MeetingService:
    return get_state(request).meetings


def get_project_service(request: Request) -> ProjectService:
    return get_state(request).projects


def get_organization_service(request: Request) -> OrganizationService:
    return get_state(request).organizations


def get_user_service(request: Request) -> UserService:
    return get_state(request).users

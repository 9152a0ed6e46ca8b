"""Meetings, occurrences, registrants and past meetings."""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any

from lfx_server.constants import EditType, ResourceType
from lfx_server.context import RequestContext
from lfx_server.errors import (
    AuthorizationError,
    BaseApiError,
    ResourceNotFoundError,
    ValidationError,
)
from lfx_server.logger import OperationLogger
from lfx_server.services.etag_service import ETagService
from lfx_server.services.m2m_token import M2MTokenProvider
from lfx_server.services.microservice_proxy import (
    LFX_V2_SERVICE,
    MicroserviceProxy,
)
from lfx_server.services.resource_query import (
    AccessCheckService,
    ResourceQuery,
)

logger = logging.getLogger(__name__)

# Never returned on the public endpoint.
_PRIVATE_MEETING_FIELDS = ("password", "join_url", "host_key", "user_id")


def is_legacy_uid(uid: str) -> bool:
    """Legacy (v1) meeting ids are not UUIDs."""
    try:
        uuid.UUID(uid)
    except ValueError:
        return True
    return False


def merge_organizers(
    existing: list[str | None] | None, username: str | None
) -> list[str]:
    """Existing organizers minus ``None``, deduplicated, plus the caller."""
    merged = list(dict.fromkeys(o for o in existing or [] if o is not None))
    if username and username not in merged:
        merged.append(username)
    return merged


class MeetingService:
    def __init__(
        self,
        proxy: MicroserviceProxy,
        etag: ETagService,
        m2m: M2MTokenProvider | None = None,
        ops_logger: OperationLogger | None = None,
    ) -> None:
        self._proxy = proxy
        self._etag = etag
        self._m2m = m2m
        self._query = ResourceQuery(proxy)
        self._access = AccessCheckService(proxy)
        self._ops = ops_logger or OperationLogger()

    async def get_meetings(
        self,
        ctx: RequestContext,
        query: dict[str, Any] | None = None,
        *,
        access: bool = True,
    ) -> list[dict[str, Any]]:
        meetings = await self._query.list(ctx, ResourceType.MEETING, query)
        if not access:
            return meetings
        return await self._access.add_access(
            ctx, meetings, ResourceType.MEETING, "organizer"
        )

    async def get_meetings_count(
        self, ctx: RequestContext, query: dict[str, Any] | None = None
    ) -> int:
        return await self._query.count(ctx, ResourceType.MEETING, query)

    async def get_meeting_by_id(
        self, ctx: RequestContext, meeting_uid: str, *, access: bool = True
    ) -> dict[str, Any]:
        path = f"/meetings/{meeting_uid}"
        meeting = await self._proxy.proxy_request(
            ctx, LFX_V2_SERVICE, path, "GET"
        )
        if not meeting or not (meeting.get("uid") or meeting.get("id")):
            raise ResourceNotFoundError(
                "Meeting",
                meeting_uid,
                operation="get_meeting_by_id",
                service="meeting_service",
                path=path,
            )
        if not access:
            return meeting  # type: ignore[no-any-return]
        [meeting] = await self._access.add_access(
            ctx, [meeting], ResourceType.MEETING, "organizer"
        )
        return meeting

    async def create_meeting(
        self, ctx: RequestContext, data: dict[str, Any]
    ) -> dict[str, Any]:
        payload = dict(data)
        if ctx.username:
            payload["organizers"] = [ctx.username]
        started = self._ops.start(ctx, "create_meeting")
        meeting = await self._proxy.proxy_request(
            ctx, LFX_V2_SERVICE, "/meetings", "POST", None, payload
        )
        self._ops.success(
            ctx,
            "create_meeting",
            started,
            status_code=201,
            meeting_uid=meeting.get("uid"),
            organizer=ctx.username or "none",
        )
        return meeting  # type: ignore[no-any-return]

    async def update_meeting(
        self,
        ctx: RequestContext,
        meeting_uid: str,
        data: dict[str, Any],
        edit_type: EditType | None = None,
    ) -> dict[str, Any]:
        """Update with If-Match, keeping existing organizers.

        ``edit_type`` scopes changes to a recurring meeting (this
        occurrence only, or this and all future ones).
        """

        def _merge(current: dict[str, Any]) -> dict[str, Any]:
            return {
                **data,
                "organizers": merge_organizers(
                    current.get("organizers"), ctx.username
                ),
            }

        query = {"editType": str(edit_type)} if edit_type else None
        started = self._ops.start(
            ctx, "update_meeting", meeting_uid=meeting_uid
        )
        updated = await self._etag.conditional_update(
            ctx, f"/meetings/{meeting_uid}", _merge, "update_meeting", query=query
        )
        self._ops.success(
            ctx,
            "update_meeting",
            started,
            meeting_uid=meeting_uid,
            edit_type=edit_type or EditType.SINGLE,
        )
        return updated  # type: ignore[no-any-return]

    async def delete_meeting(self, ctx: RequestContext, meeting_uid: str) -> None:
        await self._etag.conditional_delete(
            ctx, f"/meetings/{meeting_uid}", "delete_meeting"
        )

    async def cancel_occurrence(
        self, ctx: RequestContext, meeting_uid: str, occurrence_id: str
    ) -> None:
        """Cancel one occurrence using the parent meeting's ETag."""
        fetched = await self._etag.fetch_with_etag(
            ctx, f"/meetings/{meeting_uid}", "cancel_occurrence"
        )
        await self._etag.delete_with_etag(
            ctx,
            f"/meetings/{meeting_uid}/occurrences/{occurrence_id}",
            fetched.etag,
            "cancel_occurrence",
        )

    # ── Registrants ──────────────────────────────────────

    async def get_meeting_registrants(
        self, ctx: RequestContext, meeting_uid: str
    ) -> list[dict[str, Any]]:
        return await self._query.list(
            ctx,
            ResourceType.MEETING_REGISTRANT,
            {"tags": f"meeting_uid:{meeting_uid}"},
        )

    async def add_meeting_registrant(
        self, ctx: RequestContext, data: dict[str, Any]
    ) -> dict[str, Any]:
        meeting_uid = data.get("meeting_uid")
        if not meeting_uid:
            raise ValidationError.for_field(
                "meeting_uid",
                "Meeting ID is required",
                operation="add_meeting_registrant",
                service="meeting_service",
            )
        registrant = await self._proxy.proxy_request(
            ctx,
            LFX_V2_SERVICE,
            f"/meetings/{meeting_uid}/registrants",
            "POST",
            None,
            data,
        )
        logger.info(
            "event=registrant_added meeting_uid=%s registrant_uid=%s",
            meeting_uid,
            registrant.get("uid"),
        )
        return registrant  # type: ignore[no-any-return]

    async def update_meeting_registrant(
        self,
        ctx: RequestContext,
        meeting_uid: str,
        registrant_uid: str,
        data: dict[str, Any],
    ) -> dict[str, Any]:
        path = f"/meetings/{meeting_uid}/registrants/{registrant_uid}"
        return await self._etag.conditional_update(  # type: ignore[no-any-return]
            ctx, path, lambda _current: data, "update_meeting_registrant"
        )

    async def delete_meeting_registrant(
        self, ctx: RequestContext, meeting_uid: str, registrant_uid: str
    ) -> None:
        await self._etag.conditional_delete(
            ctx,
            f"/meetings/{meeting_uid}/registrants/{registrant_uid}",
            "delete_meeting_registrant",
        )

    # ── Public ───────────────────────────────────────────

    async def get_public_meeting(
        self,
        ctx: RequestContext,
        meeting_uid: str,
        password: str | None = None,
    ) -> dict[str, Any]:
        """Look up a meeting for an anonymous or signed-in visitor.

        Upstream calls use a machine token since the visitor may have
        none. Non-public or restricted meetings need the meeting password.
        """
        if self._m2m is None:
            raise AuthorizationError(
                "Public meeting access is not configured",
                operation="get_public_meeting",
                service="meeting_service",
            )
        started = self._ops.start(
            ctx, "get_public_meeting", meeting_uid=meeting_uid
        )
        m2m_ctx = ctx.with_token(await self._m2m.get_token())
        meeting = await self.get_meeting_by_id(
            m2m_ctx, meeting_uid, access=False
        )
        is_open = meeting.get("visibility") == "public" and not meeting.get(
            "restricted"
        )
        expected = meeting.get("password")
        if not is_open and (not password or password != expected):
            error = ValidationError.for_field(
                "password",
                "Invalid password",
                operation="get_public_meeting",
                service="meeting_service",
                path=f"/public/api/meetings/{meeting_uid}",
            )
            self._ops.error(ctx, "get_public_meeting", started, error)
            raise error
        registrants = await self.get_meeting_registrants(m2m_ctx, meeting_uid)
        public = {
            k: v for k, v in meeting.items() if k not in _PRIVATE_MEETING_FIELDS
        }
        public["registrants_count"] = len(registrants)
        self._ops.success(
            ctx, "get_public_meeting", started, meeting_uid=meeting_uid
        )
        return public

    # ── Past meetings ────────────────────────────────────

    async def get_past_meetings(
        self, ctx: RequestContext, query: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        """Past meetings of both generations, each with attendance counts.

        Legacy (v1) past meetings live under their own resource type
        until migrated; both lists are fetched together and tagged with
        ``version``.
        """
        started = self._ops.start(ctx, "get_past_meetings")
        current, legacy = await asyncio.gather(
            self._query.list(ctx, ResourceType.PAST_MEETING, query),
            self._query.list(ctx, ResourceType.V1_PAST_MEETING, query),
        )
        meetings = [{**m, "version": "v2"} for m in current] + [
            {**m, "version": "v1"} for m in legacy
        ]
        counts = await asyncio.gather(
            *(self._participant_counts(ctx, m.get("uid", "")) for m in meetings)
        )
        for meeting, count in zip(meetings, counts, strict=True):
            meeting.update(count)
        self._ops.success(
            ctx,
            "get_past_meetings",
            started,
            meeting_count=len(meetings),
            v1_past_meeting_count=len(legacy),
        )
        return meetings

    async def _participant_counts(
        self, ctx: RequestContext, past_meeting_uid: str
    ) -> dict[str, int]:
        try:
            participants = await self.get_past_meeting_participants(
                ctx, past_meeting_uid
            )
        except BaseApiError as exc:
            logger.warning(
                "event=participant_counts_failed past_meeting_uid=%s code=%s"
                " action=default_zero",
                past_meeting_uid,
                exc.code,
            )
            participants = []
        return {
            "individual_registrants_count": sum(
                1 for p in participants if p.get("is_invited")
            ),
            "committee_members_count": 0,
            "participant_count": len(participants),
            "attended_count": sum(
                1 for p in participants if p.get("is_attended")
            ),
        }

    async def get_past_meeting_participants(
        self, ctx: RequestContext, past_meeting_uid: str
    ) -> list[dict[str, Any]]:
        return await self._query.list(
            ctx,
            ResourceType.PAST_MEETING_PARTICIPANT,
            {"tags": f"past_meeting_uid:{past_meeting_uid}"},
        )

    async def get_past_meeting_attachments(
        self, ctx: RequestContext, past_meeting_uid: str
    ) -> list[dict[str, Any]]:
        return await self._query.list(
            ctx,
            ResourceType.PAST_MEETING_ATTACHMENT,
            {"tags": f"past_meeting_uid:{past_meeting_uid}"},
        )

    async def get_past_meeting_recording(
        self, ctx: RequestContext, past_meeting_uid: str
    ) -> dict[str, Any]:
        """The recording of a past meeting; legacy recordings are tagged by bare id."""
        if is_legacy_uid(past_meeting_uid):
            resource_type = ResourceType.V1_PAST_MEETING_RECORDING
            tags = past_meeting_uid
        else:
            resource_type = ResourceType.PAST_MEETING_RECORDING
            tags = f"past_meeting_uid:{past_meeting_uid}"
        return await self._first_for_past_meeting(
            ctx, past_meeting_uid, resource_type, tags, "Recording"
        )

    async def get_past_meeting_summary(
        self, ctx: RequestContext, past_meeting_uid: str
    ) -> dict[str, Any]:
        resource_type = (
            ResourceType.V1_PAST_MEETING_SUMMARY
            if is_legacy_uid(past_meeting_uid)
            else ResourceType.PAST_MEETING_SUMMARY
        )
        return await self._first_for_past_meeting(
            ctx,
            past_meeting_uid,
            resource_type,
            f"past_meeting_uid:{past_meeting_uid}",
            "Summary",
        )

    async def _first_for_past_meeting(
        self,
        ctx: RequestContext,
        past_meeting_uid: str,
        resource_type: ResourceType,
        tags: str,
        label: str,
    ) -> dict[str, Any]:
        found = await self._query.list(ctx, resource_type, {"tags": tags})
        if not found:
            logger.info(
                "event=past_meeting_resource_missing type=%s past_meeting_uid=%s",
                resource_type,
                past_meeting_uid,
            )
            raise ResourceNotFoundError(
                label,
                past_meeting_uid,
                message=(
                    f"No {label.lower()} found for past meeting"
                    f" {past_meeting_uid}"
                ),
                operation=f"get_past_meeting_{label.lower()}",
                service="meeting_service",
            )
        return found[0]

    async def update_past_meeting_summary(
        self,
        ctx: RequestContext,
        past_meeting_uid: str,
        summary_uid: str,
        data: dict[str, Any],
    ) -> dict[str, Any]:
        """Edit or approve a summary under If-Match."""
        if not data.get("edited_content") and data.get("approved") is None:
            raise ValidationError(
                "Either edited_content or approved must be provided",
                operation="update_past_meeting_summary",
                service="meeting_service",
            )
        path = f"/past_meetings/{past_meeting_uid}/summaries/{summary_uid}"
        updated = await self._etag.conditional_update(
            ctx, path, lambda _current: data, "update_past_meeting_summary"
        )
        logger.info(
            "event=past_meeting_summary_updated past_meeting_uid=%s"
            " summary_uid=%s edited=%s approved=%s",
            past_meeting_uid,
            summary_uid,
            bool(data.get("edited_content")),
            data.get("approved"),
        )
        return updated  # type: ignore[no-any-return]

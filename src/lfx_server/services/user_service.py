"""User identity lookups over NATS and per-user warehouse analytics."""

from __future__ import annotations

import json
import logging
import re
from typing import Any
from urllib.parse import urlsplit

from lfx_server.constants import (
    PHONE_PATTERN,
    POSTAL_CODE_PATTERN,
    T_SHIRT_SIZES,
    USER_METADATA_MAX_LENGTHS,
    NatsSubject,
)
from lfx_server.context import RequestContext
from lfx_server.errors import (
    BaseApiError,
    ConfigurationError,
    MicroserviceError,
    ResourceNotFoundError,
    ServiceTimeoutError,
    ValidationError,
)
from lfx_server.services.nats_service import NatsService
from lfx_server.services.snowflake_service import SnowflakeService

logger = logging.getLogger(__name__)

_PHONE = re.compile(PHONE_PATTERN)
_POSTAL = re.compile(POSTAL_CODE_PATTERN)

_LABELS = {
    "country": "Country name",
    "state_province": "State/Province name",
    "city": "City name",
    "address": "Address",
    "organization": "Organization name",
    "job_title": "Job title",
}

ACTIVE_WEEKS_STREAK_SQL = """
    SELECT WEEKS_AGO, IS_ACTIVE
    FROM ANALYTICS.PLATINUM_LFX_ONE.ACTIVE_WEEKS_STREAK
    WHERE EMAIL = ?
    ORDER BY WEEKS_AGO ASC
    LIMIT 52
"""

PULL_REQUESTS_MERGED_SQL = """
    SELECT
      ACTIVITY_DATE,
      DAILY_COUNT,
      SUM(DAILY_COUNT) OVER () AS TOTAL_COUNT
    FROM ANALYTICS.PLATINUM_LFX_ONE.USER_PULL_REQUESTS
    WHERE EMAIL = ?
      AND ACTIVITY_DATE >= DATEADD(DAY, -30, CURRENT_DATE())
    ORDER BY ACTIVITY_DATE ASC
"""

CODE_COMMITS_SQL = """
    SELECT
      ACTIVITY_DATE,
      DAILY_COUNT,
      SUM(DAILY_COUNT) OVER () AS TOTAL_COUNT
    FROM ANALYTICS.PLATINUM_LFX_ONE.USER_CODE_COMMITS
    WHERE EMAIL = ?
      AND ACTIVITY_DATE >= DATEADD(DAY, -30, CURRENT_DATE())
    ORDER BY ACTIVITY_DATE ASC
"""


def validate_user_metadata(metadata: dict[str, Any]) -> None:
    """Raise ValidationError on the first invalid profile field."""

    def _fail(field: str, message: str) -> None:
        raise ValidationError.for_field(
            field,
            message,
            operation="update_user_metadata",
            service="user_service",
        )

    size = metadata.get("t_shirt_size")
    if size and str(size).upper() not in T_SHIRT_SIZES:
        order = ["XS", "S", "M", "L", "XL", "XXL", "XXXL"]
        _fail(
            "t_shirt_size",
            f"Invalid t-shirt size. Must be one of: {', '.join(order)}",
        )
    phone = metadata.get("phone_number")
    if phone and not _PHONE.match(str(phone)):
        _fail("phone_number", "Invalid phone number format")
    postal = metadata.get("postal_code")
    if postal and not _POSTAL.match(str(postal)):
        _fail("postal_code", "Invalid postal code format")
    picture = metadata.get("picture")
    if picture:
        parts = urlsplit(str(picture))
        if not (parts.scheme and parts.netloc):
            _fail("picture", "Invalid picture URL format")
    for field, limit in USER_METADATA_MAX_LENGTHS.items():
        value = metadata.get(field)
        if value and len(str(value)) > limit:
            _fail(field, f"{_LABELS[field]} is too long")


def current_streak(rows: list[dict[str, Any]]) -> int:
    """Consecutive active weeks counting back from week 0."""
    streak = 0
    for row in rows:
        if row.get("IS_ACTIVE") != 1:
            break
        streak += 1
    return streak


def _parse_identity(text: str, keys: tuple[str, ...]) -> str | None:
    """Extract an identifier from a NATS reply.

    Replies are a JSON string, a JSON object carrying one of ``keys``,
    ``{"success": false}`` for unknown users, or the bare identifier.
    Returns None for the not-found shape.
    """
    try:
        parsed = json.loads(text)
    except ValueError:
        return text.strip()
    if isinstance(parsed, dict):
        if parsed.get("success") is False:
            return None
        for key in keys:
            if parsed.get(key):
                return str(parsed[key]).strip()
        return ""
    if isinstance(parsed, str):
        return parsed.strip()
    return text.strip()


class UserService:
    def __init__(
        self,
        nats: NatsService,
        snowflake: SnowflakeService | None = None,
    ) -> None:
        self._nats = nats
        self._snowflake = snowflake

    async def _nats_request(
        self, subject: str, payload: str, *, not_found: ResourceNotFoundError
    ) -> str:
        """Send a NATS request; an unreachable responder means not found."""
        try:
            reply = await self._nats.request(subject, payload)
        except ServiceTimeoutError as exc:
            logger.warning(
                "event=nats_lookup_unavailable subject=%s error=%s",
                subject,
                exc.code,
            )
            raise not_found from exc
        except BaseApiError as exc:
            if exc.status_code != 503:
                raise
            logger.warning(
                "event=nats_lookup_unavailable subject=%s error=%s",
                subject,
                exc.code,
            )
            raise not_found from exc
        return reply.decode("utf-8")

    # ── Identity ─────────────────────────────────────────

    async def resolve_email_to_sub(self, email: str) -> str:
        return await self._resolve_email(
            email,
            NatsSubject.EMAIL_TO_SUB,
            ("sub", "username"),
            "resolve_email_to_sub",
        )

    async def resolve_email_to_username(self, email: str) -> str:
        return await self._resolve_email(
            email,
            NatsSubject.EMAIL_TO_USERNAME,
            ("username",),
            "resolve_email_to_username",
        )

    async def _resolve_email(
        self,
        email: str,
        subject: str,
        keys: tuple[str, ...],
        operation: str,
    ) -> str:
        normalized = email.strip().lower()
        not_found = ResourceNotFoundError(
            "User",
            normalized,
            operation=operation,
            service="user_service",
            path=f"/nats/{subject}",
        )
        text = await self._nats_request(subject, normalized, not_found=not_found)
        identity = _parse_identity(text, keys)
        if not identity:
            logger.info("event=user_lookup_miss operation=%s", operation)
            raise not_found
        return identity

    async def get_user_info(self, user_arg: str) -> dict[str, Any]:
        """Raw user metadata reply for a username, sub or user token."""
        not_found = ResourceNotFoundError(
            "User",
            operation="get_user_info",
            service="user_service",
            path=f"/nats/{NatsSubject.USER_METADATA_READ}",
        )
        text = await self._nats_request(
            NatsSubject.USER_METADATA_READ, user_arg, not_found=not_found
        )
        try:
            body = json.loads(text)
        except ValueError as exc:
            raise not_found from exc
        if not isinstance(body, dict):
            raise not_found
        return body

    async def get_user_summary(self, username_or_email: str) -> dict[str, str]:
        """``{name, email, username[, avatar]}`` for permission lists."""
        lookup = username_or_email.strip()
        email = ""
        if "@" in lookup:
            email = username_or_email
            await self.resolve_email_to_sub(username_or_email)
            lookup = await self.resolve_email_to_username(username_or_email)
        body = await self.get_user_info(lookup)
        if body.get("success") is False:
            raise ResourceNotFoundError(
                "User",
                lookup,
                operation="get_user_info",
                service="user_service",
            )
        data = body.get("data") or {}
        name = (
            data.get("name")
            or f"{data.get('given_name') or ''} {data.get('family_name') or ''}".strip()
            or lookup
        )
        summary = {"name": name, "email": email, "username": lookup}
        picture = (data.get("picture") or "").strip()
        if picture:
            summary["avatar"] = picture
        return summary

    async def update_user_metadata(
        self,
        ctx: RequestContext,
        username: str,
        user_metadata: dict[str, Any],
    ) -> dict[str, Any]:
        """Validate and forward a profile update; returns the NATS reply."""
        if not username:
            raise ValidationError.for_field(
                "username", "Username is required", service="user_service"
            )
        if not ctx.bearer_token:
            raise ValidationError.for_field(
                "token",
                "Authentication token is required",
                service="user_service",
            )
        validate_user_metadata(user_metadata)
        logger.info(
            "event=user_metadata_update username=%s fields=%s",
            username,
            ",".join(sorted(user_metadata)),
        )
        payload = json.dumps(
            {
                "username": username,
                "token": ctx.bearer_token,
                "user_metadata": user_metadata,
            }
        )
        reply = await self._nats.request(
            NatsSubject.USER_METADATA_UPDATE, payload
        )
        try:
            body = json.loads(reply.decode("utf-8"))
        except ValueError as exc:
            logger.error(
                "event=user_metadata_reply_invalid username=%s", username
            )
            raise MicroserviceError(
                "Invalid reply from user metadata service",
                operation="update_user_metadata",
                service="auth-service",
                path=f"/nats/{NatsSubject.USER_METADATA_UPDATE}",
                original_error=exc,
            ) from exc
        if not isinstance(body, dict):
            raise MicroserviceError(
                "Invalid reply from user metadata service",
                operation="update_user_metadata",
                service="auth-service",
                path=f"/nats/{NatsSubject.USER_METADATA_UPDATE}",
                error_body=body,
            )
        if body.get("success"):
            logger.info(
                "event=user_metadata_updated username=%s updated=%s",
                username,
                body.get("updated_fields"),
            )
        else:
            logger.error(
                "event=user_metadata_update_failed username=%s error=%s",
                username,
                body.get("error"),
            )
        return body

    # ── Analytics ────────────────────────────────────────

    def _warehouse(self) -> SnowflakeService:
        if self._snowflake is None:
            raise ConfigurationError(
                "Analytics warehouse is not configured", service="user_service"
            )
        return self._snowflake

    async def get_active_weeks_streak(self, email: str) -> dict[str, Any]:
        result = await self._warehouse().execute(ACTIVE_WEEKS_STREAK_SQL, [email])
        if not result.rows:
            raise ResourceNotFoundError(
                "Active weeks streak data", operation="get_active_weeks_streak"
            )
        return {
            "data": result.rows,
            "currentStreak": current_streak(result.rows),
            "totalWeeks": result.row_count,
        }

    async def get_pull_requests_merged(self, email: str) -> dict[str, Any]:
        result = await self._warehouse().execute(PULL_REQUESTS_MERGED_SQL, [email])
        if not result.rows:
            raise ResourceNotFoundError(
                "Pull requests data", operation="get_pull_requests_merged"
            )
        return {
            "data": result.rows,
            "totalPullRequests": result.rows[0].get("TOTAL_COUNT", 0),
            "totalDays": result.row_count,
        }

    async def get_code_commits(self, email: str) -> dict[str, Any]:
        result = await self._warehouse().execute(CODE_COMMITS_SQL, [email])
        if not result.rows:
            raise ResourceNotFoundError(
                "Code commits data", operation="get_code_commits"
            )
        return {
            "data": result.rows,
            "totalCommits": result.rows[0].get("TOTAL_COUNT", 0),
            "totalDays": result.row_count,
        }

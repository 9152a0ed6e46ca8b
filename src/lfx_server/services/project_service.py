"""Projects, project permissions and project analytics."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Literal

from lfx_server.constants import NatsSubject, ResourceType
from lfx_server.context import RequestContext
from lfx_server.errors import (
    BaseApiError,
    ConfigurationError,
    ResourceNotFoundError,
    ServiceTimeoutError,
    ValidationError,
)
from lfx_server.services.etag_service import ETagService
from lfx_server.services.microservice_proxy import (
    LFX_V2_SERVICE,
    MicroserviceProxy,
)
from lfx_server.services.nats_service import NatsService
from lfx_server.services.resource_query import (
    AccessCheckService,
    ResourceQuery,
)
from lfx_server.services.snowflake_service import SnowflakeService
from lfx_server.services.user_service import UserService

logger = logging.getLogger(__name__)

type PermissionOperation = Literal["add", "update", "remove"]
type PermissionRole = Literal["view", "manage"]

PROJECTS_LIST_SQL = """
    SELECT PROJECT_ID, NAME, SLUG
    FROM ANALYTICS.SILVER_DIM.PROJECTS
    ORDER BY NAME
"""

ISSUES_RESOLUTION_DAILY_SQL = """
    SELECT
      PROJECT_ID,
      PROJECT_NAME,
      PROJECT_SLUG,
      METRIC_DATE,
      OPENED_ISSUES_COUNT,
      CLOSED_ISSUES_COUNT
    FROM ANALYTICS.PLATINUM_LFX_ONE.PROJECT_ISSUES_RESOLUTION_DAILY
    WHERE PROJECT_ID = ?
    ORDER BY METRIC_DATE DESC
"""

ISSUES_RESOLUTION_TOTALS_SQL = """
    SELECT
      OPENED_ISSUES,
      CLOSED_ISSUES,
      RESOLUTION_RATE_PCT,
      MEDIAN_DAYS_TO_CLOSE
    FROM ANALYTICS.PLATINUM_LFX_ONE.PROJECT_ISSUES_RESOLUTION
    WHERE PROJECT_ID = ?
"""

PULL_REQUESTS_WEEKLY_SQL = """
    SELECT
      WEEK_START_DATE,
      MERGED_PR_COUNT,
      AVG_MERGED_IN_DAYS,
      AVG_REVIEWERS_PER_PR,
      PENDING_PR_COUNT
    FROM ANALYTICS.PLATINUM_LFX_ONE.PROJECT_PULL_REQUESTS_WEEKLY
    WHERE PROJECT_ID = ?
    ORDER BY WEEK_START_DATE DESC
    LIMIT 26
"""

_EMPTY_TOTALS: dict[str, Any] = {
    "OPENED_ISSUES": 0,
    "CLOSED_ISSUES": 0,
    "RESOLUTION_RATE_PCT": 0,
    "MEDIAN_DAYS_TO_CLOSE": 0,
}


def _clean_user(user: dict[str, Any]) -> dict[str, Any]:
    cleaned = {
        "name": user.get("name"),
        "email": user.get("email"),
        "username": user.get("username"),
    }
    avatar = (user.get("avatar") or "").strip()
    if avatar:
        cleaned["avatar"] = avatar
    return cleaned


def apply_permission_change(
    settings: dict[str, Any],
    operation: PermissionOperation,
    identifier: str,
    role: PermissionRole | None = None,
    user_info: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Return project settings with ``identifier`` added, moved or removed.

    The user is first dropped from both lists; add/update then places
    them in ``writers`` (manage) or ``auditors`` (view).
    """
    writers = [
        u for u in settings.get("writers") or [] if u.get("username") != identifier
    ]
    auditors = [
        u for u in settings.get("auditors") or [] if u.get("username") != identifier
    ]
    if operation != "remove":
        if role is None:
            raise ValidationError.for_field(
                "role", "Role is required for add/update operations"
            )
        entry = {**(user_info or {}), "username": identifier}
        if role == "manage":
            writers.append(entry)
        else:
            auditors.append(entry)
    return {
        **settings,
        "writers": [_clean_user(u) for u in writers],
        "auditors": [_clean_user(u) for u in auditors],
    }


def weighted_merge_time(rows: list[dict[str, Any]]) -> tuple[int, float]:
    """Total merged PRs and PR-weighted average days to merge (1 decimal)."""
    total = sum(int(r.get("MERGED_PR_COUNT") or 0) for r in rows)
    if total == 0:
        return 0, 0.0
    weighted = sum(
        float(r.get("AVG_MERGED_IN_DAYS") or 0) * int(r.get("MERGED_PR_COUNT") or 0)
        for r in rows
    )
    return total, round(weighted / total, 1)


class ProjectService:
    def __init__(
        self,
        proxy: MicroserviceProxy,
        etag: ETagService,
        nats: NatsService,
        users: UserService,
        snowflake: SnowflakeService | None = None,
    ) -> None:
        self._proxy = proxy
        self._etag = etag
        self._nats = nats
        self._users = users
        self._snowflake = snowflake
        self._query = ResourceQuery(proxy)
        self._access = AccessCheckService(proxy)

    async def get_projects(
        self, ctx: RequestContext, query: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        projects = await self._query.list(ctx, ResourceType.PROJECT, query)
        return await self._access.add_access(
            ctx, projects, ResourceType.PROJECT
        )

    async def search_projects(
        self, ctx: RequestContext, name: str
    ) -> list[dict[str, Any]]:
        return await self._query.list(
            ctx, ResourceType.PROJECT, {"name": name}
        )

    async def get_project_by_id(
        self, ctx: RequestContext, project_id: str, *, access: bool = True
    ) -> dict[str, Any]:
        resources = await self._query.list(
            ctx, ResourceType.PROJECT, {"tags": project_id}
        )
        if not resources:
            raise ResourceNotFoundError(
                "Project",
                project_id,
                operation="get_project_by_id",
                service="project_service",
                path="/query/resources",
            )
        if len(resources) > 1:
            logger.warning(
                "event=project_lookup_ambiguous project_id=%s count=%d",
                project_id,
                len(resources),
            )
        if not access:
            return resources[0]
        [project] = await self._access.add_access(
            ctx, resources[:1], ResourceType.PROJECT
        )
        return project

    async def get_project_by_slug(
        self, ctx: RequestContext, slug: str
    ) -> dict[str, Any]:
        project_id = await self._slug_to_uid(slug)
        if not project_id:
            raise ResourceNotFoundError(
                "Project",
                slug,
                operation="get_project_by_slug",
                service="project_service",
                path=f"/nats/{NatsSubject.PROJECT_SLUG_TO_UID}",
            )
        logger.info(
            "event=project_slug_resolved slug=%s project_id=%s",
            slug,
            project_id,
        )
        return await self.get_project_by_id(ctx, project_id)

    async def _slug_to_uid(self, slug: str) -> str:
        try:
            reply = await self._nats.request(
                NatsSubject.PROJECT_SLUG_TO_UID, slug
            )
        except ServiceTimeoutError:
            logger.warning("event=project_slug_lookup_timeout slug=%s", slug)
            return ""
        except BaseApiError as exc:
            if exc.status_code != 503:
                raise
            logger.warning(
                "event=project_slug_lookup_unavailable slug=%s", slug
            )
            return ""
        return reply.decode("utf-8").strip()

    async def get_project_settings(
        self, ctx: RequestContext, project_id: str
    ) -> dict[str, Any]:
        settings = await self._proxy.proxy_request(
            ctx, LFX_V2_SERVICE, f"/projects/{project_id}/settings", "GET"
        )
        return settings or {}

    async def update_project_permissions(
        self,
        ctx: RequestContext,
        project_id: str,
        operation: PermissionOperation,
        username_or_email: str,
        role: PermissionRole | None = None,
        manual_user_info: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Add, change or remove a user's project role with If-Match.

        Emails are resolved to the user's sub so both lists are keyed by
        the identifier the backend stores.
        """
        identifier = username_or_email.strip()
        if "@" in identifier:
            identifier = await self._users.resolve_email_to_sub(identifier)

        user_info: dict[str, Any] | None = None
        if operation != "remove":
            if manual_user_info:
                user_info = {
                    "name": manual_user_info.get("name"),
                    "email": manual_user_info.get("email"),
                    "avatar": manual_user_info.get("avatar"),
                }
            else:
                user_info = await self._users.get_user_summary(
                    username_or_email
                )

        op_name = f"{operation}_user_project_permissions"
        result = await self._etag.conditional_update(
            ctx,
            f"/projects/{project_id}/settings",
            lambda current: apply_permission_change(
                current or {}, operation, identifier, role, user_info
            ),
            op_name,
        )
        logger.info(
            "event=project_permissions_updated operation=%s project_id=%s"
            " username=%s role=%s",
            op_name,
            project_id,
            identifier,
            role or "n/a",
        )
        return result  # type: ignore[no-any-return]

    # ── Analytics ────────────────────────────────────────

    def _warehouse(self) -> SnowflakeService:
        if self._snowflake is None:
            raise ConfigurationError(
                "Analytics warehouse is not configured",
                service="project_service",
            )
        return self._snowflake

    async def get_projects_list(self) -> dict[str, Any]:
        result = await self._warehouse().execute(PROJECTS_LIST_SQL)
        return {
            "projects": [
                {
                    "projectId": row.get("PROJECT_ID"),
                    "name": row.get("NAME"),
                    "slug": row.get("SLUG"),
                }
                for row in result.rows
            ]
        }

    async def get_issues_resolution(
        self, project_id: str | None = None
    ) -> dict[str, Any]:
        """Daily opened/closed trend plus totals, queried in parallel.

        Without ``project_id`` the first project by name is used.
        """
        if not project_id:
            listing = await self.get_projects_list()
            if not listing["projects"]:
                raise ResourceNotFoundError(
                    "Project",
                    "first project",
                    operation="get_project_issues_resolution",
                    service="project_service",
                )
            project_id = listing["projects"][0]["projectId"]

        warehouse = self._warehouse()
        daily, totals = await asyncio.gather(
            warehouse.execute(ISSUES_RESOLUTION_DAILY_SQL, [project_id]),
            warehouse.execute(ISSUES_RESOLUTION_TOTALS_SQL, [project_id]),
        )
        aggregated = totals.rows[0] if totals.rows else _EMPTY_TOTALS
        return {
            "data": daily.rows,
            "totalOpenedIssues": aggregated.get("OPENED_ISSUES", 0),
            "totalClosedIssues": aggregated.get("CLOSED_ISSUES", 0),
            "resolutionRatePct": aggregated.get("RESOLUTION_RATE_PCT", 0),
            "medianDaysToClose": aggregated.get("MEDIAN_DAYS_TO_CLOSE", 0),
            "totalDays": daily.row_count,
        }

    async def get_pull_requests_weekly(self, project_id: str) -> dict[str, Any]:
        result = await self._warehouse().execute(
            PULL_REQUESTS_WEEKLY_SQL, [project_id]
        )
        total, avg = weighted_merge_time(result.rows)
        return {
            "data": result.rows,
            "totalMergedPRs": total,
            "avgMergeTime": avg,
            "totalWeeks": result.row_count,
        }

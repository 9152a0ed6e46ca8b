"""Organization search and member-company analytics."""

from __future__ import annotations

from typing import Any

from lfx_server.constants import ORG_SUGGEST_PATH
from lfx_server.context import RequestContext
from lfx_server.errors import ConfigurationError, ResourceNotFoundError
from lfx_server.services.microservice_proxy import (
    LFX_V2_SERVICE,
    MicroserviceProxy,
)
from lfx_server.services.snowflake_service import SnowflakeService

CONTRIBUTIONS_OVERVIEW_SQL = """
    SELECT
      a.ACCOUNT_ID,
      a.ACCOUNT_NAME,
      m.MAINTAINERS,
      m.PROJECTS AS MAINTAINER_PROJECTS,
      c.CONTRIBUTORS,
      c.PROJECTS AS CONTRIBUTOR_PROJECTS,
      t.TOTAL_REPRESENTATIVES,
      t.TOTAL_PROJECTS AS TOTAL_TC_PROJECTS
    FROM ANALYTICS.PLATINUM_LFX_ONE.MEMBER_DASHBOARD_ACCOUNTS a
    LEFT JOIN ANALYTICS.PLATINUM_LFX_ONE.MEMBER_DASHBOARD_MAINTAINERS m
      ON m.ACCOUNT_ID = a.ACCOUNT_ID
    LEFT JOIN ANALYTICS.PLATINUM_LFX_ONE.MEMBER_DASHBOARD_CONTRIBUTORS c
      ON c.ACCOUNT_ID = a.ACCOUNT_ID
    LEFT JOIN ANALYTICS.PLATINUM_LFX_ONE.MEMBER_DASHBOARD_TECHNICAL_COMMITTEE t
      ON t.ACCOUNT_ID = a.ACCOUNT_ID
    WHERE a.ACCOUNT_ID = ?
    LIMIT 1
"""

BOARD_MEMBER_DASHBOARD_SQL = """
    SELECT
      mt.ACCOUNT_ID,
      mt.PROJECT_ID,
      mt.MEMBERSHIP_TIER,
      mt.CURRENT_MEMBERSHIP_START_DATE,
      mt.CURRENT_MEMBERSHIP_END_DATE,
      mt.MEMBERSHIP_STATUS,
      ce.CERTIFICATIONS,
      ce.CERTIFIED_EMPLOYEES,
      ba.TOTAL_MEETINGS,
      ba.ATTENDED_MEETINGS,
      ba.NOT_ATTENDED_MEETINGS,
      ba.ATTENDANCE_PERCENTAGE
    FROM ANALYTICS.PLATINUM_LFX_ONE.MEMBER_DASHBOARD_MEMBERSHIP_TIER mt
    LEFT JOIN ANALYTICS.PLATINUM_LFX_ONE.MEMBER_DASHBOARD_CERTIFIED_EMPLOYEES ce
      ON ce.ACCOUNT_ID = mt.ACCOUNT_ID AND ce.PROJECT_ID = mt.PROJECT_ID
    LEFT JOIN ANALYTICS.PLATINUM_LFX_ONE.MEMBER_DASHBOARD_BOARD_MEETING_ATTENDANCE ba
      ON ba.ACCOUNT_ID = mt.ACCOUNT_ID AND ba.PROJECT_ID = mt.PROJECT_ID
    WHERE mt.ACCOUNT_ID = ?
      AND mt.PROJECT_ID = ?
    LIMIT 1
"""


def _num(row: dict[str, Any], column: str) -> float | int:
    value = row.get(column)
    return 0 if value is None else value


class OrganizationService:
    def __init__(
        self,
        proxy: MicroserviceProxy,
        snowflake: SnowflakeService | None = None,
    ) -> None:
        self._proxy = proxy
        self._snowflake = snowflake

    async def search_organizations(
        self, ctx: RequestContext, query: str
    ) -> list[dict[str, Any]]:
        body = await self._proxy.proxy_request(
            ctx, LFX_V2_SERVICE, ORG_SUGGEST_PATH, "GET", {"query": query}
        )
        return list((body or {}).get("suggestions") or [])

    def _warehouse(self) -> SnowflakeService:
        if self._snowflake is None:
            raise ConfigurationError(
                "Analytics warehouse is not configured",
                service="organization_service",
            )
        return self._snowflake

    async def get_contributions_overview(self, account_id: str) -> dict[str, Any]:
        """Maintainer, contributor and technical-committee counts."""
        result = await self._warehouse().execute(
            CONTRIBUTIONS_OVERVIEW_SQL, [account_id]
        )
        if not result.rows:
            raise ResourceNotFoundError(
                "Organization contributions",
                account_id,
                operation="get_contributions_overview",
                service="organization_service",
            )
        row = result.rows[0]
        return {
            "maintainers": {
                "maintainers": _num(row, "MAINTAINERS"),
                "projects": _num(row, "MAINTAINER_PROJECTS"),
            },
            "contributors": {
                "contributors": _num(row, "CONTRIBUTORS"),
                "projects": _num(row, "CONTRIBUTOR_PROJECTS"),
            },
            "technicalCommittee": {
                "totalRepresentatives": _num(row, "TOTAL_REPRESENTATIVES"),
                "totalProjects": _num(row, "TOTAL_TC_PROJECTS"),
            },
            "accountId": row.get("ACCOUNT_ID", account_id),
            "accountName": row.get("ACCOUNT_NAME") or "",
        }

    async def get_board_member_dashboard(
        self, account_id: str, project_id: str
    ) -> dict[str, Any]:
        """Membership tier, certified employees and board attendance."""
        result = await self._warehouse().execute(
            BOARD_MEMBER_DASHBOARD_SQL, [account_id, project_id]
        )
        if not result.rows:
            raise ResourceNotFoundError(
                "Board member dashboard data",
                account_id,
                operation="get_board_member_dashboard",
                service="organization_service",
            )
        row = result.rows[0]
        return {
            "membershipTier": {
                "tier": row.get("MEMBERSHIP_TIER") or "",
                "membershipStartDate": row.get("CURRENT_MEMBERSHIP_START_DATE")
                or "",
                "membershipEndDate": row.get("CURRENT_MEMBERSHIP_END_DATE") or "",
                "membershipStatus": row.get("MEMBERSHIP_STATUS") or "",
            },
            "certifiedEmployees": {
                "certifications": _num(row, "CERTIFICATIONS"),
                "certifiedEmployees": _num(row, "CERTIFIED_EMPLOYEES"),
            },
            "boardMeetingAttendance": {
                "totalMeetings": _num(row, "TOTAL_MEETINGS"),
                "attendedMeetings": _num(row, "ATTENDED_MEETINGS"),
                "notAttendedMeetings": _num(row, "NOT_ATTENDED_MEETINGS"),
                "attendancePercentage": _num(row, "ATTENDANCE_PERCENTAGE"),
            },
            "accountId": row.get("ACCOUNT_ID", account_id),
            "projectId": row.get("PROJECT_ID", project_id),
        }

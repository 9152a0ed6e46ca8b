"""Tests for OrganizationService."""

from __future__ import annotations

import pytest

from lfx_server.context import RequestContext
from lfx_server.errors import ConfigurationError, ResourceNotFoundError
from lfx_server.services.fakes import FakeResourceApi, FakeWarehouse
from lfx_server.services.microservice_proxy import MicroserviceProxy
from lfx_server.services.organization_service import OrganizationService
from lfx_server.services.snowflake_service import SnowflakeService


@pytest.fixture
def organizations(
    proxy: MicroserviceProxy, snowflake: SnowflakeService
) -> OrganizationService:
    return OrganizationService(proxy, snowflake)


@pytest.mark.asyncio
async def test_search_returns_suggestions(
    upstream: FakeResourceApi,
    organizations: OrganizationService,
    ctx: RequestContext,
) -> None:
    upstream.suggestions = [{"name": "Acme", "domain": "acme.io"}]
    found = await organizations.search_organizations(ctx, "acm")
    assert found == [{"name": "Acme", "domain": "acme.io"}]
    assert upstream.requests[-1].url.params["query"] == "acm"


class TestContributionsOverview:
    @pytest.mark.asyncio
    async def test_shapes_row(
        self, warehouse: FakeWarehouse, organizations: OrganizationService
    ) -> None:
        warehouse.rows["MEMBER_DASHBOARD_ACCOUNTS"] = [
            {
                "ACCOUNT_ID": "acc-1",
                "ACCOUNT_NAME": "Acme",
                "MAINTAINERS": 4,
                "MAINTAINER_PROJECTS": 2,
                "CONTRIBUTORS": 30,
                "CONTRIBUTOR_PROJECTS": 9,
                "TOTAL_REPRESENTATIVES": None,
                "TOTAL_TC_PROJECTS": 1,
            }
        ]
        result = await organizations.get_contributions_overview("acc-1")
        assert result["maintainers"] == {"maintainers": 4, "projects": 2}
        assert result["contributors"] == {"contributors": 30, "projects": 9}
        assert result["technicalCommittee"] == {
            "totalRepresentatives": 0,
            "totalProjects": 1,
        }
        assert result["accountName"] == "Acme"
        assert warehouse.statements[-1][1] == ("acc-1",)

    @pytest.mark.asyncio
    async def test_unknown_account(
        self, organizations: OrganizationService
    ) -> None:
        with pytest.raises(ResourceNotFoundError) as exc_info:
            await organizations.get_contributions_overview("acc-404")
        assert exc_info.value.resource_id == "acc-404"


class TestBoardMemberDashboard:
    @pytest.mark.asyncio
    async def test_shapes_row(
        self, warehouse: FakeWarehouse, organizations: OrganizationService
    ) -> None:
        warehouse.rows["MEMBER_DASHBOARD_MEMBERSHIP_TIER"] = [
            {
                "ACCOUNT_ID": "acc-1",
                "PROJECT_ID": "p1",
                "MEMBERSHIP_TIER": "Platinum",
                "MEMBERSHIP_STATUS": "Active",
                "CERTIFICATIONS": 12,
                "TOTAL_MEETINGS": 10,
                "ATTENDED_MEETINGS": 8,
                "ATTENDANCE_PERCENTAGE": 80.0,
            }
        ]
        result = await organizations.get_board_member_dashboard("acc-1", "p1")
        assert result["membershipTier"]["tier"] == "Platinum"
        assert result["membershipTier"]["membershipStartDate"] == ""
        assert result["certifiedEmployees"] == {
            "certifications": 12,
            "certifiedEmployees": 0,
        }
        assert result["boardMeetingAttendance"]["attendedMeetings"] == 8
        assert result["boardMeetingAttendance"]["notAttendedMeetings"] == 0
        assert warehouse.statements[-1][1] == ("acc-1", "p1")

    @pytest.mark.asyncio
    async def test_no_membership(
        self, organizations: OrganizationService
    ) -> None:
        with pytest.raises(ResourceNotFoundError):
            await organizations.get_board_member_dashboard("acc-1", "p1")


@pytest.mark.asyncio
async def test_analytics_without_warehouse(proxy: MicroserviceProxy) -> None:
    with pytest.raises(ConfigurationError):
        await OrganizationService(proxy).get_contributions_overview("acc-1")

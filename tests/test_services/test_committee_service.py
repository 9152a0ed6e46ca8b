"""Tests for committee validation and CommitteeService."""

from __future__ import annotations

import json

import pytest

from lfx_server.constants import ACCESS_CHECK_PATH
from lfx_server.context import RequestContext
from lfx_server.errors import (
    ResourceNotFoundError,
    ValidationError,
)
from lfx_server.services.committee_service import (
    CommitteeService,
    split_settings,
    validate_committee_data,
)
from lfx_server.services.etag_service import ETagService
from lfx_server.services.fakes import FakeResourceApi
from lfx_server.services.microservice_proxy import MicroserviceProxy


def _codes(errors: list[dict[str, str]]) -> dict[str, str]:
    return {e["field"]: e["code"] for e in errors}


class TestValidateCommitteeData:
    def test_valid_create(self) -> None:
        assert validate_committee_data(
            {"name": "TSC", "category": "Board", "website": "https://x.io"}
        ) == []

    def test_create_requires_name_and_category(self) -> None:
        codes = _codes(validate_committee_data({}))
        assert codes == {
            "name": "REQUIRED_FIELD_MISSING",
            "category": "REQUIRED_FIELD_MISSING",
        }

    def test_update_allows_partial(self) -> None:
        assert validate_committee_data({"description": "d"}, is_update=True) == []

    def test_update_rejects_blank_name(self) -> None:
        codes = _codes(validate_committee_data({"name": " "}, is_update=True))
        assert codes["name"] == "INVALID_VALUE"

    def test_length_limits(self) -> None:
        codes = _codes(
            validate_committee_data(
                {
                    "name": "n" * 256,
                    "category": "Board",
                    "description": "d" * 2001,
                    "display_name": "x" * 256,
                }
            )
        )
        assert codes == {
            "name": "VALUE_TOO_LONG",
            "description": "VALUE_TOO_LONG",
            "display_name": "VALUE_TOO_LONG",
        }

    def test_unknown_category(self) -> None:
        codes = _codes(
            validate_committee_data({"name": "n", "category": "Bowling"})
        )
        assert codes["category"] == "INVALID_VALUE"

    def test_bad_website(self) -> None:
        codes = _codes(
            validate_committee_data(
                {"name": "n", "category": "Board", "website": "not a url"}
            )
        )
        assert codes["website"] == "INVALID_FORMAT"

    def test_sso_group_name_required_when_enabled(self) -> None:
        codes = _codes(
            validate_committee_data(
                {"sso_group_enabled": True}, is_update=True
            )
        )
        assert codes == {"sso_group_name": "CONDITIONAL_FIELD_MISSING"}

    def test_boolean_fields_type_checked(self) -> None:
        codes = _codes(
            validate_committee_data({"public": "yes"}, is_update=True)
        )
        assert codes == {"public": "INVALID_TYPE"}


def test_split_settings() -> None:
    body, settings = split_settings(
        {"name": "TSC", "business_email_required": True, "is_audit_enabled": None}
    )
    assert body == {"name": "TSC"}
    assert settings == {"business_email_required": True}


@pytest.fixture
def committees(
    proxy: MicroserviceProxy, etag_service: ETagService
) -> CommitteeService:
    return CommitteeService(proxy, etag_service)


class TestReads:
    @pytest.mark.asyncio
    async def test_list_adds_member_counts_and_access(
        self,
        upstream: FakeResourceApi,
        committees: CommitteeService,
        ctx: RequestContext,
    ) -> None:
        upstream.index("committee", {"uid": "c1", "name": "TSC"})
        upstream.index("committee", {"uid": "c2", "name": "Board"})
        upstream.index("committee_member", {"uid": "m1"}, "committee_uid:c1")
        upstream.index("committee_member", {"uid": "m2"}, "committee_uid:c1")
        upstream.writers.add("c1")

        result = await committees.get_committees(ctx)
        by_uid = {c["uid"]: c for c in result}
        assert by_uid["c1"]["total_members"] == 2
        assert by_uid["c2"]["total_members"] == 0
        assert by_uid["c1"]["writer"] is True
        assert by_uid["c2"]["writer"] is False

    @pytest.mark.asyncio
    async def test_access_check_failure_degrades(
        self,
        upstream: FakeResourceApi,
        committees: CommitteeService,
        ctx: RequestContext,
    ) -> None:
        upstream.index("committee", {"uid": "c1"}, "committee_uid:c1")
        upstream.writers.add("c1")
        upstream.broken[ACCESS_CHECK_PATH] = 503

        committee = await committees.get_committee_by_id(ctx, "c1")
        assert committee["writer"] is False

    @pytest.mark.asyncio
    async def test_get_by_id_not_found(
        self, committees: CommitteeService, ctx: RequestContext
    ) -> None:
        with pytest.raises(ResourceNotFoundError) as exc_info:
            await committees.get_committee_by_id(ctx, "missing")
        assert exc_info.value.resource_id == "missing"
        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_count(
        self,
        upstream: FakeResourceApi,
        committees: CommitteeService,
        ctx: RequestContext,
    ) -> None:
        upstream.index("committee", {"uid": "c1"})
        upstream.index("committee", {"uid": "c2"})
        assert await committees.get_committees_count(ctx) == 2


class TestWrites:
    @pytest.mark.asyncio
    async def test_create_splits_settings(
        self,
        upstream: FakeResourceApi,
        committees: CommitteeService,
        ctx: RequestContext,
    ) -> None:
        created = await committees.create_committee(
            ctx,
            {
                "uid": "c9",
                "name": "TSC",
                "category": "Board",
                "business_email_required": True,
            },
        )
        assert created["uid"] == "c9"
        assert created["business_email_required"] is True
        assert "business_email_required" not in upstream.get("/committees/c9")  # type: ignore[operator]
        assert upstream.get("/committees/c9/settings") == {
            "business_email_required": True
        }

    @pytest.mark.asyncio
    async def test_create_validation_error_sends_nothing(
        self,
        upstream: FakeResourceApi,
        committees: CommitteeService,
        ctx: RequestContext,
    ) -> None:
        with pytest.raises(ValidationError) as exc_info:
            await committees.create_committee(ctx, {"category": "Board"})
        assert exc_info.value.field == "name"
        assert upstream.requests == []

    @pytest.mark.asyncio
    async def test_settings_failure_does_not_fail_create(
        self,
        upstream: FakeResourceApi,
        committees: CommitteeService,
        ctx: RequestContext,
    ) -> None:
        upstream.broken["/committees/c9/settings"] = 500
        created = await committees.create_committee(
            ctx,
            {
                "uid": "c9",
                "name": "TSC",
                "category": "Board",
                "is_audit_enabled": True,
            },
        )
        assert created["uid"] == "c9"

    @pytest.mark.asyncio
    async def test_update_uses_if_match(
        self,
        upstream: FakeResourceApi,
        committees: CommitteeService,
        ctx: RequestContext,
    ) -> None:
        upstream.put("/committees/c1", {"uid": "c1", "name": "TSC"})
        updated = await committees.update_committee(
            ctx, "c1", {"uid": "c1", "name": "Board"}
        )
        assert updated["name"] == "Board"
        put = upstream.requests[-1]
        assert put.method == "PUT"
        assert put.headers["If-Match"] == '"v1"'
        assert json.loads(put.content) == {"uid": "c1", "name": "Board"}

    @pytest.mark.asyncio
    async def test_delete(
        self,
        upstream: FakeResourceApi,
        committees: CommitteeService,
        ctx: RequestContext,
    ) -> None:
        upstream.put("/committees/c1", {"uid": "c1"})
        await committees.delete_committee(ctx, "c1")
        assert upstream.get("/committees/c1") is None


class TestMembers:
    @pytest.mark.asyncio
    async def test_list_members(
        self,
        upstream: FakeResourceApi,
        committees: CommitteeService,
        ctx: RequestContext,
    ) -> None:
        upstream.index("committee_member", {"uid": "m1"}, "committee_uid:c1")
        upstream.index("committee_member", {"uid": "m2"}, "committee_uid:c2")
        members = await committees.get_committee_members(ctx, "c1")
        assert [m["uid"] for m in members] == ["m1"]

    @pytest.mark.asyncio
    async def test_member_by_id(
        self,
        upstream: FakeResourceApi,
        committees: CommitteeService,
        ctx: RequestContext,
    ) -> None:
        upstream.index(
            "committee_member",
            {"uid": "m1", "email": "a@b.c"},
            "committee_member:m1",
        )
        member = await committees.get_committee_member_by_id(ctx, "c1", "m1")
        assert member["email"] == "a@b.c"
        with pytest.raises(ResourceNotFoundError):
            await committees.get_committee_member_by_id(ctx, "c1", "m404")

    @pytest.mark.asyncio
    async def test_create_member(
        self,
        upstream: FakeResourceApi,
        committees: CommitteeService,
        ctx: RequestContext,
    ) -> None:
        member = await committees.create_committee_member(
            ctx, "c1", {"uid": "m1", "email": "a@b.c"}
        )
        assert member["uid"] == "m1"
        assert upstream.get("/committees/c1/members/m1") is not None

    @pytest.mark.asyncio
    async def test_update_member_requires_committee(
        self,
        upstream: FakeResourceApi,
        committees: CommitteeService,
        ctx: RequestContext,
    ) -> None:
        upstream.put("/committees/c1/members/m1", {"uid": "m1"})
        with pytest.raises(ResourceNotFoundError):
            await committees.update_committee_member(
                ctx, "c1", "m1", {"role": "Chair"}
            )

    @pytest.mark.asyncio
    async def test_update_member_bumps_etag(
        self,
        upstream: FakeResourceApi,
        committees: CommitteeService,
        ctx: RequestContext,
    ) -> None:
        path = "/committees/c1/members/m1"
        upstream.index("committee", {"uid": "c1"}, "committee_uid:c1")
        upstream.put(path, {"uid": "m1"})
        updated = await committees.update_committee_member(
            ctx, "c1", "m1", {"uid": "m1", "role": "Chair"}
        )
        assert updated["role"] == "Chair"
        assert upstream.etag_of(path) == '"v2"'

    @pytest.mark.asyncio
    async def test_delete_member(
        self,
        upstream: FakeResourceApi,
        committees: CommitteeService,
        ctx: RequestContext,
    ) -> None:
        path = "/committees/c1/members/m1"
        upstream.index("committee", {"uid": "c1"}, "committee_uid:c1")
        upstream.put(path, {"uid": "m1"})
        await committees.delete_committee_member(ctx, "c1", "m1")
        assert upstream.deleted == [path]


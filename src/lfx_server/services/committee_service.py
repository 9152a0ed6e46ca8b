"""Committee and committee-member operations."""

from __future__ import annotations

import asyncio
from typing import Any
from urllib.parse import urlsplit

from lfx_server.constants import (
    COMMITTEE_BOOLEAN_FIELDS,
    COMMITTEE_CATEGORIES,
    COMMITTEE_DESCRIPTION_MAX_LENGTH,
    COMMITTEE_DISPLAY_NAME_MAX_LENGTH,
    COMMITTEE_NAME_MAX_LENGTH,
    COMMITTEE_SETTINGS_FIELDS,
    ResourceType,
)
from lfx_server.context import RequestContext
from lfx_server.errors import (
    BaseApiError,
    ResourceNotFoundError,
    ValidationError,
)
from lfx_server.logger import OperationLogger
from lfx_server.services.etag_service import ETagService
from lfx_server.services.microservice_proxy import (
    LFX_V2_SERVICE,
    MicroserviceProxy,
)
from lfx_server.services.resource_query import (
    AccessCheckService,
    ResourceQuery,
)


def _is_valid_url(value: str) -> bool:
    parts = urlsplit(value)
    return bool(parts.scheme and parts.netloc)


def validate_committee_data(
    data: dict[str, Any], *, is_update: bool = False
) -> list[dict[str, str]]:
    """Return field errors for a committee payload (empty when valid)."""
    errors: list[dict[str, str]] = []

    def _add(field: str, message: str, code: str) -> None:
        errors.append({"field": field, "message": message, "code": code})

    if not is_update:
        if not str(data.get("name") or "").strip():
            _add("name", "Committee name is required", "REQUIRED_FIELD_MISSING")
        if not str(data.get("category") or "").strip():
            _add(
                "category",
                "Committee category is required",
                "REQUIRED_FIELD_MISSING",
            )

    name = data.get("name")
    if name is not None:
        if not isinstance(name, str):
            _add("name", "Committee name must be a string", "INVALID_TYPE")
        elif not name.strip():
            if is_update:
                _add("name", "Committee name cannot be empty", "INVALID_VALUE")
        elif len(name) > COMMITTEE_NAME_MAX_LENGTH:
            _add(
                "name",
                f"Committee name cannot exceed "
                f"{COMMITTEE_NAME_MAX_LENGTH} characters",
                "VALUE_TOO_LONG",
            )

    category = data.get("category")
    if category is not None:
        if not isinstance(category, str):
            _add(
                "category",
                "Committee category must be a string",
                "INVALID_TYPE",
            )
        elif category.strip() and category not in COMMITTEE_CATEGORIES:
            _add(
                "category",
                "Committee category must be one of: "
                + ", ".join(sorted(COMMITTEE_CATEGORIES)),
                "INVALID_VALUE",
            )

    for field, limit, label in (
        ("description", COMMITTEE_DESCRIPTION_MAX_LENGTH, "Committee description"),
        ("display_name", COMMITTEE_DISPLAY_NAME_MAX_LENGTH, "Display name"),
    ):
        value = data.get(field)
        if value is None:
            continue
        if not isinstance(value, str):
            _add(field, f"{label} must be a string", "INVALID_TYPE")
        elif len(value) > limit:
            _add(
                field,
                f"{label} cannot exceed {limit} characters",
                "VALUE_TOO_LONG",
            )

    website = data.get("website")
    if website is not None:
        if not isinstance(website, str):
            _add("website", "Website must be a string", "INVALID_TYPE")
        elif website.strip() and not _is_valid_url(website.strip()):
            _add("website", "Website must be a valid URL", "INVALID_FORMAT")

    if data.get("sso_group_enabled") is True and not str(
        data.get("sso_group_name") or ""
    ).strip():
        _add(
            "sso_group_name",
            "SSO group name is required when SSO group is enabled",
            "CONDITIONAL_FIELD_MISSING",
        )

    for field in COMMITTEE_BOOLEAN_FIELDS:
        if field in data and data[field] is not None and not isinstance(
            data[field], bool
        ):
            _add(field, f"{field} must be a boolean value", "INVALID_TYPE")

    return errors


def split_settings(
    data: dict[str, Any],
) -> tuple[dict[str, Any], dict[str, Any]]:
    """Separate settings-endpoint fields from the committee body."""
    settings = {
        k: data[k]
        for k in COMMITTEE_SETTINGS_FIELDS
        if data.get(k) is not None
    }
    body = {k: v for k, v in data.items() if k not in COMMITTEE_SETTINGS_FIELDS}
    return body, settings


class CommitteeService:
    def __init__(
        self,
        proxy: MicroserviceProxy,
        etag: ETagService,
        ops_logger: OperationLogger | None = None,
    ) -> None:
        self._proxy = proxy
        self._etag = etag
        self._query = ResourceQuery(proxy)
        self._access = AccessCheckService(proxy)
        self._ops = ops_logger or OperationLogger()

    def _validate(
        self,
        ctx: RequestContext,
        operation: str,
        data: dict[str, Any],
        *,
        is_update: bool,
    ) -> None:
        errors = validate_committee_data(data, is_update=is_update)
        if errors:
            self._ops.validation(ctx, operation, errors)
            raise ValidationError.from_field_errors(
                errors, operation=operation, service="committee_service"
            )

    async def get_committees(
        self, ctx: RequestContext, query: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        committees = await self._query.list(
            ctx, ResourceType.COMMITTEE, query
        )
        counts = await asyncio.gather(
            *(
                self.get_committee_members_count(ctx, c.get("uid", ""))
                for c in committees
            )
        )
        committees = [
            {**c, "total_members": n} for c, n in zip(committees, counts, strict=True)
        ]
        return await self._access.add_access(
            ctx, committees, ResourceType.COMMITTEE
        )

    async def get_committees_count(
        self, ctx: RequestContext, query: dict[str, Any] | None = None
    ) -> int:
        return await self._query.count(ctx, ResourceType.COMMITTEE, query)

    async def get_committee_by_id(
        self, ctx: RequestContext, committee_id: str
    ) -> dict[str, Any]:
        resources = await self._query.list(
            ctx,
            ResourceType.COMMITTEE,
            {"tags": f"committee_uid:{committee_id}"},
        )
        if not resources:
            raise ResourceNotFoundError(
                "Committee",
                committee_id,
                operation="get_committee_by_id",
                service="committee_service",
                path=f"/committees/{committee_id}",
            )
        [committee] = await self._access.add_access(
            ctx, resources[:1], ResourceType.COMMITTEE
        )
        return committee

    async def create_committee(
        self, ctx: RequestContext, data: dict[str, Any]
    ) -> dict[str, Any]:
        self._validate(ctx, "create_committee", data, is_update=False)
        body, settings = split_settings(data)
        started = self._ops.start(ctx, "create_committee")
        created = await self._proxy.proxy_request(
            ctx, LFX_V2_SERVICE, "/committees", "POST", None, body
        )
        uid = created.get("uid", "")
        if settings:
            await self._update_settings_best_effort(
                ctx, uid, settings, "create_committee_settings"
            )
        self._ops.success(
            ctx, "create_committee", started, committee_uid=uid, status_code=201
        )
        return {**created, **settings}

    async def update_committee(
        self, ctx: RequestContext, committee_id: str, data: dict[str, Any]
    ) -> dict[str, Any]:
        self._validate(ctx, "update_committee", data, is_update=True)
        body, settings = split_settings(data)
        path = f"/committees/{committee_id}"
        fetched = await self._etag.fetch_with_etag(
            ctx, path, "update_committee"
        )
        updated = await self._etag.update_with_etag(
            ctx, path, fetched.etag, body, "update_committee"
        )
        if settings:
            await self._update_settings_best_effort(
                ctx, committee_id, settings, "update_committee_settings"
            )
        return {**(updated or {}), **settings}

    async def delete_committee(
        self, ctx: RequestContext, committee_id: str
    ) -> None:
        await self._etag.conditional_delete(
            ctx, f"/committees/{committee_id}", "delete_committee"
        )

    async def _update_settings_best_effort(
        self,
        ctx: RequestContext,
        committee_id: str,
        settings: dict[str, Any],
        operation: str,
    ) -> None:
        """The committee write already succeeded; a settings failure is only a warning."""
        try:
            await self._proxy.proxy_request(
                ctx,
                LFX_V2_SERVICE,
                f"/committees/{committee_id}/settings",
                "PUT",
                None,
                settings,
            )
        except BaseApiError as exc:
            self._ops.warning(
                ctx,
                operation,
                "Failed to update committee settings",
                committee_uid=committee_id,
                code=exc.code,
            )

    # ── Members ──────────────────────────────────────────

    async def get_committee_members(
        self,
        ctx: RequestContext,
        committee_id: str,
        query: dict[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        return await self._query.list(
            ctx,
            ResourceType.COMMITTEE_MEMBER,
            {**(query or {}), "tags": f"committee_uid:{committee_id}"},
        )

    async def get_committee_members_count(
        self,
        ctx: RequestContext,
        committee_id: str,
        query: dict[str, Any] | None = None,
    ) -> int:
        return await self._query.count(
            ctx,
            ResourceType.COMMITTEE_MEMBER,
            {**(query or {}), "tags": f"committee_uid:{committee_id}"},
        )

    async def get_committee_member_by_id(
        self, ctx: RequestContext, committee_id: str, member_id: str
    ) -> dict[str, Any]:
        resources = await self._query.list(
            ctx,
            ResourceType.COMMITTEE_MEMBER,
            {
                "parent": f"committee_member:{member_id}",
                "committee_uid": committee_id,
            },
        )
        if not resources:
            raise ResourceNotFoundError(
                "Committee member",
                member_id,
                operation="get_committee_member_by_id",
                service="committee_service",
                path=f"/committees/{committee_id}/members/{member_id}",
            )
        return resources[0]

    async def create_committee_member(
        self, ctx: RequestContext, committee_id: str, data: dict[str, Any]
    ) -> dict[str, Any]:
        member = await self._proxy.proxy_request(
            ctx,
            LFX_V2_SERVICE,
            f"/committees/{committee_id}/members",
            "POST",
            None,
            data,
        )
        return member  # type: ignore[no-any-return]

    async def update_committee_member(
        self,
        ctx: RequestContext,
        committee_id: str,
        member_id: str,
        data: dict[str, Any],
    ) -> dict[str, Any]:
        await self.get_committee_by_id(ctx, committee_id)
        path = f"/committees/{committee_id}/members/{member_id}"
        fetched = await self._etag.fetch_with_etag(
            ctx, path, "update_committee_member"
        )
        return await self._etag.update_with_etag(  # type: ignore[no-any-return]
            ctx, path, fetched.etag, data, "update_committee_member"
        )

    async def delete_committee_member(
        self, ctx: RequestContext, committee_id: str, member_id: str
    ) -> None:
        await self.get_committee_by_id(ctx, committee_id)
        await self._etag.conditional_delete(
            ctx,
            f"/committees/{committee_id}/members/{member_id}",
            "delete_committee_member",
        )

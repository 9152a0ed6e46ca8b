"""Tests for ETag optimistic concurrency over the fake resource API."""

from __future__ import annotations

from typing import Any

import pytest

from lfx_server.constants import ErrorCode, WriteState
from lfx_server.context import RequestContext
from lfx_server.errors import (
    ETagMissingError,
    MicroserviceError,
    PreconditionFailedError,
    ResourceNotFoundError,
)
from lfx_server.services.etag_service import ConditionalWrite, ETagService
from lfx_server.services.fakes import FakeResourceApi

PATH = "/committees/c1"


class TestFetchWithEtag:
    @pytest.mark.asyncio
    async def test_returns_body_and_etag(
        self,
        upstream: FakeResourceApi,
        etag_service: ETagService,
        ctx: RequestContext,
    ) -> None:
        upstream.put(PATH, {"uid": "c1", "name": "TSC"})
        result = await etag_service.fetch_with_etag(ctx, PATH, "get")
        assert result.data == {"uid": "c1", "name": "TSC"}
        assert result.etag == '"v1"'

    @pytest.mark.asyncio
    async def test_missing_header_is_etag_missing(
        self,
        upstream: FakeResourceApi,
        etag_service: ETagService,
        ctx: RequestContext,
    ) -> None:
        upstream.put(PATH, {"uid": "c1"})
        upstream.omit_etag.add(PATH)
        with pytest.raises(ETagMissingError) as exc_info:
            await etag_service.fetch_with_etag(ctx, PATH, "get")
        assert exc_info.value.code == ErrorCode.ETAG_MISSING
        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_upstream_404_is_not_found(
        self, etag_service: ETagService, ctx: RequestContext
    ) -> None:
        with pytest.raises(MicroserviceError) as exc_info:
            await etag_service.fetch_with_etag(ctx, PATH, "get")
        assert exc_info.value.status_code == 404
        assert exc_info.value.code == ErrorCode.NOT_FOUND

    @pytest.mark.asyncio
    async def test_empty_body_is_not_found(
        self,
        upstream: FakeResourceApi,
        etag_service: ETagService,
        ctx: RequestContext,
    ) -> None:
        upstream.put(PATH, {})
        with pytest.raises(ResourceNotFoundError):
            await etag_service.fetch_with_etag(ctx, PATH, "get")


class TestUpdateAndDelete:
    @pytest.mark.asyncio
    async def test_update_with_fresh_etag(
        self,
        upstream: FakeResourceApi,
        etag_service: ETagService,
        ctx: RequestContext,
    ) -> None:
        upstream.put(PATH, {"uid": "c1", "name": "TSC"})
        fetched = await etag_service.fetch_with_etag(ctx, PATH, "update")
        await etag_service.update_with_etag(
            ctx, PATH, fetched.etag, {"uid": "c1", "name": "Board"}, "update"
        )
        assert upstream.get(PATH) == {"uid": "c1", "name": "Board"}
        assert upstream.requests[-1].headers["If-Match"] == '"v1"'

    @pytest.mark.asyncio
    async def test_stale_etag_is_precondition_failed(
        self,
        upstream: FakeResourceApi,
        etag_service: ETagService,
        ctx: RequestContext,
    ) -> None:
        upstream.put(PATH, {"uid": "c1"})
        fetched = await etag_service.fetch_with_etag(ctx, PATH, "update")
        upstream.bump(PATH)
        with pytest.raises(PreconditionFailedError) as exc_info:
            await etag_service.update_with_etag(
                ctx, PATH, fetched.etag, {"uid": "c1"}, "update"
            )
        assert exc_info.value.status_code == 412
        assert exc_info.value.operation == "update"

    @pytest.mark.asyncio
    async def test_consumed_etag_fails_second_time(
        self,
        upstream: FakeResourceApi,
        etag_service: ETagService,
        ctx: RequestContext,
    ) -> None:
        upstream.put(PATH, {"uid": "c1"})
        fetched = await etag_service.fetch_with_etag(ctx, PATH, "update")
        await etag_service.update_with_etag(
            ctx, PATH, fetched.etag, {"uid": "c1", "n": 1}, "update"
        )
        with pytest.raises(PreconditionFailedError):
            await etag_service.update_with_etag(
                ctx, PATH, fetched.etag, {"uid": "c1", "n": 2}, "update"
            )
        assert upstream.get(PATH) == {"uid": "c1", "n": 1}

    @pytest.mark.asyncio
    async def test_delete_with_etag(
        self,
        upstream: FakeResourceApi,
        etag_service: ETagService,
        ctx: RequestContext,
    ) -> None:
        upstream.put(PATH, {"uid": "c1"})
        fetched = await etag_service.fetch_with_etag(ctx, PATH, "delete")
        await etag_service.delete_with_etag(ctx, PATH, fetched.etag, "delete")
        assert upstream.get(PATH) is None
        assert upstream.deleted == [PATH]

    @pytest.mark.asyncio
    async def test_delete_with_stale_etag(
        self,
        upstream: FakeResourceApi,
        etag_service: ETagService,
        ctx: RequestContext,
    ) -> None:
        upstream.put(PATH, {"uid": "c1"})
        upstream.bump(PATH)
        with pytest.raises(PreconditionFailedError):
            await etag_service.delete_with_etag(ctx, PATH, '"v1"', "delete")
        assert upstream.get(PATH) is not None

    @pytest.mark.asyncio
    async def test_other_errors_pass_through(
        self,
        upstream: FakeResourceApi,
        etag_service: ETagService,
        ctx: RequestContext,
    ) -> None:
        upstream.fail_next(500)
        with pytest.raises(MicroserviceError) as exc_info:
            await etag_service.update_with_etag(
                ctx, PATH, '"v1"', {}, "update"
            )
        assert not isinstance(exc_info.value, PreconditionFailedError)
        assert exc_info.value.status_code == 500


class TestConditionalWrites:
    @pytest.mark.asyncio
    async def test_conditional_update_applies_mutation(
        self,
        upstream: FakeResourceApi,
        etag_service: ETagService,
        ctx: RequestContext,
    ) -> None:
        upstream.put(PATH, {"uid": "c1", "count": 1})

        def _inc(current: dict[str, Any]) -> dict[str, Any]:
            return {**current, "count": current["count"] + 1}

        result = await etag_service.conditional_update(ctx, PATH, _inc, "inc")
        assert result == {"uid": "c1", "count": 2}
        assert upstream.etag_of(PATH) == '"v2"'

    @pytest.mark.asyncio
    async def test_async_mutation(
        self,
        upstream: FakeResourceApi,
        etag_service: ETagService,
        ctx: RequestContext,
    ) -> None:
        upstream.put(PATH, {"uid": "c1"})

        async def _rename(current: dict[str, Any]) -> dict[str, Any]:
            return {**current, "name": "renamed"}

        await etag_service.conditional_update(ctx, PATH, _rename, "rename")
        assert upstream.get(PATH) == {"uid": "c1", "name": "renamed"}

    @pytest.mark.asyncio
    async def test_concurrent_writer_detected(
        self,
        upstream: FakeResourceApi,
        etag_service: ETagService,
        ctx: RequestContext,
    ) -> None:
        upstream.put(PATH, {"uid": "c1"})

        def _racing(current: dict[str, Any]) -> dict[str, Any]:
            upstream.bump(PATH)
            return {**current, "name": "lost"}

        with pytest.raises(PreconditionFailedError):
            await etag_service.conditional_update(ctx, PATH, _racing, "race")
        assert "name" not in upstream.get(PATH)  # type: ignore[operator]

    @pytest.mark.asyncio
    async def test_query_forwarded_on_put(
        self,
        upstream: FakeResourceApi,
        etag_service: ETagService,
        ctx: RequestContext,
    ) -> None:
        upstream.put(PATH, {"uid": "c1"})
        await etag_service.conditional_update(
            ctx, PATH, lambda c: c, "noop", query={"editType": "future"}
        )
        assert upstream.requests[-1].url.params["editType"] == "future"

    @pytest.mark.asyncio
    async def test_conditional_delete(
        self,
        upstream: FakeResourceApi,
        etag_service: ETagService,
        ctx: RequestContext,
    ) -> None:
        upstream.put(PATH, {"uid": "c1"})
        await etag_service.conditional_delete(ctx, PATH, "delete")
        assert upstream.get(PATH) is None


class TestConditionalWriteState:
    def test_happy_path(self) -> None:
        write = ConditionalWrite(path=PATH)
        write.fetched('"v1"')
        assert write.require_etag() == '"v1"'
        write.settle()
        assert write.state is WriteState.WRITTEN
        assert write.settled

    def test_write_before_fetch_rejected(self) -> None:
        with pytest.raises(RuntimeError):
            ConditionalWrite(path=PATH).require_etag()

    def test_settled_write_cannot_be_reused(self) -> None:
        write = ConditionalWrite(path=PATH)
        write.fetched('"v1"')
        write.settle(PreconditionFailedError())
        assert write.state is WriteState.PRECONDITION_FAILED
        with pytest.raises(RuntimeError):
            write.fetched('"v2"')
        with pytest.raises(RuntimeError):
            write.require_etag()

    def test_outcomes(self) -> None:
        write = ConditionalWrite(path=PATH)
        write.settle(ResourceNotFoundError("Committee", "c1"))
        assert write.state is WriteState.NOT_FOUND
        write = ConditionalWrite(path=PATH)
        write.settle(MicroserviceError("down", status_code=503))
        assert write.state is WriteState.NETWORK_ERROR

"""Optimistic-concurrency writes against the resource API.

Every mutation follows the same three steps:

1. GET the resource and keep its ``ETag`` header.
2. Build the new state in memory.
3. PUT/DELETE with ``If-Match: <etag>``.

If anyone else wrote in between, upstream answers 412 and the write
surfaces as ``PreconditionFailedError``. Nothing is retried here: the
client must re-fetch and decide again.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from lfx_server.constants import ErrorCode, HttpHeader, WriteState
from lfx_server.context import RequestContext
from lfx_server.errors import (
    BaseApiError,
    ETagMissingError,
    PreconditionFailedError,
    ResourceNotFoundError,
)
from lfx_server.logger import OperationLogger
from lfx_server.services.microservice_proxy import (
    LFX_V2_SERVICE,
    MicroserviceProxy,
)

logger = logging.getLogger(__name__)


@dataclass
class ETagResult:
    data: Any
    etag: str
    headers: dict[str, str] = field(default_factory=lambda: dict[str, str]())


@dataclass
class ConditionalWrite:
    """Tracks one fetch-then-write sequence.

    START -> FETCHED(etag) -> WRITTEN | PRECONDITION_FAILED | NOT_FOUND
    | NETWORK_ERROR. A settled write cannot be reused; fetch again.
    """

    path: str
    state: WriteState = WriteState.START
    etag: str | None = None

    def fetched(self, etag: str) -> None:
        if self.state is not WriteState.START:
            raise RuntimeError(
                f"cannot fetch in state {self.state}; start a new write"
            )
        self.etag = etag
        self.state = WriteState.FETCHED

    def require_etag(self) -> str:
        if self.state is not WriteState.FETCHED or self.etag is None:
            raise RuntimeError(
                f"cannot write in state {self.state}; fetch first"
            )
        return self.etag

    def settle(self, error: BaseException | None = None) -> None:
        self.state = _outcome(error)

    @property
    def settled(self) -> bool:
        return self.state not in (WriteState.START, WriteState.FETCHED)


def _outcome(error: BaseException | None) -> WriteState:
    if error is None:
        return WriteState.WRITTEN
    if isinstance(error, PreconditionFailedError):
        return WriteState.PRECONDITION_FAILED
    if isinstance(error, BaseApiError) and error.code == ErrorCode.NOT_FOUND:
        return WriteState.NOT_FOUND
    return WriteState.NETWORK_ERROR


def _as_precondition_failed(
    exc: BaseApiError, path: str, operation: str
) -> BaseApiError:
    if exc.status_code != 412:
        return exc
    return PreconditionFailedError(
        service=exc.service,
        path=path,
        operation=operation,
        original_error=exc,
    )


class ETagService:
    def __init__(
        self,
        proxy: MicroserviceProxy,
        ops_logger: OperationLogger | None = None,
    ) -> None:
        self._proxy = proxy
        self._ops = ops_logger or OperationLogger()

    async def fetch_with_etag(
        self,
        ctx: RequestContext,
        path: str,
        operation: str,
        *,
        service: str = LFX_V2_SERVICE,
    ) -> ETagResult:
        """GET a resource and return its body with the ETag header.

        Raises ResourceNotFoundError when upstream returns no body and
        ETagMissingError when the header is absent.
        """
        logger.info(
            "event=etag_fetch operation=%s path=%s", operation, path
        )
        response = await self._proxy.proxy_request_with_response(
            ctx, service, path, "GET"
        )
        if not response.data:
            raise ResourceNotFoundError(
                "Resource",
                message="Resource not found",
                service=service,
                path=path,
                operation=operation,
            )
        etag = response.header(HttpHeader.ETAG)
        if not etag:
            logger.warning(
                "event=etag_missing operation=%s path=%s headers=%s",
                operation,
                path,
                ",".join(sorted(response.headers)),
            )
            raise ETagMissingError(
                service=service,
                path=path,
                operation=operation,
                metadata={"available_headers": sorted(response.headers)},
            )
        self._ops.etag(ctx, operation, "resource", path, etag)
        return ETagResult(
            data=response.data, etag=etag, headers=response.headers
        )

    async def update_with_etag(
        self,
        ctx: RequestContext,
        path: str,
        etag: str,
        data: Any,
        operation: str,
        *,
        service: str = LFX_V2_SERVICE,
        query: dict[str, Any] | None = None,
    ) -> Any:
        """PUT with If-Match. Upstream 412 -> PreconditionFailedError."""
        logger.info(
            "event=etag_update operation=%s path=%s etag=%s",
            operation,
            path,
            etag,
        )
        try:
            return await self._proxy.proxy_request(
                ctx,
                service,
                path,
                "PUT",
                query,
                data,
                {HttpHeader.IF_MATCH: etag},
            )
        except BaseApiError as exc:
            raise _as_precondition_failed(exc, path, operation) from exc

    async def delete_with_etag(
        self,
        ctx: RequestContext,
        path: str,
        etag: str,
        operation: str,
        *,
        service: str = LFX_V2_SERVICE,
    ) -> None:
        """DELETE with If-Match. Upstream 412 -> PreconditionFailedError."""
        logger.info(
            "event=etag_delete operation=%s path=%s etag=%s",
            operation,
            path,
            etag,
        )
        try:
            await self._proxy.proxy_request(
                ctx,
                service,
                path,
                "DELETE",
                None,
                None,
                {HttpHeader.IF_MATCH: etag},
            )
        except BaseApiError as exc:
            raise _as_precondition_failed(exc, path, operation) from exc

    async def conditional_update(
        self,
        ctx: RequestContext,
        path: str,
        mutate: Callable[[Any], Any | Awaitable[Any]],
        operation: str,
        *,
        query: dict[str, Any] | None = None,
    ) -> Any:
        """Fetch, apply ``mutate`` to the current state, then PUT with If-Match.

        ``mutate`` receives the fetched body and returns the payload to
        write; it may be sync or async.
        """
        write = ConditionalWrite(path=path)
        try:
            fetched = await self.fetch_with_etag(ctx, path, operation)
        except BaseException as exc:
            write.settle(exc)
            raise
        write.fetched(fetched.etag)
        payload = mutate(fetched.data)
        if isinstance(payload, Awaitable):
            payload = await payload
        try:
            result = await self.update_with_etag(
                ctx,
                path,
                write.require_etag(),
                payload,
                operation,
                query=query,
            )
        except BaseException as exc:
            write.settle(exc)
            logger.info(
                "event=conditional_write_settled path=%s state=%s",
                path,
                write.state,
            )
            raise
        write.settle()
        return result

    async def conditional_delete(
        self,
        ctx: RequestContext,
        path: str,
        operation: str,
    ) -> None:
        write = ConditionalWrite(path=path)
        try:
            fetched = await self.fetch_with_etag(ctx, path, operation)
        except BaseException as exc:
            write.settle(exc)
            raise
        write.fetched(fetched.etag)
        try:
            await self.delete_with_etag(
                ctx, path, write.require_etag(), operation
            )
        except BaseException as exc:
            write.settle(exc)
            logger.info(
                "event=conditional_write_settled path=%s state=%s",
                path,
                write.state,
            )
            raise
        write.settle()

"""NATS request/reply client for the v2 identity and project services.

The connection opens lazily on the first request; concurrent first
callers share a single connect attempt. Connect is retried with jittered
backoff, requests are not.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

import nats
from nats.errors import NoRespondersError, NoServersError
from nats.errors import TimeoutError as NatsTimeoutError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from lfx_server.config import Settings
from lfx_server.constants import (
    NATS_DRAIN_TIMEOUT,
    RETRY_INITIAL_WAIT,
    RETRY_MAX_ATTEMPTS,
    RETRY_MAX_WAIT,
    ErrorCode,
)
from lfx_server.errors import MicroserviceError, ServiceTimeoutError

logger = logging.getLogger(__name__)


class NatsConnection(Protocol):
    @property
    def is_connected(self) -> bool: ...
    @property
    def is_closed(self) -> bool: ...
    async def request(
        self, subject: str, payload: bytes = b"", timeout: float = 0.5
    ) -> Any: ...
    async def drain(self) -> None: ...


type NatsConnector = Callable[[str], Awaitable[NatsConnection]]


async def _default_connect(url: str) -> NatsConnection:
    return await nats.connect(  # type: ignore[no-any-return]
        servers=[url],
        connect_timeout=5,
        max_reconnect_attempts=10,
    )


class NatsService:
    """Lazy, shared NATS connection with request/reply helpers."""

    def __init__(
        self,
        settings: Settings,
        *,
        connector: NatsConnector | None = None,
    ) -> None:
        self._url = settings.nats_url
        self._default_timeout = settings.nats_request_timeout
        self._connector = connector or _default_connect
        self._conn: NatsConnection | None = None
        self._connect_task: asyncio.Task[NatsConnection] | None = None

    @retry(
        stop=stop_after_attempt(RETRY_MAX_ATTEMPTS),
        wait=wait_exponential_jitter(
            initial=RETRY_INITIAL_WAIT, max=RETRY_MAX_WAIT
        ),
        retry=retry_if_exception_type(
            (NoServersError, ConnectionError, OSError)
        ),
        reraise=True,
    )
    async def _connect(self) -> NatsConnection:
        logger.info("event=nats_connect url=%s", self._url)
        try:
            conn = await self._connector(self._url)
        except Exception as exc:
            logger.error(
                "event=nats_connect_failed url=%s error=%s"
                " hint=port-forward_nats_when_running_locally",
                self._url,
                exc,
            )
            raise
        logger.info("event=nats_connected url=%s", self._url)
        return conn

    async def _ensure_connection(self) -> NatsConnection:
        if self._conn is not None and not self._conn.is_closed:
            return self._conn
        if self._connect_task is None:
            self._connect_task = asyncio.create_task(self._connect())
        task = self._connect_task
        try:
            conn = await asyncio.shield(task)
        except BaseException:
            if self._connect_task is task and task.done():
                self._connect_task = None
            raise
        self._conn = conn
        self._connect_task = None
        return conn

    async def request(
        self,
        subject: str,
        payload: bytes | str,
        timeout: float | None = None,
    ) -> bytes:
        """Send a request and return the raw reply payload.

        No responder or no reply in time -> ServiceTimeoutError.
        Connection failure -> MicroserviceError (503).
        """
        data = payload.encode("utf-8") if isinstance(payload, str) else payload
        try:
            conn = await self._ensure_connection()
        except (NoServersError, ConnectionError, OSError) as exc:
            raise MicroserviceError(
                "NATS connection unavailable",
                code=ErrorCode.SERVICE_UNAVAILABLE,
                status_code=503,
                service="nats",
                original_error=exc,
            ) from exc
        try:
            msg = await conn.request(
                subject, data, timeout=timeout or self._default_timeout
            )
        except (NatsTimeoutError, NoRespondersError) as exc:
            logger.warning(
                "event=nats_request_timeout subject=%s error=%s",
                subject,
                type(exc).__name__,
            )
            raise ServiceTimeoutError(
                f"NATS request timed out: {subject}",
                service="nats",
                metadata={"subject": subject},
                original_error=exc,
            ) from exc
        return msg.data  # type: ignore[no-any-return]

    def is_connected(self) -> bool:
        return self._conn is not None and not self._conn.is_closed

    async def shutdown(self) -> None:
        if self._connect_task is not None:
            self._connect_task.cancel()
            self._connect_task = None
        conn, self._conn = self._conn, None
        if conn is None or conn.is_closed:
            return
        try:
            async with asyncio.timeout(NATS_DRAIN_TIMEOUT):
                await conn.drain()
            logger.info("event=nats_drained")
        except Exception as exc:
            logger.error("event=nats_drain_failed error=%s", exc)

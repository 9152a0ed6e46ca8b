"""Read-only, pooled, deduplicated query execution against Snowflake.

Every statement passes the read-only guard before anything else happens,
then runs through the LockManager so identical concurrent queries share
one warehouse round-trip. The connection pool is created lazily on the
first query; concurrent first callers await the same creation.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from lfx_server.config import Settings
from lfx_server.constants import (
    READ_ONLY_DENY_PATTERNS,
    READ_ONLY_PREFIX_PATTERN,
    SNOWFLAKE_DRAIN_TIMEOUT,
    ErrorCode,
)
from lfx_server.errors import (
    BaseApiError,
    QueryExecutionError,
    ReadOnlyViolationError,
    ValidationError,
)
from lfx_server.resilience.lock_manager import LockManager, LockStats
from lfx_server.warehouse.pool import ConnectionPool, PoolStats
from lfx_server.warehouse.protocols import ConnectionFactory, QueryResult

logger = logging.getLogger(__name__)

_DENY = tuple(re.compile(p, re.IGNORECASE) for p in READ_ONLY_DENY_PATTERNS)
_PREFIX = re.compile(READ_ONLY_PREFIX_PATTERN, re.IGNORECASE)
_SQL_PREVIEW_CHARS = 100

_EMPTY_POOL_STATS = PoolStats(borrowed=0, available=0, pending=0, size=0)


@dataclass(frozen=True)
class QueryOptions:
    """Per-call execution options."""

    timeout: float | None = None


def validate_read_only(sql_text: str) -> None:
    """Reject any statement that could write.

    Write keywords are blocked anywhere in the text, including inside
    CTEs, and the statement must begin with SELECT or WITH.
    """
    normalized = sql_text.strip().upper()
    preview = normalized[:_SQL_PREVIEW_CHARS]
    for pattern in _DENY:
        if pattern.search(normalized):
            logger.error(
                "event=read_only_violation pattern=%s sql_preview=%r",
                pattern.pattern,
                preview,
            )
            raise ReadOnlyViolationError(
                "Only SELECT queries are allowed. "
                "Write operations detected.",
                service="snowflake",
                metadata={"matched_pattern": pattern.pattern},
            )
    if not _PREFIX.match(normalized):
        logger.error(
            "event=non_select_blocked sql_preview=%r", preview
        )
        raise ValidationError(
            "Only SELECT queries are allowed",
            service="snowflake",
        )


class SnowflakeService:
    """Pooled query executor for the analytics warehouse.

    ``connection_factory`` defaults to key-pair authenticated Snowflake
    connections built from settings; tests inject an in-memory factory.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        connection_factory: ConnectionFactory | None = None,
        lock_manager: LockManager | None = None,
    ) -> None:
        self._settings = settings
        self._connection_factory = connection_factory
        self._locks = lock_manager or LockManager(
            settings.snowflake_lock_strategy,
            max_age_seconds=(
                settings.snowflake_query_timeout
                + settings.snowflake_lock_ttl_buffer
            ),
        )
        self._pool: ConnectionPool | None = None
        self._pool_task: asyncio.Task[ConnectionPool] | None = None
        logger.info(
            "event=snowflake_service_init lock_strategy=%s",
            settings.snowflake_lock_strategy,
        )

    async def execute(
        self,
        sql_text: str,
        binds: Sequence[Any] | None = None,
        options: QueryOptions | None = None,
    ) -> QueryResult:
        """Execute a read-only query and return rows plus metadata."""
        validate_read_only(sql_text)
        query_hash = self._locks.hash_query(sql_text, binds)
        timeout = (
            options.timeout
            if options and options.timeout
            else self._settings.snowflake_query_timeout
        )

        async def _run() -> QueryResult:
            started = time.monotonic()
            pool = await self._ensure_pool()
            logger.info(
                "event=query_start query_hash=%s bind_count=%d",
                query_hash[:12],
                len(binds or []),
            )
            try:
                async with pool.acquire() as conn:
                    result = await conn.execute(
                        sql_text, binds, timeout=timeout
                    )
            except BaseApiError:
                raise
            except Exception as exc:
                duration_ms = int((time.monotonic() - started) * 1000)
                logger.error(
                    "event=query_failed query_hash=%s duration_ms=%d"
                    " error=%s sql_preview=%r",
                    query_hash[:12],
                    duration_ms,
                    exc,
                    sql_text.strip()[:_SQL_PREVIEW_CHARS],
                )
                raise QueryExecutionError(
                    f"Snowflake query failed: {exc}",
                    code=ErrorCode.QUERY_EXECUTION_FAILED,
                    service="snowflake",
                    metadata={
                        "duration_ms": duration_ms,
                        "query_hash": query_hash,
                    },
                    original_error=exc,
                ) from exc

            duration_ms = int((time.monotonic() - started) * 1000)
            stats = pool.stats()
            logger.info(
                "event=query_success query_hash=%s duration_ms=%d"
                " row_count=%d pool_active=%d pool_idle=%d"
                " pool_waiting=%d pool_total=%d",
                query_hash[:12],
                duration_ms,
                result.row_count,
                stats.borrowed,
                stats.available,
                stats.pending,
                stats.size,
            )
            return result

        return await self._locks.execute_locked(query_hash, _run)  # type: ignore[no-any-return]

    async def _ensure_pool(self) -> ConnectionPool:
        if self._pool is not None:
            return self._pool
        if self._pool_task is None:
            self._pool_task = asyncio.create_task(self._create_pool())
        task = self._pool_task
        try:
            pool = await asyncio.shield(task)
        except BaseException:
            if self._pool_task is task and task.done():
                self._pool_task = None
            raise
        self._pool = pool
        self._pool_task = None
        return pool

    async def _create_pool(self) -> ConnectionPool:
        s = self._settings
        factory = self._connection_factory
        if factory is None:
            s.require_snowflake_credentials()
            from lfx_server.warehouse.connector import (
                SnowflakeConnectionFactory,
            )

            factory = SnowflakeConnectionFactory(s)
        pool = ConnectionPool(
            factory,
            min_size=s.snowflake_min_connections,
            max_size=s.snowflake_max_connections,
            idle_timeout=s.snowflake_idle_timeout,
            acquire_timeout=s.snowflake_acquire_timeout,
            validate_on_borrow=s.snowflake_validate_on_borrow,
        )
        try:
            await pool.start()
        except Exception as exc:
            logger.error(
                "event=pool_create_failed account=%s error=%s",
                s.snowflake_account,
                exc,
            )
            raise
        logger.info(
            "event=pool_created min=%d max=%d warehouse=%s database=%s",
            s.snowflake_min_connections,
            s.snowflake_max_connections,
            s.snowflake_warehouse,
            s.snowflake_database,
        )
        return pool

    def is_connected(self) -> bool:
        return self._pool is not None

    def get_pool_stats(self) -> PoolStats:
        if self._pool is None:
            return _EMPTY_POOL_STATS
        return self._pool.stats()

    def get_lock_stats(self) -> LockStats:
        return self._locks.get_stats()

    async def shutdown(self) -> None:
        """Drain the pool; failures are logged, never raised."""
        logger.info("event=snowflake_shutdown")
        self._locks.shutdown()
        if self._pool_task is not None:
            self._pool_task.cancel()
            self._pool_task = None
        if self._pool is None:
            return
        try:
            async with asyncio.timeout(SNOWFLAKE_DRAIN_TIMEOUT):
                await self._pool.drain(SNOWFLAKE_DRAIN_TIMEOUT)
            logger.info("event=pool_drain_complete")
        except Exception as exc:
            logger.error("event=pool_drain_failed error=%s", exc)
        self._pool = None

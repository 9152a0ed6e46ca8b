"""Bounded async connection pool for warehouse connections.

Connections are created on demand up to ``max_size`` and kept warm down
to ``min_size``. Idle connections past ``idle_timeout`` (or past their
maximum lifetime) are closed on the next acquire/release. When the
pool is full, ``acquire`` waits up to ``acquire_timeout`` for a release.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

from lfx_server.constants import (
    SNOWFLAKE_ACQUIRE_TIMEOUT,
    SNOWFLAKE_IDLE_TIMEOUT,
    SNOWFLAKE_MAX_CONNECTION_LIFETIME,
    SNOWFLAKE_MAX_CONNECTIONS,
    SNOWFLAKE_MIN_CONNECTIONS,
)
from lfx_server.errors import ServiceTimeoutError
from lfx_server.warehouse.protocols import (
    ConnectionFactory,
    WarehouseConnection,
)

logger = logging.getLogger(__name__)


@dataclass
class _Slot:
    conn: WarehouseConnection
    created: float = field(default_factory=time.monotonic)
    last_used: float = field(default_factory=time.monotonic)


@dataclass(frozen=True)
class PoolStats:
    borrowed: int
    available: int
    pending: int
    size: int

    def as_dict(self) -> dict[str, int]:
        return {
            "active": self.borrowed,
            "idle": self.available,
            "waiting": self.pending,
            "total": self.size,
        }


class PoolClosedError(RuntimeError):
    """Raised when acquiring from a drained pool."""


class ConnectionPool:
    """asyncio pool of warehouse connections.

    Usage::

        pool = ConnectionPool(factory, min_size=2, max_size=10)
        await pool.start()
        async with pool.acquire() as conn:
            result = await conn.execute("SELECT 1")
    """

    def __init__(
        self,
        factory: ConnectionFactory,
        *,
        min_size: int = SNOWFLAKE_MIN_CONNECTIONS,
        max_size: int = SNOWFLAKE_MAX_CONNECTIONS,
        idle_timeout: float = SNOWFLAKE_IDLE_TIMEOUT,
        acquire_timeout: float = SNOWFLAKE_ACQUIRE_TIMEOUT,
        max_lifetime: float = SNOWFLAKE_MAX_CONNECTION_LIFETIME,
        validate_on_borrow: bool = True,
    ) -> None:
        self._factory = factory
        self._max_size = max(1, max_size)
        self._min_size = max(0, min(min_size, self._max_size))
        self._idle_timeout = idle_timeout
        self._acquire_timeout = acquire_timeout
        self._max_lifetime = max_lifetime
        self._validate_on_borrow = validate_on_borrow

        self._idle: deque[_Slot] = deque()
        self._borrowed: dict[int, _Slot] = {}
        self._size = 0  # idle + borrowed + being created
        self._pending = 0
        self._closed = False
        self._cond = asyncio.Condition()

    async def start(self) -> None:
        """Open ``min_size`` connections up front.

        A failure here propagates; connections already opened are closed.
        """
        opened: list[_Slot] = []
        try:
            for _ in range(self._min_size):
                opened.append(_Slot(conn=await self._factory()))
        except BaseException:
            for slot in opened:
                await self._close_quietly(slot)
            raise
        async with self._cond:
            self._idle.extend(opened)
            self._size += len(opened)
        logger.info(
            "event=pool_started size=%d min=%d max=%d",
            len(opened),
            self._min_size,
            self._max_size,
        )

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[WarehouseConnection]:
        slot = await self._borrow()
        try:
            yield slot.conn
        finally:
            await self._release(slot)

    async def _borrow(self) -> _Slot:
        self._pending += 1
        try:
            async with asyncio.timeout(self._acquire_timeout):
                while True:
                    slot, expired = await self._reserve()
                    try:
                        for old in expired:
                            await self._close_quietly(old)
                        if slot is None:
                            return await self._open_reserved()
                        if await self._is_usable(slot):
                            return slot
                    except BaseException:
                        # Timeout or cancellation after reserving: the
                        # reservation must not outlive this borrow.
                        await self._forfeit(slot)
                        raise
        except TimeoutError as exc:
            raise ServiceTimeoutError(
                "Timed out waiting for a warehouse connection",
                service="snowflake",
                metadata={
                    "acquire_timeout_s": self._acquire_timeout,
                    **self.stats().as_dict(),
                },
                original_error=exc,
            ) from exc
        finally:
            self._pending -= 1

    async def _reserve(self) -> tuple[_Slot | None, list[_Slot]]:
        """Take an idle slot, or reserve room to open one, or wait.

        Returns the borrowed slot (``None`` when room was reserved for a
        new connection) and the expired slots the caller must close.
        """
        expired: list[_Slot] = []
        try:
            async with self._cond:
                while True:
                    if self._closed:
                        raise PoolClosedError("connection pool is drained")
                    expired.extend(self._collect_expired())
                    if self._idle:
                        slot = self._idle.pop()
                        self._borrowed[id(slot)] = slot
                        return slot, expired
                    if self._size < self._max_size:
                        self._size += 1
                        return None, expired
                    await self._cond.wait()
        except BaseException:
            for slot in expired:
                await self._close_quietly(slot)
            raise

    async def _open_reserved(self) -> _Slot:
        # No await between the factory returning and registration.
        slot = _Slot(conn=await self._factory())
        self._borrowed[id(slot)] = slot
        return slot

    async def _forfeit(self, slot: _Slot | None) -> None:
        """Undo a reservation whose borrow did not complete."""
        if slot is not None:
            await self._discard(slot)
            return
        self._size -= 1
        await self._notify()

    async def _is_usable(self, slot: _Slot) -> bool:
        if not self._validate_on_borrow:
            return True
        alive = False
        try:
            alive = await slot.conn.is_alive()
        except Exception as exc:
            logger.warning("event=pool_validation_error error=%s", exc)
        if alive:
            return True
        logger.info("event=pool_discard_dead_connection")
        await self._discard(slot)
        return False

    async def _release(self, slot: _Slot) -> None:
        now = time.monotonic()
        retire = now - slot.created > self._max_lifetime
        async with self._cond:
            self._borrowed.pop(id(slot), None)
            if retire or self._closed:
                self._size -= 1
            else:
                slot.last_used = now
                self._idle.append(slot)
            self._cond.notify()
        if retire or self._closed:
            await self._close_quietly(slot)

    async def _discard(self, slot: _Slot) -> None:
        """Drop a borrowed slot and close it; a second call is a no-op."""
        if self._borrowed.pop(id(slot), None) is None:
            return
        self._size -= 1
        try:
            await self._close_quietly(slot)
        finally:
            await self._notify()

    async def _notify(self) -> None:
        async with self._cond:
            self._cond.notify()

    def _collect_expired(self) -> list[_Slot]:
        """Pop idle slots past idle timeout or lifetime; caller holds the lock."""
        now = time.monotonic()
        expired: list[_Slot] = []
        keep: deque[_Slot] = deque()
        for slot in self._idle:
            too_old = now - slot.created > self._max_lifetime
            too_idle = (
                now - slot.last_used > self._idle_timeout
                and self._size - len(expired) > self._min_size
            )
            if too_old or too_idle:
                expired.append(slot)
            else:
                keep.append(slot)
        if expired:
            self._idle = keep
            self._size -= len(expired)
            logger.debug("event=pool_evict_idle count=%d", len(expired))
        return expired

    async def _close_quietly(self, slot: _Slot) -> None:
        try:
            await slot.conn.close()
        except Exception as exc:
            logger.warning("event=pool_close_error error=%s", exc)

    def stats(self) -> PoolStats:
        return PoolStats(
            borrowed=len(self._borrowed),
            available=len(self._idle),
            pending=self._pending,
            size=self._size,
        )

    @property
    def closed(self) -> bool:
        return self._closed

    async def drain(self, timeout: float) -> None:
        """Stop lending, wait for borrowed connections, close everything.

        Borrowed connections still out after ``timeout`` are closed as
        they come back.
        """
        async with self._cond:
            self._closed = True
            self._cond.notify_all()
        deadline = time.monotonic() + timeout
        while self._borrowed and time.monotonic() < deadline:
            await asyncio.sleep(0.05)
        if self._borrowed:
            logger.warning(
                "event=pool_drain_timeout borrowed=%d",
                len(self._borrowed),
            )
        async with self._cond:
            idle = list(self._idle)
            self._idle.clear()
            self._size -= len(idle)
        for slot in idle:
            await self._close_quietly(slot)
        logger.info("event=pool_drained closed=%d", len(idle))

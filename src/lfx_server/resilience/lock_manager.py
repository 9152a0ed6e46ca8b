"""In-flight query deduplication.

LockManager prevents duplicate concurrent executions of the same
warehouse query. If query A is running for fingerprint "ab12..." and
query B arrives with the same SQL and binds, B awaits A's outcome
instead of opening a second round-trip.

Entries live only while the execution is pending: they are evicted the
moment it settles (value or error), so a failed fingerprint is retried
fresh by the next caller. The work runs in its own task and every caller
awaits it through ``asyncio.shield``: cancelling one caller never
cancels the execution the others are waiting on. Entries older than the
query timeout plus a buffer are treated as hung and evicted lazily on
the next call.

Single-process only; each worker has its own instance.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from lfx_server.constants import (
    SNOWFLAKE_LOCK_TTL_BUFFER,
    SNOWFLAKE_QUERY_TIMEOUT,
    LockStrategy,
)
from lfx_server.errors import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass
class _InFlight:
    key: str
    task: asyncio.Future[Any]
    started: float = field(default_factory=time.monotonic)
    waiters: int = 0


@dataclass(frozen=True)
class LockStats:
    active_locks: int
    total_hits: int
    total_misses: int
    deduplication_rate: float

    def as_dict(self) -> dict[str, float | int]:
        return {
            "active_locks": self.active_locks,
            "total_hits": self.total_hits,
            "total_misses": self.total_misses,
            "deduplication_rate": self.deduplication_rate,
        }


def _normalize_bind(bind: Any) -> Any:
    if isinstance(bind, (datetime, date)):
        return bind.isoformat()
    return bind


def hash_query(sql_text: str, binds: Sequence[Any] | None = None) -> str:
    """Deterministic fingerprint of a query and its bind values.

    SQL is trimmed, lower-cased and whitespace-collapsed so formatting
    differences do not defeat deduplication. Date binds hash by their
    ISO form.
    """
    normalized = {
        "sql": " ".join(sql_text.strip().lower().split()),
        "binds": [_normalize_bind(b) for b in (binds or [])],
    }
    payload = json.dumps(
        normalized, separators=(",", ":"), default=str
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class LockManager:
    """Single-flight execution keyed by query fingerprint.

    Usage::

        locks = LockManager()
        key = locks.hash_query(sql, binds)
        rows = await locks.execute_locked(key, lambda: run(sql, binds))
    """

    def __init__(
        self,
        strategy: str = LockStrategy.MEMORY,
        *,
        max_age_seconds: float = (
            SNOWFLAKE_QUERY_TIMEOUT + SNOWFLAKE_LOCK_TTL_BUFFER
        ),
    ) -> None:
        if strategy != LockStrategy.MEMORY:
            raise ConfigurationError(
                f"Unsupported lock strategy: {strategy}",
                service="snowflake",
            )
        self._strategy = strategy
        self._max_age = max_age_seconds
        self._in_flight: dict[str, _InFlight] = {}
        self._total_hits = 0
        self._total_misses = 0
        logger.info("event=lock_manager_init strategy=%s", strategy)

    hash_query = staticmethod(hash_query)

    async def execute_locked(
        self,
        key: str,
        work: Callable[[], Awaitable[Any]],
    ) -> Any:
        """Run work once per key; concurrent callers share its outcome.

        Lookup and registration happen with no await in between, so two
        callers on the same event loop can never both become owners.
        """
        self._evict_stale()

        existing = self._in_flight.get(key)
        if existing is not None:
            existing.waiters += 1
            self._total_hits += 1
            logger.info(
                "event=dedup_hit query_hash=%s waiters=%d",
                key[:12],
                existing.waiters,
            )
            return await asyncio.shield(existing.task)

        self._total_misses += 1
        logger.debug("event=dedup_miss query_hash=%s", key[:12])
        # work() may raise before producing an awaitable; no entry exists yet.
        task = asyncio.ensure_future(work())
        tracker = _InFlight(key=key, task=task)
        self._in_flight[key] = tracker
        task.add_done_callback(lambda _: self._settle(tracker))
        return await asyncio.shield(task)

    def _settle(self, tracker: _InFlight) -> None:
        if self._in_flight.get(tracker.key) is tracker:
            del self._in_flight[tracker.key]

    def _evict_stale(self) -> None:
        now = time.monotonic()
        stale = [
            k
            for k, entry in self._in_flight.items()
            if now - entry.started > self._max_age
        ]
        for k in stale:
            age = now - self._in_flight.pop(k).started
            logger.warning(
                "event=stale_lock_evicted query_hash=%s age_s=%.1f",
                k[:12],
                age,
            )

    def get_stats(self) -> LockStats:
        total = self._total_hits + self._total_misses
        rate = (self._total_hits / total) * 100 if total else 0.0
        return LockStats(
            active_locks=len(self._in_flight),
            total_hits=self._total_hits,
            total_misses=self._total_misses,
            deduplication_rate=rate,
        )

    @property
    def active_keys(self) -> list[str]:
        """Return currently in-flight fingerprints."""
        return list(self._in_flight.keys())

    def shutdown(self) -> None:
        self._in_flight.clear()
        logger.info("event=lock_manager_shutdown")

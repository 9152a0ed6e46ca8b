"""Protocol-based warehouse interfaces.

The Snowflake connection satisfies these protocols structurally (no
inheritance). Test doubles in ``services/fakes.py`` match the same
signatures.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol


@dataclass
class QueryResult:
    """Rows plus column metadata for one executed statement."""

    rows: list[dict[str, Any]]
    metadata: list[dict[str, Any]] = field(
        default_factory=lambda: list[dict[str, Any]]()
    )
    statement_handle: str | None = None

    @property
    def row_count(self) -> int:
        return len(self.rows)


class WarehouseConnection(Protocol):
    async def execute(
        self,
        sql_text: str,
        binds: Sequence[Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> QueryResult: ...
    async def is_alive(self) -> bool: ...
    async def close(self) -> None: ...


type ConnectionFactory = Callable[[], Awaitable[WarehouseConnection]]

"""Operation-scoped logging with request_id correlation.

Services log the lifecycle of each upstream operation the same way:
``start`` returns a monotonic timestamp, and ``success``/``error``
report the duration since it. Metadata is sanitized before it is
written so tokens and emails never reach the log stream.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from typing import Any

from lfx_server.constants import (
    ERROR_TRUNCATION_CHARS,
    REDACTED,
    SENSITIVE_FIELDS,
)
from lfx_server.context import RequestContext
from lfx_server.errors import BaseApiError

__all__ = ["OperationLogger", "sanitize"]


def sanitize(metadata: Mapping[str, Any]) -> dict[str, Any]:
    """Redact values whose key contains a sensitive field name."""
    sanitized = dict(metadata)
    for key in sanitized:
        lowered = key.lower()
        if any(name in lowered for name in SENSITIVE_FIELDS):
            sanitized[key] = REDACTED
    return sanitized


def _format_fields(fields: Mapping[str, Any]) -> str:
    return " ".join(
        f"{k}={v}" for k, v in fields.items() if v is not None
    )


class OperationLogger:
    """Structured ``event=... key=value`` logging for service operations."""

    def __init__(self, name: str = "lfx_server.operations") -> None:
        self._logger = logging.getLogger(name)

    def _emit(
        self,
        level: int,
        event: str,
        ctx: RequestContext | None,
        fields: Mapping[str, Any],
    ) -> None:
        if not self._logger.isEnabledFor(level):
            return
        payload: dict[str, Any] = {"event": event}
        payload.update(sanitize(fields))
        if ctx is not None:
            payload["request_id"] = ctx.request_id
        self._logger.log(level, _format_fields(payload))

    def start(
        self,
        ctx: RequestContext | None,
        operation: str,
        **metadata: Any,
    ) -> float:
        self._emit(
            logging.INFO,
            "operation_start",
            ctx,
            {"operation": operation, **metadata},
        )
        return time.monotonic()

    def success(
        self,
        ctx: RequestContext | None,
        operation: str,
        started: float,
        **metadata: Any,
    ) -> None:
        fields: dict[str, Any] = {
            "operation": operation,
            "duration_ms": _elapsed_ms(started),
            "status_code": metadata.pop("status_code", 200),
        }
        fields.update(metadata)
        self._emit(logging.INFO, "operation_success", ctx, fields)

    def error(
        self,
        ctx: RequestContext | None,
        operation: str,
        started: float,
        error: BaseException,
        **metadata: Any,
    ) -> None:
        fields: dict[str, Any] = {
            "operation": operation,
            "duration_ms": _elapsed_ms(started),
            "error_type": type(error).__name__,
            "error": str(error)[:ERROR_TRUNCATION_CHARS],
        }
        if isinstance(error, BaseApiError):
            fields["code"] = error.code
            fields["status_code"] = error.status_code
        fields.update(metadata)
        self._emit(logging.ERROR, "operation_failed", ctx, fields)

    def validation(
        self,
        ctx: RequestContext | None,
        operation: str,
        errors: list[dict[str, str]],
        **metadata: Any,
    ) -> None:
        fields: dict[str, Any] = {
            "operation": operation,
            "status_code": 400,
            "fields": ",".join(e.get("field", "?") for e in errors),
        }
        fields.update(metadata)
        self._emit(logging.WARNING, "validation_failed", ctx, fields)

    def etag(
        self,
        ctx: RequestContext | None,
        operation: str,
        resource_type: str,
        resource_id: str,
        etag: str | None = None,
        **metadata: Any,
    ) -> None:
        fields: dict[str, Any] = {
            "operation": operation,
            "resource_type": resource_type,
            "resource_id": resource_id,
            "etag": etag,
        }
        fields.update(metadata)
        self._emit(logging.INFO, "etag_operation", ctx, fields)

    def warning(
        self,
        ctx: RequestContext | None,
        operation: str,
        message: str,
        **metadata: Any,
    ) -> None:
        fields: dict[str, Any] = {
            "operation": operation,
            "warning": f'"{message}"',
        }
        fields.update(metadata)
        self._emit(logging.WARNING, "operation_warning", ctx, fields)


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)

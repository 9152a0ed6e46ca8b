"""Error classification for upstream failure handling.

Classifies exceptions by category to decide which failures count
against an upstream's circuit breaker.
"""

from __future__ import annotations

import asyncio
from enum import Enum

import httpx


class ErrorClass(Enum):
    TRANSIENT = "transient"  # 429, connection errors
    SERVER = "server"  # 500, 502, 503, 504
    TIMEOUT = "timeout"  # deadline exceeded
    CLIENT = "client"  # 400-499 except 429; never counts as outage
    UNKNOWN = "unknown"


def classify_error(error: BaseException) -> ErrorClass:
    """Classify an error to determine handling strategy.

    Checks structured attributes first (status_code), then exception
    types, then falls back to string matching.
    """
    # 1. Structured status_code (BaseApiError, httpx.HTTPStatusError)
    status_code = getattr(error, "status_code", None)
    if status_code is None and isinstance(error, httpx.HTTPStatusError):
        status_code = error.response.status_code
    if isinstance(status_code, int):
        if status_code == 429:
            return ErrorClass.TRANSIENT
        if status_code in (408, 504):
            return ErrorClass.TIMEOUT
        if 400 <= status_code < 500:
            return ErrorClass.CLIENT
        if 500 <= status_code < 600:
            return ErrorClass.SERVER

    # 2. Exception types
    if isinstance(
        error, (TimeoutError, asyncio.TimeoutError, httpx.TimeoutException)
    ):
        return ErrorClass.TIMEOUT
    if isinstance(error, (httpx.TransportError, ConnectionError)):
        return ErrorClass.TRANSIENT

    # 3. String matching for untyped exceptions
    msg = str(error).lower()

    if "timeout" in msg or "timed out" in msg:
        return ErrorClass.TIMEOUT
    if "econnrefused" in msg or "connection" in msg:
        return ErrorClass.TRANSIENT

    return ErrorClass.UNKNOWN


_OUTAGE = frozenset({
    ErrorClass.TRANSIENT,
    ErrorClass.SERVER,
    ErrorClass.TIMEOUT,
})


def counts_as_outage(thrown_type: type, thrown_value: BaseException) -> bool:
    """Circuit-breaker predicate: only upstream faults trip the breaker.

    The circuitbreaker library calls this with (thrown_type, thrown_value).
    A 404 or 412 is a normal answer from a healthy service.
    """
    return classify_error(thrown_value) in _OUTAGE

"""Tests for error classification."""

from __future__ import annotations

import httpx

from lfx_server.errors import (
    MicroserviceError,
    PreconditionFailedError,
    ResourceNotFoundError,
    ServiceTimeoutError,
)
from lfx_server.resilience.errors import (
    ErrorClass,
    classify_error,
    counts_as_outage,
)


class _StatusCodeError(Exception):
    """Exception with a status_code attribute."""

    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


# ── classify_error ───────────────────────────────────────────


def test_classify_status_code_429_as_transient() -> None:
    err = _StatusCodeError("rate limited", 429)
    assert classify_error(err) == ErrorClass.TRANSIENT


def test_classify_status_code_404_as_client() -> None:
    err = _StatusCodeError("missing", 404)
    assert classify_error(err) == ErrorClass.CLIENT


def test_classify_status_code_502_as_server() -> None:
    err = _StatusCodeError("bad gateway", 502)
    assert classify_error(err) == ErrorClass.SERVER


def test_classify_gateway_timeout_as_timeout() -> None:
    """504 is a deadline, not a generic server fault."""
    assert classify_error(ServiceTimeoutError("slow")) == ErrorClass.TIMEOUT


def test_classify_api_errors_by_status() -> None:
    assert classify_error(ResourceNotFoundError("Meeting", "m1")) == (
        ErrorClass.CLIENT
    )
    assert classify_error(
        MicroserviceError("upstream down", status_code=503)
    ) == ErrorClass.SERVER


def test_classify_httpx_status_error() -> None:
    request = httpx.Request("GET", "http://upstream/x")
    response = httpx.Response(503, request=request)
    err = httpx.HTTPStatusError("unavailable", request=request, response=response)
    assert classify_error(err) == ErrorClass.SERVER


def test_classify_httpx_transport_errors() -> None:
    request = httpx.Request("GET", "http://upstream/x")
    assert classify_error(
        httpx.ConnectError("refused", request=request)
    ) == ErrorClass.TRANSIENT
    assert classify_error(
        httpx.ReadTimeout("slow", request=request)
    ) == ErrorClass.TIMEOUT


def test_classify_timeout_error_type() -> None:
    assert classify_error(TimeoutError()) == ErrorClass.TIMEOUT


def test_classify_string_fallback_connection() -> None:
    err = Exception("connection refused to host")
    assert classify_error(err) == ErrorClass.TRANSIENT


def test_classify_string_fallback_timeout() -> None:
    err = Exception("request timed out after 30s")
    assert classify_error(err) == ErrorClass.TIMEOUT


def test_classify_unknown() -> None:
    err = Exception("something completely unexpected")
    assert classify_error(err) == ErrorClass.UNKNOWN


# ── counts_as_outage ─────────────────────────────────────────


def test_outage_for_upstream_faults() -> None:
    errors = (
        _StatusCodeError("", 429),
        _StatusCodeError("", 503),
        TimeoutError(),
    )
    for err in errors:
        assert counts_as_outage(type(err), err) is True


def test_unknown_error_is_not_outage() -> None:
    err = Exception("mystery")
    assert counts_as_outage(type(err), err) is False


def test_precondition_failure_does_not_trip_breaker() -> None:
    """A 412 is a healthy answer from the upstream."""
    err = PreconditionFailedError("stale")
    assert counts_as_outage(type(err), err) is False


def test_server_error_trips_breaker() -> None:
    err = MicroserviceError("boom", status_code=500)
    assert counts_as_outage(type(err), err) is True

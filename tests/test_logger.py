"""Tests for OperationLogger field formatting and redaction."""

from __future__ import annotations

import logging

import pytest

from lfx_server.context import RequestContext
from lfx_server.errors import PreconditionFailedError
from lfx_server.logger import OperationLogger, sanitize

LOGGER_NAME = "lfx_server.test_operations"


def test_sanitize_redacts_by_key_substring() -> None:
    result = sanitize(
        {"access_token": "abc", "userEmail": "a@b.c", "committee_uid": "c1"}
    )
    assert result == {
        "access_token": "[REDACTED]",
        "userEmail": "[REDACTED]",
        "committee_uid": "c1",
    }


def test_sanitize_does_not_mutate_input() -> None:
    metadata = {"password": "hunter2"}
    sanitize(metadata)
    assert metadata == {"password": "hunter2"}


class TestOperationLogger:
    def test_start_and_success(self, caplog: pytest.LogCaptureFixture) -> None:
        log = OperationLogger(LOGGER_NAME)
        ctx = RequestContext(request_id="req-1")
        with caplog.at_level(logging.INFO, logger=LOGGER_NAME):
            started = log.start(ctx, "get_committee", committee_uid="c1")
            log.success(ctx, "get_committee", started, status_code=201)
        start, success = caplog.messages
        assert start.startswith("event=operation_start")
        assert "committee_uid=c1" in start
        assert "request_id=req-1" in start
        assert "event=operation_success" in success
        assert "status_code=201" in success
        assert "duration_ms=" in success

    def test_error_includes_code(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        log = OperationLogger(LOGGER_NAME)
        with caplog.at_level(logging.ERROR, logger=LOGGER_NAME):
            log.error(None, "update_meeting", 0.0, PreconditionFailedError())
        (message,) = caplog.messages
        assert "error_type=PreconditionFailedError" in message
        assert "code=PRECONDITION_FAILED" in message
        assert "status_code=412" in message
        assert "request_id" not in message

    def test_error_message_truncated(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        log = OperationLogger(LOGGER_NAME)
        with caplog.at_level(logging.ERROR, logger=LOGGER_NAME):
            log.error(None, "query", 0.0, RuntimeError("x" * 500))
        assert "x" * 200 in caplog.messages[0]
        assert "x" * 201 not in caplog.messages[0]

    def test_sensitive_metadata_redacted(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        log = OperationLogger(LOGGER_NAME)
        with caplog.at_level(logging.INFO, logger=LOGGER_NAME):
            log.start(None, "login", token="secret-value")
        assert "secret-value" not in caplog.text
        assert "token=[REDACTED]" in caplog.text

    def test_none_fields_omitted(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        log = OperationLogger(LOGGER_NAME)
        with caplog.at_level(logging.INFO, logger=LOGGER_NAME):
            log.etag(None, "update", "committee", "c1")
        assert "etag=" not in caplog.text
        assert "resource_type=committee" in caplog.text

    def test_validation_lists_fields(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        log = OperationLogger(LOGGER_NAME)
        with caplog.at_level(logging.WARNING, logger=LOGGER_NAME):
            log.validation(
                None,
                "create_committee",
                [{"field": "name"}, {"message": "bad"}],
            )
        assert "fields=name,?" in caplog.text

    def test_disabled_level_skips_formatting(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        log = OperationLogger(LOGGER_NAME)
        with caplog.at_level(logging.ERROR, logger=LOGGER_NAME):
            log.start(None, "quiet")
        assert caplog.messages == []

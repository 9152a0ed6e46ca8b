"""Tests for singleton logging configuration."""

from __future__ import annotations

import logging
from unittest.mock import patch

import pytest

from lfx_server.logging_config import (
    _SNOWFLAKE_LOGGERS,
    _SUPPRESSED_LOGGERS,
    LOG_DATEFMT,
    LOG_FORMAT,
    setup_logging,
)


@pytest.fixture(autouse=True)
def _reset_flag() -> None:
    """Reset the singleton flag before each test."""
    import lfx_server.logging_config as mod

    mod._configured = False


def test_setup_logging_is_idempotent() -> None:
    with patch("lfx_server.logging_config.logging.basicConfig") as mock_bc:
        setup_logging()
        setup_logging()  # second call is no-op
        mock_bc.assert_called_once()


def test_basic_config_args() -> None:
    with patch("lfx_server.logging_config.logging.basicConfig") as mock_bc:
        setup_logging("debug")
    mock_bc.assert_called_once_with(
        level=logging.DEBUG, format=LOG_FORMAT, datefmt=LOG_DATEFMT
    )


def test_third_party_loggers_suppressed() -> None:
    setup_logging()
    for name in _SUPPRESSED_LOGGERS:
        assert logging.getLogger(name).level == logging.WARNING


def test_snowflake_level_configurable() -> None:
    setup_logging(snowflake_level="DEBUG")
    for name in _SNOWFLAKE_LOGGERS:
        assert logging.getLogger(name).level == logging.DEBUG


def test_unknown_snowflake_level_falls_back() -> None:
    setup_logging(snowflake_level="CHATTY")
    assert logging.getLogger("snowflake.connector").level == logging.WARNING

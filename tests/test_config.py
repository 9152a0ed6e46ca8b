"""Tests for Settings validators and credential checks."""

from __future__ import annotations

import logging

import pytest

from lfx_server.config import Settings
from lfx_server.errors import ConfigurationError


class TestUrls:
    def test_trailing_slash_stripped(self) -> None:
        s = Settings(
            lfx_v2_service="http://lfx-api.test/",
            m2m_auth_issuer_base_url="https://auth.test//",
        )
        assert s.lfx_v2_service == "http://lfx-api.test"
        assert s.m2m_auth_issuer_base_url == "https://auth.test"


class TestLockStrategy:
    def test_case_insensitive(self) -> None:
        assert Settings(snowflake_lock_strategy="MEMORY").snowflake_lock_strategy == (
            "memory"
        )

    def test_unknown_strategy_rejected(self) -> None:
        with pytest.raises(ValueError, match="snowflake_lock_strategy"):
            Settings(snowflake_lock_strategy="redis")


class TestPoolSize:
    def test_zero_max_rejected(self) -> None:
        with pytest.raises(ValueError, match=">= 1"):
            Settings(snowflake_max_connections=0)

    def test_max_below_min_warns(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING, logger="lfx_server.config"):
            s = Settings(
                snowflake_min_connections=5, snowflake_max_connections=2
            )
        assert s.snowflake_max_connections == 2
        assert "pool_size_clamped" in caplog.text


class TestCredentials:
    def test_snowflake_missing_listed(self) -> None:
        s = Settings(snowflake_account="acct", snowflake_username="svc")
        with pytest.raises(ConfigurationError) as exc_info:
            s.require_snowflake_credentials()
        missing = exc_info.value.metadata["missing"]
        assert "SNOWFLAKE_API_KEY" in missing
        assert "SNOWFLAKE_ACCOUNT" not in missing
        assert exc_info.value.status_code == 500

    def test_snowflake_complete(self) -> None:
        Settings(
            snowflake_account="acct",
            snowflake_username="svc",
            snowflake_api_key="pem",
            snowflake_warehouse="wh",
            snowflake_database="ANALYTICS",
        ).require_snowflake_credentials()

    def test_m2m_missing(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            Settings(m2m_auth_issuer_base_url="").require_m2m_credentials()
        assert "M2M_AUTH_ISSUER_BASE_URL" in exc_info.value.metadata["missing"]


def test_reads_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SNOWFLAKE_QUERY_TIMEOUT", "12.5")
    monkeypatch.setenv("SNOWFLAKE_VALIDATE_ON_BORROW", "false")
    s = Settings()
    assert s.snowflake_query_timeout == 12.5
    assert s.snowflake_validate_on_borrow is False

"""Environment-based configuration."""

from __future__ import annotations

import logging

from pydantic import ValidationInfo, field_validator
from pydantic_settings import BaseSettings

from lfx_server.constants import (
    DEFAULT_LFX_V2_SERVICE,
    NATS_DEFAULT_URL,
    NATS_REQUEST_TIMEOUT,
    SNOWFLAKE_ACQUIRE_TIMEOUT,
    SNOWFLAKE_CONNECTION_TIMEOUT,
    SNOWFLAKE_IDLE_TIMEOUT,
    SNOWFLAKE_LOCK_TTL_BUFFER,
    SNOWFLAKE_MAX_CONNECTIONS,
    SNOWFLAKE_MIN_CONNECTIONS,
    SNOWFLAKE_QUERY_TIMEOUT,
    LockStrategy,
)
from lfx_server.errors import ConfigurationError

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Reads from .env file and environment variables."""

    # Upstream resource/query API
    lfx_v2_service: str = DEFAULT_LFX_V2_SERVICE
    api_timeout_seconds: float = 30.0

    # NATS
    nats_url: str = NATS_DEFAULT_URL
    nats_request_timeout: float = NATS_REQUEST_TIMEOUT

    # Snowflake (key-pair auth; api_key holds the PEM private key)
    snowflake_account: str = ""
    snowflake_username: str = ""
    snowflake_role: str = ""
    snowflake_database: str = ""
    snowflake_warehouse: str = ""
    snowflake_api_key: str = ""
    snowflake_private_key_passphrase: str = ""
    snowflake_min_connections: int = SNOWFLAKE_MIN_CONNECTIONS
    snowflake_max_connections: int = SNOWFLAKE_MAX_CONNECTIONS
    snowflake_idle_timeout: float = SNOWFLAKE_IDLE_TIMEOUT
    snowflake_acquire_timeout: float = SNOWFLAKE_ACQUIRE_TIMEOUT
    snowflake_connection_timeout: float = SNOWFLAKE_CONNECTION_TIMEOUT
    snowflake_query_timeout: float = SNOWFLAKE_QUERY_TIMEOUT
    snowflake_lock_ttl_buffer: float = SNOWFLAKE_LOCK_TTL_BUFFER
    snowflake_validate_on_borrow: bool = True
    snowflake_lock_strategy: str = LockStrategy.MEMORY
    snowflake_log_level: str = "WARNING"

    # Machine-to-machine tokens
    m2m_auth_issuer_base_url: str = ""
    m2m_auth_audience: str = ""
    m2m_auth_client_id: str = ""
    m2m_auth_client_secret: str = ""

    # User token verification
    auth_jwks_url: str = ""
    auth_issuer: str = ""
    auth_audience: str = ""
    auth_jwt_algorithms: str = "RS256"
    auth_trust_proxy_headers: bool = False

    # Logging
    log_level: str = "INFO"
    debug_mode: bool = False

    # API
    cors_origins: str = "http://localhost:4200"

    @field_validator("snowflake_lock_strategy")
    @classmethod
    def _validate_lock_strategy(cls, v: str) -> str:
        allowed = {s.value for s in LockStrategy}
        if v.lower() not in allowed:
            raise ValueError(
                f"snowflake_lock_strategy must be one of: "
                f"{', '.join(sorted(allowed))}"
            )
        return v.lower()

    @field_validator("lfx_v2_service", "m2m_auth_issuer_base_url")
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("snowflake_max_connections")
    @classmethod
    def _validate_pool_size(
        cls, v: int, info: ValidationInfo
    ) -> int:
        minimum = info.data.get(
            "snowflake_min_connections", SNOWFLAKE_MIN_CONNECTIONS
        )
        if v < 1:
            raise ValueError("snowflake_max_connections must be >= 1")
        if v < minimum:
            logger.warning(
                "event=pool_size_clamped min=%d max=%d",
                minimum,
                v,
            )
        return v

    def require_snowflake_credentials(self) -> None:
        """Raise ConfigurationError if any warehouse credential is unset.

        Checked at first warehouse use so the rest of the server can
        start without analytics configured.
        """
        missing = [
            name.upper()
            for name in (
                "snowflake_account",
                "snowflake_username",
                "snowflake_api_key",
                "snowflake_warehouse",
                "snowflake_database",
            )
            if not getattr(self, name)
        ]
        if missing:
            raise ConfigurationError(
                "Missing required Snowflake configuration: "
                + ", ".join(missing),
                service="snowflake",
                metadata={"missing": missing},
            )

    def require_m2m_credentials(self) -> None:
        missing = [
            name.upper()
            for name in (
                "m2m_auth_issuer_base_url",
                "m2m_auth_audience",
                "m2m_auth_client_id",
                "m2m_auth_client_secret",
            )
            if not getattr(self, name)
        ]
        if missing:
            raise ConfigurationError(
                "Missing required M2M configuration: "
                + ", ".join(missing),
                service="m2m",
                metadata={"missing": missing},
            )

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_prefix": "",
        "extra": "ignore",
    }

"""Snowflake connection over snowflake-connector-python.

The driver is blocking, so every call runs on a worker thread via
``asyncio.to_thread``. Authentication is key-pair JWT: the private key
is a PEM string from settings, loaded with ``cryptography``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import Any

import snowflake.connector
from cryptography.hazmat.primitives import serialization
from snowflake.connector import DictCursor
from snowflake.connector.connection import SnowflakeConnection

from lfx_server.config import Settings
from lfx_server.constants import SNOWFLAKE_VALIDATION_QUERY
from lfx_server.errors import ConfigurationError
from lfx_server.warehouse.protocols import QueryResult

logger = logging.getLogger(__name__)


def load_private_key_der(pem: str, passphrase: str = "") -> bytes:
    """Convert a PEM private key to the DER bytes the driver expects.

    Accepts keys whose newlines were flattened to literal ``\\n`` by an
    env file.
    """
    text = pem.replace("\\n", "\n").strip()
    try:
        key = serialization.load_pem_private_key(
            text.encode("utf-8"),
            password=passphrase.encode("utf-8") if passphrase else None,
        )
    except (ValueError, TypeError) as exc:
        raise ConfigurationError(
            "SNOWFLAKE_API_KEY is not a valid PEM private key",
            service="snowflake",
            original_error=exc,
        ) from exc
    return key.private_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


def _column_metadata(cursor: Any) -> list[dict[str, Any]]:
    description = cursor.description or []
    return [
        {
            "name": col.name,
            "type_code": col.type_code,
            "nullable": col.is_nullable,
        }
        for col in description
    ]


class SnowflakeWarehouseConnection:
    """One driver connection adapted to the async WarehouseConnection protocol."""

    def __init__(self, conn: SnowflakeConnection) -> None:
        self._conn = conn

    def _execute_sync(
        self,
        sql_text: str,
        binds: Sequence[Any] | None,
        timeout: float | None,
    ) -> QueryResult:
        cursor = self._conn.cursor(DictCursor)
        try:
            cursor.execute(
                sql_text,
                list(binds) if binds else None,
                timeout=int(timeout) if timeout else None,
            )
            rows = cursor.fetchall()
            return QueryResult(
                rows=[dict(r) for r in rows],
                metadata=_column_metadata(cursor),
                statement_handle=cursor.sfqid,
            )
        finally:
            cursor.close()

    async def execute(
        self,
        sql_text: str,
        binds: Sequence[Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> QueryResult:
        return await asyncio.to_thread(
            self._execute_sync, sql_text, binds, timeout
        )

    async def is_alive(self) -> bool:
        if self._conn.is_closed():
            return False
        await self.execute(SNOWFLAKE_VALIDATION_QUERY)
        return True

    async def close(self) -> None:
        await asyncio.to_thread(self._conn.close)


class SnowflakeConnectionFactory:
    """Opens key-pair authenticated connections from settings."""

    def __init__(self, settings: Settings) -> None:
        settings.require_snowflake_credentials()
        self._settings = settings
        self._private_key = load_private_key_der(
            settings.snowflake_api_key,
            settings.snowflake_private_key_passphrase,
        )

    def _connect_params(self) -> dict[str, Any]:
        s = self._settings
        params: dict[str, Any] = {
            "account": s.snowflake_account,
            "user": s.snowflake_username,
            "private_key": self._private_key,
            "warehouse": s.snowflake_warehouse,
            "database": s.snowflake_database,
            "login_timeout": int(s.snowflake_connection_timeout),
            "network_timeout": int(s.snowflake_query_timeout),
            "client_session_keep_alive": True,
            "paramstyle": "qmark",
        }
        if s.snowflake_role:
            params["role"] = s.snowflake_role
        return params

    async def __call__(self) -> SnowflakeWarehouseConnection:
        conn = await asyncio.to_thread(
            snowflake.connector.connect, **self._connect_params()
        )
        logger.debug(
            "event=snowflake_connected account=%s",
            self._settings.snowflake_account,
        )
        return SnowflakeWarehouseConnection(conn)

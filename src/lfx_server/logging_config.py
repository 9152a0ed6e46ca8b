"""Singleton logging configuration.

setup_logging() configures the root logger once and quiets the
third-party clients (httpx, the Snowflake driver, nats) that log every
request at INFO. The Snowflake driver level is configurable separately
because its DEBUG output is the only trace of connection problems.

Idempotent (guarded by a module-level flag).
"""

import logging

LOG_FORMAT = "%(asctime)s - %(levelname)s - [%(name)s] - %(message)s"
LOG_DATEFMT = "%Y-%m-%dT%H:%M:%S"

# Third-party loggers to suppress to WARNING
_SUPPRESSED_LOGGERS = (
    "httpx",
    "httpcore",
    "nats",
    "nats.aio.client",
    "uvicorn.access",
)

_SNOWFLAKE_LOGGERS = (
    "snowflake.connector",
    "snowflake.connector.connection",
    "snowflake.connector.network",
)

_configured = False


def setup_logging(
    level: str = "INFO", snowflake_level: str = "WARNING"
) -> None:
    """Configure root logger and quiet noisy libraries.

    Second call is a no-op.
    """
    global _configured  # noqa: PLW0603
    if _configured:
        return
    _configured = True

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format=LOG_FORMAT,
        datefmt=LOG_DATEFMT,
    )

    for name in _SUPPRESSED_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    sf_level = getattr(logging, snowflake_level.upper(), logging.WARNING)
    for name in _SNOWFLAKE_LOGGERS:
        logging.getLogger(name).setLevel(sf_level)

"""CLI entry point: ``lfx-server serve`` and ``lfx-server query``."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any

from lfx_server import __version__
from lfx_server.config import Settings
from lfx_server.errors import BaseApiError
from lfx_server.logging_config import setup_logging


def main(argv: list[str] | None = None) -> None:
    """Main CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.version:
        print(f"lfx-server {__version__}")
        return

    if args.command == "serve":
        _run_serve(args)
    elif args.command == "query":
        _run_query(args)
    else:
        parser.print_help()


def _build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="lfx-server",
        description=(
            "LFX gateway: resource proxy, NATS lookups and"
            " read-only warehouse analytics."
        ),
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Print version and exit",
    )

    sub = parser.add_subparsers(dest="command")

    serve = sub.add_parser("serve", help="Run the HTTP server")
    serve.add_argument(
        "--host",
        default="0.0.0.0",
        help="Bind address (default: 0.0.0.0)",
    )
    serve.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port (default: 8000)",
    )
    serve.add_argument(
        "--reload",
        action="store_true",
        help="Reload on code changes (development only)",
    )

    query = sub.add_parser(
        "query",
        help="Run one read-only warehouse query and print JSON rows",
    )
    query.add_argument("sql", type=str, help="SELECT or WITH statement")
    query.add_argument(
        "--bind",
        "-b",
        action="append",
        default=[],
        help="Positional bind value (repeatable, in order)",
    )
    query.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Query timeout in seconds (default: from settings)",
    )

    return parser


def _run_serve(args: argparse.Namespace) -> None:
    import uvicorn

    settings = Settings()
    setup_logging(settings.log_level, settings.snowflake_log_level)
    uvicorn.run(
        "lfx_server.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=settings.log_level.lower(),
    )


def _run_query(args: argparse.Namespace) -> None:
    settings = Settings()
    setup_logging(settings.log_level, settings.snowflake_log_level)
    try:
        rows = asyncio.run(
            _execute_query(settings, args.sql, args.bind, args.timeout)
        )
    except BaseApiError as exc:
        print(f"Error [{exc.code}]: {exc.message}", file=sys.stderr)
        sys.exit(1)
    print(json.dumps(rows, indent=2, default=str))


async def _execute_query(
    settings: Settings,
    sql_text: str,
    binds: list[str],
    timeout: float | None,
) -> list[dict[str, Any]]:
    """Open a pool, run the statement, drain the pool."""
    from lfx_server.services.snowflake_service import (
        QueryOptions,
        SnowflakeService,
    )

    service = SnowflakeService(settings)
    try:
        result = await service.execute(
            sql_text,
            binds or None,
            QueryOptions(timeout=timeout) if timeout else None,
        )
    finally:
        await service.shutdown()
    return result.rows


if __name__ == "__main__":
    main()

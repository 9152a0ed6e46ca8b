"""Tests for CLI argument parsing and the query command."""

from __future__ import annotations

import json
from typing import Any

import pytest

from lfx_server import __version__, cli
from lfx_server.cli import _build_parser, main
from lfx_server.config import Settings


class TestArgParser:
    def test_version_flag(self) -> None:
        parser = _build_parser()
        args = parser.parse_args(["--version"])
        assert args.version is True

    def test_serve_defaults(self) -> None:
        args = _build_parser().parse_args(["serve"])
        assert args.command == "serve"
        assert args.host == "0.0.0.0"
        assert args.port == 8000
        assert args.reload is False

    def test_query_binds_in_order(self) -> None:
        args = _build_parser().parse_args(
            ["query", "SELECT 1", "-b", "a", "--bind", "b", "--timeout", "5"]
        )
        assert args.sql == "SELECT 1"
        assert args.bind == ["a", "b"]
        assert args.timeout == 5.0

    def test_query_defaults(self) -> None:
        args = _build_parser().parse_args(["query", "SELECT 1"])
        assert args.bind == []
        assert args.timeout is None


def test_version_output(capsys: pytest.CaptureFixture[str]) -> None:
    main(["--version"])
    assert capsys.readouterr().out.strip() == f"lfx-server {__version__}"


def test_no_command_prints_help(capsys: pytest.CaptureFixture[str]) -> None:
    main([])
    assert "usage: lfx-server" in capsys.readouterr().out


class TestQueryCommand:
    def test_prints_rows_as_json(
        self,
        monkeypatch: pytest.MonkeyPatch,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        seen: dict[str, Any] = {}

        async def _fake(
            settings: Settings,
            sql_text: str,
            binds: list[str],
            timeout: float | None,
        ) -> list[dict[str, Any]]:
            seen.update(sql=sql_text, binds=binds, timeout=timeout)
            return [{"PROJECT_ID": "p1", "NAME": "Envoy"}]

        monkeypatch.setattr(cli, "_execute_query", _fake)
        main(["query", "SELECT * FROM PROJECTS WHERE SLUG = ?", "-b", "envoy"])

        assert json.loads(capsys.readouterr().out) == [
            {"PROJECT_ID": "p1", "NAME": "Envoy"}
        ]
        assert seen["binds"] == ["envoy"]
        assert seen["timeout"] is None

    def test_write_statement_rejected(
        self, capsys: pytest.CaptureFixture[str]
    ) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main(["query", "DELETE FROM PROJECTS"])
        assert exc_info.value.code == 1
        assert "READ_ONLY_VIOLATION" in capsys.readouterr().err

    def test_missing_credentials(
        self, capsys: pytest.CaptureFixture[str]
    ) -> None:
        with pytest.raises(SystemExit):
            main(["query", "SELECT 1"])
        assert "CONFIGURATION_ERROR" in capsys.readouterr().err

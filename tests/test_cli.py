from __future__ import annotations

import json
from pathlib import Path

from typer.testing import CliRunner

from helpers import StubLedger, build_page, split
from permaserve import cli
from permaserve.services import ErrorJournal
from permaserve.settings import Settings

runner = CliRunner()


def test_config_json_flag(tmp_path, monkeypatch):
    data_dir = tmp_path / "permaserve-data"
    monkeypatch.setenv("PERMASERVE_DATA_DIR", str(data_dir))
    monkeypatch.setenv("PERMASERVE_NODE_RANGE_LIMIT", "64")
    monkeypatch.setenv("PERMASERVE_LOG_LEVEL", "DEBUG")

    result = runner.invoke(cli.app, ["config", "--json"])

    assert result.exit_code == 0
    payload = json.loads(result.stdout.strip())
    assert Path(payload["data_dir"]) == data_dir
    assert payload["node_range_limit"] == 64
    assert payload["log_level"] == "DEBUG"
    assert (data_dir / "nodes").is_dir()
    assert (data_dir / "pages").is_dir()


def test_journal_prints_recorded_errors(tmp_path, monkeypatch):
    monkeypatch.setenv("PERMASERVE_DATA_DIR", str(tmp_path))

    empty = runner.invoke(cli.app, ["journal", "demo"])
    assert empty.exit_code == 0
    assert "No errors recorded for demo" in empty.stdout

    ErrorJournal(Settings(data_dir=tmp_path)).append("demo", "extract: truncated header")
    result = runner.invoke(cli.app, ["journal", "demo"])
    assert result.exit_code == 0
    assert "extract: truncated header" in result.stdout


def test_fetch_waits_until_page_is_assembled(tmp_path, monkeypatch):
    monkeypatch.setenv("PERMASERVE_DATA_DIR", str(tmp_path))
    ledger = StubLedger()
    ledger.descriptor = {"published": 1, "top": 2}
    ledger.chunks = split(build_page({"a.txt": b"cli"}), 2)
    monkeypatch.setattr(cli, "AntelopeLedger", lambda client, settings: ledger)

    result = runner.invoke(cli.app, ["fetch", "demo", "--wait", "--poll-interval", "0"])

    assert result.exit_code == 0, result.stdout
    assert "Assembled" in result.stdout
    assert (tmp_path / "pages" / "demo" / "a.txt").read_bytes() == b"cli"


def test_fetch_rejects_invalid_names(tmp_path, monkeypatch):
    monkeypatch.setenv("PERMASERVE_DATA_DIR", str(tmp_path))
    result = runner.invoke(cli.app, ["fetch", "thisnameistoolong"])
    assert result.exit_code == 1
    assert "Invalid page name" in result.stdout

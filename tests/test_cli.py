"""Tests for Typer CLI entrypoints."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import duckdb
import orjson
import pytest
from typer.testing import CliRunner

from agent_usage_dashboard.cli import TYPER_APP


@pytest.fixture(autouse=True)
def _isolated_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("OPENCLAW_HOME", "CODEX_HOME", "AGENT_USAGE_DASHBOARD_DB", "SESSION_RETENTION_DAYS"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "xdg"))
    monkeypatch.setenv("COLUMNS", "200")


def test_ingest_command_ingests_openclaw_and_codex_logs(tmp_path: Path) -> None:
    """CLI ingest should process both runtimes and print key=value counters."""
    openclaw_home, codex_home = _write_fixture_homes(tmp_path)
    database_path = tmp_path / "data" / "dashboard.duckdb"

    runner = CliRunner()
    result = runner.invoke(
        TYPER_APP,
        [
            "ingest",
            "--database-path",
            str(database_path),
            "--openclaw-home",
            str(openclaw_home),
            "--codex-home",
            str(codex_home),
        ],
    )

    assert result.exit_code == 0, result.output
    assert "files_scanned=2" in result.stdout
    assert "files_ingested=2" in result.stdout
    assert "sessions_upserted=2" in result.stdout
    assert "registry_records_upserted=1" in result.stdout

    connection = duckdb.connect(str(database_path))
    try:
        rows = connection.execute("SELECT source, session_id FROM session_fact ORDER BY source").fetchall()
    finally:
        connection.close()
    assert rows == [("codex", "codex-1"), ("openclaw", "sess-1")]


def test_ingest_command_reads_defaults_from_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    openclaw_home, codex_home = _write_fixture_homes(tmp_path)
    database_path = tmp_path / "env" / "dashboard.duckdb"
    monkeypatch.setenv("OPENCLAW_HOME", str(openclaw_home))
    monkeypatch.setenv("CODEX_HOME", str(codex_home))
    monkeypatch.setenv("AGENT_USAGE_DASHBOARD_DB", str(database_path))

    result = CliRunner().invoke(TYPER_APP, ["ingest"])

    assert result.exit_code == 0, result.output
    assert "files_ingested=2" in result.stdout
    assert database_path.exists()


def test_ingest_command_rejects_invalid_retention_setting(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SESSION_RETENTION_DAYS", "ninety")

    result = CliRunner().invoke(TYPER_APP, ["ingest", "--database-path", str(tmp_path / "dashboard.duckdb")])

    assert result.exit_code == 2


def test_ingest_command_exits_nonzero_when_store_cannot_be_opened(tmp_path: Path) -> None:
    """A storage fault is fatal to the pass."""
    openclaw_home, codex_home = _write_fixture_homes(tmp_path)

    result = CliRunner().invoke(
        TYPER_APP,
        [
            "ingest",
            "--database-path",
            str(tmp_path),
            "--openclaw-home",
            str(openclaw_home),
            "--codex-home",
            str(codex_home),
        ],
    )

    assert result.exit_code == 1


def test_stats_command_ingests_and_prints_dashboard(tmp_path: Path) -> None:
    openclaw_home, codex_home = _write_fixture_homes(tmp_path)
    database_path = tmp_path / "dashboard.duckdb"

    result = CliRunner().invoke(
        TYPER_APP,
        [
            "stats",
            "--database-path",
            str(database_path),
            "--openclaw-home",
            str(openclaw_home),
            "--codex-home",
            str(codex_home),
            "--top-models",
            "1",
        ],
    )

    assert result.exit_code == 0, result.output
    assert "Overview" in result.stdout
    assert "Daily Token Trend" in result.stdout
    assert "claude-sonnet" in result.stdout
    assert "Recent Sessions" in result.stdout
    assert "Daily bucket coverage:" in result.stdout
    assert "Configured Models" in result.stdout
    assert "anthropic/claude-sonnet" in result.stdout
    assert "Plugins" in result.stdout
    assert "sk-***jkl" in result.stdout
    assert "abcdefghijkl" not in result.stdout


def test_stats_command_without_ingest_requires_existing_database(tmp_path: Path) -> None:
    result = CliRunner().invoke(
        TYPER_APP,
        ["stats", "--no-ingest", "--database-path", str(tmp_path / "missing.duckdb")],
    )

    assert result.exit_code == 2


def _write_fixture_homes(root: Path) -> tuple[Path, Path]:
    """Create one OpenClaw session (with registry entry) and one Codex rollout, both recent."""
    recent = datetime.now(UTC) - timedelta(hours=2)
    openclaw_home = root / "openclaw"
    sessions_dir = openclaw_home / "agents" / "main" / "sessions"
    sessions_dir.mkdir(parents=True)
    (openclaw_home / "openclaw.json").write_bytes(
        orjson.dumps(
            {
                "agents": {
                    "defaults": {"model": {"primary": "anthropic/claude-sonnet"}},
                    "list": [{"id": "main"}],
                },
                "plugins": {"entries": {"voice-call": {"enabled": True, "apiKey": "sk-live-abcdefghijkl"}}},
            }
        )
    )
    (sessions_dir / "sessions.json").write_bytes(
        orjson.dumps(
            {
                "agent:main:main": {
                    "sessionId": "sess-1",
                    "updatedAt": int(recent.timestamp() * 1000),
                    "model": "claude-sonnet",
                    "totalTokens": 900,
                }
            }
        )
    )
    _write_jsonl(
        sessions_dir / "sess-1.jsonl",
        [
            {"type": "session", "id": "sess-1", "timestamp": recent.isoformat()},
            {
                "type": "message",
                "timestamp": recent.isoformat(),
                "message": {"role": "user", "content": [{"type": "text", "text": "Check the nightly build"}]},
            },
            {
                "type": "message",
                "timestamp": recent.isoformat(),
                "message": {"role": "assistant", "model": "claude-sonnet", "usage": {"input": 600, "output": 300}},
            },
        ],
    )

    codex_home = root / "codex"
    rollout = codex_home / "sessions" / "2026" / "02" / "18" / "rollout-1.jsonl"
    rollout.parent.mkdir(parents=True)
    _write_jsonl(
        rollout,
        [
            {"type": "session_meta", "timestamp": recent.isoformat(), "payload": {"id": "codex-1"}},
            {"type": "turn_context", "timestamp": recent.isoformat(), "payload": {"model": "gpt-5-codex"}},
            {
                "type": "event_msg",
                "timestamp": recent.isoformat(),
                "payload": {
                    "type": "token_count",
                    "info": {"total_token_usage": {"input_tokens": 80, "output_tokens": 20, "total_tokens": 100}},
                },
            },
        ],
    )
    return openclaw_home, codex_home


def _write_jsonl(path: Path, rows: list[dict[str, Any]]) -> None:
    with path.open("wb") as handle:
        for row in rows:
            handle.write(orjson.dumps(row))
            handle.write(b"\n")

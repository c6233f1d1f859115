"""Integration tests for the DuckDB ingestion repository."""

from __future__ import annotations

from datetime import UTC, date, datetime, timedelta
from pathlib import Path

import duckdb
import pytest

from agent_usage_dashboard.ingestion.errors import StorageError
from agent_usage_dashboard.ingestion.repository import IngestionRepository
from agent_usage_dashboard.ingestion.schemas import UNKNOWN_MODEL, SessionRecord, Source


def test_ensure_schema_creates_store_tables(tmp_path: Path) -> None:
    database_path = tmp_path / "dashboard.duckdb"
    repository = IngestionRepository(database_path)
    repository.ensure_schema()
    repository.ensure_schema()
    repository.close()

    connection = duckdb.connect(str(database_path))
    try:
        table_names = {
            row[0]
            for row in connection.execute(
                "SELECT table_name FROM information_schema.tables WHERE table_schema = 'main'"
            ).fetchall()
        }
        index_names = {
            row[0]
            for row in connection.execute(
                "SELECT index_name FROM duckdb_indexes() WHERE table_name = 'token_daily'"
            ).fetchall()
        }
    finally:
        connection.close()

    assert {"session_rollup", "session_fact", "token_daily", "ingest_file"} <= table_names
    assert index_names == {"token_daily_day_idx"}


def test_repository_raises_storage_error_when_store_cannot_be_opened(tmp_path: Path) -> None:
    with pytest.raises(StorageError):
        IngestionRepository(tmp_path / "missing-dir" / "dashboard.duckdb")


def test_upsert_session_skips_noise_and_inactive_records(tmp_path: Path) -> None:
    database_path = tmp_path / "dashboard.duckdb"
    repository = IngestionRepository(database_path)
    repository.ensure_schema()

    assert not repository.upsert_session(_record("noise", model=UNKNOWN_MODEL, input_tokens=0, output_tokens=0))
    assert not repository.upsert_session(_record("idle", model="gpt-5", input_tokens=0, output_tokens=0))
    assert not repository.upsert_session(_record("", model="gpt-5"))
    assert repository.upsert_session(_record("active", model=UNKNOWN_MODEL))
    repository.close()

    connection = duckdb.connect(str(database_path))
    try:
        fact_ids = connection.execute("SELECT session_id FROM session_fact").fetchall()
        rollup_ids = connection.execute("SELECT session_id FROM session_rollup").fetchall()
    finally:
        connection.close()

    assert fact_ids == [("active",)]
    assert rollup_ids == [("active",)]


def test_upsert_session_is_idempotent_and_preserves_captured_text(tmp_path: Path) -> None:
    """A later registry-only update must not blank out label, query or provenance."""
    database_path = tmp_path / "dashboard.duckdb"
    repository = IngestionRepository(database_path)
    repository.ensure_schema()

    first = _record("sess-1", label="stop", input_query="Summarize the logs", source_path="/logs/sess-1.jsonl")
    assert repository.upsert_session(first)
    assert repository.upsert_session(first)

    update = _record(
        "sess-1",
        model="claude-opus",
        input_tokens=40,
        output_tokens=20,
        total_tokens=0,
        label=None,
        input_query=None,
        source_path=None,
    )
    assert repository.upsert_session(update)
    repository.close()

    connection = duckdb.connect(str(database_path))
    try:
        fact_rows = connection.execute(
            """
            SELECT label, model, input_tokens, output_tokens, total_tokens, input_query, source_path
            FROM session_fact
            """
        ).fetchall()
        rollup_rows = connection.execute(
            "SELECT model, input_tokens, output_tokens, total_tokens FROM session_rollup"
        ).fetchall()
    finally:
        connection.close()

    assert fact_rows == [("stop", "claude-opus", 40, 20, 60, "Summarize the logs", "/logs/sess-1.jsonl")]
    assert rollup_rows == [("claude-opus", 40, 20, 60)]


def test_get_session_updated_at_reads_stored_fact_time(tmp_path: Path) -> None:
    repository = IngestionRepository(tmp_path / "dashboard.duckdb")
    repository.ensure_schema()
    stored_at = datetime(2026, 2, 18, 5, 0, 0, 250000, tzinfo=UTC)
    assert repository.upsert_session(_record("sess-1", updated_at=stored_at))

    assert repository.get_session_updated_at(Source.OPENCLAW, "sess-1") == stored_at
    assert repository.get_session_updated_at(Source.CODEX, "sess-1") is None
    repository.close()


def test_prune_removes_inactive_and_expired_rows_from_session_tables(tmp_path: Path) -> None:
    database_path = tmp_path / "dashboard.duckdb"
    repository = IngestionRepository(database_path)
    repository.ensure_schema()
    now = datetime(2026, 5, 1, tzinfo=UTC)

    repository.upsert_session(_record("fresh", updated_at=now - timedelta(days=1)))
    repository.upsert_session(_record("expired", updated_at=now - timedelta(days=120)))
    repository.close()

    connection = duckdb.connect(str(database_path))
    try:
        for table in ("session_fact", "session_rollup"):
            _ = connection.execute(
                f"""
                UPDATE {table}
                SET input_tokens = 0, output_tokens = 0, total_tokens = 0
                WHERE session_id = 'fresh'
                """
            )
    finally:
        connection.close()

    repository = IngestionRepository(database_path)
    deleted = repository.prune(now - timedelta(days=90))
    repository.close()

    assert deleted == 4
    connection = duckdb.connect(str(database_path))
    try:
        assert connection.execute("SELECT COUNT(*) FROM session_fact").fetchone()[0] == 0
        assert connection.execute("SELECT COUNT(*) FROM session_rollup").fetchone()[0] == 0
    finally:
        connection.close()


def test_rebuild_daily_buckets_groups_by_utc_day_source_and_model(tmp_path: Path) -> None:
    """Bucket sums equal the sums of positive-total rollup rows sharing a key."""
    database_path = tmp_path / "dashboard.duckdb"
    repository = IngestionRepository(database_path)
    repository.ensure_schema()
    day_one = datetime(2026, 2, 17, 23, 30, tzinfo=UTC)
    day_two = datetime(2026, 2, 18, 1, 0, tzinfo=UTC)

    repository.upsert_session(_record("a", model="gpt-5", updated_at=day_one, input_tokens=10, output_tokens=5))
    repository.upsert_session(_record("b", model="gpt-5", updated_at=day_one, input_tokens=20, output_tokens=5))
    repository.upsert_session(_record("c", model="o3", updated_at=day_one, input_tokens=1, output_tokens=1))
    repository.upsert_session(
        _record("d", model="gpt-5", updated_at=day_two, input_tokens=3, output_tokens=4, source=Source.CODEX)
    )
    rebuilt = repository.rebuild_daily_buckets()
    assert repository.rebuild_daily_buckets() == rebuilt
    repository.close()

    assert rebuilt == 3
    connection = duckdb.connect(str(database_path))
    try:
        rows = connection.execute(
            """
            SELECT day, source, model, input_tokens, output_tokens, total_tokens, session_count
            FROM token_daily
            ORDER BY day, source, model
            """
        ).fetchall()
    finally:
        connection.close()

    assert rows == [
        (date(2026, 2, 17), "openclaw", "gpt-5", 30, 10, 40, 2),
        (date(2026, 2, 17), "openclaw", "o3", 1, 1, 2, 1),
        (date(2026, 2, 18), "codex", "gpt-5", 3, 4, 7, 1),
    ]


def test_rebuild_daily_buckets_keeps_days_before_cutoff(tmp_path: Path) -> None:
    """Buckets older than keep_before survive even after their sessions are pruned."""
    database_path = tmp_path / "dashboard.duckdb"
    repository = IngestionRepository(database_path)
    repository.ensure_schema()
    old_day = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)
    recent_day = datetime(2026, 4, 20, 12, 0, tzinfo=UTC)

    repository.upsert_session(_record("old", updated_at=old_day))
    repository.upsert_session(_record("recent", updated_at=recent_day))
    repository.rebuild_daily_buckets()

    repository.prune(datetime(2026, 2, 1, tzinfo=UTC))
    rebuilt = repository.rebuild_daily_buckets(keep_before=date(2026, 2, 2))
    repository.close()

    assert rebuilt == 1
    connection = duckdb.connect(str(database_path))
    try:
        days = connection.execute("SELECT day FROM token_daily ORDER BY day").fetchall()
    finally:
        connection.close()

    assert days == [(date(2026, 1, 1),), (date(2026, 4, 20),)]


def test_transaction_rolls_back_on_error(tmp_path: Path) -> None:
    database_path = tmp_path / "dashboard.duckdb"
    repository = IngestionRepository(database_path)
    repository.ensure_schema()

    with pytest.raises(RuntimeError):
        with repository.transaction():
            repository.upsert_session(_record("rolled-back"))
            raise RuntimeError("boom")
    repository.close()

    connection = duckdb.connect(str(database_path))
    try:
        assert connection.execute("SELECT COUNT(*) FROM session_fact").fetchone()[0] == 0
    finally:
        connection.close()


def _record(
    session_id: str,
    model: str = "claude-sonnet",
    updated_at: datetime | None = None,
    input_tokens: int = 100,
    output_tokens: int = 50,
    total_tokens: int | None = None,
    label: str | None = "stop",
    input_query: str | None = None,
    source_path: str | None = None,
    source: Source = Source.OPENCLAW,
) -> SessionRecord:
    return SessionRecord(
        source=source,
        session_id=session_id,
        agent_id="main" if source == Source.OPENCLAW else "codex",
        label=label,
        model=model,
        updated_at=updated_at or datetime(2026, 2, 18, 5, 0, tzinfo=UTC),
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        total_tokens=input_tokens + output_tokens if total_tokens is None else total_tokens,
        input_query=input_query,
        source_path=source_path,
    )

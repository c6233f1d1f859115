"""DuckDB repository owning the session, rollup and ingest-state tables."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, date, datetime
from pathlib import Path

import duckdb

from ..database import parse_db_timestamp
from .errors import StorageError
from .query_text import normalize_query_text
from .schemas import IngestFileState, SessionRecord, Source, normalize_model_name

LOGGER = logging.getLogger(__name__)

SESSION_TABLES: tuple[str, ...] = ("session_fact", "session_rollup")

_DAY_EXPRESSION = "CAST(timezone('UTC', updated_at) AS DATE)"
_NO_TOKEN_ACTIVITY = (
    "COALESCE(total_tokens, 0) <= 0 AND COALESCE(input_tokens, 0) <= 0 AND COALESCE(output_tokens, 0) <= 0"
)


class IngestionRepository:
    """DuckDB-backed store for session facts, rollups, daily buckets and file state."""

    def __init__(self, database_path: Path) -> None:
        self._database_path = database_path
        try:
            self._connection = duckdb.connect(str(database_path))
        except duckdb.Error as exc:
            raise StorageError(f"Failed to open DuckDB store at {database_path}: {exc}") from exc

    def close(self) -> None:
        """Close the underlying DuckDB connection."""
        self._connection.close()

    def ensure_schema(self) -> None:
        """Create store tables when missing."""
        try:
            self._create_tables()
        except duckdb.Error as exc:
            raise StorageError(f"Failed to create schema in {self._database_path}: {exc}") from exc

    def _create_tables(self) -> None:
        _ = self._connection.execute(
            """
CREATE TABLE IF NOT EXISTS session_rollup (
    source VARCHAR NOT NULL,
    session_id VARCHAR NOT NULL,
    agent_id VARCHAR,
    model VARCHAR NOT NULL,
    updated_at TIMESTAMPTZ NOT NULL,
    input_tokens BIGINT NOT NULL DEFAULT 0,
    output_tokens BIGINT NOT NULL DEFAULT 0,
    total_tokens BIGINT NOT NULL DEFAULT 0,
    PRIMARY KEY (source, session_id)
)
            """
        )
        _ = self._connection.execute(
            """
CREATE TABLE IF NOT EXISTS session_fact (
    source VARCHAR NOT NULL,
    session_id VARCHAR NOT NULL,
    agent_id VARCHAR,
    label VARCHAR,
    model VARCHAR NOT NULL,
    updated_at TIMESTAMPTZ NOT NULL,
    input_tokens BIGINT NOT NULL DEFAULT 0,
    output_tokens BIGINT NOT NULL DEFAULT 0,
    total_tokens BIGINT NOT NULL DEFAULT 0,
    input_query VARCHAR,
    source_path VARCHAR,
    PRIMARY KEY (source, session_id)
)
            """
        )
        # Derived table: rebuilt wholesale, so it carries no key constraint.
        _ = self._connection.execute(
            """
CREATE TABLE IF NOT EXISTS token_daily (
    day DATE NOT NULL,
    source VARCHAR NOT NULL,
    model VARCHAR NOT NULL,
    input_tokens BIGINT NOT NULL DEFAULT 0,
    output_tokens BIGINT NOT NULL DEFAULT 0,
    total_tokens BIGINT NOT NULL DEFAULT 0,
    session_count BIGINT NOT NULL DEFAULT 0
)
            """
        )
        # DuckDB rejects ON CONFLICT updates to indexed columns, so updated_at on the
        # session tables stays unindexed.
        _ = self._connection.execute("CREATE INDEX IF NOT EXISTS token_daily_day_idx ON token_daily (day)")
        _ = self._connection.execute(
            """
CREATE TABLE IF NOT EXISTS ingest_file (
    source VARCHAR NOT NULL,
    file_path VARCHAR NOT NULL,
    file_mtime TIMESTAMPTZ NOT NULL,
    file_size_bytes BIGINT NOT NULL,
    ingested_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    PRIMARY KEY (source, file_path)
)
            """
        )

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Open a DB transaction scope."""
        _ = self._connection.execute("BEGIN TRANSACTION")
        try:
            yield
        except Exception:
            _ = self._connection.execute("ROLLBACK")
            raise
        else:
            _ = self._connection.execute("COMMIT")

    def get_file_state(self, source: Source, file_path: str) -> IngestFileState | None:
        """Fetch ingestion file bookkeeping row by (source, file path)."""
        row = self._connection.execute(
            """
SELECT file_size_bytes, CAST(file_mtime AS VARCHAR), CAST(ingested_at AS VARCHAR)
FROM ingest_file
WHERE source = ? AND file_path = ?
            """,
            [str(source), file_path],
        ).fetchone()
        if row is None:
            return None
        file_mtime = parse_db_timestamp(row[1])
        assert file_mtime is not None
        return IngestFileState(
            source=source,
            file_path=file_path,
            file_size_bytes=int(row[0]),
            file_mtime=file_mtime,
            ingested_at=parse_db_timestamp(row[2]),
        )

    def upsert_file_state(self, file_state: IngestFileState) -> None:
        """Insert or update file ingestion bookkeeping row."""
        _ = self._connection.execute(
            """
INSERT INTO ingest_file (source, file_path, file_mtime, file_size_bytes, ingested_at)
VALUES (?, ?, ?, ?, ?)
ON CONFLICT (source, file_path)
DO UPDATE SET
    file_mtime = EXCLUDED.file_mtime,
    file_size_bytes = EXCLUDED.file_size_bytes,
    ingested_at = EXCLUDED.ingested_at
            """,
            [
                str(file_state.source),
                file_state.file_path,
                file_state.file_mtime,
                file_state.file_size_bytes,
                file_state.ingested_at or datetime.now(UTC),
            ],
        )

    def upsert_session(self, record: SessionRecord) -> bool:
        """Upsert one session into rollup and fact tables.

        Records without an id, without token activity, or classified as noise
        are skipped and ``False`` is returned. The fact row keeps its stored
        label, input query and source path when the incoming value is empty.
        """
        if not record.session_id or not record.has_token_activity or record.is_noise:
            return False

        model = normalize_model_name(record.model)
        total_tokens = record.total_tokens or record.input_tokens + record.output_tokens
        input_query = normalize_query_text(record.input_query) if record.input_query else None

        _ = self._connection.execute(
            """
INSERT INTO session_rollup (
    source, session_id, agent_id, model, updated_at,
    input_tokens, output_tokens, total_tokens
)
VALUES (?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT (source, session_id)
DO UPDATE SET
    agent_id = EXCLUDED.agent_id,
    model = EXCLUDED.model,
    updated_at = EXCLUDED.updated_at,
    input_tokens = EXCLUDED.input_tokens,
    output_tokens = EXCLUDED.output_tokens,
    total_tokens = EXCLUDED.total_tokens
            """,
            [
                str(record.source),
                record.session_id,
                record.agent_id,
                model,
                record.updated_at,
                record.input_tokens,
                record.output_tokens,
                total_tokens,
            ],
        )
        _ = self._connection.execute(
            """
INSERT INTO session_fact (
    source, session_id, agent_id, label, model, updated_at,
    input_tokens, output_tokens, total_tokens, input_query, source_path
)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT (source, session_id)
DO UPDATE SET
    agent_id = EXCLUDED.agent_id,
    label = COALESCE(EXCLUDED.label, label),
    model = EXCLUDED.model,
    updated_at = EXCLUDED.updated_at,
    input_tokens = EXCLUDED.input_tokens,
    output_tokens = EXCLUDED.output_tokens,
    total_tokens = EXCLUDED.total_tokens,
    input_query = CASE
        WHEN EXCLUDED.input_query IS NOT NULL AND LENGTH(EXCLUDED.input_query) > 0
            THEN EXCLUDED.input_query
        ELSE input_query
    END,
    source_path = COALESCE(EXCLUDED.source_path, source_path)
            """,
            [
                str(record.source),
                record.session_id,
                record.agent_id,
                record.label or None,
                model,
                record.updated_at,
                record.input_tokens,
                record.output_tokens,
                total_tokens,
                input_query,
                record.source_path or None,
            ],
        )
        return True

    def get_session_updated_at(self, source: Source, session_id: str) -> datetime | None:
        """Return the stored ``updated_at`` of one session fact, if any."""
        row = self._connection.execute(
            """
SELECT CAST(updated_at AS VARCHAR)
FROM session_fact
WHERE source = ? AND session_id = ?
            """,
            [str(source), session_id],
        ).fetchone()
        if row is None:
            return None
        return parse_db_timestamp(row[0])

    def prune(self, cutoff: datetime) -> int:
        """Delete zero-activity rows, then rows older than ``cutoff``, from session tables.

        token_daily is never pruned. Returns the number of deleted rows.
        """
        deleted = 0
        for table in SESSION_TABLES:
            deleted += self._delete_where(table, _NO_TOKEN_ACTIVITY, [])
        for table in SESSION_TABLES:
            deleted += self._delete_where(table, "updated_at < ?", [cutoff])
        if deleted:
            LOGGER.info("Pruned %d session rows older than %s or without token activity.", deleted, cutoff)
        return deleted

    def rebuild_daily_buckets(self, keep_before: date | None = None) -> int:
        """Regenerate token_daily from session_rollup and return the rebuilt bucket count.

        With ``keep_before`` set, buckets for earlier days are left untouched
        and only days on or after it are truncated and recomputed.
        """
        day_filter = ""
        parameters: list[object] = []
        if keep_before is not None:
            day_filter = f" AND {_DAY_EXPRESSION} >= ?"
            parameters = [keep_before]
            _ = self._connection.execute("DELETE FROM token_daily WHERE day >= ?", parameters)
        else:
            _ = self._connection.execute("DELETE FROM token_daily")

        _ = self._connection.execute(
            f"""
INSERT INTO token_daily (
    day, source, model, input_tokens, output_tokens, total_tokens, session_count
)
SELECT
    {_DAY_EXPRESSION} AS day,
    source,
    COALESCE(NULLIF(TRIM(model), ''), 'Unknown') AS model,
    SUM(input_tokens) AS input_tokens,
    SUM(output_tokens) AS output_tokens,
    SUM(total_tokens) AS total_tokens,
    COUNT(*) AS session_count
FROM session_rollup
WHERE total_tokens > 0{day_filter}
GROUP BY 1, 2, 3
            """,
            parameters,
        )

        count_filter = " WHERE day >= ?" if keep_before is not None else ""
        row = self._connection.execute(f"SELECT COUNT(*) FROM token_daily{count_filter}", parameters).fetchone()
        return int(row[0]) if row is not None else 0

    def _delete_where(self, table: str, condition: str, parameters: list[object]) -> int:
        row = self._connection.execute(f"SELECT COUNT(*) FROM {table} WHERE {condition}", parameters).fetchone()
        matched = int(row[0]) if row is not None else 0
        if matched:
            _ = self._connection.execute(f"DELETE FROM {table} WHERE {condition}", parameters)
        return matched

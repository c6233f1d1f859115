"""DuckDB repository for dashboard statistics queries."""

from __future__ import annotations

from datetime import date
from pathlib import Path

import duckdb

from ..database import parse_db_timestamp
from ..ingestion.schemas import DailyTokenBucket
from .schemas import SessionFact, TokenCoverage


class StatsRepositoryError(RuntimeError):
    """Raised when stats queries cannot be executed."""


class StatsRepository:
    """Read-only repository over session_fact and token_daily."""

    def __init__(self, database_path: Path) -> None:
        try:
            self._connection = duckdb.connect(str(database_path), read_only=True)
        except duckdb.Error as exc:
            raise StatsRepositoryError(f"Failed to open DuckDB store at {database_path}.") from exc

    def close(self) -> None:
        """Close the underlying DuckDB connection."""
        self._connection.close()

    def fetch_session_facts(self) -> list[SessionFact]:
        """Load session facts with token activity, oldest first."""
        try:
            rows = self._connection.execute(
                """
SELECT
    source,
    session_id,
    agent_id,
    label,
    model,
    CAST(updated_at AS VARCHAR) AS updated_at,
    input_tokens,
    output_tokens,
    total_tokens,
    input_query,
    source_path
FROM session_fact
WHERE
    COALESCE(total_tokens, 0) > 0 OR
    COALESCE(input_tokens, 0) > 0 OR
    COALESCE(output_tokens, 0) > 0
ORDER BY session_fact.updated_at ASC, session_fact.source, session_fact.session_id
                """
            ).fetchall()
        except duckdb.Error as exc:
            raise StatsRepositoryError(
                "Failed to query session_fact. Run `agent-usage-dashboard ingest` first."
            ) from exc

        facts: list[SessionFact] = []
        for row in rows:
            updated_at = parse_db_timestamp(row[5])
            assert updated_at is not None
            facts.append(
                SessionFact(
                    source=str(row[0]),
                    session_id=str(row[1]),
                    agent_id=row[2],
                    label=row[3],
                    model=str(row[4]),
                    updated_at=updated_at,
                    input_tokens=int(row[6] or 0),
                    output_tokens=int(row[7] or 0),
                    total_tokens=int(row[8] or 0),
                    input_query=row[9],
                    source_path=row[10],
                )
            )
        return facts

    def fetch_token_coverage(self) -> TokenCoverage:
        """Return the oldest/latest bucket day and bucket count of token_daily."""
        try:
            row = self._connection.execute(
                "SELECT MIN(day), MAX(day), COUNT(*) FROM token_daily"
            ).fetchone()
        except duckdb.Error as exc:
            raise StatsRepositoryError("Failed to query token_daily.") from exc
        if row is None:
            return TokenCoverage(oldest_day=None, latest_day=None, bucket_count=0)
        return TokenCoverage(oldest_day=_as_date(row[0]), latest_day=_as_date(row[1]), bucket_count=int(row[2] or 0))

    def fetch_daily_buckets(self) -> list[DailyTokenBucket]:
        """Load all daily buckets ordered by day, source and model."""
        try:
            rows = self._connection.execute(
                """
SELECT day, source, model, input_tokens, output_tokens, total_tokens, session_count
FROM token_daily
ORDER BY day, source, model
                """
            ).fetchall()
        except duckdb.Error as exc:
            raise StatsRepositoryError("Failed to query token_daily.") from exc

        buckets: list[DailyTokenBucket] = []
        for row in rows:
            day = _as_date(row[0])
            assert day is not None
            buckets.append(
                DailyTokenBucket(
                    day=day,
                    source=str(row[1]),
                    model=str(row[2]),
                    input_tokens=int(row[3]),
                    output_tokens=int(row[4]),
                    total_tokens=int(row[5]),
                    session_count=int(row[6]),
                )
            )
        return buckets


def _as_date(value: object) -> date | None:
    if value is None:
        return None
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value))

"""Tests for dashboard aggregation."""

from __future__ import annotations

from datetime import UTC, date, datetime, timedelta
from pathlib import Path

from agent_usage_dashboard.ingestion.repository import IngestionRepository
from agent_usage_dashboard.ingestion.schemas import SessionRecord, Source
from agent_usage_dashboard.stats.repository import StatsRepository
from agent_usage_dashboard.stats.schemas import SessionFact
from agent_usage_dashboard.stats.service import StatsService, aggregate_usage, format_day_label


def test_aggregate_usage_computes_totals_trend_models_and_points() -> None:
    facts = [
        _fact("a", "claude-sonnet", datetime(2026, 2, 17, 23, 0, tzinfo=UTC), 100, 50),
        _fact("b", "gpt-5", datetime(2026, 2, 18, 1, 0, tzinfo=UTC), 300, 100),
        _fact("c", "claude-sonnet", datetime(2026, 2, 18, 2, 0, tzinfo=UTC), 10, 5, source="codex"),
        _fact("noise", "Unknown", datetime(2026, 2, 18, 3, 0, tzinfo=UTC), 0, 0),
    ]

    usage = aggregate_usage(facts)

    assert usage.totals.sessions == 3
    assert usage.totals.input_tokens == 410
    assert usage.totals.output_tokens == 155
    assert usage.totals.total_tokens == 565
    assert [(point.day, point.label, point.tokens) for point in usage.trend] == [
        (date(2026, 2, 17), "Feb 17", 150),
        (date(2026, 2, 18), "Feb 18", 415),
    ]
    assert [(share.model, share.tokens) for share in usage.models] == [("gpt-5", 400), ("claude-sonnet", 165)]
    assert [fact.session_id for fact in usage.recent] == ["c", "b", "a"]
    assert [point.session_id for point in usage.points] == ["a", "b", "c"]
    assert usage.points[1].input_query == "query b"


def test_aggregate_usage_bounds_trend_models_and_recent_lists() -> None:
    start = datetime(2026, 2, 1, 12, 0, tzinfo=UTC)
    facts = [
        _fact(f"s{index}", f"model-{index % 10}", start + timedelta(days=index), index + 1, 0) for index in range(20)
    ]

    usage = aggregate_usage(facts, trend_days=14, top_models=8, recent_limit=12)

    assert len(usage.trend) == 14
    assert usage.trend[0].day == date(2026, 2, 7)
    assert usage.trend[-1].day == date(2026, 2, 20)
    assert len(usage.models) == 8
    assert usage.models[0].model == "model-9"
    assert len(usage.recent) == 12
    assert usage.recent[0].session_id == "s19"
    assert len(usage.points) == 20


def test_aggregate_usage_breaks_model_ties_by_first_seen_order() -> None:
    moment = datetime(2026, 2, 18, tzinfo=UTC)
    facts = [_fact("a", "beta", moment, 10, 0), _fact("b", "alpha", moment, 10, 0), _fact("c", " ", moment, 10, 0)]

    usage = aggregate_usage(facts)

    assert [share.model for share in usage.models] == ["beta", "alpha", "Unknown"]


def test_aggregate_usage_of_no_facts_is_empty() -> None:
    usage = aggregate_usage([])

    assert usage.totals.sessions == 0
    assert usage.trend == []
    assert usage.models == []
    assert usage.recent == []
    assert usage.points == []


def test_format_day_label_has_no_zero_padding() -> None:
    assert format_day_label(date(2026, 3, 5)) == "Mar 5"


def test_stats_service_collects_views_and_coverage_from_store(tmp_path: Path) -> None:
    database_path = tmp_path / "dashboard.duckdb"
    repository = IngestionRepository(database_path)
    repository.ensure_schema()
    moments = {"x": datetime(2026, 2, 16, 8, tzinfo=UTC), "y": datetime(2026, 2, 18, 8, tzinfo=UTC)}
    for session_id, updated_at in moments.items():
        repository.upsert_session(
            SessionRecord(
                source=Source.OPENCLAW,
                session_id=session_id,
                agent_id="main",
                label=None,
                model="claude-sonnet",
                updated_at=updated_at,
                input_tokens=20,
                output_tokens=10,
                input_query="[Wed 2026-02-18 13:39 GMT+8] 定时任务 - 没错，继续处理",
            )
        )
    repository.rebuild_daily_buckets()
    repository.close()

    stats_repository = StatsRepository(database_path)
    try:
        usage = StatsService(stats_repository).collect()
    finally:
        stats_repository.close()

    assert usage.totals.sessions == 2
    assert usage.totals.total_tokens == 60
    assert [point.label for point in usage.trend] == ["Feb 16", "Feb 18"]
    assert usage.points[0].updated_at == datetime(2026, 2, 16, 8, tzinfo=UTC)
    assert usage.points[0].input_query == "没错，继续处理"
    assert usage.coverage is not None
    assert usage.coverage.oldest_day == date(2026, 2, 16)
    assert usage.coverage.latest_day == date(2026, 2, 18)
    assert usage.coverage.bucket_count == 2
    assert [bucket.total_tokens for bucket in usage.daily_buckets] == [30, 30]


def _fact(
    session_id: str,
    model: str,
    updated_at: datetime,
    input_tokens: int,
    output_tokens: int,
    source: str = "openclaw",
) -> SessionFact:
    return SessionFact(
        source=source,
        session_id=session_id,
        agent_id="main",
        label=None,
        model=model,
        updated_at=updated_at,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        total_tokens=input_tokens + output_tokens,
        input_query=f"query {session_id}",
        source_path=None,
    )

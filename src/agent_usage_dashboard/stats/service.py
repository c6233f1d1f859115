"""Aggregation service building dashboard views from persisted session facts."""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from dataclasses import replace
from datetime import UTC, date

from ..ingestion.query_text import normalize_query_text
from ..ingestion.schemas import normalize_model_name
from .repository import StatsRepository
from .schemas import DashboardUsage, ModelShare, SessionFact, SessionPoint, TrendPoint, UsageTotals

DEFAULT_TREND_DAYS = 14
DEFAULT_TOP_MODELS = 8
DEFAULT_RECENT_LIMIT = 12


class StatsService:
    """Collect dashboard usage views from the DuckDB store."""

    def __init__(
        self,
        repository: StatsRepository,
        trend_days: int = DEFAULT_TREND_DAYS,
        top_models: int = DEFAULT_TOP_MODELS,
        recent_limit: int = DEFAULT_RECENT_LIMIT,
    ) -> None:
        self._repository = repository
        self._trend_days = trend_days
        self._top_models = top_models
        self._recent_limit = recent_limit

    def collect(self) -> DashboardUsage:
        """Aggregate stored facts and attach token_daily coverage."""
        facts = [
            replace(fact, model=normalize_model_name(fact.model), input_query=normalize_query_text(fact.input_query))
            for fact in self._repository.fetch_session_facts()
        ]
        usage = aggregate_usage(
            facts,
            trend_days=self._trend_days,
            top_models=self._top_models,
            recent_limit=self._recent_limit,
        )
        return replace(
            usage,
            coverage=self._repository.fetch_token_coverage(),
            daily_buckets=self._repository.fetch_daily_buckets(),
        )


def aggregate_usage(
    facts: Iterable[SessionFact],
    trend_days: int = DEFAULT_TREND_DAYS,
    top_models: int = DEFAULT_TOP_MODELS,
    recent_limit: int = DEFAULT_RECENT_LIMIT,
) -> DashboardUsage:
    """Compute totals, daily trend, model ranking, recent sessions and session points.

    Facts without token activity are ignored.
    """
    totals = UsageTotals()
    daily_tokens: dict[date, int] = defaultdict(int)
    model_tokens: dict[str, int] = defaultdict(int)
    recent: list[SessionFact] = []
    points: list[SessionPoint] = []

    for fact in facts:
        # Zero-activity facts include every unknown-model noise row.
        if not _has_token_activity(fact):
            continue
        model = normalize_model_name(fact.model)

        totals.total_tokens += fact.total_tokens
        totals.input_tokens += fact.input_tokens
        totals.output_tokens += fact.output_tokens
        totals.sessions += 1
        daily_tokens[fact.updated_at.astimezone(UTC).date()] += fact.total_tokens
        model_tokens[model] += fact.total_tokens

        recent.append(replace(fact, model=model))
        points.append(
            SessionPoint(
                source=fact.source,
                session_id=fact.session_id,
                agent_id=fact.agent_id,
                model=model,
                updated_at=fact.updated_at,
                input_tokens=fact.input_tokens,
                output_tokens=fact.output_tokens,
                total_tokens=fact.total_tokens,
                input_query=fact.input_query or None,
            )
        )

    trend_keys = sorted(daily_tokens)[-trend_days:] if trend_days > 0 else []
    trend = [TrendPoint(day=day, label=format_day_label(day), tokens=daily_tokens[day]) for day in trend_keys]

    # sorted() is stable, so equal totals keep first-seen order.
    ranked_models = sorted(model_tokens.items(), key=lambda item: item[1], reverse=True)[:top_models]
    models = [ModelShare(model=model, tokens=tokens) for model, tokens in ranked_models]

    return DashboardUsage(
        totals=totals,
        trend=trend,
        models=models,
        recent=sorted(recent, key=lambda fact: fact.updated_at, reverse=True)[:recent_limit],
        points=sorted(points, key=lambda point: point.updated_at),
    )


def format_day_label(day: date) -> str:
    """Format a day like ``Feb 18``."""
    return f"{day:%b} {day.day}"


def _has_token_activity(fact: SessionFact) -> bool:
    return fact.total_tokens > 0 or fact.input_tokens > 0 or fact.output_tokens > 0

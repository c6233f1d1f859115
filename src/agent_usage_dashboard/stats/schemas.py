"""Typed schemas used by the dashboard stats pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Any

from ..ingestion.schemas import DailyTokenBucket


@dataclass(frozen=True)
class SessionFact:
    """One session_fact row loaded from DuckDB."""

    source: str
    session_id: str
    agent_id: str | None
    label: str | None
    model: str
    updated_at: datetime
    input_tokens: int
    output_tokens: int
    total_tokens: int
    input_query: str | None
    source_path: str | None


@dataclass(frozen=True)
class SessionPoint:
    """Per-session point used by time-windowed dashboard views."""

    source: str
    session_id: str
    agent_id: str | None
    model: str
    updated_at: datetime
    input_tokens: int
    output_tokens: int
    total_tokens: int
    input_query: str | None


@dataclass
class UsageTotals:
    """Running token and session totals."""

    total_tokens: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    sessions: int = 0


@dataclass(frozen=True)
class TrendPoint:
    """Total tokens for one UTC day."""

    day: date
    label: str
    tokens: int


@dataclass(frozen=True)
class ModelShare:
    """Total tokens attributed to one model."""

    model: str
    tokens: int


@dataclass(frozen=True)
class TokenCoverage:
    """Range of days covered by token_daily."""

    oldest_day: date | None
    latest_day: date | None
    bucket_count: int


@dataclass(frozen=True)
class DashboardUsage:
    """Dashboard-ready usage views computed from session facts."""

    totals: UsageTotals
    trend: list[TrendPoint]
    models: list[ModelShare]
    recent: list[SessionFact]
    points: list[SessionPoint]
    coverage: TokenCoverage | None = None
    daily_buckets: list[DailyTokenBucket] = field(default_factory=list)
    catalog: Catalog | None = None


@dataclass(frozen=True)
class ModelCard:
    """A model declared in the OpenClaw config, with registry token usage."""

    model_id: str
    alias: str
    role: str
    context_window: int | None = None
    max_tokens: int | None = None
    last_seen_tokens: int = 0


@dataclass(frozen=True)
class SkillCard:
    """A skill resolved by a session or found in an agent workspace."""

    name: str
    description: str
    source: str
    file_path: Path | None
    base_dir: Path | None
    disable_model_invocation: bool = False


@dataclass(frozen=True)
class PluginCard:
    """A configured plugin; ``config`` is already redacted."""

    name: str
    enabled: bool
    config: dict[str, Any]


@dataclass(frozen=True)
class Catalog:
    """Models, skills and plugins known to the OpenClaw installation."""

    models: list[ModelCard] = field(default_factory=list)
    skills: list[SkillCard] = field(default_factory=list)
    plugins: list[PluginCard] = field(default_factory=list)

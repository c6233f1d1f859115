"""Typed schemas used by the ingestion pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import StrEnum
from typing import Any

UNKNOWN_MODEL = "Unknown"

TOKEN_FIELDS: tuple[str, ...] = (
    "input_tokens",
    "output_tokens",
    "total_tokens",
)


class Source(StrEnum):
    """Agent runtime that produced a session log."""

    OPENCLAW = "openclaw"
    CODEX = "codex"


def normalize_model_name(model: Any) -> str:
    """Return a trimmed model name, or ``Unknown`` when empty."""
    value = str(model or "").strip()
    return value or UNKNOWN_MODEL


@dataclass(frozen=True)
class SessionRecord:
    """Canonical per-session record produced by a decoder or the registry."""

    source: Source
    session_id: str
    agent_id: str | None
    label: str | None
    model: str
    updated_at: datetime
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    input_query: str | None = None
    source_path: str | None = None

    @property
    def has_token_activity(self) -> bool:
        """Return True when any token counter is positive."""
        return self.input_tokens > 0 or self.output_tokens > 0 or self.total_tokens > 0

    @property
    def is_noise(self) -> bool:
        """Return True for zero-activity records with an unknown model."""
        return normalize_model_name(self.model) == UNKNOWN_MODEL and not self.has_token_activity


@dataclass(frozen=True)
class RegistryRecord:
    """One entry of an agent's ``sessions.json`` registry."""

    key: str
    agent_id: str
    session_id: str | None
    label: str | None
    model: str
    updated_at: datetime | None
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    skills_snapshot: Any = None
    source_path: str | None = None


@dataclass(frozen=True)
class IngestFileState:
    """File bookkeeping state persisted in ingest_file."""

    source: Source
    file_path: str
    file_size_bytes: int
    file_mtime: datetime
    ingested_at: datetime | None = None


@dataclass(frozen=True)
class DailyTokenBucket:
    """One derived row of token_daily."""

    day: date
    source: str
    model: str
    input_tokens: int
    output_tokens: int
    total_tokens: int
    session_count: int


@dataclass
class IngestionCounters:
    """Ingestion counters emitted by service.ingest()."""

    files_scanned: int = 0
    files_ingested: int = 0
    files_skipped_unchanged: int = 0
    files_without_record: int = 0
    sessions_upserted: int = 0
    sessions_skipped_inactive: int = 0
    registry_records_upserted: int = 0
    rows_pruned: int = 0
    daily_buckets_rebuilt: int = 0
    unreadable_files: list[str] = field(default_factory=list)

"""Shared database utilities for agent-usage-dashboard."""

from __future__ import annotations

import re
from datetime import UTC, datetime

_HOUR_ONLY_OFFSET_RE = re.compile(r"([+-]\d{2})$")


def parse_db_timestamp(value: str | None) -> datetime | None:
    """Parse DuckDB TIMESTAMPTZ string output into an aware UTC datetime."""
    if value is None:
        return None
    if not isinstance(value, str):
        raise TypeError(f"Expected timestamp string from DB, got {type(value).__name__}.")
    normalized = _HOUR_ONLY_OFFSET_RE.sub(r"\1:00", value.replace(" ", "T"))
    parsed = datetime.fromisoformat(normalized)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)

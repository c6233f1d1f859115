"""Environment-driven settings and default paths for agent-usage-dashboard."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

DEFAULT_RETENTION_DAYS = 90
DEFAULT_CACHE_TTL_MS = 5000


@dataclass(frozen=True)
class DashboardSettings:
    """Resolved runtime settings for one CLI invocation."""

    openclaw_home: Path
    codex_home: Path
    database_path: Path
    retention_days: int = DEFAULT_RETENTION_DAYS
    cache_ttl_ms: int = DEFAULT_CACHE_TTL_MS

    @property
    def openclaw_config_path(self) -> Path:
        return self.openclaw_home / "openclaw.json"

    @property
    def codex_sessions_root(self) -> Path:
        return self.codex_home / "sessions"


def get_default_database_path() -> Path:
    """Return the default DuckDB path following XDG data directory conventions."""
    xdg_data_home = os.environ.get("XDG_DATA_HOME")
    if xdg_data_home:
        base_data_dir = Path(xdg_data_home).expanduser()
    else:
        base_data_dir = Path("~/.local/share").expanduser()
    return base_data_dir / "agent-usage-dashboard" / "dashboard.duckdb"


def get_default_openclaw_home() -> Path:
    """Return the OpenClaw home directory (``$OPENCLAW_HOME`` or ``~/.openclaw``)."""
    return Path(os.environ.get("OPENCLAW_HOME") or "~/.openclaw").expanduser()


def get_default_codex_home() -> Path:
    """Return the Codex home directory (``$CODEX_HOME`` or ``~/.codex``)."""
    return Path(os.environ.get("CODEX_HOME") or "~/.codex").expanduser()


def load_settings() -> DashboardSettings:
    """Build settings from environment variables, falling back to defaults.

    Raises:
        ValueError: If a numeric environment variable is not a positive integer.
    """
    database_override = os.environ.get("AGENT_USAGE_DASHBOARD_DB")
    return DashboardSettings(
        openclaw_home=get_default_openclaw_home(),
        codex_home=get_default_codex_home(),
        database_path=Path(database_override).expanduser() if database_override else get_default_database_path(),
        retention_days=_read_positive_int("SESSION_RETENTION_DAYS", DEFAULT_RETENTION_DAYS),
        cache_ttl_ms=_read_positive_int("DASHBOARD_CACHE_TTL_MS", DEFAULT_CACHE_TTL_MS),
    )


def _read_positive_int(name: str, default: int) -> int:
    raw_value = os.environ.get(name)
    if raw_value is None or not raw_value.strip():
        return default
    try:
        value = int(raw_value)
    except ValueError as exc:
        raise ValueError(f"Invalid {name}={raw_value!r}: expected a positive integer.") from exc
    if value <= 0:
        raise ValueError(f"Invalid {name}={raw_value!r}: expected a positive integer.")
    return value

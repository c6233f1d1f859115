"""CLI entrypoints for the agent usage dashboard."""

from __future__ import annotations

import logging
import time
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import duckdb
import typer
from rich.console import Console

from .config import DashboardSettings, load_settings
from .ingestion.errors import StorageError
from .ingestion.registry import agent_ids_from_config, load_openclaw_config, load_registry, workspace_paths_from_config
from .ingestion.repository import IngestionRepository
from .ingestion.schemas import IngestionCounters, RegistryRecord
from .ingestion.service import IngestionService
from .stats.cache import CachedValue, refresh_if_stale
from .stats.catalog import build_catalog
from .stats.render import render_dashboard
from .stats.repository import StatsRepository, StatsRepositoryError
from .stats.schemas import DashboardUsage
from .stats.service import DEFAULT_RECENT_LIMIT, DEFAULT_TOP_MODELS, DEFAULT_TREND_DAYS, StatsService

LOGGER = logging.getLogger(__name__)

TYPER_APP = typer.Typer(help="Token usage dashboard for OpenClaw and Codex sessions.")


@TYPER_APP.callback()
def main() -> None:
    """Root CLI callback."""


@TYPER_APP.command("ingest")
def ingest_command(
    database_path: Path | None = typer.Option(
        None,
        "--database-path",
        "-d",
        help="DuckDB file path. Defaults to $AGENT_USAGE_DASHBOARD_DB or the XDG data directory.",
    ),
    openclaw_home: Path | None = typer.Option(
        None,
        "--openclaw-home",
        help="OpenClaw home directory. Defaults to $OPENCLAW_HOME or ~/.openclaw.",
    ),
    codex_home: Path | None = typer.Option(
        None,
        "--codex-home",
        help="Codex home directory. Defaults to $CODEX_HOME or ~/.codex.",
    ),
    retention_days: int | None = typer.Option(
        None,
        "--retention-days",
        min=1,
        help="Drop session rows older than this many days. Defaults to $SESSION_RETENTION_DAYS or 90.",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable info-level logging."),
) -> None:
    """Run one ingestion pass over OpenClaw and Codex session logs."""
    _configure_logging(verbose)
    settings = _resolve_settings(database_path, openclaw_home, codex_home, retention_days)
    _, agent_ids, registry_records = _load_openclaw_sources(settings)
    counters = _run_ingestion(settings, agent_ids, registry_records)
    _emit_summary(counters)


@TYPER_APP.command("stats")
def stats_command(
    database_path: Path | None = typer.Option(
        None,
        "--database-path",
        "-d",
        help="DuckDB file path. Defaults to $AGENT_USAGE_DASHBOARD_DB or the XDG data directory.",
    ),
    ingest: bool = typer.Option(
        True,
        "--ingest/--no-ingest",
        help="Run an ingestion pass before computing the dashboard.",
    ),
    openclaw_home: Path | None = typer.Option(
        None,
        "--openclaw-home",
        help="OpenClaw home directory (used with --ingest).",
    ),
    codex_home: Path | None = typer.Option(
        None,
        "--codex-home",
        help="Codex home directory (used with --ingest).",
    ),
    retention_days: int | None = typer.Option(
        None,
        "--retention-days",
        min=1,
        help="Retention window in days (used with --ingest).",
    ),
    trend_days: int = typer.Option(DEFAULT_TREND_DAYS, "--trend-days", min=1, help="Days shown in the trend."),
    top_models: int = typer.Option(DEFAULT_TOP_MODELS, "--top-models", min=1, help="Models shown in the ranking."),
    recent_limit: int = typer.Option(
        DEFAULT_RECENT_LIMIT, "--recent-limit", min=1, help="Sessions shown in the recent list."
    ),
    watch: bool = typer.Option(
        False,
        "--watch",
        help="Keep refreshing the dashboard until interrupted, reusing results within the cache TTL.",
    ),
    refresh_seconds: float = typer.Option(
        2.0,
        "--refresh-seconds",
        min=0.1,
        help="Redraw interval used with --watch.",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable info-level logging."),
) -> None:
    """Print totals, daily trend, model distribution and recent sessions."""
    _configure_logging(verbose)
    settings = _resolve_settings(database_path, openclaw_home, codex_home, retention_days)

    def build() -> DashboardUsage:
        if not ingest and not settings.database_path.exists():
            raise typer.BadParameter(f"Database file not found: {settings.database_path}")
        config, agent_ids, registry_records = _load_openclaw_sources(settings)
        if ingest:
            counters = _run_ingestion(settings, agent_ids, registry_records)
            if verbose:
                _emit_summary(counters)
        usage = _collect_dashboard(settings.database_path, trend_days, top_models, recent_limit)
        catalog = build_catalog(config, registry_records, workspace_paths_from_config(config))
        return replace(usage, catalog=catalog)

    console = Console()
    ttl = timedelta(milliseconds=settings.cache_ttl_ms)
    cached: CachedValue[DashboardUsage] | None = None
    while True:
        previous = cached
        cached = refresh_if_stale(cached, datetime.now(UTC), ttl, build)
        if cached is not previous:
            if watch:
                console.clear()
            render_dashboard(cached.value, console)
        if not watch:
            return
        try:
            time.sleep(refresh_seconds)
        except KeyboardInterrupt:
            return


def _resolve_settings(
    database_path: Path | None,
    openclaw_home: Path | None,
    codex_home: Path | None,
    retention_days: int | None,
) -> DashboardSettings:
    """Apply CLI overrides on top of environment settings."""
    try:
        settings = load_settings()
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc
    return DashboardSettings(
        openclaw_home=openclaw_home or settings.openclaw_home,
        codex_home=codex_home or settings.codex_home,
        database_path=database_path or settings.database_path,
        retention_days=retention_days or settings.retention_days,
        cache_ttl_ms=settings.cache_ttl_ms,
    )


def _load_openclaw_sources(
    settings: DashboardSettings,
) -> tuple[dict[str, Any], list[str], list[RegistryRecord]]:
    """Read the OpenClaw config, its agent ids and their session registries."""
    config = load_openclaw_config(settings.openclaw_config_path)
    agent_ids = agent_ids_from_config(config)
    return config, agent_ids, load_registry(settings.openclaw_home, agent_ids)


def _run_ingestion(
    settings: DashboardSettings,
    agent_ids: list[str],
    registry_records: list[RegistryRecord],
) -> IngestionCounters:
    """Run one ingestion pass and return operation counters."""
    settings.database_path.parent.mkdir(parents=True, exist_ok=True)

    LOGGER.info("Start ingesting session logs into %s.", settings.database_path)
    try:
        repository = IngestionRepository(settings.database_path)
        try:
            service = IngestionService(
                repository=repository,
                openclaw_home=settings.openclaw_home,
                codex_sessions_root=settings.codex_sessions_root,
                retention_days=settings.retention_days,
            )
            return service.ingest(agent_ids=agent_ids, registry_records=registry_records)
        finally:
            repository.close()
    except (StorageError, duckdb.Error) as exc:
        typer.echo(f"Ingestion failed: {exc}", err=True)
        raise typer.Exit(code=1) from exc


def _collect_dashboard(
    database_path: Path,
    trend_days: int,
    top_models: int,
    recent_limit: int,
) -> DashboardUsage:
    """Collect dashboard views from the DuckDB store."""
    repository: StatsRepository | None = None
    try:
        repository = StatsRepository(database_path)
        service = StatsService(
            repository=repository,
            trend_days=trend_days,
            top_models=top_models,
            recent_limit=recent_limit,
        )
        return service.collect()
    except StatsRepositoryError as exc:
        raise typer.BadParameter(str(exc)) from exc
    finally:
        if repository is not None:
            repository.close()


def _configure_logging(verbose: bool) -> None:
    """Initialize default logging for CLI usage."""
    level = logging.INFO if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="[%(asctime)s][%(levelname)s][%(name)s] %(message)s",
    )


def _emit_summary(counters: IngestionCounters) -> None:
    """Print ingestion counters to stdout."""
    summary_lines = [
        f"files_scanned={counters.files_scanned}",
        f"files_ingested={counters.files_ingested}",
        f"files_skipped_unchanged={counters.files_skipped_unchanged}",
        f"files_without_record={counters.files_without_record}",
        f"sessions_upserted={counters.sessions_upserted}",
        f"sessions_skipped_inactive={counters.sessions_skipped_inactive}",
        f"registry_records_upserted={counters.registry_records_upserted}",
        f"rows_pruned={counters.rows_pruned}",
        f"daily_buckets_rebuilt={counters.daily_buckets_rebuilt}",
    ]
    for line in summary_lines:
        typer.echo(line)

    for unreadable_file in counters.unreadable_files:
        typer.echo(f"unreadable_file={unreadable_file}")


def module_cli_entry_point() -> None:
    TYPER_APP()

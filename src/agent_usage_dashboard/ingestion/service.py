"""Service orchestration for one ingestion pass over OpenClaw and Codex logs."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from datetime import UTC, date, datetime, time, timedelta
from pathlib import Path

from ..config import DEFAULT_RETENTION_DAYS
from .change_tracker import ChangeTracker, file_state_from_stat
from .decoders import CodexDecoder, LogDecoder, OpenClawDecoder
from .merge import index_registry, reconcile
from .repository import IngestionRepository
from .schemas import IngestFileState, IngestionCounters, RegistryRecord, SessionRecord, Source

LOGGER = logging.getLogger(__name__)

OPENCLAW_LOG_NAME_RE = re.compile(r"\.jsonl(?:\.deleted\..+)?$", re.IGNORECASE)
CODEX_MAX_DEPTH = 4

RegistryLookup = Callable[[SessionRecord], RegistryRecord | None]


class IngestionService:
    """Coordinates discovery, change detection, decoding, merging and persistence."""

    def __init__(
        self,
        repository: IngestionRepository,
        openclaw_home: Path,
        codex_sessions_root: Path,
        retention_days: int = DEFAULT_RETENTION_DAYS,
    ) -> None:
        self._repository = repository
        self._openclaw_home = openclaw_home
        self._codex_sessions_root = codex_sessions_root
        self._retention_days = retention_days
        self._change_tracker = ChangeTracker(repository)

    def ingest(
        self,
        agent_ids: list[str],
        registry_records: list[RegistryRecord],
        now: datetime | None = None,
    ) -> IngestionCounters:
        """Run one ingestion pass and return operation counters."""
        now = now or datetime.now(UTC)
        self._repository.ensure_schema()
        counters = IngestionCounters()
        registry_by_session = index_registry(registry_records)

        for agent_id in agent_ids:
            decoder = OpenClawDecoder(agent_id)
            log_files = discover_openclaw_session_files(self._openclaw_home, agent_id)
            for log_file_path, file_state in _order_by_mtime(log_files, Source.OPENCLAW, counters):
                self._ingest_file(
                    decoder,
                    log_file_path,
                    file_state,
                    counters,
                    now,
                    registry_lookup=lambda record: registry_by_session.get((agent_id, record.session_id)),
                )

        # The registry can advance token counters while the log file is unchanged,
        # so every registry entry is upserted again on each pass. This overwrites the
        # row reconciled from the log: model and updated_at take the registry values.
        for registry_record in registry_records:
            session_record = registry_to_session_record(
                registry_record, self._registry_fallback_time(registry_record, now)
            )
            if session_record is not None and self._repository.upsert_session(session_record):
                counters.registry_records_upserted += 1

        codex_decoder = CodexDecoder()
        codex_files = discover_codex_session_files(self._codex_sessions_root)
        for log_file_path, file_state in _order_by_mtime(codex_files, Source.CODEX, counters):
            self._ingest_file(codex_decoder, log_file_path, file_state, counters, now)

        # Pruning and the rebuild share one day boundary so that every recomputed
        # bucket sees all of its day's sessions.
        retention_start = retention_start_day(now, self._retention_days)
        with self._repository.transaction():
            counters.rows_pruned = self._repository.prune(datetime.combine(retention_start, time.min, tzinfo=UTC))
            counters.daily_buckets_rebuilt = self._repository.rebuild_daily_buckets(keep_before=retention_start)

        LOGGER.info(
            "Ingestion pass finished: %d files ingested, %d unchanged, %d sessions upserted.",
            counters.files_ingested,
            counters.files_skipped_unchanged,
            counters.sessions_upserted,
        )
        return counters

    def _ingest_file(
        self,
        decoder: LogDecoder,
        log_file_path: Path,
        file_state: IngestFileState,
        counters: IngestionCounters,
        now: datetime,
        registry_lookup: RegistryLookup | None = None,
    ) -> None:
        counters.files_scanned += 1
        if not self._change_tracker.should_ingest(
            file_state.source, file_state.file_path, file_state.file_mtime, file_state.file_size_bytes
        ):
            counters.files_skipped_unchanged += 1
            return

        record = decoder.decode(log_file_path, file_state.file_mtime)
        with self._repository.transaction():
            if record is None:
                counters.files_without_record += 1
            else:
                if registry_lookup is not None:
                    record = reconcile(record, registry_lookup(record))
                if self._repository.upsert_session(record):
                    counters.sessions_upserted += 1
                else:
                    counters.sessions_skipped_inactive += 1
            self._change_tracker.record_state(
                file_state.source,
                file_state.file_path,
                file_state.file_mtime,
                file_state.file_size_bytes,
                ingested_at=now,
            )
        counters.files_ingested += 1

    def _registry_fallback_time(self, record: RegistryRecord, now: datetime) -> datetime:
        """Return the timestamp used when a registry entry has no usable ``updatedAt``.

        The stored row keeps its timestamp across passes; ``now`` is only used
        for sessions that are not in the store yet.
        """
        if record.updated_at is not None or not record.session_id:
            return now
        return self._repository.get_session_updated_at(Source.OPENCLAW, record.session_id) or now


def retention_start_day(now: datetime, retention_days: int) -> date:
    """Return the first UTC day whose sessions are kept in full."""
    return (now.astimezone(UTC) - timedelta(days=retention_days)).date()


def registry_to_session_record(record: RegistryRecord, now: datetime) -> SessionRecord | None:
    """Project a registry entry onto the canonical record shape (no query text).

    ``now`` stands in for a missing registry timestamp.
    """
    if not record.session_id:
        return None
    return SessionRecord(
        source=Source.OPENCLAW,
        session_id=record.session_id,
        agent_id=record.agent_id,
        label=record.label,
        model=record.model,
        updated_at=record.updated_at or now,
        input_tokens=record.input_tokens,
        output_tokens=record.output_tokens,
        total_tokens=record.total_tokens,
        input_query=None,
        source_path=record.source_path,
    )


def discover_openclaw_session_files(openclaw_home: Path, agent_id: str) -> list[Path]:
    """List one agent's session logs, including soft-deleted ``*.jsonl.deleted.*`` files."""
    sessions_dir = openclaw_home / "agents" / agent_id / "sessions"
    if not sessions_dir.is_dir():
        return []
    return sorted(
        path for path in sessions_dir.iterdir() if path.is_file() and OPENCLAW_LOG_NAME_RE.search(path.name)
    )


def discover_codex_session_files(sessions_root: Path, max_depth: int = CODEX_MAX_DEPTH) -> list[Path]:
    """Discover Codex JSONL logs at most ``max_depth`` directories below the root."""
    if not sessions_root.is_dir():
        return []
    return sorted(
        path
        for path in sessions_root.rglob("*.jsonl")
        if path.is_file() and len(path.relative_to(sessions_root).parts) <= max_depth + 1
    )


def _order_by_mtime(
    log_files: list[Path],
    source: Source,
    counters: IngestionCounters,
) -> list[tuple[Path, IngestFileState]]:
    """Stat files and order them by ascending mtime so last-wins merges are deterministic."""
    stated: list[tuple[Path, IngestFileState]] = []
    for log_file_path in log_files:
        try:
            stat_result = log_file_path.stat()
        except OSError as exc:
            counters.unreadable_files.append(str(log_file_path))
            LOGGER.warning("Unable to stat session log %s: %s", log_file_path, exc)
            continue
        stated.append((log_file_path, file_state_from_stat(source, log_file_path, stat_result)))
    return sorted(stated, key=lambda item: (item[1].file_mtime, item[1].file_path))

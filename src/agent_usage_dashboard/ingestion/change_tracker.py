"""Skip session logs whose (mtime, size) has not changed since the last pass."""

from __future__ import annotations

import logging
import os
from datetime import UTC, datetime, timedelta
from pathlib import Path

from .repository import IngestionRepository
from .schemas import IngestFileState, Source

LOGGER = logging.getLogger(__name__)


class ChangeTracker:
    """Decides whether a file needs re-parsing based on persisted file state."""

    def __init__(self, repository: IngestionRepository) -> None:
        self._repository = repository

    def should_ingest(self, source: Source, file_path: str, file_mtime: datetime, file_size_bytes: int) -> bool:
        """Return True when the file is new or its mtime or size changed."""
        prior_state = self._repository.get_file_state(source, file_path)
        if prior_state is None:
            return True
        changed = prior_state.file_size_bytes != file_size_bytes or prior_state.file_mtime != truncate_to_millis(
            file_mtime
        )
        if not changed:
            LOGGER.debug("Skipping unchanged %s log %s", source, file_path)
        return changed

    def record_state(
        self,
        source: Source,
        file_path: str,
        file_mtime: datetime,
        file_size_bytes: int,
        ingested_at: datetime | None = None,
    ) -> None:
        """Upsert the observed file state keyed by (source, file path)."""
        self._repository.upsert_file_state(
            IngestFileState(
                source=source,
                file_path=file_path,
                file_size_bytes=file_size_bytes,
                file_mtime=truncate_to_millis(file_mtime),
                ingested_at=ingested_at,
            )
        )


def file_state_from_stat(source: Source, file_path: Path, stat_result: os.stat_result) -> IngestFileState:
    """Build a millisecond-precision file state from filesystem metadata."""
    mtime_ms = stat_result.st_mtime_ns // 1_000_000
    file_mtime = datetime.fromtimestamp(mtime_ms // 1000, tz=UTC) + timedelta(milliseconds=mtime_ms % 1000)
    return IngestFileState(
        source=source,
        file_path=str(file_path),
        file_size_bytes=stat_result.st_size,
        file_mtime=file_mtime,
    )


def truncate_to_millis(value: datetime) -> datetime:
    """Drop sub-millisecond precision and normalize to UTC."""
    normalized = value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    normalized = normalized.astimezone(UTC)
    return normalized.replace(microsecond=(normalized.microsecond // 1000) * 1000)

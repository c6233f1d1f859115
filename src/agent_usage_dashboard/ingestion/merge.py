"""Reconcile parsed session logs with the session registry."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import replace
from datetime import UTC, datetime

from .schemas import UNKNOWN_MODEL, RegistryRecord, SessionRecord, normalize_model_name

_EPOCH = datetime.fromtimestamp(0, tz=UTC)


def reconcile(parsed: SessionRecord, registry: RegistryRecord | None) -> SessionRecord:
    """Merge one parsed record with its registry entry, preferring positive evidence.

    Registry model and label win when set. Registry token counters win only
    when strictly positive, so an unset registry counter never erases tokens
    already seen in the log.
    """
    if registry is None:
        return parsed

    registry_model = normalize_model_name(registry.model)
    return replace(
        parsed,
        label=registry.label or parsed.label or None,
        model=registry_model if registry_model != UNKNOWN_MODEL else normalize_model_name(parsed.model),
        updated_at=max(registry.updated_at or _EPOCH, parsed.updated_at),
        input_tokens=registry.input_tokens if registry.input_tokens > 0 else parsed.input_tokens,
        output_tokens=registry.output_tokens if registry.output_tokens > 0 else parsed.output_tokens,
        total_tokens=registry.total_tokens if registry.total_tokens > 0 else parsed.total_tokens,
        source_path=parsed.source_path or registry.source_path or None,
    )


def index_registry(records: Iterable[RegistryRecord]) -> dict[tuple[str, str], RegistryRecord]:
    """Index registry records by (agent_id, session_id), keeping the latest per key."""
    indexed: dict[tuple[str, str], RegistryRecord] = {}
    for record in records:
        if not record.session_id:
            continue
        key = (record.agent_id, record.session_id)
        existing = indexed.get(key)
        if existing is None or (record.updated_at or _EPOCH) >= (existing.updated_at or _EPOCH):
            indexed[key] = record
    return indexed

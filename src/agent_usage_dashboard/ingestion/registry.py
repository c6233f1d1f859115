"""Load the OpenClaw agent list and per-agent session registries."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import orjson

from ..redaction import redact_structured
from .decoders import parse_event_timestamp, to_token_count
from .errors import RegistryError
from .schemas import RegistryRecord, normalize_model_name

LOGGER = logging.getLogger(__name__)


def get_registry_path(openclaw_home: Path, agent_id: str) -> Path:
    """Return the sessions.json path for one agent."""
    return openclaw_home / "agents" / agent_id / "sessions" / "sessions.json"


def load_openclaw_config(config_path: Path) -> dict[str, Any]:
    """Read ``openclaw.json``; a missing, unreadable or non-object document yields ``{}``."""
    try:
        document = _read_json_document(config_path)
    except RegistryError as exc:
        LOGGER.warning("Ignoring unreadable OpenClaw config: %s", exc)
        return {}
    return document if isinstance(document, dict) else {}


def agent_ids_from_config(config: dict[str, Any]) -> list[str]:
    """Return unique configured agent ids (``agents.list[].id``) in configuration order."""
    agent_ids: list[str] = []
    for agent in _configured_agents(config):
        if agent.get("id"):
            agent_id = str(agent["id"])
            if agent_id not in agent_ids:
                agent_ids.append(agent_id)
    return agent_ids


def workspace_paths_from_config(config: dict[str, Any]) -> list[Path]:
    """Return the workspace directory of every configured agent that declares one."""
    return [
        Path(str(agent["workspace"])).expanduser()
        for agent in _configured_agents(config)
        if agent.get("workspace")
    ]


def _configured_agents(config: dict[str, Any]) -> list[dict[str, Any]]:
    agents = config.get("agents")
    agent_list = agents.get("list") if isinstance(agents, dict) else None
    if not isinstance(agent_list, list):
        return []
    return [agent for agent in agent_list if isinstance(agent, dict)]


def read_session_registry(openclaw_home: Path, agent_id: str) -> list[RegistryRecord]:
    """Read one agent's registry, keeping the latest entry per session, newest first."""
    registry_path = get_registry_path(openclaw_home, agent_id)
    try:
        document = _read_json_document(registry_path)
    except RegistryError as exc:
        LOGGER.warning("Ignoring unreadable session registry: %s", exc)
        return []
    if not isinstance(document, dict):
        return []

    latest: dict[str, RegistryRecord] = {}
    for key, value in document.items():
        if not isinstance(value, dict):
            continue
        record = _build_registry_record(str(key), agent_id, value, registry_path)
        dedupe_key = record.session_id or record.key
        existing = latest.get(dedupe_key)
        if existing is None or _sort_key(record) >= _sort_key(existing):
            latest[dedupe_key] = record

    return sorted(latest.values(), key=_sort_key, reverse=True)


def load_registry(openclaw_home: Path, agent_ids: list[str]) -> list[RegistryRecord]:
    """Read the registries of all configured agents."""
    records: list[RegistryRecord] = []
    for agent_id in agent_ids:
        records.extend(read_session_registry(openclaw_home, agent_id))
    LOGGER.info("Loaded %d registry records for %d agents.", len(records), len(agent_ids))
    return records


def _build_registry_record(key: str, agent_id: str, value: dict[str, Any], registry_path: Path) -> RegistryRecord:
    session_id = value.get("sessionId")
    label = value.get("label")
    return RegistryRecord(
        key=key,
        agent_id=agent_id,
        session_id=str(session_id) if session_id else None,
        label=str(label) if label else None,
        model=normalize_model_name(value.get("model") or value.get("modelProvider")),
        updated_at=parse_event_timestamp(value.get("updatedAt")),
        input_tokens=to_token_count(value.get("inputTokens")),
        output_tokens=to_token_count(value.get("outputTokens")),
        total_tokens=to_token_count(value.get("totalTokens")),
        skills_snapshot=redact_structured(value.get("skillsSnapshot")),
        source_path=str(registry_path),
    )


def _sort_key(record: RegistryRecord) -> float:
    return record.updated_at.timestamp() if record.updated_at is not None else 0.0


def _read_json_document(path: Path) -> Any:
    """Return the parsed JSON document, or None when the file does not exist."""
    try:
        with path.open("rb") as handle:
            return orjson.loads(handle.read())
    except FileNotFoundError:
        return None
    except OSError as exc:
        raise RegistryError(f"Failed to read {path}: {exc}") from exc
    except orjson.JSONDecodeError as exc:
        raise RegistryError(f"Malformed JSON in {path}: {exc}") from exc

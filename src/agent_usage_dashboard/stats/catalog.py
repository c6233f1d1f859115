"""Catalog of configured models, resolved skills and plugins for the dashboard."""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import replace
from pathlib import Path
from typing import Any

from ..ingestion.decoders import to_token_count
from ..ingestion.schemas import RegistryRecord, normalize_model_name
from ..redaction import redact_structured
from .schemas import Catalog, ModelCard, PluginCard, SkillCard

LOGGER = logging.getLogger(__name__)

WORKSPACE_SKILL_FILE = "SKILL.md"
WORKSPACE_SKILL_MAX_DEPTH = 3

ROLE_PRIMARY = "Primary"
ROLE_FALLBACK = "Fallback"
ROLE_ADDITIONAL = "Additional"


def build_catalog(
    config: dict[str, Any],
    registry_records: list[RegistryRecord],
    workspace_paths: Iterable[Path] = (),
) -> Catalog:
    """Build model, skill and plugin cards from the OpenClaw config and registry."""
    return Catalog(
        models=build_model_cards(config, registry_records),
        skills=build_skill_cards(registry_records, workspace_paths),
        plugins=build_plugin_cards(config),
    )


def build_model_cards(config: dict[str, Any], registry_records: list[RegistryRecord]) -> list[ModelCard]:
    """List configured models, most-used first.

    Models come from the primary model, the fallbacks, the alias table and the
    per-provider model lists, in that order; the first occurrence of an id wins.
    ``last_seen_tokens`` sums registry ``total_tokens`` for a model matched by
    full id, then by the part after the last ``/``, then by alias.
    """
    defaults = _mapping(_mapping(config.get("agents")).get("defaults"))
    aliases = _mapping(defaults.get("models"))
    model_defaults = _mapping(defaults.get("model"))
    primary = model_defaults.get("primary") or None
    fallbacks = [str(item) for item in model_defaults.get("fallbacks") or [] if item]

    cards: list[ModelCard] = []
    seen: set[str] = set()

    def add_model(model_id: Any, context_window: Any = None, max_tokens: Any = None) -> None:
        if not model_id or str(model_id) in seen:
            return
        model_id = str(model_id)
        seen.add(model_id)
        configured_alias = _mapping(aliases.get(model_id)).get("alias")
        if model_id == primary:
            role = ROLE_PRIMARY
        elif model_id in fallbacks:
            role = ROLE_FALLBACK
        else:
            role = ROLE_ADDITIONAL
        cards.append(
            ModelCard(
                model_id=model_id,
                alias=str(configured_alias) if configured_alias else _short_model_id(model_id),
                role=role,
                context_window=to_token_count(context_window) or None,
                max_tokens=to_token_count(max_tokens) or None,
            )
        )

    add_model(primary)
    for fallback in fallbacks:
        add_model(fallback)
    for model_id in aliases:
        add_model(model_id)
    for provider_name, provider in _mapping(_mapping(config.get("models")).get("providers")).items():
        provider_models = _mapping(provider).get("models")
        if not isinstance(provider_models, list):
            continue
        for model in provider_models:
            model = _mapping(model)
            add_model(
                f"{provider_name}/{model.get('id') or model.get('name') or 'unknown'}",
                context_window=model.get("contextWindow"),
                max_tokens=model.get("maxTokens"),
            )

    model_tokens: dict[str, int] = defaultdict(int)
    for record in registry_records:
        model_tokens[normalize_model_name(record.model)] += record.total_tokens

    with_usage = [replace(card, last_seen_tokens=_lookup_tokens(card, model_tokens)) for card in cards]
    # sorted() is stable, so unused models keep configuration order.
    return sorted(with_usage, key=lambda card: card.last_seen_tokens, reverse=True)


def build_skill_cards(registry_records: list[RegistryRecord], workspace_paths: Iterable[Path] = ()) -> list[SkillCard]:
    """List skills resolved by sessions plus ``SKILL.md`` files in agent workspaces, sorted by name.

    A skill is identified by its name and file path; repeats are dropped.
    """
    cards: list[SkillCard] = []
    seen: set[tuple[str, str]] = set()

    for record in registry_records:
        snapshot = _mapping(record.skills_snapshot)
        resolved = snapshot.get("resolvedSkills")
        if not isinstance(resolved, list):
            continue
        for skill in resolved:
            skill = _mapping(skill)
            name = skill.get("name")
            if not name:
                continue
            key = (str(name), str(skill.get("filePath") or ""))
            if key in seen:
                continue
            seen.add(key)
            cards.append(
                SkillCard(
                    name=str(name),
                    description=str(skill.get("description") or "No description"),
                    source=str(skill.get("source") or "unknown"),
                    file_path=Path(str(skill["filePath"])) if skill.get("filePath") else None,
                    base_dir=Path(str(skill["baseDir"])) if skill.get("baseDir") else None,
                    disable_model_invocation=bool(skill.get("disableModelInvocation")),
                )
            )

    for workspace_path in workspace_paths:
        skills_dir = workspace_path / "skills"
        if not skills_dir.is_dir():
            continue
        for skill_file in _list_files(skills_dir, WORKSPACE_SKILL_MAX_DEPTH):
            if not skill_file.name.endswith(WORKSPACE_SKILL_FILE):
                continue
            name = skill_file.parent.name
            key = (name, str(skill_file))
            if key in seen:
                continue
            seen.add(key)
            cards.append(
                SkillCard(
                    name=name,
                    description="Workspace skill",
                    source="workspace",
                    file_path=skill_file,
                    base_dir=skill_file.parent,
                )
            )

    return sorted(cards, key=lambda card: card.name.casefold())


def build_plugin_cards(config: dict[str, Any]) -> list[PluginCard]:
    """List configured plugins by name with their settings redacted."""
    entries = _mapping(_mapping(config.get("plugins")).get("entries"))
    cards: list[PluginCard] = []
    for name in sorted(entries, key=str.casefold):
        value = _mapping(entries[name])
        cards.append(PluginCard(name=name, enabled=bool(value.get("enabled")), config=redact_structured(value)))
    return cards


def _lookup_tokens(card: ModelCard, model_tokens: dict[str, int]) -> int:
    for key in (card.model_id, _short_model_id(card.model_id), card.alias):
        if model_tokens.get(key):
            return model_tokens[key]
    return 0


def _short_model_id(model_id: str) -> str:
    return model_id.rsplit("/", 1)[-1]


def _mapping(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _list_files(directory: Path, max_depth: int, depth: int = 0) -> list[Path]:
    """List files below ``directory``, descending at most ``max_depth`` levels."""
    if depth > max_depth:
        return []
    try:
        entries = sorted(directory.iterdir())
    except OSError as exc:
        LOGGER.warning("Unable to list skills directory %s: %s", directory, exc)
        return []
    files: list[Path] = []
    for entry in entries:
        if entry.is_dir():
            files.extend(_list_files(entry, max_depth, depth + 1))
        elif entry.is_file():
            files.append(entry)
    return files

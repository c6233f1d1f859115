"""Decoders turning one JSONL session log into a canonical SessionRecord."""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, ClassVar

import orjson

from .errors import ParseError
from .query_text import extract_text_from_content, is_auto_injected_query, normalize_query_text
from .schemas import UNKNOWN_MODEL, Source, SessionRecord, normalize_model_name

LOGGER = logging.getLogger(__name__)

OPENCLAW_FILE_NAME_RE = re.compile(r"^([0-9a-f-]{36})\.jsonl(?:\.deleted\..+)?$", re.IGNORECASE)


@dataclass
class DecoderState:
    """Mutable per-file accumulator shared by all decoder variants."""

    session_id: str | None
    model: str
    label: str | None = None
    updated_at: datetime | None = None
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    input_query: str | None = None
    events_parsed: int = 0

    def observe_timestamp(self, value: Any) -> None:
        """Advance updated_at to ``value`` when it is later; never regress."""
        timestamp = parse_event_timestamp(value)
        if timestamp is None:
            return
        if self.updated_at is None or timestamp > self.updated_at:
            self.updated_at = timestamp


class LogDecoder:
    """Base decoder: tolerant line iteration and canonical record construction."""

    source: ClassVar[Source]
    default_model: ClassVar[str] = UNKNOWN_MODEL
    default_label: ClassVar[str | None] = None

    def decode(self, log_file_path: Path, file_mtime: datetime | None = None) -> SessionRecord | None:
        """Parse one log file into at most one record.

        Returns None when the file is unreadable, holds no parseable events, or
        never yields a session identifier.
        """
        state = DecoderState(
            session_id=self._initial_session_id(log_file_path),
            model=self.default_model,
            label=self.default_label,
        )
        try:
            for _line_number, event in iter_log_events(log_file_path):
                state.events_parsed += 1
                state.observe_timestamp(event.get("timestamp"))
                self._consume(state, event)
        except OSError as exc:
            LOGGER.warning("Unable to read session log %s: %s", log_file_path, exc)
            return None

        if state.events_parsed == 0:
            LOGGER.debug("No parseable events in %s", log_file_path)
            return None

        session_id = state.session_id or self._fallback_session_id(log_file_path)
        if not session_id:
            LOGGER.debug("No session identifier found in %s", log_file_path)
            return None

        updated_at = state.updated_at or file_mtime or datetime.now(UTC)
        return SessionRecord(
            source=self.source,
            session_id=session_id,
            agent_id=self._agent_id(),
            label=state.label,
            model=normalize_model_name(state.model),
            updated_at=updated_at,
            input_tokens=state.input_tokens,
            output_tokens=state.output_tokens,
            total_tokens=state.total_tokens,
            input_query=state.input_query,
            source_path=str(log_file_path),
        )

    def _initial_session_id(self, log_file_path: Path) -> str | None:
        return None

    def _fallback_session_id(self, log_file_path: Path) -> str | None:
        return None

    def _agent_id(self) -> str | None:
        return None

    def _consume(self, state: DecoderState, event: dict[str, Any]) -> None:
        raise NotImplementedError


class OpenClawDecoder(LogDecoder):
    """Decoder for OpenClaw agent session logs (per-message usage)."""

    source = Source.OPENCLAW

    def __init__(self, agent_id: str) -> None:
        self._agent = agent_id

    def _agent_id(self) -> str | None:
        return self._agent

    def _initial_session_id(self, log_file_path: Path) -> str | None:
        match = OPENCLAW_FILE_NAME_RE.match(log_file_path.name)
        return match.group(1) if match else None

    def _consume(self, state: DecoderState, event: dict[str, Any]) -> None:
        event_type = event.get("type")
        if event_type == "session":
            if event.get("id"):
                state.session_id = str(event["id"])
            return

        if event_type == "model_change":
            if event.get("modelId"):
                state.model = normalize_model_name(event["modelId"])
            return

        if event_type != "message":
            return
        message = event.get("message")
        if not isinstance(message, dict):
            return
        state.observe_timestamp(message.get("timestamp"))

        role = message.get("role")
        if role == "user":
            query = normalize_query_text(extract_text_from_content(message.get("content")))
            if query:
                state.input_query = query
            return
        if role != "assistant":
            return

        if message.get("model"):
            state.model = normalize_model_name(message["model"])
        usage = message.get("usage")
        if not isinstance(usage, dict):
            usage = {}
        input_tokens = to_token_count(usage.get("input")) + to_token_count(usage.get("cacheRead"))
        input_tokens += to_token_count(usage.get("cacheWrite"))
        output_tokens = to_token_count(usage.get("output"))
        state.input_tokens += input_tokens
        state.output_tokens += output_tokens
        state.total_tokens += to_token_count(usage.get("totalTokens")) or input_tokens + output_tokens
        if state.label is None and message.get("stopReason"):
            state.label = str(message["stopReason"])


class CodexDecoder(LogDecoder):
    """Decoder for Codex CLI rollout logs (cumulative token_count snapshots)."""

    source = Source.CODEX
    default_model = "Codex Local"
    default_label = "Codex local session"
    agent_id = "codex"

    def _agent_id(self) -> str | None:
        return self.agent_id

    def _fallback_session_id(self, log_file_path: Path) -> str | None:
        return log_file_path.stem

    def _consume(self, state: DecoderState, event: dict[str, Any]) -> None:
        event_type = event.get("type")
        payload = event.get("payload")
        if not isinstance(payload, dict):
            return

        if event_type == "session_meta":
            if payload.get("id"):
                state.session_id = str(payload["id"])
            state.observe_timestamp(payload.get("timestamp"))
            return

        if event_type == "turn_context":
            if payload.get("model"):
                state.model = normalize_model_name(payload["model"])
            return

        if event_type == "response_item":
            if payload.get("type") != "message" or payload.get("role") != "user":
                return
            query = normalize_query_text(extract_text_from_content(payload.get("content")))
            if not query:
                return
            if not is_auto_injected_query(query):
                state.input_query = query
            elif state.input_query is None:
                # Injected preambles only fill the gap until a real request shows up.
                state.input_query = query
            return

        if event_type != "event_msg" or payload.get("type") != "token_count":
            return
        info = payload.get("info")
        if not isinstance(info, dict):
            return
        totals = info.get("total_token_usage")
        if not isinstance(totals, dict):
            totals = {}
        # Snapshots are cumulative for the session: the last one wins.
        state.input_tokens = to_token_count(totals.get("input_tokens"))
        state.output_tokens = to_token_count(totals.get("output_tokens"))
        state.total_tokens = to_token_count(totals.get("total_tokens")) or state.input_tokens + state.output_tokens


def iter_log_events(log_file_path: Path) -> Iterator[tuple[int, dict[str, Any]]]:
    """Yield parsed JSON object events with line numbers, skipping malformed lines."""
    with log_file_path.open("rb") as handle:
        for line_number, raw_line in enumerate(handle, start=1):
            if not raw_line.strip():
                continue
            try:
                event = parse_event_line(raw_line, log_file_path, line_number)
            except ParseError as exc:
                LOGGER.debug("Skipping malformed line: %s", exc)
                continue
            yield line_number, event


def parse_event_line(raw_line: bytes | str, log_file_path: Path, line_number: int) -> dict[str, Any]:
    """Parse one JSONL line into a JSON object."""
    try:
        payload = orjson.loads(raw_line)
    except orjson.JSONDecodeError as exc:
        raise ParseError(f"Malformed JSON in {log_file_path} at line {line_number}: {exc}.") from exc
    if not isinstance(payload, dict):
        raise ParseError(
            f"Expected JSON object in {log_file_path} at line {line_number}, got {type(payload).__name__}."
        )
    return payload


def parse_event_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 string or epoch-milliseconds number into an aware UTC datetime."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        if not math.isfinite(value) or value <= 0:
            return None
        try:
            return datetime.fromtimestamp(value / 1000, tz=UTC)
        except (OverflowError, OSError, ValueError):
            return None
    if not isinstance(value, str) or not value.strip():
        return None

    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def to_token_count(value: Any) -> int:
    """Coerce a reported token counter to a non-negative int; junk becomes 0."""
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, str):
        try:
            value = float(value)
        except ValueError:
            return 0
    if not isinstance(value, int | float) or not math.isfinite(value):
        return 0
    return max(int(value), 0)

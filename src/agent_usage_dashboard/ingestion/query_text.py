"""Clean user-turn text before it is stored as a session's input query.

Upstream runtimes interleave scheduler and channel metadata with what the user
actually asked. The rules below strip that noise in a fixed order, then cap the
result. ``None`` means "no query text", never an error.
"""

from __future__ import annotations

import re
from typing import Any

from ..redaction import redact_inline

DEFAULT_MAX_QUERY_CHARS = 1200
ELLIPSIS = "…"

_IMAGE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"<image>.*?</image>", re.IGNORECASE | re.DOTALL),
    re.compile(r"!\[[^\]]*]\([^)]*\)"),
)

_CODE_FENCE_RE = re.compile(r"```(?:json|yaml|yml|txt|text)?\s*(.*?)```", re.IGNORECASE | re.DOTALL)
METADATA_SIGNATURE_RE = re.compile(
    r"conversation[_\s-]*label|conversation info|untrusted metadata|channel|session[_\s-]*id|timestamp|gmt[+-]?\d+",
    re.IGNORECASE,
)

SCHEDULED_TASK_LABEL = "定时任务"

# Ordered (pattern, replacement) table applied after metadata fences are dropped.
NOISE_SUBSTITUTIONS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"conversation info\s*\(untrusted metadata\)\s*:?\s*", re.IGNORECASE), " "),
    (re.compile(r"(?:^|\s)untrusted metadata\s*:?\s*", re.IGNORECASE), " "),
    (
        re.compile(
            r"^\[[^\]]*(?:cron|schedule|metadata|session|channel|日报|" + SCHEDULED_TASK_LABEL + r")[^\]]*\]\s*",
            re.IGNORECASE,
        ),
        " ",
    ),
    (
        re.compile(
            r"\[[A-Za-z]{3}\s+\d{4}-\d{2}-\d{2}[^\]]*GMT[+-]?\d+[^\]]*\]\s*(?:"
            + SCHEDULED_TASK_LABEL
            + r"\s*[-:：]\s*)?"
        ),
        " ",
    ),
    (re.compile(r"\bCurrent time:\s*[^。.!?]+(?:[。.!?]|$)", re.IGNORECASE), " "),
    (re.compile(r"\bReturn your summary as plain text.*$", re.IGNORECASE | re.DOTALL), " "),
    (re.compile(r"\bIf the task explicitly calls for messaging.*$", re.IGNORECASE | re.DOTALL), " "),
    (re.compile(r"^[\s\])]*\d{1,2}:\d{2}\s*" + SCHEDULED_TASK_LABEL + r"\s*[-:：]\s*", re.IGNORECASE), " "),
    (re.compile(r"[\"'`]?conversation[_\s-]*label[\"'`]?[\s:=-]+[A-Za-z0-9._/-]+", re.IGNORECASE), " "),
)

LEADING_NOISE_RE = re.compile(
    r"^(?:[\s,;|:]+|(?:conversation[_\s-]*label|conversation info|untrusted metadata|channel|source|date|time"
    r"|timestamp|session(?:_id| id)?|openclaw-tui)\s*[:=\-]\s*)+",
    re.IGNORECASE,
)

AGREEMENT_MARKER = "没错"
_AGREEMENT_PREFIX_RE = re.compile(r"conversation|metadata|openclaw-tui|gmt|session|\[[^\]]*$", re.IGNORECASE)
_HAN_RE = re.compile(r"[\u3400-\u4dbf\u4e00-\u9fff\uf900-\ufaff]")
_HAN_PREFIX_RE = re.compile(r"conversation|metadata|openclaw-tui|gmt|session|[A-Za-z]{3}\s+\d{4}-\d{2}-\d{2}", re.IGNORECASE)
_HAN_SEARCH_WINDOW = 260

_WHITESPACE_RE = re.compile(r"\s+")

# Preambles Codex injects as user turns before the real request.
AUTO_INJECTED_MARKERS: tuple[str, ...] = (
    "AGENTS.md instructions",
    "<permissions instructions>",
    "You are Codex, a coding agent based on GPT-5",
)


def normalize_query_text(text: Any, max_chars: int = DEFAULT_MAX_QUERY_CHARS) -> str | None:
    """Strip metadata noise from user text and cap its length."""
    compact = redact_inline(text)
    for pattern in _IMAGE_PATTERNS:
        compact = pattern.sub(" ", compact)

    compact = _strip_metadata_code_fences(compact)
    for pattern, replacement in NOISE_SUBSTITUTIONS:
        compact = pattern.sub(replacement, compact)
    compact = _WHITESPACE_RE.sub(" ", compact).strip()
    if not compact:
        return None

    while LEADING_NOISE_RE.match(compact):
        compact = LEADING_NOISE_RE.sub("", compact, count=1).strip()

    compact = _cut_to_content_start(compact)
    if not compact:
        return None
    if len(compact) <= max_chars:
        return compact
    return f"{compact[: max_chars - 1]}{ELLIPSIS}"


def extract_text_from_content(content: Any) -> str:
    """Flatten a message ``content`` field (string, part list or part object) into text."""
    if not content:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = [_part_text(part) for part in content]
        return "\n".join(part for part in parts if part).strip()
    return _part_text(content)


def is_auto_injected_query(text: str | None) -> bool:
    """Return True when text is an instruction preamble injected by the runtime."""
    candidate = text or ""
    return any(marker in candidate for marker in AUTO_INJECTED_MARKERS)


def _strip_metadata_code_fences(text: str) -> str:
    def replace(match: re.Match[str]) -> str:
        if METADATA_SIGNATURE_RE.search(match.group(1) or ""):
            return " "
        return match.group(0)

    return _CODE_FENCE_RE.sub(replace, text)


def _cut_to_content_start(text: str) -> str:
    agreement_index = text.find(AGREEMENT_MARKER)
    if agreement_index > 0 and _AGREEMENT_PREFIX_RE.search(text[:agreement_index]):
        text = text[agreement_index:].strip()

    han_match = _HAN_RE.search(text)
    if han_match is not None and 0 < han_match.start() < _HAN_SEARCH_WINDOW:
        if _HAN_PREFIX_RE.search(text[: han_match.start()]):
            text = text[han_match.start() :].strip()
    return text


def _part_text(part: Any) -> str:
    if isinstance(part, str):
        return part
    if not isinstance(part, dict):
        return ""
    for key in ("text", "input_text"):
        value = part.get(key)
        if isinstance(value, str):
            return value
    return ""

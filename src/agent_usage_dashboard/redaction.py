"""Mask credentials in structured values and free text."""

from __future__ import annotations

import re
from typing import Any

REDACTED_MARKER = "[REDACTED]"

# Key names whose values are masked wherever they appear in a nested structure.
SENSITIVE_KEY_RE = re.compile(
    r"(key|token|secret|password|authorization|auth|cookie|client[-_]?id|client[-_]?secret)",
    re.IGNORECASE,
)

# `client_id=...` style assignments keep their key name so the text stays readable.
CLIENT_CREDENTIAL_ASSIGNMENT_RE = re.compile(
    r"\b(client[_-]?id|client[_-]?secret|oauth[_-]?client[_-]?(?:id|secret))\b\s*[:=]\s*[\"']?([^\s,\"';]+)[\"']?",
    re.IGNORECASE,
)

# Applied in order, every pattern, on every call.
SENSITIVE_INLINE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\bBearer\s+(?!\[REDACTED\])[A-Za-z0-9._~+/=-]{16,}", re.IGNORECASE),
    re.compile(r"sk-[A-Za-z0-9_-]{10,}"),
    re.compile(r"[A-Za-z0-9_]{20,}\.[A-Za-z0-9_]{10,}\.[A-Za-z0-9_-]{10,}"),
    re.compile(r"\bGOCSPX-[A-Za-z0-9_-]{10,}\b"),
    re.compile(r"\bAIza[0-9A-Za-z_-]{10,}\b"),
    re.compile(r"\b\d{12,}-[a-z0-9]{10,}\.apps\.googleusercontent\.com\b", re.IGNORECASE),
)

_MASKED_SHAPE_RE = re.compile(r"^.{3}\*\*\*.{3}$", re.DOTALL)


def mask_secret(value: Any) -> str:
    """Mask a secret, revealing only a 3-character prefix and suffix of long strings."""
    if not isinstance(value, str) or len(value) <= 8:
        return REDACTED_MARKER
    if value == REDACTED_MARKER or _MASKED_SHAPE_RE.match(value):
        return value
    return f"{value[:3]}***{value[-3:]}"


def redact_structured(value: Any) -> Any:
    """Return a copy of ``value`` with every sensitive-keyed leaf masked."""
    if isinstance(value, list):
        return [redact_structured(item) for item in value]
    if isinstance(value, tuple):
        return tuple(redact_structured(item) for item in value)
    if not isinstance(value, dict):
        return value

    redacted: dict[Any, Any] = {}
    for key, item in value.items():
        if isinstance(key, str) and SENSITIVE_KEY_RE.search(key):
            redacted[key] = _mask_leaf(item)
            continue
        redacted[key] = redact_structured(item)
    return redacted


def redact_inline(text: str | None) -> str:
    """Replace credential-shaped substrings in free text with a redaction marker."""
    output = str(text or "")
    output = CLIENT_CREDENTIAL_ASSIGNMENT_RE.sub(lambda match: f"{match.group(1)}: {REDACTED_MARKER}", output)
    for pattern in SENSITIVE_INLINE_PATTERNS:
        output = pattern.sub(REDACTED_MARKER, output)
    return output


def _mask_leaf(value: Any) -> Any:
    if isinstance(value, (dict, list, tuple)):
        # A whole sensitive subtree collapses to the marker.
        return REDACTED_MARKER
    if isinstance(value, str):
        return mask_secret(value)
    return mask_secret(str(value))

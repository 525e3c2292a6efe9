"""Scrubbing of sensitive-looking substrings from text before it is persisted."""

from __future__ import annotations

import re
from typing import Any

REDACTION_MARKER = "[REDACTED]"

# Applied in order; each pattern sees the output of the previous one.
_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("ssn", re.compile(r"\b\d{3}-\d{2}-\d{4}\b")),
    ("card_number", re.compile(r"\b(?:\d[ -]*?){13,19}\b")),
    ("date", re.compile(r"\b\d{1,2}[/-]\d{1,2}[/-]\d{2,4}\b")),
    ("opaque_code", re.compile(r"\b[A-Z0-9]{8,12}\b")),
)

_MARKER_BODY = REDACTION_MARKER.strip("[]")


def _replace(match: re.Match[str]) -> str:
    # The marker itself looks like an opaque code; leave earlier redactions alone.
    text = match.string
    start, end = match.span()
    if match.group(0) == _MARKER_BODY and text[start - 1 : start] == "[" and text[end : end + 1] == "]":
        return match.group(0)
    return REDACTION_MARKER


def redact_sensitive(value: str) -> str:
    text = value
    for _name, pattern in _PATTERNS:
        text = pattern.sub(_replace, text)
    return text


def redact_fields(payload: dict[str, Any], fields: tuple[str, ...] = ("subject", "body")) -> dict[str, Any]:
    redacted = dict(payload)
    for name in fields:
        value = redacted.get(name)
        if isinstance(value, str):
            redacted[name] = redact_sensitive(value)
    return redacted

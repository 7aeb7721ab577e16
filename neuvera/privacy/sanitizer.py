"""
Best-effort scrubbing of event metadata before it leaves the client.

Known limitation: this only catches the field names and text patterns listed
below. It is a privacy measure, not a guarantee that no PII gets through.
"""
from __future__ import annotations
import re
from typing import Any, Dict, Mapping, Optional

REDACTED = "[REDACTED]"

SENSITIVE_FIELDS = frozenset({"password", "token", "credit_card", "ssn", "email"})
CONTENT_FIELDS = frozenset({"content", "message", "text", "query", "title"})

EMAIL_RE = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")
# card before phone, a 16-digit number contains phone-shaped runs
CARD_RE = re.compile(r"\b(?:\d{4}[- ]?){3}\d{4}\b")
PHONE_RE = re.compile(r"\b\d{3}[-.\s]?\d{3}[-.\s]?\d{4}\b")


def redact_text(text: str) -> str:
    if not isinstance(text, str):
        return text
    out = EMAIL_RE.sub("[EMAIL REDACTED]", text)
    out = CARD_RE.sub("[CREDIT CARD REDACTED]", out)
    out = PHONE_RE.sub("[PHONE REDACTED]", out)
    return out


def _is_sensitive(key: Any) -> bool:
    return isinstance(key, str) and key.lower() in SENSITIVE_FIELDS


def _clean(value: Any, key: Any = None) -> Any:
    if _is_sensitive(key):
        return REDACTED
    if isinstance(value, Mapping):
        return {k: _clean(v, k) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_clean(v) for v in value]
    if isinstance(value, str) and isinstance(key, str) and key.lower() in CONTENT_FIELDS:
        return redact_text(value)
    return value


def sanitize(metadata: Optional[Mapping[str, Any]]) -> Optional[Dict[str, Any]]:
    """Return a scrubbed copy of ``metadata``. Never raises."""
    if metadata is None:
        return None
    if not isinstance(metadata, Mapping):
        return metadata
    return {k: _clean(v, k) for k, v in metadata.items()}

"""Redaction helpers. Anything user-supplied goes through here before logging.

CPF/CNPJ numbers, e-mails and phone numbers are masked. Dicts and lists are
summarised by shape only.
"""

from __future__ import annotations

import re
from decimal import Decimal
from typing import Any

_CNPJ_PATTERN = re.compile(r"\b\d{2}\.?\d{3}\.?\d{3}/?\d{4}-?\d{2}\b")
_CPF_PATTERN = re.compile(r"\b\d{3}\.?\d{3}\.?\d{3}-?\d{2}\b")
_EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")
_PHONE_PATTERN = re.compile(r"\+?\d[\d\s\-()]{8,}\d")

_REDACTED = "[REDACTED]"

# Technical strings kept for diagnostics are cut to this length.
TECHNICAL_MAX_LEN = 300


def redact_string(value: str) -> str:
    """Mask documents, e-mails and phone numbers in a string."""
    result = _CNPJ_PATTERN.sub(_REDACTED, value)
    result = _CPF_PATTERN.sub(_REDACTED, result)
    result = _EMAIL_PATTERN.sub(_REDACTED, result)
    result = _PHONE_PATTERN.sub(_REDACTED, result)
    return result


def mask_document(digits: str | None) -> str:
    """Keep only the last two digits of a CPF/CNPJ ("***49")."""
    if not digits:
        return "null"
    return "***" + digits[-2:]


def shorten_technical(value: Any, limit: int = TECHNICAL_MAX_LEN) -> str:
    """Redact and truncate an error string for server-side diagnostics."""
    text = redact_string(str(value)).replace("\n", " ").strip()
    if len(text) > limit:
        text = text[: limit - 3] + "..."
    return text


def redact_value(value: Any) -> str:
    """Redact any value for logging. Returns a string representation."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, (int, float, Decimal)):
        return str(value)
    if isinstance(value, str):
        return redact_string(value)
    if isinstance(value, dict):
        return f"dict(keys={list(value.keys())})"
    if isinstance(value, (list, tuple)):
        return f"list(len={len(value)})"
    return f"<{type(value).__name__}>"


def safe_log_context(**kwargs: Any) -> dict[str, str]:
    """Build a context dict safe for logging. All values are redacted."""
    return {k: redact_value(v) for k, v in kwargs.items()}

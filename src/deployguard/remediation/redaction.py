"""Redaction applied to every step output and error before it is persisted or returned."""

from __future__ import annotations

import json
import re
from typing import Any

from deployguard.remediation.contracts import StepError, stable_stringify

REDACTED = "********"

SENSITIVE_KEY_PARTS = (
    "secret",
    "token",
    "password",
    "key",
    "auth",
    "cookie",
    "header",
    "bearer",
    "credential",
    "signature",
)

_JWT_RE = re.compile(r"^[A-Za-z0-9_-]{8,}\.[A-Za-z0-9_-]{8,}\.[A-Za-z0-9_-]{8,}$")
_API_KEY_RE = re.compile(r"^(?:sk|pk|api|key)-\S+", re.IGNORECASE)
_BEARER_RE = re.compile(r"^bearer\s+\S+", re.IGNORECASE)
_URL_WITH_QUERY_RE = re.compile(r"^[a-z][a-z0-9+.-]*://[^\s?]+\?\S+", re.IGNORECASE)


def is_sensitive_key(key: str) -> bool:
    lowered = key.lower()
    return any(part in lowered for part in SENSITIVE_KEY_PARTS)


def is_secret_shaped(value: str) -> bool:
    """True for JWTs, prefixed API keys, bearer values and URLs carrying a query string."""
    candidate = value.strip()
    return bool(
        _JWT_RE.match(candidate)
        or _API_KEY_RE.match(candidate)
        or _BEARER_RE.match(candidate)
        or _URL_WITH_QUERY_RE.match(candidate)
    )


def sanitize_redact(value: Any) -> Any:
    """Return a copy of ``value`` with secrets replaced by a fixed mask.

    Any value stored under a sensitive key is masked whole, including None
    and nested containers. Other strings are masked when they look like a
    credential. Dicts and lists are walked recursively.
    """
    if isinstance(value, dict):
        return {
            k: REDACTED if is_sensitive_key(str(k)) else sanitize_redact(v)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [sanitize_redact(item) for item in value]
    if isinstance(value, str) and is_secret_shaped(value):
        return REDACTED
    return value


_EMBEDDED_SECRET_RE = re.compile(
    r"\bbearer\s+\S+"
    r"|\b(?:sk|pk|api|key)-[^\s\"',]+"
    r"|\beyJ[A-Za-z0-9_-]{5,}\.[A-Za-z0-9_-]{8,}\.[A-Za-z0-9_-]{8,}"
    r"|\b[a-z][a-z0-9+.-]*://[^\s?\"]+\?[^\s\"]+",
    re.IGNORECASE,
)


def redact_text(text: str) -> str:
    """Mask credentials embedded anywhere in free text such as an error message."""
    return _EMBEDDED_SECRET_RE.sub(REDACTED, text)


def redact_step_error(error: StepError) -> StepError:
    """Copy of ``error`` safe to persist. JSON details are redacted by key, others as text."""
    details = error.details
    if details is not None:
        try:
            parsed = json.loads(details)
        except ValueError:
            details = redact_text(details)
        else:
            details = stable_stringify(sanitize_redact(parsed))
    return StepError(code=error.code, message=redact_text(error.message), details=details)

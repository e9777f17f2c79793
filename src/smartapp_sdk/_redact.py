"""Redaction of webhook payloads before they reach a log record.

Envelopes carry OAuth tokens (``eventData.authToken``), persisted contexts
carry refresh tokens, and inbound requests carry signatures. Keys are
compared case-insensitively with ``_`` and ``-`` ignored, so ``authToken``,
``auth_token`` and ``Auth-Token`` are treated alike.
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from typing import Any

from pydantic import BaseModel

REDACTED = "<redacted>"

_SENSITIVE_KEYS: frozenset[str] = frozenset(
    {
        "authtoken",
        "accesstoken",
        "refreshtoken",
        "clientsecret",
        "authorization",
        "signature",
        "cookie",
        "password",
        "code",
    }
)

# Credentials embedded in free text, e.g. a logged header line.
_INLINE_CREDENTIAL_RE = re.compile(r"\b(Bearer|Basic)\s+[A-Za-z0-9._~+/=-]+", re.IGNORECASE)

_MAX_DEPTH = 20


def _normalize_key(key: Any) -> str:
    return str(key).lower().replace("_", "").replace("-", "")


def is_sensitive_key(key: Any) -> bool:
    return _normalize_key(key) in _SENSITIVE_KEYS


def redact_for_log(value: Any, *, max_string: int = 512, _depth: int = 0) -> Any:
    """Return a JSON-friendly, redacted copy of *value*.

    Pydantic models are dumped by alias first. Unknown objects are reduced
    to their ``repr``.
    """
    if _depth > _MAX_DEPTH:
        return "<max-depth>"

    if value is None or isinstance(value, (bool, int, float)):
        return value

    if isinstance(value, str):
        value = _INLINE_CREDENTIAL_RE.sub(lambda m: f"{m.group(1)} {REDACTED}", value)
        if len(value) > max_string:
            return f"{value[:max_string]}…<truncated>"
        return value

    if isinstance(value, (bytes, bytearray)):
        return f"<bytes:{len(value)}b>"

    if isinstance(value, BaseModel):
        return redact_for_log(value.model_dump(by_alias=True), max_string=max_string, _depth=_depth + 1)

    if isinstance(value, Mapping):
        return {
            str(key): REDACTED
            if is_sensitive_key(key)
            else redact_for_log(item, max_string=max_string, _depth=_depth + 1)
            for key, item in value.items()
        }

    if isinstance(value, Sequence):
        return [redact_for_log(item, max_string=max_string, _depth=_depth + 1) for item in value]

    return repr(value)

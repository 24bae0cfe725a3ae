from __future__ import annotations

import re
from typing import Any


_EMAIL_RE = re.compile(r"\b([A-Za-z0-9._%+-])([A-Za-z0-9._%+-]*)(@[A-Za-z0-9.-]+\.[A-Za-z]{2,})\b")
# Plaid access tokens look like access-sandbox-<uuid>
_ACCESS_TOKEN_RE = re.compile(r"\b(access|public|link)-(sandbox|development|production)-[A-Za-z0-9-]+\b")

_SENSITIVE_KEY_MARKERS = (
    "token",
    "secret",
    "authorization",
    "verification",
    "account_number",
    "routing",
)

# Identifiers kept recognizable in logs but not reproducible
_PARTIAL_KEYS = ("item_id", "account_id")


def _mask_email(match: re.Match) -> str:
    return f"{match.group(1)}***{match.group(3)}"


def mask_identifier(value: str) -> str:
    if len(value) <= 8:
        return "***"
    return f"{value[:4]}***{value[-4:]}"


def redact_text(value: str) -> str:
    masked = _EMAIL_RE.sub(_mask_email, value)
    return _ACCESS_TOKEN_RE.sub("[REDACTED]", masked)


def _is_sensitive_key(key: str) -> bool:
    key_l = (key or "").lower()
    return any(marker in key_l for marker in _SENSITIVE_KEY_MARKERS)


def redact_value(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, str):
        return redact_text(value)
    if isinstance(value, dict):
        return redact_dict(value)
    if isinstance(value, list):
        return [redact_value(v) for v in value]
    return value


def redact_dict(payload: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for k, v in payload.items():
        if _is_sensitive_key(k):
            out[k] = "[REDACTED]"
        elif k.lower() in _PARTIAL_KEYS and isinstance(v, str):
            out[k] = mask_identifier(v)
        else:
            out[k] = redact_value(v)
    return out

from __future__ import annotations

import json
from dataclasses import asdict, is_dataclass
from datetime import datetime
from enum import Enum
from typing import Any

REDACTED_VALUE = "<redacted>"
SENSITIVE_KEY_SUBSTRINGS = (
    "secretaccesskey",
    "sessiontoken",
    "secret",
    "password",
    "token",
)


def _is_sensitive_key(key: Any) -> bool:
    if not isinstance(key, str):
        return False
    lowered = key.lower().replace("_", "")
    if lowered in ("nexttoken", "marker", "nextmarker"):
        return False
    return any(token in lowered for token in SENSITIVE_KEY_SUBSTRINGS)


def sanitize_for_json(value: Any) -> Any:
    """
    Convert common non-JSON types to serializable forms and redact sensitive fields.
    """
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, bytes):
        return value.decode("utf-8", "replace")
    if is_dataclass(value) and not isinstance(value, type):
        return sanitize_for_json(asdict(value))
    if isinstance(value, dict):
        out = {}
        for k, v in value.items():
            key = k if isinstance(k, str) else str(k)
            if _is_sensitive_key(key):
                out[key] = REDACTED_VALUE
            else:
                out[key] = sanitize_for_json(v)
        return out
    if isinstance(value, (list, tuple, set, frozenset)):
        return [sanitize_for_json(v) for v in value]
    return value


def stable_json_dumps(obj: Any) -> str:
    return json.dumps(sanitize_for_json(obj), sort_keys=True, ensure_ascii=False, separators=(",", ":"))

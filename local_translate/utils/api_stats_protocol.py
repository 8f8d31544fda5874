"""Request id, timestamp and header masking helpers."""

from __future__ import annotations

import time
from typing import Any, Dict
import uuid


def now_ms() -> int:
    return int(time.time() * 1000)


def generate_request_id() -> str:
    """Return a request id suitable for correlating request lifecycle events."""
    return uuid.uuid4().hex


def _is_sensitive_header_key(key: str) -> bool:
    normalized = str(key).strip().lower().replace("_", "-")
    return any(
        token in normalized
        for token in ("authorization", "api-key", "token", "secret", "password")
    )


def sanitize_headers(headers: Any) -> Dict[str, str] | None:
    """Mask sensitive header values before they reach logs or errors."""
    if not isinstance(headers, dict):
        return None
    sanitized: Dict[str, str] = {}
    for key, value in headers.items():
        header_name = str(key).strip()
        if not header_name:
            continue
        if _is_sensitive_header_key(header_name):
            sanitized[header_name] = "[REDACTED]"
        else:
            sanitized[header_name] = str(value)
    return sanitized or None

"""JSON line protocol for machine consumers of the CLI.

Emits structured lines on stdout that a host process can parse.
Protocol prefixes:
  JSON_CHUNK:    – streamed fragment with the accumulated text so far
  JSON_PROGRESS: – batch unit completed
  JSON_RESULT:   – final translation
  JSON_ERROR:    – failure or cancellation
"""

from __future__ import annotations

import json
import sys
import threading
from typing import Any, Dict, List, Optional

_stdout_lock = threading.Lock()


def emit(prefix: str, data: Dict[str, Any]) -> None:
    """Thread-safe JSON log emission."""
    with _stdout_lock:
        sys.stdout.write(f"\n{prefix}:{json.dumps(data, ensure_ascii=False)}\n")
        sys.stdout.flush()


def emit_chunk(request_id: str, chunk: str, accumulated: str) -> None:
    emit("JSON_CHUNK", {
        "request_id": request_id,
        "chunk": chunk,
        "accumulated": accumulated,
    })


def emit_progress(
    request_id: str,
    *,
    completed: int,
    total: int,
    unit_id: Optional[str] = None,
    translated_text: Optional[str] = None,
) -> None:
    """Emit JSON_PROGRESS after a batch unit resolves."""
    percent = round(completed / max(total, 1) * 100, 1)
    emit("JSON_PROGRESS", {
        "request_id": request_id,
        "unit_id": unit_id,
        "translated_text": translated_text,
        "completed_count": completed,
        "total_count": total,
        "percent": percent,
    })


def emit_result(
    request_id: str,
    *,
    translated_text: Optional[str] = None,
    translated_texts: Optional[List[str]] = None,
    unit_ids: Optional[List[str]] = None,
    duration_ms: Optional[int] = None,
    stop_reason: Optional[str] = None,
) -> None:
    data: Dict[str, Any] = {"request_id": request_id}
    if translated_texts is not None:
        data["unit_ids"] = list(unit_ids or [])
        data["translated_texts"] = list(translated_texts)
    else:
        data["translated_text"] = translated_text or ""
    if duration_ms is not None:
        data["duration_ms"] = duration_ms
    if stop_reason:
        data["stop_reason"] = stop_reason
    emit("JSON_RESULT", data)


def emit_error(request_id: str, code: str, message: str) -> None:
    """Emit JSON_ERROR for failures shown to the user."""
    emit("JSON_ERROR", {
        "request_id": request_id,
        "code": code,
        "message": message,
    })

"""Request, result and event types shared by the translation pipelines."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from local_translate.utils.api_stats_protocol import generate_request_id, now_ms

EVENT_STARTED = "started"
EVENT_CHUNK = "chunk"
EVENT_PROGRESS = "progress"
EVENT_COMPLETED = "completed"
EVENT_ERROR = "error"
EVENT_CANCELLED = "cancelled"

TERMINAL_EVENTS = frozenset({EVENT_COMPLETED, EVENT_ERROR, EVENT_CANCELLED})


@dataclass(frozen=True)
class TextUnit:
    unit_id: str
    text: str


@dataclass
class TranslationRequest:
    id: str
    text: Optional[str] = None
    units: Optional[List[TextUnit]] = None
    source_language: Optional[str] = None
    target_language: Optional[str] = None
    profile_id: Optional[str] = None
    stream: bool = False
    created_at: int = field(default_factory=now_ms)

    def __post_init__(self) -> None:
        if not str(self.id or "").strip():
            raise ValueError("request id is required")
        if self.units is None and self.text is None:
            raise ValueError("either text or units is required")
        if self.units is not None and self.text is not None:
            raise ValueError("text and units are mutually exclusive")

    @property
    def is_batch(self) -> bool:
        return self.units is not None


@dataclass
class TranslationResult:
    request_id: str
    translated_text: str
    source_text: str
    source_language: str
    target_language: str
    profile_id: str = ""
    duration_ms: int = 0
    stop_reason: Optional[str] = None
    id: str = field(default_factory=generate_request_id)
    timestamp: int = field(default_factory=now_ms)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "request_id": self.request_id,
            "translated_text": self.translated_text,
            "source_text": self.source_text,
            "source_language": self.source_language,
            "target_language": self.target_language,
            "profile_id": self.profile_id,
            "duration_ms": self.duration_ms,
            "stop_reason": self.stop_reason,
            "timestamp": self.timestamp,
        }


@dataclass
class TranslationEvent:
    type: str
    request_id: str
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: int = field(default_factory=now_ms)

    @property
    def terminal(self) -> bool:
        return self.type in TERMINAL_EVENTS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "request_id": self.request_id,
            "timestamp": self.timestamp,
            **self.data,
        }

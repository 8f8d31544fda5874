"""
Translation history - newest-first list of completed translations.
Persisted as a JSON file when a path is given, otherwise kept in memory.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
import json
import logging
import os
import threading
from typing import Any, Dict, List, Optional

from local_translate.registry.settings import DEFAULT_HISTORY_MAX_ITEMS
from local_translate.utils.api_stats_protocol import now_ms

logger = logging.getLogger(__name__)

HISTORY_VERSION = 1


@dataclass
class HistoryEntry:
    id: str
    source_text: str
    translated_text: str
    source_language: str
    target_language: str
    profile_id: str = ""
    timestamp: int = field(default_factory=now_ms)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HistoryEntry":
        return cls(
            id=str(data.get("id") or ""),
            source_text=str(data.get("source_text") or ""),
            translated_text=str(data.get("translated_text") or ""),
            source_language=str(data.get("source_language") or ""),
            target_language=str(data.get("target_language") or ""),
            profile_id=str(data.get("profile_id") or ""),
            timestamp=int(data.get("timestamp") or 0),
        )


class HistoryStore:
    def __init__(self, path: Optional[str] = None, max_items: int = DEFAULT_HISTORY_MAX_ITEMS):
        self.path = path
        self.max_items = max(1, int(max_items))
        self._entries: List[HistoryEntry] = []
        self._lock = threading.Lock()
        if path:
            self.load()

    def load(self) -> bool:
        """Read entries from ``path``; a corrupt file leaves current entries untouched."""
        if not self.path or not os.path.exists(self.path):
            return False
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as exc:
            logger.warning(f"Failed to load history {self.path}: {exc}")
            return False
        raw_entries = data.get("entries", []) if isinstance(data, dict) else []
        entries = [
            HistoryEntry.from_dict(item) for item in raw_entries if isinstance(item, dict)
        ]
        with self._lock:
            self._entries = entries[: self.max_items]
        return True

    def _save_locked(self) -> None:
        if not self.path:
            return
        data = {
            "version": HISTORY_VERSION,
            "entries": [entry.to_dict() for entry in self._entries],
        }
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=2)
        os.replace(tmp_path, self.path)

    def add_history_entry(self, entry: HistoryEntry) -> None:
        with self._lock:
            self._entries.insert(0, entry)
            del self._entries[self.max_items:]
            self._save_locked()

    def get_history_entries(
        self, limit: Optional[int] = None, offset: Optional[int] = None
    ) -> List[HistoryEntry]:
        start = max(offset or 0, 0)
        with self._lock:
            if limit:
                return list(self._entries[start:start + limit])
            return list(self._entries[start:])

    def count_history_entries(self) -> int:
        with self._lock:
            return len(self._entries)

    def remove_history_entry(self, entry_id: str) -> bool:
        with self._lock:
            remaining = [entry for entry in self._entries if entry.id != entry_id]
            removed = len(remaining) != len(self._entries)
            if removed:
                self._entries = remaining
                self._save_locked()
            return removed

    def clear_history(self) -> None:
        with self._lock:
            self._entries = []
            self._save_locked()

    def set_max_items(self, max_items: int) -> None:
        """Change the cap; existing entries are trimmed on the next insertion."""
        with self._lock:
            self.max_items = max(1, int(max_items))

"""Cooperative cancellation token threaded through every suspension point."""

from __future__ import annotations

import logging
import threading
from typing import Callable, List, Optional

from local_translate.providers.base import TranslationCancelled

logger = logging.getLogger(__name__)


class CancellationToken:
    def __init__(self, request_id: Optional[str] = None):
        self.request_id = request_id
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: List[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks = list(self._callbacks)
            self._callbacks.clear()
        for callback in callbacks:
            try:
                callback()
            except Exception as exc:
                logger.debug(f"Cancel callback failed for {self.request_id}: {exc}")

    def add_callback(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register ``callback`` to run on cancel. Returns an unregister function.

        If the token is already cancelled the callback runs immediately.
        """
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)

                def _remove() -> None:
                    with self._lock:
                        if callback in self._callbacks:
                            self._callbacks.remove(callback)

                return _remove
        callback()
        return lambda: None

    def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds; returns True if cancelled meanwhile."""
        return self._event.wait(timeout)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise TranslationCancelled(
                "Translation was cancelled",
                request_id=self.request_id,
            )

"""Request lifecycle manager.

Owns the registry of in-flight requests and their cancellation tokens,
dispatches work to the translation client on a worker pool, fans events out
to subscribed sinks and records history once per successful request.

Every request id gets a scope with its own re-entrant lock. Publishing an
event and cancelling the request both take that lock, so once ``cancel``
returns nothing else is published for the id.
"""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
import itertools
import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from local_translate.history.store import HistoryEntry, HistoryStore
from local_translate.pipelines.base import (
    EVENT_CANCELLED,
    EVENT_CHUNK,
    EVENT_COMPLETED,
    EVENT_ERROR,
    EVENT_PROGRESS,
    EVENT_STARTED,
    TranslationEvent,
    TranslationRequest,
)
from local_translate.pipelines.client import TranslationClient, describe_error
from local_translate.providers.base import TranslationCancelled, error_code
from local_translate.registry.settings import Settings, TranslationProfile, resolve_profile
from local_translate.utils.cancellation import CancellationToken

logger = logging.getLogger(__name__)

Sink = Callable[[TranslationEvent], None]


class DuplicateRequestError(ValueError):
    """A request id was submitted twice to the same manager."""


@dataclass
class _Scope:
    request_id: str
    token: CancellationToken
    lock: threading.RLock = field(default_factory=threading.RLock)
    closed: bool = False
    completed: bool = False


class Subscription:
    def __init__(self, manager: "RequestLifecycleManager", subscription_id: int):
        self._manager = manager
        self.subscription_id = subscription_id

    def unsubscribe(self) -> None:
        self._manager.unsubscribe(self.subscription_id)


class RequestHandle:
    def __init__(self, request_id: str, future: Future, manager: "RequestLifecycleManager"):
        self.request_id = request_id
        self._future = future
        self._manager = manager

    def result(self, timeout: Optional[float] = None) -> Any:
        """Block for the outcome: a ``TranslationResult`` or, for batches, a list of texts."""
        return self._future.result(timeout)

    def done(self) -> bool:
        return self._future.done()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Wait up to ``timeout`` seconds; True once the request has finished."""
        wait([self._future], timeout=timeout)
        return self._future.done()

    def cancel(self) -> bool:
        return self._manager.cancel(self.request_id)


class RequestLifecycleManager:
    def __init__(
        self,
        settings_loader: Callable[[], Settings] | None = None,
        history: HistoryStore | None = None,
        client: TranslationClient | None = None,
        executor: ThreadPoolExecutor | None = None,
        max_workers: int = 4,
    ):
        self._settings_loader = settings_loader or Settings
        self.history = history
        self.client = client or TranslationClient()
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="local-translate"
        )
        self._lock = threading.Lock()
        self._scopes: Dict[str, _Scope] = {}
        self._seen_ids: Set[str] = set()
        self._sinks: Dict[int, Tuple[Sink, Optional[str]]] = {}
        self._sink_ids = itertools.count(1)

    # --- subscriptions -------------------------------------------------

    def subscribe(self, sink: Sink, request_id: Optional[str] = None) -> Subscription:
        """Register ``sink`` for every event, or only for ``request_id``."""
        with self._lock:
            subscription_id = next(self._sink_ids)
            self._sinks[subscription_id] = (sink, request_id)
        return Subscription(self, subscription_id)

    def unsubscribe(self, subscription_id: int) -> None:
        with self._lock:
            self._sinks.pop(subscription_id, None)

    def _sinks_for(self, request_id: str) -> List[Sink]:
        with self._lock:
            return [
                sink
                for sink, wanted in self._sinks.values()
                if wanted is None or wanted == request_id
            ]

    def _publish(self, scope: _Scope, event_type: str, data: Dict[str, Any]) -> bool:
        with scope.lock:
            if scope.closed:
                return False
            event = TranslationEvent(type=event_type, request_id=scope.request_id, data=data)
            if event.terminal:
                scope.closed = True
            for sink in self._sinks_for(scope.request_id):
                try:
                    sink(event)
                except Exception as exc:
                    logger.warning(
                        f"[{scope.request_id}] sink failed on {event_type} event: {exc}"
                    )
            return True

    # --- request lifecycle ---------------------------------------------

    def is_active(self, request_id: str) -> bool:
        with self._lock:
            return request_id in self._scopes

    def active_requests(self) -> List[str]:
        with self._lock:
            return list(self._scopes)

    def submit(self, request: TranslationRequest) -> RequestHandle:
        with self._lock:
            if request.id in self._seen_ids:
                raise DuplicateRequestError(f"Duplicate request id: {request.id}")

        # settings are read fresh for every submission
        settings = self._settings_loader()
        profile = resolve_profile(
            settings.profiles, request.profile_id, settings.active_profile_id
        )
        if self.history is not None:
            self.history.set_max_items(settings.history_max_items)

        scope = _Scope(request_id=request.id, token=CancellationToken(request.id))
        with self._lock:
            if request.id in self._seen_ids:
                raise DuplicateRequestError(f"Duplicate request id: {request.id}")
            self._seen_ids.add(request.id)
            self._scopes[request.id] = scope

        stream = bool(request.stream and settings.streaming_enabled and not request.is_batch)
        started: Dict[str, Any] = {"profile_id": profile.id, "stream": stream}
        if request.is_batch:
            started["total_count"] = len(request.units or [])
        self._publish(scope, EVENT_STARTED, started)

        try:
            future = self._executor.submit(self._run, request, scope, profile, settings, stream)
        except RuntimeError:
            self._release(scope)
            raise
        return RequestHandle(request.id, future, self)

    def cancel(self, request_id: str) -> bool:
        """Cancel an in-flight request. Unknown or finished ids are a no-op."""
        with self._lock:
            scope = self._scopes.get(request_id)
        if scope is None:
            return False
        with scope.lock:
            if scope.closed:
                return False
            scope.token.cancel()
            self._publish(scope, EVENT_CANCELLED, {"code": "CANCELLED"})
        self._release(scope)
        logger.info(f"[{request_id}] cancelled")
        return True

    def _release(self, scope: _Scope) -> None:
        with self._lock:
            if self._scopes.get(scope.request_id) is scope:
                del self._scopes[scope.request_id]

    def _run(
        self,
        request: TranslationRequest,
        scope: _Scope,
        profile: TranslationProfile,
        settings: Settings,
        stream: bool,
    ) -> Any:
        source_language = request.source_language or profile.source_language
        target_language = request.target_language or profile.target_language
        policy = settings.retry_policy
        start = time.perf_counter()
        try:
            if request.is_batch:
                return self._run_batch(
                    request, scope, profile, settings, source_language, target_language
                )
            text = request.text or ""
            if stream:
                result = self.client.translate_streaming(
                    text,
                    source_language,
                    target_language,
                    profile,
                    scope.token,
                    lambda chunk, accumulated: self._publish(
                        scope, EVENT_CHUNK, {"chunk": chunk, "accumulated": accumulated}
                    ),
                    request_id=request.id,
                    retry_policy=policy,
                )
            else:
                result = self.client.translate(
                    text,
                    source_language,
                    target_language,
                    profile,
                    scope.token,
                    request_id=request.id,
                    retry_policy=policy,
                )
            completed = self._complete(
                scope,
                settings,
                HistoryEntry(
                    id=request.id,
                    source_text=text,
                    translated_text=result.translated_text,
                    source_language=source_language,
                    target_language=target_language,
                    profile_id=profile.id,
                ),
                result.to_dict(),
            )
            if not completed:
                scope.token.raise_if_cancelled()
            return result
        except TranslationCancelled:
            logger.info(f"[{request.id}] translation cancelled")
            with scope.lock:
                scope.token.cancel()
                self._publish(scope, EVENT_CANCELLED, {"code": "CANCELLED"})
            raise
        except Exception as exc:
            duration_ms = int((time.perf_counter() - start) * 1000)
            logger.warning(f"[{request.id}] translation failed ({error_code(exc)}): {exc}")
            self._publish(
                scope,
                EVENT_ERROR,
                {
                    "code": error_code(exc),
                    "message": str(exc),
                    "details": describe_error(exc),
                    "duration_ms": duration_ms,
                },
            )
            raise
        finally:
            self._release(scope)

    def _run_batch(
        self,
        request: TranslationRequest,
        scope: _Scope,
        profile: TranslationProfile,
        settings: Settings,
        source_language: str,
        target_language: str,
    ) -> List[str]:
        units = list(request.units or [])
        unit_ids = [unit.unit_id for unit in units]
        texts = [unit.text for unit in units]
        start = time.perf_counter()

        def _on_progress(completed: int, total: int, translated: str) -> None:
            self._publish(
                scope,
                EVENT_PROGRESS,
                {
                    "unit_id": unit_ids[completed - 1],
                    "translated_text": translated,
                    "completed_count": completed,
                    "total_count": total,
                },
            )

        translated_texts = self.client.translate_batch(
            texts,
            source_language,
            target_language,
            profile,
            scope.token,
            _on_progress,
            request_id=request.id,
            retry_policy=settings.retry_policy,
        )
        completed = self._complete(
            scope,
            settings,
            HistoryEntry(
                id=request.id,
                source_text="\n".join(texts),
                translated_text="\n".join(translated_texts),
                source_language=source_language,
                target_language=target_language,
                profile_id=profile.id,
            ),
            {
                "unit_ids": unit_ids,
                "translated_texts": list(translated_texts),
                "profile_id": profile.id,
                "duration_ms": int((time.perf_counter() - start) * 1000),
            },
        )
        if not completed:
            scope.token.raise_if_cancelled()
        return translated_texts

    def _complete(
        self,
        scope: _Scope,
        settings: Settings,
        entry: HistoryEntry,
        data: Dict[str, Any],
    ) -> bool:
        """Record history and publish completion at most once per scope."""
        with scope.lock:
            if scope.closed or scope.completed:
                return False
            scope.completed = True
            if settings.history_enabled and self.history is not None:
                try:
                    self.history.add_history_entry(entry)
                except OSError as exc:
                    logger.warning(f"[{scope.request_id}] failed to record history: {exc}")
            self._publish(scope, EVENT_COMPLETED, data)
            return True

    def shutdown(self, wait: bool = True) -> None:
        for request_id in self.active_requests():
            self.cancel(request_id)
        if self._owns_executor:
            self._executor.shutdown(wait=wait)
        self.client.close()

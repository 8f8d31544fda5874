"""Translation client: prompt building, retry, streaming guard and sanitization."""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

from local_translate.pipelines.base import TranslationResult
from local_translate.pipelines.batch import BatchCoordinator
from local_translate.prompts.builder import build_messages
from local_translate.providers.base import (
    BaseProvider,
    ProviderError,
    StreamStalled,
    TranslationCancelled,
)
from local_translate.providers.openai_compat import OpenAICompatProvider
from local_translate.registry.settings import RetryPolicy, TranslationProfile
from local_translate.utils.api_stats_protocol import generate_request_id
from local_translate.utils.cancellation import CancellationToken
from local_translate.utils.sanitize import sanitize, sanitize_chunk
from local_translate.utils.stream_guard import STOP_TIMEOUT, StreamGuard, StreamGuardConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")

ChunkCallback = Callable[[str, str], None]
ProgressCallback = Callable[[int, int, str], None]


class TranslationClient:
    def __init__(
        self,
        retry_policy: RetryPolicy | None = None,
        guard_config: StreamGuardConfig | None = None,
        provider_factory: Callable[..., BaseProvider] | None = None,
    ):
        self.retry_policy = retry_policy or RetryPolicy()
        self.guard_config = guard_config or StreamGuardConfig()
        self._provider_factory = provider_factory or OpenAICompatProvider
        self._providers: Dict[str, Tuple[TranslationProfile, BaseProvider]] = {}
        self._lock = threading.Lock()

    def _provider_for(self, profile: TranslationProfile) -> BaseProvider:
        with self._lock:
            cached = self._providers.get(profile.id)
            if cached is not None and cached[0] == profile:
                return cached[1]
            provider = self._provider_factory(
                profile, stall_timeout=self.guard_config.stall_timeout_seconds
            )
            self._providers[profile.id] = (profile, provider)
            return provider

    def close(self) -> None:
        with self._lock:
            providers = [provider for _, provider in self._providers.values()]
            self._providers.clear()
        for provider in providers:
            close = getattr(provider, "close", None)
            if close is not None:
                close()

    def _with_retry(
        self,
        operation: Callable[[], T],
        cancel_token: Optional[CancellationToken],
        request_id: str,
        can_retry: Callable[[], bool] = lambda: True,
        retry_policy: Optional[RetryPolicy] = None,
    ) -> T:
        policy = retry_policy or self.retry_policy
        attempt = 0
        while True:
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            try:
                return operation()
            except TranslationCancelled:
                raise
            except ProviderError as exc:
                if (
                    not exc.retryable
                    or attempt >= policy.max_retries
                    or not can_retry()
                ):
                    raise
                attempt += 1
                logger.warning(
                    f"[{request_id}] attempt {attempt}/{policy.max_retries + 1} failed "
                    f"({exc.code}): {exc}; retrying in {policy.retry_interval_ms}ms"
                )
            interval = policy.retry_interval_seconds
            if cancel_token is not None:
                if cancel_token.wait(interval):
                    cancel_token.raise_if_cancelled()
            elif interval > 0:
                time.sleep(interval)

    def translate(
        self,
        text: str,
        source_language: str,
        target_language: str,
        profile: TranslationProfile,
        cancel_token: Optional[CancellationToken] = None,
        *,
        request_id: Optional[str] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ) -> TranslationResult:
        request_id = request_id or generate_request_id()
        provider = self._provider_for(profile)
        messages = build_messages(profile, text, source_language, target_language)
        start = time.perf_counter()

        def _attempt():
            request = provider.build_request(messages, stream=False, request_id=request_id)
            return provider.send(request, cancel_token)

        response = self._with_retry(
            _attempt, cancel_token, request_id, retry_policy=retry_policy
        )
        return TranslationResult(
            request_id=request_id,
            translated_text=sanitize(response.text),
            source_text=text,
            source_language=source_language,
            target_language=target_language,
            profile_id=profile.id,
            duration_ms=int((time.perf_counter() - start) * 1000),
            stop_reason=response.stop_reason,
        )

    def translate_streaming(
        self,
        text: str,
        source_language: str,
        target_language: str,
        profile: TranslationProfile,
        cancel_token: Optional[CancellationToken] = None,
        on_chunk: Optional[ChunkCallback] = None,
        *,
        request_id: Optional[str] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ) -> TranslationResult:
        """Stream a translation, forwarding guarded chunks to ``on_chunk``.

        Retries only happen while nothing has been delivered yet; once a chunk
        reached the consumer a failure is raised as-is.
        """
        request_id = request_id or generate_request_id()
        provider = self._provider_for(profile)
        messages = build_messages(profile, text, source_language, target_language)
        delivered = threading.Event()
        start = time.perf_counter()

        def _attempt() -> StreamGuard:
            guard = StreamGuard(len(text), self.guard_config)
            request = provider.build_request(messages, stream=True, request_id=request_id)
            chunks = provider.stream(request, cancel_token)
            try:
                for raw in chunks:
                    if cancel_token is not None and cancel_token.cancelled:
                        break
                    piece = sanitize_chunk(raw)
                    if not piece:
                        continue
                    outcome = guard.on_chunk(piece)
                    if outcome.chunk:
                        delivered.set()
                        if on_chunk is not None:
                            on_chunk(outcome.chunk, guard.accumulated)
                    if outcome.stop:
                        break
            except StreamStalled:
                if not delivered.is_set():
                    raise
                guard.stop(STOP_TIMEOUT)
            finally:
                close = getattr(chunks, "close", None)
                if close is not None:
                    close()
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            return guard

        guard = self._with_retry(
            _attempt,
            cancel_token,
            request_id,
            can_retry=lambda: not delivered.is_set(),
            retry_policy=retry_policy,
        )
        return TranslationResult(
            request_id=request_id,
            translated_text=sanitize(guard.accumulated),
            source_text=text,
            source_language=source_language,
            target_language=target_language,
            profile_id=profile.id,
            duration_ms=int((time.perf_counter() - start) * 1000),
            stop_reason=guard.stop_reason,
        )

    def translate_batch(
        self,
        texts: Sequence[str],
        source_language: str,
        target_language: str,
        profile: TranslationProfile,
        cancel_token: Optional[CancellationToken] = None,
        on_progress: Optional[ProgressCallback] = None,
        *,
        request_id: Optional[str] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ) -> List[str]:
        return BatchCoordinator(self).run(
            texts,
            source_language,
            target_language,
            profile,
            cancel_token,
            on_progress,
            request_id=request_id,
            retry_policy=retry_policy,
        )


def describe_error(exc: BaseException) -> Dict[str, Any]:
    """Flatten an exception into the fields carried by error events."""
    details: Dict[str, Any] = {"error_type": getattr(exc, "error_type", "unknown_error")}
    for name in ("status_code", "url", "duration_ms", "response_text"):
        value = getattr(exc, name, None)
        if value is not None:
            details[name] = value
    return details

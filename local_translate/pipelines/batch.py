"""Sequential batch translation with per-unit fallback."""

from __future__ import annotations

import logging
from typing import Any, Callable, List, Optional, Sequence

from local_translate.providers.base import TranslationCancelled, error_code
from local_translate.utils.api_stats_protocol import generate_request_id

logger = logging.getLogger(__name__)


class BatchCoordinator:
    """Translates text units one at a time through a ``TranslationClient``.

    Results keep input order. A unit that fails after the client's retries
    resolves to its source text so one bad unit never sinks the batch.
    Cancellation is the only error that escapes.
    """

    def __init__(self, client: Any):
        self.client = client

    def run(
        self,
        texts: Sequence[str],
        source_language: str,
        target_language: str,
        profile: Any,
        cancel_token: Any = None,
        on_progress: Optional[Callable[[int, int, str], None]] = None,
        *,
        request_id: Optional[str] = None,
        retry_policy: Any = None,
    ) -> List[str]:
        request_id = request_id or generate_request_id()
        total = len(texts)
        results: List[str] = []
        for index, text in enumerate(texts):
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            source = text or ""
            if not source.strip():
                translated = ""
            else:
                try:
                    result = self.client.translate(
                        source,
                        source_language,
                        target_language,
                        profile,
                        cancel_token,
                        request_id=f"{request_id}:{index}",
                        retry_policy=retry_policy,
                    )
                    translated = result.translated_text
                except TranslationCancelled:
                    raise
                except Exception as exc:
                    logger.warning(
                        f"[{request_id}] unit {index + 1}/{total} failed "
                        f"({error_code(exc)}): {exc}; keeping source text"
                    )
                    translated = source
            results.append(translated)
            if on_progress is not None:
                on_progress(index + 1, total, translated)
        return results

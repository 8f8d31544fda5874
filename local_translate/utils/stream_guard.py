"""Runaway-output protection for streamed completions."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
import logging
from typing import Deque, Optional

logger = logging.getLogger(__name__)

STOP_MAX_LENGTH = "max-length"
STOP_REPETITION = "repetition"
STOP_TIMEOUT = "timeout"


@dataclass(frozen=True)
class StreamGuardConfig:
    length_multiplier: int = 10
    min_length: int = 1000
    repeat_chunk_count: int = 5
    min_pattern_length: int = 10
    stall_timeout_seconds: float = 30.0

    def max_output_length(self, input_length: int) -> int:
        return max(int(input_length) * self.length_multiplier, self.min_length)


@dataclass
class StreamState:
    max_length: int
    accumulated: str = ""
    recent_chunks: Deque[str] = field(default_factory=deque)


@dataclass
class GuardOutcome:
    """Result of feeding one chunk.

    ``chunk`` is what may be forwarded to the consumer (possibly truncated, or
    empty when nothing of it survives). ``stop`` ends the stream gracefully.
    """

    chunk: str
    stop: bool = False
    reason: Optional[str] = None


class StreamGuard:
    def __init__(self, input_length: int, config: StreamGuardConfig | None = None):
        self.config = config or StreamGuardConfig()
        self.state = StreamState(
            max_length=self.config.max_output_length(input_length),
            recent_chunks=deque(maxlen=max(self.config.repeat_chunk_count, 1)),
        )
        self.stop_reason: Optional[str] = None

    @property
    def accumulated(self) -> str:
        return self.state.accumulated

    @property
    def stopped(self) -> bool:
        return self.stop_reason is not None

    def stop(self, reason: str) -> None:
        if self.stop_reason is None:
            self.stop_reason = reason
            logger.warning(
                f"Stream stopped early ({reason}) after {len(self.state.accumulated)} chars"
            )

    def on_chunk(self, chunk: str) -> GuardOutcome:
        if self.stopped:
            return GuardOutcome(chunk="", stop=True, reason=self.stop_reason)
        if not chunk:
            return GuardOutcome(chunk="")

        state = self.state

        remaining = state.max_length - len(state.accumulated)
        if len(chunk) > remaining:
            kept = chunk[: max(remaining, 0)]
            state.accumulated += kept
            self.stop(STOP_MAX_LENGTH)
            return GuardOutcome(chunk=kept, stop=True, reason=STOP_MAX_LENGTH)

        state.accumulated += chunk
        state.recent_chunks.append(chunk)

        if self._repeated_chunks() or self._repeated_tail():
            self.stop(STOP_REPETITION)
            return GuardOutcome(chunk=chunk, stop=True, reason=STOP_REPETITION)
        return GuardOutcome(chunk=chunk)

    def _repeated_chunks(self) -> bool:
        recent = self.state.recent_chunks
        if len(recent) < self.config.repeat_chunk_count:
            return False
        first = recent[0]
        if not first:
            return False
        return all(item == first for item in recent)

    def _repeated_tail(self) -> bool:
        min_len = self.config.min_pattern_length
        if min_len <= 0:
            return False
        tail = self.state.accumulated[-3 * min_len:]
        if len(tail) < 3 * min_len:
            return False
        for length in range(min_len, len(tail) // 3 + 1):
            last = tail[-length:]
            if (
                tail[-2 * length:-length] == last
                and tail[-3 * length:-2 * length] == last
            ):
                return True
        return False

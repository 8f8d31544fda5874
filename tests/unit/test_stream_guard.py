import pytest

from local_translate.utils.stream_guard import (
    STOP_MAX_LENGTH,
    STOP_REPETITION,
    StreamGuard,
    StreamGuardConfig,
)


def _text(length, offset=0):
    # distinct CJK characters, so no repetition check can fire
    return "".join(chr(0x4E00 + offset + i) for i in range(length))


@pytest.mark.unit
def test_max_output_length_has_floor():
    config = StreamGuardConfig()
    assert config.max_output_length(0) == 1000
    assert config.max_output_length(50) == 1000
    assert config.max_output_length(200) == 2000


@pytest.mark.unit
def test_guard_forwards_normal_chunks():
    guard = StreamGuard(10)
    for chunk in ("A", "B", "C"):
        outcome = guard.on_chunk(chunk)
        assert outcome.chunk == chunk
        assert not outcome.stop
    assert guard.accumulated == "ABC"
    assert guard.stop_reason is None


@pytest.mark.unit
def test_guard_truncates_at_max_length():
    guard = StreamGuard(10)
    first = guard.on_chunk(_text(990))
    assert not first.stop

    second = guard.on_chunk(_text(20, offset=990))
    assert second.stop
    assert second.reason == STOP_MAX_LENGTH
    assert second.chunk == _text(10, offset=990)
    assert len(guard.accumulated) == 1000
    assert guard.stop_reason == STOP_MAX_LENGTH


@pytest.mark.unit
def test_guard_stops_on_identical_chunks():
    guard = StreamGuard(10)
    outcomes = [guard.on_chunk("abc") for _ in range(5)]

    assert not any(outcome.stop for outcome in outcomes[:4])
    assert outcomes[4].stop
    assert outcomes[4].reason == STOP_REPETITION
    assert outcomes[4].chunk == "abc"
    assert guard.accumulated == "abc" * 5


@pytest.mark.unit
def test_guard_stops_on_repeated_tail_pattern():
    guard = StreamGuard(10)
    outcome = guard.on_chunk("0123456789" * 3)
    assert outcome.stop
    assert outcome.reason == STOP_REPETITION


@pytest.mark.unit
def test_guard_ignores_non_repeating_tail():
    guard = StreamGuard(10)
    outcome = guard.on_chunk("abcdefghijklmnopqrstuvwxyz0123")
    assert not outcome.stop
    assert outcome.chunk == "abcdefghijklmnopqrstuvwxyz0123"


@pytest.mark.unit
def test_guard_short_period_also_repeats_at_pattern_length():
    # a 2-character cycle is also a 10-character cycle
    guard = StreamGuard(10)
    outcome = guard.on_chunk("ab" * 20)
    assert outcome.stop
    assert outcome.reason == STOP_REPETITION


@pytest.mark.unit
def test_guard_after_stop_forwards_nothing():
    guard = StreamGuard(10)
    guard.on_chunk("0123456789" * 3)

    outcome = guard.on_chunk("more")
    assert outcome.stop
    assert outcome.chunk == ""
    assert guard.accumulated == "0123456789" * 3


@pytest.mark.unit
def test_guard_empty_chunk_is_ignored():
    guard = StreamGuard(10, StreamGuardConfig(repeat_chunk_count=2))
    guard.on_chunk("x")
    outcome = guard.on_chunk("")
    assert outcome.chunk == ""
    assert not outcome.stop
    assert guard.accumulated == "x"


@pytest.mark.unit
def test_guard_thresholds_are_configurable():
    guard = StreamGuard(10, StreamGuardConfig(repeat_chunk_count=3))
    outcomes = [guard.on_chunk("hi") for _ in range(3)]
    assert outcomes[-1].stop
    assert outcomes[-1].reason == STOP_REPETITION


@pytest.mark.unit
def test_guard_stop_keeps_first_reason():
    guard = StreamGuard(10)
    guard.stop("timeout")
    guard.stop(STOP_REPETITION)
    assert guard.stop_reason == "timeout"
    assert guard.stopped

"""Unit tests for the shared FIFO rate limiter."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
import threading
import time
from typing import Callable

from bedrock_burner.llm.rate_limiter import RateLimiter
from tests.fakes import FakeClock


def _advancing_waiter(clock: FakeClock) -> Callable[[float], bool]:
    """Return a waiter that advances the fake clock instead of sleeping."""

    def _wait(seconds: float) -> bool:
        """Advance time by `seconds` and report no cancellation."""

        clock.advance(seconds)
        return False

    return _wait


def test_rate_limiter_spaces_ten_slots_over_nine_seconds(fake_clock: FakeClock) -> None:
    """At 60 calls/min, ten consecutive slots should span at least nine seconds."""

    limiter = RateLimiter(60.0, clock=fake_clock, waiter=_advancing_waiter(fake_clock))
    granted_at: list[float] = []

    for _ in range(10):
        assert limiter.acquire_slot()
        granted_at.append(fake_clock())

    assert granted_at[-1] - granted_at[0] >= 9.0
    assert all(later - earlier >= 1.0 for earlier, later in zip(granted_at, granted_at[1:]))


def test_rate_limiter_does_not_accumulate_idle_credit(fake_clock: FakeClock) -> None:
    """After an idle gap, the next slots should still be spaced by one interval."""

    limiter = RateLimiter(60.0, clock=fake_clock, waiter=_advancing_waiter(fake_clock))
    limiter.acquire_slot()
    fake_clock.advance(30.0)

    limiter.acquire_slot()
    first_after_idle = fake_clock()
    limiter.acquire_slot()

    assert first_after_idle == 30.0
    assert fake_clock() - first_after_idle >= 1.0


def test_rate_limiter_is_unpaced_when_rate_is_zero(fake_clock: FakeClock) -> None:
    """A zero rate should grant slots immediately."""

    def _never_called(seconds: float) -> bool:
        """Fail when the limiter attempts to wait."""

        raise AssertionError(f"unexpected wait of {seconds}s")

    limiter = RateLimiter(0.0, clock=fake_clock, waiter=_never_called)

    assert limiter.interval_seconds == 0.0
    assert all(limiter.acquire_slot() for _ in range(5))


def test_rate_limiter_returns_false_once_cancelled() -> None:
    """A set cancel event should refuse new slots immediately."""

    cancel_event = threading.Event()
    limiter = RateLimiter(60.0, cancel_event=cancel_event)
    cancel_event.set()

    assert not limiter.acquire_slot()


def test_rate_limiter_wait_is_interrupted_by_cancellation() -> None:
    """A worker waiting for a distant slot should wake promptly on cancel."""

    cancel_event = threading.Event()
    limiter = RateLimiter(1.0, cancel_event=cancel_event)
    assert limiter.acquire_slot()

    timer = threading.Timer(0.1, cancel_event.set)
    timer.start()
    started = time.monotonic()
    granted = limiter.acquire_slot()
    waited = time.monotonic() - started
    timer.join()

    assert not granted
    assert waited < 5.0


def test_rate_limiter_hands_out_distinct_slots_to_concurrent_callers(
    fake_clock: FakeClock,
) -> None:
    """Concurrent reservations should never share a slot time."""

    reserved: list[float] = []
    reserved_lock = threading.Lock()

    def _recording_waiter(seconds: float) -> bool:
        """Record the reserved slot offset without sleeping."""

        with reserved_lock:
            reserved.append(seconds)
        return False

    limiter = RateLimiter(600.0, clock=fake_clock, waiter=_recording_waiter)

    with ThreadPoolExecutor(max_workers=8) as executor:
        results = list(executor.map(lambda _: limiter.acquire_slot(), range(20)))

    assert all(results)
    assert sorted(round(value, 6) for value in reserved) == [
        round(0.1 * step, 6) for step in range(1, 20)
    ]

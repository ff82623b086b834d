"""Unit tests for the thread-safe spend ledger."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

import pytest

from bedrock_burner.models.datatypes import AttemptResult, InvocationResult
from bedrock_burner.telemetry.ledger import SpendLedger


def test_ledger_counts_successes_failures_and_throttles() -> None:
    """Ledger should aggregate tokens only for successes and count throttles as errors."""

    ledger = SpendLedger(wall_clock=lambda: 1700000000.0)
    for _ in range(3):
        assert ledger.record_start()
    ledger.record_attempt(AttemptResult.success(InvocationResult(100, 40)))
    ledger.record_attempt(AttemptResult.failure("throttled", throttled=True))
    ledger.record_attempt(AttemptResult.failure("timeout"))

    snapshot = ledger.snapshot()

    assert snapshot.calls_sent == 3
    assert snapshot.calls_ok == 1
    assert snapshot.calls_err == 2
    assert snapshot.calls_throttled == 1
    assert snapshot.input_tokens_total == 100
    assert snapshot.output_tokens_total == 40
    assert snapshot.calls_pending == 0
    assert snapshot.started_at == 1700000000.0


def test_ledger_tracks_in_flight_attempts_as_pending() -> None:
    """Started but unresolved attempts should show up as pending."""

    ledger = SpendLedger()
    ledger.record_start()
    ledger.record_start()
    ledger.record_attempt(AttemptResult.success(InvocationResult(10, 5)))

    snapshot = ledger.snapshot()

    assert snapshot.calls_pending == 1
    assert snapshot.calls_ok + snapshot.calls_err <= snapshot.calls_sent


def test_ledger_rejects_results_without_matching_start() -> None:
    """Resolving more attempts than were started should be a programming error."""

    ledger = SpendLedger()

    with pytest.raises(RuntimeError, match="matching record_start"):
        ledger.record_attempt(AttemptResult.failure("timeout"))


def test_ledger_counts_estimated_usage_calls() -> None:
    """Successes with approximated usage should be counted separately."""

    ledger = SpendLedger()
    ledger.record_start()
    ledger.record_attempt(
        AttemptResult.success(InvocationResult(10, 5, usage_estimated=True))
    )

    assert ledger.snapshot().estimated_usage_calls == 1


def test_frozen_ledger_ignores_late_results() -> None:
    """After freeze, neither new starts nor late results should change counters."""

    ledger = SpendLedger()
    ledger.record_start()
    frozen = ledger.freeze()

    assert ledger.frozen
    assert not ledger.record_start()
    assert not ledger.record_attempt(AttemptResult.success(InvocationResult(500, 500)))
    assert ledger.snapshot() == frozen
    assert frozen.calls_sent == 1
    assert frozen.calls_ok == 0


def test_ledger_totals_are_exact_under_concurrent_updates() -> None:
    """Concurrent workers should never lose ledger updates."""

    ledger = SpendLedger()

    def _record(worker: int) -> None:
        """Record a fixed mix of outcomes from one worker."""

        for index in range(200):
            ledger.record_start()
            if (worker + index) % 4 == 0:
                ledger.record_attempt(AttemptResult.failure("throttled", throttled=True))
            else:
                ledger.record_attempt(AttemptResult.success(InvocationResult(3, 2)))

    with ThreadPoolExecutor(max_workers=8) as executor:
        list(executor.map(_record, range(8)))

    snapshot = ledger.snapshot()

    assert snapshot.calls_sent == 1600
    assert snapshot.calls_ok + snapshot.calls_err == 1600
    assert snapshot.calls_throttled == 400
    assert snapshot.input_tokens_total == 3 * 1200
    assert snapshot.output_tokens_total == 2 * 1200

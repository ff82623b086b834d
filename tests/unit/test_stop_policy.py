"""Unit tests for budget/duration stop decisions and the shared stop signal."""

from __future__ import annotations

from decimal import Decimal
import threading

from bedrock_burner.models.datatypes import (
    LedgerSnapshot,
    PricingConfig,
    StopCriteria,
    StopDecision,
    StopReason,
)
from bedrock_burner.runner.stop_policy import StopPolicy, StopSignal, should_stop


def _criteria(
    target: str = "10", ratio: str = "0.9", max_seconds: float = 3600.0
) -> StopCriteria:
    """Build stop criteria from compact literals."""

    return StopCriteria(
        target_usd=Decimal(target),
        stop_ratio=Decimal(ratio),
        max_duration_seconds=max_seconds,
    )


def test_should_stop_stays_below_cap_for_six_dollars(pricing: PricingConfig) -> None:
    """6 USD of usage should stay under a 9 USD effective cap."""

    snapshot = LedgerSnapshot(input_tokens_total=1_000_000, output_tokens_total=200_000)

    assert not should_stop(snapshot, _criteria(), pricing, elapsed_seconds=10.0)


def test_should_stop_triggers_past_cap(pricing: PricingConfig) -> None:
    """36 USD of usage should exceed a 9 USD effective cap."""

    snapshot = LedgerSnapshot(input_tokens_total=1_000_000, output_tokens_total=2_200_000)

    assert should_stop(snapshot, _criteria(), pricing, elapsed_seconds=10.0)


def test_should_stop_includes_persisted_baseline(pricing: PricingConfig) -> None:
    """Spend carried over from earlier runs should count toward the cap."""

    snapshot = LedgerSnapshot(input_tokens_total=1_000_000, output_tokens_total=200_000)

    assert should_stop(
        snapshot, _criteria(), pricing, elapsed_seconds=10.0, baseline_usd=Decimal("3")
    )


def test_stop_policy_reports_budget_context() -> None:
    """Budget decisions should carry the values that triggered them."""

    decision = StopPolicy(_criteria()).evaluate(Decimal("9"), 1.0)

    assert decision is not None
    assert decision.reason is StopReason.BUDGET
    assert decision.context["spend_usd"] == "9.000000"
    assert decision.context["cap_usd"] == "9.000000"
    assert decision.context["stop_ratio"] == "0.9"


def test_stop_policy_stops_on_duration() -> None:
    """Elapsed time at or past the limit should stop the run."""

    policy = StopPolicy(_criteria(target="1000000", max_seconds=1.0))

    assert policy.evaluate(Decimal(0), 0.5) is None
    decision = policy.evaluate(Decimal(0), 1.0)
    assert decision is not None
    assert decision.reason is StopReason.DURATION
    assert decision.as_dict()["reason"] == "duration"


def test_stop_policy_treats_zero_limits_as_disabled() -> None:
    """A zero target or zero duration should never trigger on its own."""

    assert StopPolicy(_criteria(target="0")).evaluate(Decimal("1e9"), 1.0) is None
    assert StopPolicy(_criteria(max_seconds=0.0)).evaluate(Decimal(0), 1e9) is None


def test_stop_signal_keeps_first_decision_and_sets_event() -> None:
    """Only the first stop reason should be recorded; every trigger cancels waits."""

    event = threading.Event()
    signal = StopSignal(event)
    budget = StopDecision(reason=StopReason.BUDGET, context={})
    interrupt = StopDecision(reason=StopReason.INTERRUPT, context={})

    assert signal.trigger(budget)
    assert not signal.trigger(interrupt)
    assert signal.decision is budget
    assert signal.is_set()
    assert event.is_set()

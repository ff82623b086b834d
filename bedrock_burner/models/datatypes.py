"""Core datatypes shared across bedrock-burner modules.

Responsibilities:
- Represent immutable value objects exchanged between the ledger, the stop
  policy, the worker pool, and reporting.
- Provide explicit typing for deterministic JSON serialization.

Key types:
- `PricingConfig`, `StopCriteria`, `RateConfig`, `AttemptResult`,
  `InvocationResult`, `LedgerSnapshot`, `StopReason`, and `StopDecision`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum


@dataclass(frozen=True, slots=True)
class PricingConfig:
    """Unit prices used by the local cost estimate.

    Attributes:
        price_per_1k_input_usd: USD per 1000 input tokens.
        price_per_1k_output_usd: USD per 1000 output tokens.
    """

    price_per_1k_input_usd: Decimal
    price_per_1k_output_usd: Decimal

    def is_priced(self) -> bool:
        """Return whether any unit price is non-zero."""

        return self.price_per_1k_input_usd > 0 or self.price_per_1k_output_usd > 0


@dataclass(frozen=True, slots=True)
class StopCriteria:
    """Immutable budget and duration limits for one run.

    Attributes:
        target_usd: Budget cap in USD; `0` disables the budget check.
        stop_ratio: Fraction of `target_usd` used as the trigger threshold.
        max_duration_seconds: Wall-clock cap; `0` disables the time check.
    """

    target_usd: Decimal
    stop_ratio: Decimal
    max_duration_seconds: float

    @property
    def effective_cap_usd(self) -> Decimal:
        """Return the spend threshold that triggers a budget stop."""

        return self.target_usd * self.stop_ratio

    @property
    def headroom_usd(self) -> Decimal:
        """Return the budget margin left above the trigger threshold."""

        return self.target_usd - self.effective_cap_usd


@dataclass(frozen=True, slots=True)
class RateConfig:
    """Pacing settings shared by the whole worker pool."""

    calls_per_minute: float
    worker_count: int


@dataclass(frozen=True, slots=True)
class InvocationResult:
    """Token usage and text returned by one successful inference call.

    Attributes:
        input_tokens: Prompt token count.
        output_tokens: Completion token count.
        text: Generated text.
        usage_estimated: `True` when counts were derived from text length
            because the provider did not report usage.
    """

    input_tokens: int
    output_tokens: int
    text: str = ""
    usage_estimated: bool = False


@dataclass(frozen=True, slots=True)
class AttemptResult:
    """Outcome of one completed invocation attempt, as recorded in the ledger."""

    ok: bool
    input_tokens: int = 0
    output_tokens: int = 0
    throttled: bool = False
    usage_estimated: bool = False
    failure_kind: str | None = None

    @classmethod
    def success(cls, result: InvocationResult) -> AttemptResult:
        """Build a successful attempt from invocation usage."""

        return cls(
            ok=True,
            input_tokens=max(0, int(result.input_tokens)),
            output_tokens=max(0, int(result.output_tokens)),
            usage_estimated=result.usage_estimated,
        )

    @classmethod
    def failure(cls, failure_kind: str, *, throttled: bool = False) -> AttemptResult:
        """Build a failed attempt carrying its classification."""

        return cls(ok=False, throttled=throttled, failure_kind=failure_kind)


@dataclass(frozen=True, slots=True)
class LedgerSnapshot:
    """Consistent point-in-time copy of the spend ledger.

    Attributes:
        calls_sent: Attempts started (including those still in flight).
        calls_ok: Attempts that completed successfully.
        calls_err: Attempts that completed with an error.
        calls_throttled: Subset of `calls_err` rejected by provider throttling.
        input_tokens_total: Sum of input tokens over successful attempts.
        output_tokens_total: Sum of output tokens over successful attempts.
        estimated_usage_calls: Successful attempts whose usage was estimated.
        started_at: Wall-clock UNIX timestamp of ledger creation.
    """

    calls_sent: int = 0
    calls_ok: int = 0
    calls_err: int = 0
    calls_throttled: int = 0
    input_tokens_total: int = 0
    output_tokens_total: int = 0
    estimated_usage_calls: int = 0
    started_at: float = 0.0

    @property
    def calls_pending(self) -> int:
        """Return attempts started but not yet resolved."""

        return self.calls_sent - self.calls_ok - self.calls_err

    def as_dict(self) -> dict[str, int | float]:
        """Return a JSON-friendly mapping of ledger counters."""

        return {
            "calls_sent": self.calls_sent,
            "calls_ok": self.calls_ok,
            "calls_err": self.calls_err,
            "calls_throttled": self.calls_throttled,
            "calls_pending": self.calls_pending,
            "input_tokens_total": self.input_tokens_total,
            "output_tokens_total": self.output_tokens_total,
            "estimated_usage_calls": self.estimated_usage_calls,
            "started_at": self.started_at,
        }


class StopReason(str, Enum):
    """Why a run stopped."""

    BUDGET = "budget"
    DURATION = "duration"
    PERMANENT_ERROR = "permanent_error"
    INTERRUPT = "interrupt"


@dataclass(frozen=True, slots=True)
class StopDecision:
    """A stop reason together with the values that triggered it."""

    reason: StopReason
    context: dict[str, str] = field(default_factory=dict)

    def as_dict(self) -> dict[str, str]:
        """Return a JSON-friendly mapping with reason first."""

        return {"reason": self.reason.value, **self.context}

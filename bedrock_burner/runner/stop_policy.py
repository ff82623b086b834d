"""Stop decisions for the invocation loop.

Responsibilities:
- Decide from spend and elapsed time whether the run must halt.
- Record the first stop reason for the whole pool and cancel pending waits.

Overshoot: spend is checked only after attempts complete, never predicted
before an attempt starts. Up to one in-flight call per worker can finish
after the threshold is crossed, so the worst-case overshoot is
`worker_count * worst_case_call_cost`; `stop_ratio` leaves room for it.
"""

from __future__ import annotations

from decimal import Decimal
import threading

from ..costs import format_usd, snapshot_cost
from ..models.datatypes import (
    LedgerSnapshot,
    PricingConfig,
    StopCriteria,
    StopDecision,
    StopReason,
)


class StopPolicy:
    """Evaluate budget and duration limits against one spend figure."""

    def __init__(self, criteria: StopCriteria) -> None:
        """Initialize with immutable stop criteria."""

        self.criteria = criteria

    def evaluate(self, spend_usd: Decimal, elapsed_seconds: float) -> StopDecision | None:
        """Return the triggered stop decision, or `None` to keep running."""

        criteria = self.criteria
        if criteria.target_usd > 0:
            cap = criteria.effective_cap_usd
            if spend_usd >= cap:
                return StopDecision(
                    reason=StopReason.BUDGET,
                    context={
                        "spend_usd": format_usd(spend_usd),
                        "cap_usd": format_usd(cap),
                        "target_usd": format_usd(criteria.target_usd),
                        "stop_ratio": f"{criteria.stop_ratio}",
                    },
                )
        if criteria.max_duration_seconds > 0 and elapsed_seconds >= criteria.max_duration_seconds:
            return StopDecision(
                reason=StopReason.DURATION,
                context={
                    "elapsed_seconds": f"{elapsed_seconds:.3f}",
                    "max_duration_seconds": f"{criteria.max_duration_seconds:g}",
                },
            )
        return None


def should_stop(
    snapshot: LedgerSnapshot,
    criteria: StopCriteria,
    pricing: PricingConfig,
    elapsed_seconds: float,
    baseline_usd: Decimal = Decimal(0),
) -> bool:
    """Return whether the estimated spend or elapsed time reached its limit."""

    spend = baseline_usd + snapshot_cost(snapshot, pricing)
    return StopPolicy(criteria).evaluate(spend, elapsed_seconds) is not None


class StopSignal:
    """First-writer-wins stop flag shared by workers and the supervisor."""

    def __init__(self, cancel_event: threading.Event | None = None) -> None:
        """Initialize with the event that interrupts rate-limit and backoff waits."""

        self.cancel_event = cancel_event if cancel_event is not None else threading.Event()
        self._lock = threading.Lock()
        self._decision: StopDecision | None = None

    def trigger(self, decision: StopDecision) -> bool:
        """Record `decision` if none is set yet; always cancel waits."""

        with self._lock:
            first = self._decision is None
            if first:
                self._decision = decision
        self.cancel_event.set()
        return first

    @property
    def decision(self) -> StopDecision | None:
        """Return the recorded stop decision, if any."""

        with self._lock:
            return self._decision

    def is_set(self) -> bool:
        """Return whether the pool has been asked to stop."""

        return self.cancel_event.is_set()

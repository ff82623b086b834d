"""Periodic status snapshots and final run summary.

Responsibilities:
- Build JSON-friendly status payloads from a ledger snapshot.
- Throttle periodic status lines to a fixed interval.
"""

from __future__ import annotations

from typing import Any

from ..billing import SpendMeter
from ..costs import format_usd
from ..models.datatypes import LedgerSnapshot, StopDecision
from .logger import RunLogger


class StatusReporter:
    """Emit `[status]` lines every `interval_seconds` and one `[final]` line."""

    def __init__(
        self,
        *,
        run_logger: RunLogger,
        spend_meter: SpendMeter,
        interval_seconds: float,
    ) -> None:
        """Initialize reporter dependencies."""

        self.run_logger = run_logger
        self.spend_meter = spend_meter
        self.interval_seconds = interval_seconds
        self._last_report_at: float | None = None

    def build_status(self, snapshot: LedgerSnapshot, elapsed_seconds: float) -> dict[str, Any]:
        """Return counters, tokens, spend figures, and pacing for one snapshot."""

        elapsed_minutes = elapsed_seconds / 60.0
        rpm_actual = snapshot.calls_ok / elapsed_minutes if elapsed_minutes > 0 else 0.0
        billed = self.spend_meter.billed_usd
        status: dict[str, Any] = {
            **snapshot.as_dict(),
            "elapsed_sec": round(elapsed_seconds, 3),
            "rpm_actual": round(rpm_actual, 3),
            "est_usd": format_usd(self.spend_meter.run_estimate_usd(snapshot)),
            "spend_usd": format_usd(self.spend_meter.current_usd(snapshot)),
            "cost_source": self.spend_meter.mode.value,
            "usage_approximate": snapshot.estimated_usage_calls > 0,
        }
        if billed is not None:
            status["billed_usd"] = format_usd(billed)
        return status

    def maybe_report(self, snapshot: LedgerSnapshot, elapsed_seconds: float) -> bool:
        """Emit a status line when the interval has passed; return whether emitted."""

        if (
            self._last_report_at is not None
            and elapsed_seconds - self._last_report_at < self.interval_seconds
        ):
            return False
        if self._last_report_at is None and elapsed_seconds < self.interval_seconds:
            return False
        self._last_report_at = elapsed_seconds
        self.run_logger.log_status(self.build_status(snapshot, elapsed_seconds))
        return True

    def report_final(
        self,
        snapshot: LedgerSnapshot,
        elapsed_seconds: float,
        decision: StopDecision | None,
    ) -> dict[str, Any]:
        """Emit and return the final summary including the stop reason."""

        summary = self.build_status(snapshot, elapsed_seconds)
        summary["stop"] = decision.as_dict() if decision is not None else {"reason": "none"}
        self.run_logger.log_final(summary)
        return summary

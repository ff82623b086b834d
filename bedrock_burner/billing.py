"""Cost sources used for stop decisions.

Responsibilities:
- Query month-to-date spend from AWS Cost Explorer (authoritative mode).
- Fall back to the local token estimate when billing is unreachable, logging
  the transition exactly once (estimated mode).
- Persist per-attempt estimated cost so restarts keep their spend baseline.

Key types:
- `CostSourceMode`: `authoritative` or `estimated`.
- `CostExplorerBillingSource`: boto3 Cost Explorer adapter.
- `SpendMeter`: thread-safe spend figure combining both sources.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
import threading
from time import monotonic
from typing import Any, Callable, Protocol

from botocore.exceptions import BotoCoreError, ClientError

from .costs import estimate_cost, format_usd, snapshot_cost
from .errors import BillingUnavailableError
from .io.state_store import AccumulatedCostStore
from .models.datatypes import AttemptResult, LedgerSnapshot, PricingConfig
from .telemetry.logger import RunLogger


class CostSourceMode(str, Enum):
    """Origin of the spend figure used by the stop policy."""

    AUTHORITATIVE = "authoritative"
    ESTIMATED = "estimated"


class BillingSource(Protocol):
    """Protocol for authoritative month-to-date spend lookups."""

    def month_to_date_usd(self) -> Decimal:
        """Return billed spend for the current calendar month."""


class CostExplorerBillingSource:
    """Month-to-date spend lookup through the Cost Explorer `ce` API."""

    def __init__(
        self,
        ce_client: Any,
        *,
        service_name: str | None = "Amazon Bedrock",
        today: Callable[[], date] | None = None,
    ) -> None:
        """Initialize with a boto3 `ce` client and an optional SERVICE filter."""

        self.ce_client = ce_client
        self.service_name = service_name
        self._today = today or (lambda: datetime.now(timezone.utc).date())

    def month_to_date_usd(self) -> Decimal:
        """Return month-to-date unblended cost, raising `BillingUnavailableError`."""

        today = self._today()
        request: dict[str, Any] = {
            "TimePeriod": {
                "Start": today.replace(day=1).isoformat(),
                "End": (today + timedelta(days=1)).isoformat(),
            },
            "Granularity": "MONTHLY",
            "Metrics": ["UnblendedCost"],
        }
        if self.service_name:
            request["Filter"] = {
                "Dimensions": {"Key": "SERVICE", "Values": [self.service_name]}
            }

        try:
            response = self.ce_client.get_cost_and_usage(**request)
        except (ClientError, BotoCoreError) as exc:
            raise BillingUnavailableError(f"Cost Explorer lookup failed: {exc}") from exc

        total = Decimal(0)
        try:
            for period in response.get("ResultsByTime", []):
                amount = period["Total"]["UnblendedCost"]["Amount"]
                total += Decimal(str(amount))
        except (KeyError, TypeError, InvalidOperation) as exc:
            raise BillingUnavailableError("Cost Explorer returned a malformed payload.") from exc
        return total


class SpendMeter:
    """Thread-safe spend figure for stop decisions and status reporting.

    In estimated mode the figure is the persisted baseline plus the cost of
    this run's ledger. In authoritative mode it is the larger of the last
    billed month-to-date value and this run's own estimate, because billing
    data lags behind actual usage. A meter that degrades after a successful
    poll keeps that billed value as a floor and adds only the usage recorded
    since the poll.
    """

    def __init__(
        self,
        pricing: PricingConfig,
        *,
        baseline_usd: Decimal = Decimal(0),
        billing_source: BillingSource | None = None,
        poll_interval_seconds: float = 900.0,
        state_store: AccumulatedCostStore | None = None,
        run_logger: RunLogger | None = None,
        clock: Callable[[], float] = monotonic,
    ) -> None:
        """Initialize the meter; without a billing source it starts estimated."""

        self.pricing = pricing
        self.baseline_usd = baseline_usd
        self.billing_source = billing_source
        self.poll_interval_seconds = poll_interval_seconds
        self.state_store = state_store
        self._run_logger = run_logger
        self._clock = clock
        self._lock = threading.Lock()
        self._mode = (
            CostSourceMode.AUTHORITATIVE
            if billing_source is not None
            else CostSourceMode.ESTIMATED
        )
        self._billed_usd: Decimal | None = None
        self._estimate_at_poll = Decimal(0)
        self._last_poll_at: float | None = None
        self._persist_failed = False

    @property
    def mode(self) -> CostSourceMode:
        """Return the active cost source mode."""

        with self._lock:
            return self._mode

    @property
    def billed_usd(self) -> Decimal | None:
        """Return the last authoritative month-to-date value, if any."""

        with self._lock:
            return self._billed_usd

    def refresh(self, snapshot: LedgerSnapshot | None = None, *, force: bool = False) -> None:
        """Poll the billing source when due; degrade to estimated on failure.

        `snapshot` is this run's ledger at poll time. Its estimate is kept with
        the billed value so a later degradation can carry the billed figure
        forward instead of dropping it.
        """

        with self._lock:
            if self._mode is not CostSourceMode.AUTHORITATIVE or self.billing_source is None:
                return
            now = self._clock()
            due = (
                force
                or self._last_poll_at is None
                or now - self._last_poll_at >= self.poll_interval_seconds
            )
            if not due:
                return
            self._last_poll_at = now

        try:
            billed = self.billing_source.month_to_date_usd()
        except BillingUnavailableError as exc:
            self._degrade(str(exc))
            return

        run_estimate = (
            self.run_estimate_usd(snapshot) if snapshot is not None else Decimal(0)
        )
        with self._lock:
            self._billed_usd = billed
            self._estimate_at_poll = run_estimate
        if self._run_logger is not None:
            self._run_logger.info("billing", "poll", billed_usd=format_usd(billed))

    def _degrade(self, reason: str) -> None:
        """Switch to estimated mode once and log the transition."""

        with self._lock:
            if self._mode is CostSourceMode.ESTIMATED:
                return
            self._mode = CostSourceMode.ESTIMATED
        if self._run_logger is not None:
            self._run_logger.warning(
                "billing",
                "degraded",
                cost_source=CostSourceMode.ESTIMATED.value,
                reason=reason[:80],
            )

    def run_estimate_usd(self, snapshot: LedgerSnapshot) -> Decimal:
        """Return the estimated cost of this run's recorded usage."""

        return snapshot_cost(snapshot, self.pricing)

    def current_usd(self, snapshot: LedgerSnapshot) -> Decimal:
        """Return the spend figure the stop policy compares against the cap."""

        run_estimate = self.run_estimate_usd(snapshot)
        with self._lock:
            mode = self._mode
            billed = self._billed_usd
            estimate_at_poll = self._estimate_at_poll
        if billed is None:
            return self.baseline_usd + run_estimate
        if mode is CostSourceMode.AUTHORITATIVE:
            return max(billed, run_estimate)
        # Degraded after a successful poll: never fall below the last billed value.
        carried = billed + max(run_estimate - estimate_at_poll, Decimal(0))
        return max(carried, self.baseline_usd + run_estimate)

    def record_usage(self, result: AttemptResult) -> None:
        """Persist the estimated cost of one successful attempt, when configured."""

        if self.state_store is None or not result.ok:
            return
        amount = estimate_cost(result.input_tokens, result.output_tokens, self.pricing)
        if amount <= 0:
            return
        try:
            self.state_store.add(amount)
        except (OSError, ValueError) as exc:
            with self._lock:
                already_reported = self._persist_failed
                self._persist_failed = True
            if not already_reported and self._run_logger is not None:
                self._run_logger.error(
                    "state", "persist_failed", error_type=type(exc).__name__
                )

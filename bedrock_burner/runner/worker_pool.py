"""Budget-governed worker pool and supervising loop.

Responsibilities:
- Run a fixed number of workers that loop: check stop policy, wait for a
  rate slot, invoke, record the outcome.
- Retry transient failures with randomized exponential backoff and stop the
  whole pool on permanent failures.
- Supervise the pool: refresh billing, emit status lines, enforce limits,
  and shut down cooperatively, or promptly on interrupt.

Key types:
- `WorkerState`: per-worker lifecycle state.
- `RetryPolicy`: backoff settings for transient failures.
- `CallPlan`: the fixed prompt and inference parameters used on every call.
- `WorkerPool`: the pool itself; `run()` returns a `RunOutcome`.
"""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from enum import Enum
import random
import threading
from time import monotonic
from typing import Any, Callable, Protocol

from ..billing import SpendMeter
from ..errors import InvocationError
from ..models.datatypes import (
    AttemptResult,
    InvocationResult,
    LedgerSnapshot,
    RateConfig,
    StopDecision,
    StopReason,
)
from ..llm.rate_limiter import RateLimiter
from ..telemetry.ledger import SpendLedger
from ..telemetry.logger import RunLogger
from ..telemetry.status import StatusReporter
from .stop_policy import StopPolicy, StopSignal


class InvocationClient(Protocol):
    """Protocol for the opaque inference call made by each worker."""

    def invoke(self, prompt: str, max_output_tokens: int, temperature: float) -> InvocationResult:
        """Send one prompt and return its token usage."""


class WorkerState(str, Enum):
    """Lifecycle state of one worker."""

    IDLE = "idle"
    WAITING_FOR_SLOT = "waiting_for_slot"
    CALLING = "calling"
    RECORDING = "recording"
    STOPPED = "stopped"


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Randomized exponential backoff for transient invocation failures.

    Attributes:
        max_retries: Consecutive transient failures tolerated before the
            worker logs the exhausted retry budget and starts over.
        backoff_base_seconds: Delay after the first failure.
        backoff_max_seconds: Upper bound for any single delay.
        jitter_seconds: Uniform random delay added on top of the exponential term.
    """

    max_retries: int = 5
    backoff_base_seconds: float = 0.5
    backoff_max_seconds: float = 30.0
    jitter_seconds: float = 1.0

    def delay_for(self, consecutive_failures: int, rng: random.Random) -> float:
        """Return the backoff delay after `consecutive_failures` failures in a row."""

        exponent = max(0, consecutive_failures - 1)
        delay = self.backoff_base_seconds * (2**exponent) + rng.uniform(0.0, self.jitter_seconds)
        return min(self.backoff_max_seconds, delay)


@dataclass(frozen=True, slots=True)
class CallPlan:
    """Prompt and inference parameters reused by every attempt."""

    prompt: str
    max_output_tokens: int
    temperature: float


@dataclass(frozen=True, slots=True)
class RunOutcome:
    """Result of one supervised run."""

    snapshot: LedgerSnapshot
    decision: StopDecision | None
    elapsed_seconds: float
    worker_states: tuple[WorkerState, ...]
    summary: dict[str, Any]
    permanent_error: InvocationError | None = None

    @property
    def failed_before_success(self) -> bool:
        """Return whether a permanent error stopped the run before any call succeeded."""

        return (
            self.decision is not None
            and self.decision.reason is StopReason.PERMANENT_ERROR
            and self.snapshot.calls_ok == 0
        )


class WorkerPool:
    """Drive concurrent workers sharing one ledger, rate limiter, and stop signal."""

    def __init__(
        self,
        *,
        client: InvocationClient,
        call_plan: CallPlan,
        rate_config: RateConfig,
        ledger: SpendLedger,
        rate_limiter: RateLimiter,
        stop_policy: StopPolicy,
        stop_signal: StopSignal,
        spend_meter: SpendMeter,
        status_reporter: StatusReporter,
        run_logger: RunLogger,
        retry_policy: RetryPolicy | None = None,
        clock: Callable[[], float] = monotonic,
        rng: random.Random | None = None,
        supervise_interval_seconds: float = 0.25,
        shutdown_grace_seconds: float = 30.0,
    ) -> None:
        """Initialize the pool; the limiter must share the stop signal's event."""

        if rate_limiter.cancel_event is not stop_signal.cancel_event:
            raise ValueError("Rate limiter and stop signal must share one cancel event.")
        if rate_config.worker_count <= 0:
            raise ValueError("`worker_count` must be a positive integer.")

        self.client = client
        self.call_plan = call_plan
        self.rate_config = rate_config
        self.ledger = ledger
        self.rate_limiter = rate_limiter
        self.stop_policy = stop_policy
        self.stop_signal = stop_signal
        self.spend_meter = spend_meter
        self.status_reporter = status_reporter
        self.run_logger = run_logger
        self.retry_policy = retry_policy if retry_policy is not None else RetryPolicy()
        self.clock = clock
        self.supervise_interval_seconds = supervise_interval_seconds
        self.shutdown_grace_seconds = shutdown_grace_seconds

        self._rng = rng if rng is not None else random.Random()
        self._rng_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._states = [WorkerState.IDLE] * rate_config.worker_count
        self._started_at = clock()
        self._interrupt_requested = threading.Event()
        self._interrupt_unlogged = False
        self._permanent_error: InvocationError | None = None
        self._usage_warning_lock = threading.Lock()
        self._usage_warning_emitted = False

    def worker_states(self) -> tuple[WorkerState, ...]:
        """Return the current state of every worker."""

        with self._state_lock:
            return tuple(self._states)

    def elapsed_seconds(self) -> float:
        """Return seconds since `run()` started."""

        return self.clock() - self._started_at

    def request_interrupt(self) -> None:
        """Cancel all waits and stop without waiting for in-flight calls.

        Safe to call from a signal handler: it only sets events, and `run()`
        logs the interrupt once supervision has ended.
        """

        self._interrupt_requested.set()
        decision = StopDecision(
            reason=StopReason.INTERRUPT,
            context={"elapsed_seconds": f"{self.elapsed_seconds():.3f}"},
        )
        if self.stop_signal.trigger(decision):
            self._interrupt_unlogged = True

    def run(self) -> RunOutcome:
        """Run workers until a stop condition, then return the final outcome."""

        self._started_at = self.clock()
        self.spend_meter.refresh(self.ledger.snapshot(), force=True)
        self.run_logger.info(
            "pool",
            "start",
            workers=self.rate_config.worker_count,
            rpm=self.rate_config.calls_per_minute,
            cost_source=self.spend_meter.mode.value,
        )

        executor = ThreadPoolExecutor(
            max_workers=self.rate_config.worker_count,
            thread_name_prefix="burn-worker",
        )
        futures = [
            executor.submit(self._worker_loop, index)
            for index in range(self.rate_config.worker_count)
        ]
        try:
            self._supervise(futures)
        except KeyboardInterrupt:
            self.request_interrupt()
        finally:
            final_snapshot = self.ledger.freeze()
            executor.shutdown(wait=False, cancel_futures=True)

        if self._interrupt_unlogged:
            self._interrupt_unlogged = False
            decision = self.stop_signal.decision
            context = decision.context if decision is not None else {}
            self.run_logger.info("stop", StopReason.INTERRUPT.value, **context)
        if self._interrupt_requested.is_set():
            in_flight = sum(
                1 for state in self.worker_states() if state is WorkerState.CALLING
            )
            if in_flight:
                # Executor threads are not daemons; exit waits for these calls.
                self.run_logger.warning("pool", "abandoned_calls", in_flight=in_flight)

        elapsed = self.elapsed_seconds()
        decision = self.stop_signal.decision
        summary = self.status_reporter.report_final(final_snapshot, elapsed, decision)
        return RunOutcome(
            snapshot=final_snapshot,
            decision=decision,
            elapsed_seconds=elapsed,
            worker_states=self.worker_states(),
            summary=summary,
            permanent_error=self._permanent_error,
        )

    def _supervise(self, futures: list[Future[None]]) -> None:
        """Report status and enforce limits until every worker has stopped."""

        pending: set[Future[None]] = set(futures)
        while pending:
            _, pending = wait(pending, timeout=self.supervise_interval_seconds)
            if not pending:
                break
            if self.stop_signal.is_set():
                self._await_shutdown(pending)
                return
            snapshot = self.ledger.snapshot()
            self.spend_meter.refresh(snapshot)
            self.status_reporter.maybe_report(snapshot, self.elapsed_seconds())
            self._check_stop(snapshot)

    def _await_shutdown(self, pending: set[Future[None]]) -> None:
        """Give in-flight calls a bounded grace period unless interrupted."""

        deadline = self.clock() + self.shutdown_grace_seconds
        while pending and not self._interrupt_requested.is_set():
            remaining = deadline - self.clock()
            if remaining <= 0:
                self.run_logger.warning(
                    "pool", "shutdown_grace_exceeded", pending_workers=len(pending)
                )
                return
            _, pending = wait(pending, timeout=min(remaining, self.supervise_interval_seconds))

    def _trigger(self, decision: StopDecision) -> None:
        """Record a stop decision and log it when it is the first one."""

        if self.stop_signal.trigger(decision):
            self.run_logger.info("stop", decision.reason.value, **decision.context)

    def _check_stop(self, snapshot: LedgerSnapshot | None = None) -> bool:
        """Return whether the pool must stop, triggering the stop on first detection."""

        if self.stop_signal.is_set():
            return True
        current = snapshot if snapshot is not None else self.ledger.snapshot()
        decision = self.stop_policy.evaluate(
            self.spend_meter.current_usd(current), self.elapsed_seconds()
        )
        if decision is None:
            return False
        self._trigger(decision)
        return True

    def _set_state(self, index: int, state: WorkerState) -> None:
        """Update one worker's state."""

        with self._state_lock:
            self._states[index] = state

    def _worker_loop(self, index: int) -> None:
        """Loop one worker until the pool stops."""

        consecutive_failures = 0
        try:
            while True:
                self._set_state(index, WorkerState.WAITING_FOR_SLOT)
                if self._check_stop():
                    return
                if not self.rate_limiter.acquire_slot():
                    return
                if self._check_stop():
                    return
                if not self.ledger.record_start():
                    return

                self._set_state(index, WorkerState.CALLING)
                try:
                    result = self.client.invoke(
                        self.call_plan.prompt,
                        self.call_plan.max_output_tokens,
                        self.call_plan.temperature,
                    )
                except InvocationError as exc:
                    self._set_state(index, WorkerState.RECORDING)
                    self.ledger.record_attempt(
                        AttemptResult.failure(exc.failure_kind, throttled=exc.throttled)
                    )
                    if not exc.retriable:
                        self._on_permanent_failure(index, exc)
                        return
                    consecutive_failures += 1
                    if not self._backoff(index, consecutive_failures, exc):
                        return
                    if consecutive_failures >= self.retry_policy.max_retries:
                        consecutive_failures = 0
                    continue
                except Exception as exc:
                    self._set_state(index, WorkerState.RECORDING)
                    self.ledger.record_attempt(AttemptResult.failure("unexpected"))
                    self._on_permanent_failure(
                        index,
                        InvocationError(str(exc), failure_kind="unexpected"),
                    )
                    return

                self._set_state(index, WorkerState.RECORDING)
                attempt = AttemptResult.success(result)
                if self.ledger.record_attempt(attempt):
                    self.spend_meter.record_usage(attempt)
                    if attempt.usage_estimated:
                        self._warn_estimated_usage()
                consecutive_failures = 0
        finally:
            self._set_state(index, WorkerState.STOPPED)

    def _backoff(self, index: int, consecutive_failures: int, exc: InvocationError) -> bool:
        """Sleep before the next attempt; return `False` when the pool was cancelled."""

        if consecutive_failures >= self.retry_policy.max_retries:
            self.run_logger.warning(
                "invoke",
                "retry_budget_exhausted",
                worker=index,
                failure_kind=exc.failure_kind,
                consecutive_failures=consecutive_failures,
            )
        with self._rng_lock:
            delay = self.retry_policy.delay_for(consecutive_failures, self._rng)
        return not self.stop_signal.cancel_event.wait(delay)

    def _on_permanent_failure(self, index: int, exc: InvocationError) -> None:
        """Log an unrecoverable failure and stop the whole pool."""

        self.run_logger.error(
            "invoke",
            "permanent_failure",
            worker=index,
            failure_kind=exc.failure_kind,
            provider_code=exc.provider_code or "none",
        )
        with self._state_lock:
            if self._permanent_error is None:
                self._permanent_error = exc
        self._trigger(
            StopDecision(
                reason=StopReason.PERMANENT_ERROR,
                context={
                    "failure_kind": exc.failure_kind,
                    "provider_code": exc.provider_code or "none",
                },
            )
        )

    def _warn_estimated_usage(self) -> None:
        """Log once that token usage is being approximated from text length."""

        with self._usage_warning_lock:
            if self._usage_warning_emitted:
                return
            self._usage_warning_emitted = True
        self.run_logger.warning(
            "invoke",
            "usage_estimated",
            detail="provider_omitted_usage_counts_are_approximate",
        )

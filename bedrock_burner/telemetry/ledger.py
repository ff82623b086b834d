"""Thread-safe spend ledger for concurrent invocation workers.

Responsibilities:
- Count started and resolved attempts with their token usage.
- Hand out consistent snapshots without torn reads.
- Stop accepting results once frozen after an interrupt.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import threading
import time
from typing import Callable

from ..models.datatypes import AttemptResult, LedgerSnapshot


@dataclass(slots=True)
class SpendLedger:
    """Collect run-level call outcomes and token counters under one lock."""

    wall_clock: Callable[[], float] = time.time
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)
    _started_at: float = field(default=0.0, init=False)
    _calls_sent: int = field(default=0, init=False)
    _calls_ok: int = field(default=0, init=False)
    _calls_err: int = field(default=0, init=False)
    _calls_throttled: int = field(default=0, init=False)
    _input_tokens: int = field(default=0, init=False)
    _output_tokens: int = field(default=0, init=False)
    _estimated_usage_calls: int = field(default=0, init=False)
    _frozen: bool = field(default=False, init=False)

    def __post_init__(self) -> None:
        """Stamp the ledger creation time."""

        self._started_at = self.wall_clock()

    def record_start(self) -> bool:
        """Count one attempt as sent; return `False` when the ledger is frozen."""

        with self._lock:
            if self._frozen:
                return False
            self._calls_sent += 1
            return True

    def record_attempt(self, result: AttemptResult) -> bool:
        """Resolve one started attempt; return `False` when the ledger is frozen."""

        with self._lock:
            if self._frozen:
                return False
            if self._calls_ok + self._calls_err >= self._calls_sent:
                raise RuntimeError("record_attempt called without a matching record_start.")
            if result.ok:
                self._calls_ok += 1
                self._input_tokens += max(0, result.input_tokens)
                self._output_tokens += max(0, result.output_tokens)
                if result.usage_estimated:
                    self._estimated_usage_calls += 1
            else:
                self._calls_err += 1
                if result.throttled:
                    self._calls_throttled += 1
            return True

    def freeze(self) -> LedgerSnapshot:
        """Reject further mutations and return the final snapshot."""

        with self._lock:
            self._frozen = True
            return self._copy()

    @property
    def frozen(self) -> bool:
        """Return whether the ledger no longer accepts results."""

        with self._lock:
            return self._frozen

    def snapshot(self) -> LedgerSnapshot:
        """Return a consistent point-in-time copy of all counters."""

        with self._lock:
            return self._copy()

    def _copy(self) -> LedgerSnapshot:
        """Copy counters; caller must hold the lock."""

        return LedgerSnapshot(
            calls_sent=self._calls_sent,
            calls_ok=self._calls_ok,
            calls_err=self._calls_err,
            calls_throttled=self._calls_throttled,
            input_tokens_total=self._input_tokens,
            output_tokens_total=self._output_tokens,
            estimated_usage_calls=self._estimated_usage_calls,
            started_at=self._started_at,
        )

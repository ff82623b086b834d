"""Pool-wide pacing for inference attempts.

Responsibilities:
- Pace attempts from all workers to one shared calls-per-minute target.
- Serve waiting workers in reservation order so none is starved.
- Abandon waits promptly when the run is cancelled.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import threading
from time import monotonic
from typing import Callable


@dataclass(slots=True)
class RateLimiter:
    """Fixed-interval gate shared by every worker in the pool.

    Each caller reserves the next free slot under a lock, then waits outside
    the lock until that slot time arrives. Slots are handed out in FIFO order,
    so a caller waits at most `queue position * interval` seconds.

    `waiter` receives a timeout in seconds and returns `True` when the wait
    was cancelled; it defaults to `cancel_event.wait`.
    """

    calls_per_minute: float
    cancel_event: threading.Event = field(default_factory=threading.Event)
    clock: Callable[[], float] = monotonic
    waiter: Callable[[float], bool] | None = None
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)
    _next_slot_at: float | None = field(default=None, init=False)

    @property
    def interval_seconds(self) -> float:
        """Return the minimum spacing between two attempt starts."""

        if self.calls_per_minute <= 0.0:
            return 0.0
        return 60.0 / self.calls_per_minute

    def acquire_slot(self) -> bool:
        """Block until an attempt may start; return `False` when cancelled."""

        if self.cancel_event.is_set():
            return False
        interval = self.interval_seconds
        if interval <= 0.0:
            return True

        with self._lock:
            now = self.clock()
            slot_at = now if self._next_slot_at is None else max(self._next_slot_at, now)
            self._next_slot_at = slot_at + interval

        wait_seconds = slot_at - self.clock()
        if wait_seconds > 0.0 and self._wait(wait_seconds):
            return False
        return not self.cancel_event.is_set()

    def _wait(self, seconds: float) -> bool:
        """Wait for `seconds`; return `True` if cancelled meanwhile."""

        if self.waiter is not None:
            return self.waiter(seconds)
        return self.cancel_event.wait(seconds)

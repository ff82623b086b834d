"""Invocation loop: stop policy and supervised worker pool."""

from .stop_policy import StopPolicy, StopSignal, should_stop
from .worker_pool import CallPlan, RetryPolicy, RunOutcome, WorkerPool, WorkerState

__all__ = [
    "CallPlan",
    "RetryPolicy",
    "RunOutcome",
    "StopPolicy",
    "StopSignal",
    "WorkerPool",
    "WorkerState",
    "should_stop",
]

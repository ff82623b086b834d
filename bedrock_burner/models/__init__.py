"""Data models for ledger snapshots, pricing, limits, and stop decisions."""

from .datatypes import (
    AttemptResult,
    InvocationResult,
    LedgerSnapshot,
    PricingConfig,
    RateConfig,
    StopCriteria,
    StopDecision,
    StopReason,
)

__all__ = [
    "AttemptResult",
    "InvocationResult",
    "LedgerSnapshot",
    "PricingConfig",
    "RateConfig",
    "StopCriteria",
    "StopDecision",
    "StopReason",
]

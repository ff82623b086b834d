"""Deterministic cost-estimation helpers for bedrock-burner.

Responsibilities:
- Map token counts and unit prices to an exact USD figure.
- Provide overshoot bounds and stable rounded values for status output.

Costs are computed from integer token totals with `Decimal` arithmetic, so
summation is exact and independent of the order in which calls complete.
"""

from __future__ import annotations

from decimal import ROUND_CEILING, Decimal

from .models.datatypes import LedgerSnapshot, PricingConfig


_THOUSAND = Decimal(1000)
_MICRO = Decimal("0.000001")


def estimate_cost(input_tokens: int, output_tokens: int, pricing: PricingConfig) -> Decimal:
    """Return the USD cost of the given token counts under `pricing`."""

    return (
        Decimal(int(input_tokens)) * pricing.price_per_1k_input_usd
        + Decimal(int(output_tokens)) * pricing.price_per_1k_output_usd
    ) / _THOUSAND


def snapshot_cost(snapshot: LedgerSnapshot, pricing: PricingConfig) -> Decimal:
    """Return the estimated USD cost of all usage recorded in a ledger snapshot."""

    return estimate_cost(snapshot.input_tokens_total, snapshot.output_tokens_total, pricing)


def worst_case_call_cost(
    input_tokens: int, max_output_tokens: int, pricing: PricingConfig
) -> Decimal:
    """Return the cost of one call that consumes its whole output budget."""

    return estimate_cost(input_tokens, max_output_tokens, pricing)


def worst_case_overshoot(
    worker_count: int, input_tokens: int, max_output_tokens: int, pricing: PricingConfig
) -> Decimal:
    """Return the maximum spend past the cap when every worker is mid-call."""

    return Decimal(max(0, worker_count)) * worst_case_call_cost(
        input_tokens, max_output_tokens, pricing
    )


def to_micro_usd(amount: Decimal) -> int:
    """Convert USD to integer micro-dollars, rounding up."""

    return int((amount / _MICRO).to_integral_value(rounding=ROUND_CEILING))


def format_usd(amount: Decimal) -> str:
    """Format USD with six decimal places for stable JSON and CLI display."""

    return f"{amount.quantize(_MICRO, rounding=ROUND_CEILING):f}"

"""Approximate token usage when the provider does not report it.

These are rough character-count heuristics; results built from them carry
`usage_estimated=True` so callers can tell the figures are approximate.
"""

from __future__ import annotations

from ..models.datatypes import InvocationResult


CHARS_PER_TOKEN_PROMPT = 5.0
CHARS_PER_TOKEN_ESTIMATE = 4.0
UNREPORTED_OUTPUT_FRACTION = 0.7


def estimate_usage(
    *,
    prompt: str,
    text: str,
    max_output_tokens: int,
    reported_input_tokens: int | None,
    reported_output_tokens: int | None,
) -> InvocationResult:
    """Fill missing usage counts from prompt and response length."""

    estimated = False
    input_tokens = reported_input_tokens or 0
    output_tokens = reported_output_tokens or 0
    if input_tokens <= 0:
        input_tokens = int(len(prompt) / CHARS_PER_TOKEN_ESTIMATE)
        estimated = True
    if output_tokens <= 0:
        if text:
            output_tokens = int(len(text) / CHARS_PER_TOKEN_ESTIMATE)
        else:
            output_tokens = int(max_output_tokens * UNREPORTED_OUTPUT_FRACTION)
        estimated = True
    return InvocationResult(
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        text=text,
        usage_estimated=estimated,
    )

"""CLI output and error rendering helpers.

This module centralizes user-facing CLI presentation for command diagnostics,
run plans, final summaries, and persisted state values.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, NoReturn

import typer

from .costs import format_usd
from .errors import SetupError


def exit_with_command_error(command_name: str, exc: Exception, code: int = 1) -> NoReturn:
    """Print concise diagnostics for command failures and exit with `code`."""

    if isinstance(exc, SetupError):
        typer.secho(
            f"{command_name} failed at stage `{exc.stage}`: {exc.detail}",
            fg=typer.colors.RED,
            err=True,
        )
        if exc.hint:
            typer.secho(f"Hint: {exc.hint}", fg=typer.colors.YELLOW, err=True)
    else:
        typer.secho(f"{command_name} failed: {exc}", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=code) from exc


def echo_plan(plan: dict[str, Any]) -> None:
    """Print the resolved run plan as aligned key/value rows."""

    for key in sorted(plan):
        value = plan[key]
        if isinstance(value, dict):
            value = ", ".join(f"{name}={value[name]}" for name in sorted(value))
        typer.echo(f"{key}: {value}")


def echo_overshoot_warning(headroom_usd: Decimal, overshoot_usd: Decimal) -> None:
    """Warn that the stop margin is smaller than one in-flight batch."""

    typer.secho(
        "Warning: stop margin "
        f"{format_usd(headroom_usd)} USD is below worst-case overshoot "
        f"{format_usd(overshoot_usd)} USD; lower `--stop-ratio` or `--workers`.",
        fg=typer.colors.YELLOW,
        err=True,
    )


def echo_final_summary(summary: dict[str, Any]) -> None:
    """Print a short human-readable digest of the final summary."""

    stop = summary.get("stop", {})
    typer.echo(f"Stop reason: {stop.get('reason', 'none')}")
    typer.echo(
        "Calls: "
        f"sent={summary.get('calls_sent', 0)} "
        f"ok={summary.get('calls_ok', 0)} "
        f"err={summary.get('calls_err', 0)} "
        f"throttled={summary.get('calls_throttled', 0)}"
    )
    typer.echo(
        "Tokens: "
        f"in={summary.get('input_tokens_total', 0)} "
        f"out={summary.get('output_tokens_total', 0)}"
    )
    typer.echo(f"Cost estimate (USD): {summary.get('est_usd', '0.000000')}")
    typer.echo(f"Spend used for stop (USD): {summary.get('spend_usd', '0.000000')}")
    typer.echo(f"Cost source: {summary.get('cost_source', 'estimated')}")


def echo_state_total(path: str, total_usd: Decimal, *, label: str = "Accumulated") -> None:
    """Print one persisted accumulated-cost value."""

    typer.echo(f"State file: {path}")
    typer.echo(f"{label} (USD): {format_usd(total_usd)}")

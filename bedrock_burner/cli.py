"""Command-line interface for bedrock-burner.

Responsibilities:
- Expose user-facing commands to run, plan, and cost-check a burn.
- Convert CLI arguments into `BurnerConfig` overrides and map outcomes to
  exit codes.

Key public functions:
- `app`: Typer application instance.
- `main`: invoke the Typer application.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any

import typer

from . import cli_runtime
from .cli_rendering import (
    echo_final_summary,
    echo_overshoot_warning,
    echo_plan,
    echo_state_total,
    exit_with_command_error,
)
from .config import ConfigLoader, RuntimeConfigSources
from .costs import estimate_cost, format_usd
from .errors import SetupError
from .io.state_store import AccumulatedCostStore
from .models.datatypes import PricingConfig
from .parsing import parse_decimal
from .runner.worker_pool import RunOutcome
from .telemetry.logger import RunLogger

EXIT_OK = 0
EXIT_SETUP_ERROR = 1
EXIT_PERMANENT_ERROR = 2

app = typer.Typer(
    name="bedrock-burner",
    no_args_is_help=True,
    help="Spend a fixed Amazon Bedrock budget with paced inference calls.",
)
state_app = typer.Typer(
    no_args_is_help=True,
    help="Inspect or reset the persisted accumulated cost.",
)
app.add_typer(state_app, name="state")


ConfigFileOption = Annotated[
    Path | None,
    typer.Option("--config", help="Path to YAML config file with run defaults."),
]
ModelIdOption = Annotated[
    str | None, typer.Option("--model-id", help="Bedrock model id or inference profile id.")
]
RegionOption = Annotated[
    str | None, typer.Option("--region", help="AWS region (defaults to `AWS_REGION`).")
]
ProfileOption = Annotated[
    str | None, typer.Option("--profile", help="Named AWS credentials profile.")
]
TargetUsdOption = Annotated[
    str | None, typer.Option("--target-usd", help="Budget cap in USD; `0` disables it.")
]
StopRatioOption = Annotated[
    str | None,
    typer.Option("--stop-ratio", help="Fraction of the cap at which the run stops."),
]
MaxSecondsOption = Annotated[
    float | None,
    typer.Option("--max-seconds", help="Wall-clock limit in seconds; `0` disables it."),
]
RpmOption = Annotated[
    float | None, typer.Option("--rpm", help="Pool-wide attempts per minute.")
]
WorkersOption = Annotated[
    int | None, typer.Option("--workers", help="Number of concurrent workers.")
]
AvgInOption = Annotated[
    int | None, typer.Option("--avg-in", help="Approximate prompt size in tokens.")
]
AvgOutOption = Annotated[
    str | None,
    typer.Option("--avg-out", help="Max output tokens per call, or `auto`."),
]
TemperatureOption = Annotated[
    float | None, typer.Option("--temperature", help="Sampling temperature.")
]
PriceInOption = Annotated[
    str | None, typer.Option("--price-in", help="USD per 1000 input tokens.")
]
PriceOutOption = Annotated[
    str | None, typer.Option("--price-out", help="USD per 1000 output tokens.")
]
StatusEveryOption = Annotated[
    float | None, typer.Option("--status-every", help="Seconds between status lines.")
]
StateFileOption = Annotated[
    Path | None,
    typer.Option("--state-file", help="Persisted accumulated-cost file."),
]
BillingSourceOption = Annotated[
    str | None,
    typer.Option(
        "--billing-source",
        help="Spend source for stop decisions: `estimate` or `cost-explorer`.",
    ),
]
ExhaustModeOption = Annotated[
    bool | None,
    typer.Option(
        "--exhaust-mode/--no-exhaust-mode",
        help="Ask the model to use its whole output budget on every call.",
    ),
]


def _collect_cli_values(**values: Any) -> dict[str, Any]:
    """Drop unset CLI values so lower-precedence sources stay visible."""

    return {key: value for key, value in values.items() if value is not None}


def _run_cli_values(
    *,
    model_id: str | None,
    region: str | None,
    profile: str | None,
    target_usd: str | None,
    stop_ratio: str | None,
    max_seconds: float | None,
    rpm: float | None,
    workers: int | None,
    avg_in: int | None,
    avg_out: str | None,
    temperature: float | None,
    price_in: str | None,
    price_out: str | None,
    status_every: float | None,
    state_file: Path | None,
    billing_source: str | None,
    exhaust_mode: bool | None,
) -> dict[str, Any]:
    """Map CLI flag names to config field names."""

    return _collect_cli_values(
        model_id=model_id,
        region=region,
        profile=profile,
        target_usd=target_usd,
        stop_ratio=stop_ratio,
        max_seconds=max_seconds,
        calls_per_minute=rpm,
        workers=workers,
        avg_input_tokens=avg_in,
        max_output_tokens=avg_out,
        temperature=temperature,
        price_in=price_in,
        price_out=price_out,
        status_every=status_every,
        state_file=state_file,
        billing_source=billing_source,
        exhaust_mode=exhaust_mode,
    )


def _exit_code_for(outcome: RunOutcome) -> int:
    """Map a run outcome to the process exit code."""

    if outcome.failed_before_success:
        return EXIT_PERMANENT_ERROR
    return EXIT_OK


@app.command("run")
def run_command(
    config_file: ConfigFileOption = None,
    model_id: ModelIdOption = None,
    region: RegionOption = None,
    profile: ProfileOption = None,
    target_usd: TargetUsdOption = None,
    stop_ratio: StopRatioOption = None,
    max_seconds: MaxSecondsOption = None,
    rpm: RpmOption = None,
    workers: WorkersOption = None,
    avg_in: AvgInOption = None,
    avg_out: AvgOutOption = None,
    temperature: TemperatureOption = None,
    price_in: PriceInOption = None,
    price_out: PriceOutOption = None,
    status_every: StatusEveryOption = None,
    state_file: StateFileOption = None,
    billing_source: BillingSourceOption = None,
    exhaust_mode: ExhaustModeOption = None,
) -> None:
    """Invoke the model until the budget, time limit, or an interrupt stops the run.

    On SIGTERM or Ctrl-C the summary prints at once, but the process exits only
    after calls already in flight return, at most `read_timeout_seconds` later.
    """

    try:
        config = cli_runtime.load_config(
            config_file,
            _run_cli_values(
                model_id=model_id,
                region=region,
                profile=profile,
                target_usd=target_usd,
                stop_ratio=stop_ratio,
                max_seconds=max_seconds,
                rpm=rpm,
                workers=workers,
                avg_in=avg_in,
                avg_out=avg_out,
                temperature=temperature,
                price_in=price_in,
                price_out=price_out,
                status_every=status_every,
                state_file=state_file,
                billing_source=billing_source,
                exhaust_mode=exhaust_mode,
            ),
        )
        run_logger = RunLogger()
        components = cli_runtime.build_run(config, run_logger)
    except Exception as exc:
        exit_with_command_error("run", exc, code=EXIT_SETUP_ERROR)

    run_logger.log_plan(components.plan)
    too_tight, headroom, overshoot = cli_runtime.overshoot_exceeds_headroom(config)
    if too_tight:
        run_logger.warning(
            "plan",
            "overshoot_exceeds_headroom",
            headroom_usd=format_usd(headroom),
            worst_case_overshoot_usd=format_usd(overshoot),
        )

    restore_handler = cli_runtime.install_termination_handler(
        components.pool.request_interrupt
    )
    try:
        outcome = components.pool.run()
    finally:
        restore_handler()

    echo_final_summary(outcome.summary)
    exit_code = _exit_code_for(outcome)
    if exit_code == EXIT_PERMANENT_ERROR:
        exit_with_command_error(
            "run",
            outcome.permanent_error or RuntimeError("Permanent invocation error."),
            code=EXIT_PERMANENT_ERROR,
        )


@app.command("plan")
def plan_command(
    config_file: ConfigFileOption = None,
    model_id: ModelIdOption = None,
    region: RegionOption = None,
    profile: ProfileOption = None,
    target_usd: TargetUsdOption = None,
    stop_ratio: StopRatioOption = None,
    max_seconds: MaxSecondsOption = None,
    rpm: RpmOption = None,
    workers: WorkersOption = None,
    avg_in: AvgInOption = None,
    avg_out: AvgOutOption = None,
    temperature: TemperatureOption = None,
    price_in: PriceInOption = None,
    price_out: PriceOutOption = None,
    status_every: StatusEveryOption = None,
    state_file: StateFileOption = None,
    billing_source: BillingSourceOption = None,
    exhaust_mode: ExhaustModeOption = None,
) -> None:
    """Resolve configuration and print the run plan without calling AWS."""

    try:
        config = cli_runtime.load_config(
            config_file,
            _run_cli_values(
                model_id=model_id,
                region=region,
                profile=profile,
                target_usd=target_usd,
                stop_ratio=stop_ratio,
                max_seconds=max_seconds,
                rpm=rpm,
                workers=workers,
                avg_in=avg_in,
                avg_out=avg_out,
                temperature=temperature,
                price_in=price_in,
                price_out=price_out,
                status_every=status_every,
                state_file=state_file,
                billing_source=billing_source,
                exhaust_mode=exhaust_mode,
            ),
        )
        _, baseline_usd = cli_runtime.open_state_store(config)
        plan = cli_runtime.build_plan(config, baseline_usd)
    except Exception as exc:
        exit_with_command_error("plan", exc, code=EXIT_SETUP_ERROR)

    echo_plan(plan)
    too_tight, headroom, overshoot = cli_runtime.overshoot_exceeds_headroom(config)
    if too_tight:
        echo_overshoot_warning(headroom, overshoot)


@app.command("estimate")
def estimate_command(
    input_tokens: Annotated[int, typer.Argument(help="Input token count.", min=0)],
    output_tokens: Annotated[int, typer.Argument(help="Output token count.", min=0)],
    price_in: Annotated[
        str, typer.Option("--price-in", help="USD per 1000 input tokens.")
    ] = "0.003",
    price_out: Annotated[
        str, typer.Option("--price-out", help="USD per 1000 output tokens.")
    ] = "0.015",
) -> None:
    """Print the estimated USD cost of the given token counts."""

    try:
        pricing = PricingConfig(
            price_per_1k_input_usd=parse_decimal(price_in, "price_in"),
            price_per_1k_output_usd=parse_decimal(price_out, "price_out"),
        )
        if pricing.price_per_1k_input_usd < 0 or pricing.price_per_1k_output_usd < 0:
            raise ValueError("Prices must not be negative.")
    except ValueError as exc:
        exit_with_command_error(
            "estimate",
            SetupError(stage="pricing", detail=str(exc), hint="Pass decimal USD prices."),
            code=EXIT_SETUP_ERROR,
        )

    typer.echo(f"Cost (USD): {format_usd(estimate_cost(input_tokens, output_tokens, pricing))}")


def _resolve_state_store(
    state_file: Path | None, config_file: Path | None
) -> AccumulatedCostStore:
    """Resolve the state file from the CLI, environment, or YAML config."""

    try:
        file_values = ConfigLoader.read_yaml_values(config_file) if config_file else {}
        sources = RuntimeConfigSources(
            file={key: file_values[key] for key in ("state_file",) if key in file_values},
            env={
                key: value
                for key, value in ConfigLoader.read_env_values().items()
                if key == "state_file"
            },
            cli=_collect_cli_values(state_file=state_file),
        )
        parsed = ConfigLoader.parse_values(sources.merged(), source_label="Configuration")
    except FileNotFoundError as exc:
        raise SetupError(
            stage="config",
            detail=f"Config file not found: `{config_file}`.",
            hint="Provide an existing path via `--config <path.yaml>`.",
        ) from exc
    except ValueError as exc:
        raise SetupError(stage="config", detail=str(exc)) from exc

    resolved = parsed.get("state_file")
    if resolved is None:
        raise SetupError(
            stage="state",
            detail="No state file configured.",
            hint="Pass `--state-file <path>` or set `state_file` in the YAML config.",
        )
    return AccumulatedCostStore(resolved)


@state_app.command("show")
def state_show_command(
    state_file: StateFileOption = None,
    config_file: ConfigFileOption = None,
) -> None:
    """Print the persisted accumulated cost."""

    try:
        store = _resolve_state_store(state_file, config_file)
        total = store.load()
    except Exception as exc:
        exit_with_command_error("state show", exc, code=EXIT_SETUP_ERROR)

    echo_state_total(str(store.path), total)


@state_app.command("reset")
def state_reset_command(
    state_file: StateFileOption = None,
    config_file: ConfigFileOption = None,
    yes: Annotated[
        bool, typer.Option("--yes", "-y", help="Reset without asking for confirmation.")
    ] = False,
) -> None:
    """Reset the persisted accumulated cost to zero."""

    try:
        store = _resolve_state_store(state_file, config_file)
    except Exception as exc:
        exit_with_command_error("state reset", exc, code=EXIT_SETUP_ERROR)

    if not yes and not typer.confirm(f"Reset accumulated cost in `{store.path}`?"):
        typer.echo("Reset cancelled.")
        raise typer.Exit(code=EXIT_OK)

    try:
        previous = store.reset()
    except Exception as exc:
        exit_with_command_error("state reset", exc, code=EXIT_SETUP_ERROR)

    echo_state_total(str(store.path), previous, label="Previous accumulated")
    typer.echo("Accumulated (USD): 0.000000")


def main() -> None:
    """CLI entrypoint for console scripts."""
    app()


if __name__ == "__main__":
    main()

"""CLI runtime assembly helpers.

This module isolates AWS session setup, component wiring, run plan
construction, and signal handling from the command wiring layer.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
import signal
import threading
from pathlib import Path
from types import FrameType
from typing import Any, Callable

import boto3
from botocore.exceptions import BotoCoreError, ProfileNotFound

from .billing import BillingSource, CostExplorerBillingSource, SpendMeter
from .config import BurnerConfig, ConfigLoader
from .costs import format_usd, worst_case_call_cost, worst_case_overshoot
from .errors import SetupError
from .io.state_store import AccumulatedCostStore
from .llm.bedrock_client import BedrockInvocationClient
from .llm.prompts import PromptLibrary
from .llm.rate_limiter import RateLimiter
from .runner.stop_policy import StopPolicy, StopSignal
from .runner.worker_pool import CallPlan, InvocationClient, RetryPolicy, WorkerPool
from .telemetry.ledger import SpendLedger
from .telemetry.logger import RunLogger
from .telemetry.status import StatusReporter

# Cost Explorer is a global service served from us-east-1.
_COST_EXPLORER_REGION = "us-east-1"


@dataclass(frozen=True, slots=True)
class RunComponents:
    """Wired objects for one `run` command invocation."""

    config: BurnerConfig
    pool: WorkerPool
    plan: dict[str, Any]
    spend_meter: SpendMeter
    state_store: AccumulatedCostStore | None


def load_config(config_file: Path | None, cli_values: dict[str, Any]) -> BurnerConfig:
    """Resolve effective config and map failures to setup errors."""

    try:
        return ConfigLoader.resolve(config_file=config_file, cli_values=cli_values)
    except FileNotFoundError as exc:
        raise SetupError(
            stage="config",
            detail=f"Config file not found: `{config_file}`.",
            hint="Provide an existing path via `--config <path.yaml>`.",
        ) from exc
    except ValueError as exc:
        raise SetupError(
            stage="config",
            detail=f"Invalid configuration: {exc}",
            hint="Fix config values (CLI flags, BEDROCK_BURNER_* variables, YAML) and rerun.",
        ) from exc
    except Exception as exc:
        raise SetupError(
            stage="config",
            detail=f"Failed to load config file `{config_file}`: {exc}",
            hint="Verify YAML syntax and file permissions.",
        ) from exc


def create_session(config: BurnerConfig) -> boto3.session.Session:
    """Create a boto3 session and verify that credentials resolve."""

    try:
        session = boto3.session.Session(profile_name=config.profile, region_name=config.region)
    except ProfileNotFound as exc:
        raise SetupError(
            stage="credentials",
            detail=f"AWS profile `{config.profile}` was not found.",
            hint="Check `~/.aws/config` or drop `--profile` to use the default chain.",
        ) from exc

    try:
        credentials = session.get_credentials()
    except BotoCoreError as exc:
        raise SetupError(
            stage="credentials",
            detail=f"Failed to resolve AWS credentials: {exc}",
            hint="Verify the credential provider configuration for this host.",
        ) from exc
    if credentials is None:
        raise SetupError(
            stage="credentials",
            detail="No AWS credentials found.",
            hint="Configure an instance role, `AWS_PROFILE`, or access key variables.",
        )
    return session


def create_invocation_client(
    config: BurnerConfig, session: boto3.session.Session
) -> InvocationClient:
    """Create the Bedrock runtime invocation client."""

    return BedrockInvocationClient.create(
        model_id=config.model_id,
        session=session,
        region=config.region,
        read_timeout_seconds=config.read_timeout_seconds,
    )


def create_billing_source(
    config: BurnerConfig, session: boto3.session.Session
) -> BillingSource | None:
    """Create the authoritative billing source when enabled."""

    if config.billing_source != "cost-explorer":
        return None
    return CostExplorerBillingSource(
        session.client("ce", region_name=_COST_EXPLORER_REGION),
        service_name=config.billing_service,
    )


def open_state_store(config: BurnerConfig) -> tuple[AccumulatedCostStore | None, Decimal]:
    """Open the accumulated-cost store and return it with its baseline."""

    if config.state_file is None:
        return None, Decimal(0)
    store = AccumulatedCostStore(config.state_file)
    try:
        baseline = store.load()
    except (OSError, ValueError) as exc:
        raise SetupError(
            stage="state",
            detail=f"Cannot read state file `{config.state_file}`: {exc}",
            hint="Fix the file permissions or run `bedrock-burner state reset`.",
        ) from exc
    return store, baseline


def build_plan(config: BurnerConfig, baseline_usd: Decimal = Decimal(0)) -> dict[str, Any]:
    """Return the run plan, including worst-case overshoot past the cap."""

    pricing = config.pricing()
    criteria = config.stop_criteria()
    max_output_tokens = config.resolved_max_output_tokens()
    plan = config.as_plan_metadata()
    plan["baseline_usd"] = format_usd(baseline_usd)
    plan["effective_cap_usd"] = format_usd(criteria.effective_cap_usd)
    plan["worst_case_call_usd"] = format_usd(
        worst_case_call_cost(config.avg_input_tokens, max_output_tokens, pricing)
    )
    plan["worst_case_overshoot_usd"] = format_usd(
        worst_case_overshoot(config.workers, config.avg_input_tokens, max_output_tokens, pricing)
    )
    return plan


def overshoot_exceeds_headroom(config: BurnerConfig) -> tuple[bool, Decimal, Decimal]:
    """Return whether the stop margin fails to cover one in-flight batch."""

    criteria = config.stop_criteria()
    overshoot = worst_case_overshoot(
        config.workers,
        config.avg_input_tokens,
        config.resolved_max_output_tokens(),
        config.pricing(),
    )
    if criteria.target_usd <= 0:
        return False, criteria.headroom_usd, overshoot
    return criteria.headroom_usd < overshoot, criteria.headroom_usd, overshoot


def build_run(config: BurnerConfig, run_logger: RunLogger) -> RunComponents:
    """Wire every run component; raises `SetupError` before any spend."""

    session = create_session(config)
    client = create_invocation_client(config, session)
    billing_source = create_billing_source(config, session)
    state_store, baseline_usd = open_state_store(config)

    spend_meter = SpendMeter(
        config.pricing(),
        baseline_usd=baseline_usd,
        billing_source=billing_source,
        poll_interval_seconds=config.billing_poll_seconds,
        state_store=state_store,
        run_logger=run_logger,
    )
    stop_signal = StopSignal()
    max_output_tokens = config.resolved_max_output_tokens()
    prompts = PromptLibrary(exhaust_mode=config.exhaust_mode)
    pool = WorkerPool(
        client=client,
        call_plan=CallPlan(
            prompt=prompts.burn_prompt(config.avg_input_tokens),
            max_output_tokens=max_output_tokens,
            temperature=config.temperature,
        ),
        rate_config=config.rate_config(),
        ledger=SpendLedger(),
        rate_limiter=RateLimiter(
            config.calls_per_minute, cancel_event=stop_signal.cancel_event
        ),
        stop_policy=StopPolicy(config.stop_criteria()),
        stop_signal=stop_signal,
        spend_meter=spend_meter,
        status_reporter=StatusReporter(
            run_logger=run_logger,
            spend_meter=spend_meter,
            interval_seconds=config.status_every,
        ),
        run_logger=run_logger,
        retry_policy=RetryPolicy(
            max_retries=config.max_retries,
            backoff_base_seconds=config.backoff_base_seconds,
            backoff_max_seconds=config.backoff_max_seconds,
        ),
        shutdown_grace_seconds=config.shutdown_grace_seconds,
    )
    return RunComponents(
        config=config,
        pool=pool,
        plan=build_plan(config, baseline_usd),
        spend_meter=spend_meter,
        state_store=state_store,
    )


def install_termination_handler(
    on_terminate: Callable[[], None],
) -> Callable[[], None]:
    """Route SIGTERM to `on_terminate`; return a callable restoring the old handler."""

    if threading.current_thread() is not threading.main_thread():
        return lambda: None

    def _handle(signum: int, frame: FrameType | None) -> None:
        """Forward the termination signal to the run."""

        _ = (signum, frame)
        on_terminate()

    previous = signal.signal(signal.SIGTERM, _handle)

    def _restore() -> None:
        """Reinstall the handler that was active before the run."""

        signal.signal(signal.SIGTERM, previous)

    return _restore

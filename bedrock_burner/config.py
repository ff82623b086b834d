"""Configuration model and loaders for bedrock-burner.

Responsibilities:
- Define run configuration as a typed dataclass.
- Merge YAML, environment, and CLI values with deterministic precedence.
- Derive the immutable pricing, stop, and pacing value objects.

Key types:
- `BurnerConfig`: normalized settings for one run.
- `RuntimeConfigSources`: raw value mappings per source.
- `ConfigLoader`: construction helpers for `BurnerConfig`.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from decimal import Decimal
import os
from pathlib import Path
from typing import Any, Callable, Mapping

import yaml

from .llm.prompts import resolve_max_output_tokens
from .models.datatypes import PricingConfig, RateConfig, StopCriteria
from .parsing import (
    normalize_optional_string,
    parse_decimal,
    parse_float,
    parse_int,
    parse_required_boolean,
)


_THIRTY_DAYS_SECONDS = 30 * 24 * 3600
_SUPPORTED_BILLING_SOURCES = frozenset({"estimate", "cost-explorer"})
_ENV_PREFIX = "BEDROCK_BURNER_"


@dataclass(frozen=True, slots=True)
class RuntimeConfigSources:
    """Raw value mappings used for deterministic precedence.

    Attributes:
        file: Values loaded from a YAML config file.
        env: Values loaded from environment variables.
        cli: Values explicitly provided by CLI arguments.
    """

    file: Mapping[str, Any] = field(default_factory=dict)
    env: Mapping[str, Any] = field(default_factory=dict)
    cli: Mapping[str, Any] = field(default_factory=dict)

    def merged(self) -> dict[str, Any]:
        """Return values with precedence `cli` > `env` > `file`."""

        merged: dict[str, Any] = {}
        for source in (self.file, self.env, self.cli):
            for key, value in source.items():
                if value is None:
                    continue
                merged[key] = value
        return merged


@dataclass(slots=True)
class BurnerConfig:
    """Runtime configuration for one budget-governed run.

    Attributes:
        model_id: Bedrock model identifier or inference profile id.
        region: AWS region hosting the model.
        profile: Optional named AWS credentials profile.
        calls_per_minute: Pool-wide attempt rate.
        workers: Number of concurrent workers.
        avg_input_tokens: Approximate prompt size in tokens.
        max_output_tokens: Output budget per call, or `auto`.
        temperature: Sampling temperature.
        target_usd: Budget cap in USD (`0` disables it).
        stop_ratio: Fraction of `target_usd` that triggers the budget stop.
        max_seconds: Wall-clock cap in seconds (`0` disables it).
        status_every: Seconds between status lines.
        price_in: USD per 1000 input tokens.
        price_out: USD per 1000 output tokens.
        state_file: Optional persisted accumulated-cost file.
        billing_source: `estimate` or `cost-explorer`.
        billing_service: Cost Explorer SERVICE filter; blank disables filtering.
        billing_poll_seconds: Seconds between Cost Explorer lookups.
        max_retries: Consecutive transient failures before a worker moves on.
        backoff_base_seconds: First backoff delay.
        backoff_max_seconds: Backoff delay cap.
        shutdown_grace_seconds: Time allowed for in-flight calls at shutdown.
        read_timeout_seconds: Bedrock read timeout.
        exhaust_mode: Ask the model to use its whole output budget.
    """

    model_id: str = ""
    region: str = ""
    profile: str | None = None
    calls_per_minute: float = 300.0
    workers: int = 12
    avg_input_tokens: int = 1000
    max_output_tokens: int | str = 300
    temperature: float = 0.2
    target_usd: Decimal = Decimal("500")
    stop_ratio: Decimal = Decimal("0.995")
    max_seconds: float = float(_THIRTY_DAYS_SECONDS)
    status_every: float = 15.0
    price_in: Decimal = Decimal("0.003")
    price_out: Decimal = Decimal("0.015")
    state_file: Path | None = None
    billing_source: str = "estimate"
    billing_service: str | None = "Amazon Bedrock"
    billing_poll_seconds: float = 900.0
    max_retries: int = 5
    backoff_base_seconds: float = 0.5
    backoff_max_seconds: float = 30.0
    shutdown_grace_seconds: float = 30.0
    read_timeout_seconds: float = 120.0
    exhaust_mode: bool = False

    def validate(self) -> None:
        """Validate configuration values before any AWS call is made."""

        self._require_non_empty(self.model_id, "model_id")
        self._require_non_empty(self.region, "region")
        if self.calls_per_minute < 0:
            raise ValueError("`calls_per_minute` must be zero (unpaced) or positive.")
        self._require_positive(self.workers, "workers")
        self._require_positive(self.avg_input_tokens, "avg_input_tokens")
        self.resolved_max_output_tokens()
        if not 0.0 <= self.temperature <= 1.0:
            raise ValueError("`temperature` must be between 0 and 1.")
        if self.target_usd < 0:
            raise ValueError("`target_usd` must be zero (disabled) or positive.")
        if not Decimal(0) < self.stop_ratio <= Decimal(1):
            raise ValueError("`stop_ratio` must be in the interval (0, 1].")
        if self.max_seconds < 0:
            raise ValueError("`max_seconds` must be zero (disabled) or positive.")
        if self.target_usd == 0 and self.max_seconds == 0:
            raise ValueError("At least one of `target_usd` or `max_seconds` must be set.")
        self._require_positive(self.status_every, "status_every")
        if self.price_in < 0 or self.price_out < 0:
            raise ValueError("`price_in` and `price_out` must not be negative.")
        if self.target_usd > 0 and self.price_in == 0 and self.price_out == 0:
            raise ValueError("A budget cap needs a non-zero `price_in` or `price_out`.")
        if self.billing_source not in _SUPPORTED_BILLING_SOURCES:
            supported = ", ".join(sorted(_SUPPORTED_BILLING_SOURCES))
            raise ValueError(
                f"Unsupported `billing_source` value `{self.billing_source}`; "
                f"supported: {supported}."
            )
        self._require_positive(self.billing_poll_seconds, "billing_poll_seconds")
        if self.max_retries < 0:
            raise ValueError("`max_retries` must not be negative.")
        if self.backoff_base_seconds < 0 or self.backoff_max_seconds < 0:
            raise ValueError("Backoff delays must not be negative.")
        if self.shutdown_grace_seconds < 0:
            raise ValueError("`shutdown_grace_seconds` must not be negative.")
        self._require_positive(self.read_timeout_seconds, "read_timeout_seconds")

    def resolved_max_output_tokens(self) -> int:
        """Return the output-token budget, resolving `auto` from the model id."""

        return resolve_max_output_tokens(self.model_id, self.max_output_tokens)

    def pricing(self) -> PricingConfig:
        """Return immutable unit prices."""

        return PricingConfig(
            price_per_1k_input_usd=self.price_in,
            price_per_1k_output_usd=self.price_out,
        )

    def stop_criteria(self) -> StopCriteria:
        """Return immutable stop limits."""

        return StopCriteria(
            target_usd=self.target_usd,
            stop_ratio=self.stop_ratio,
            max_duration_seconds=self.max_seconds,
        )

    def rate_config(self) -> RateConfig:
        """Return pool pacing settings."""

        return RateConfig(calls_per_minute=self.calls_per_minute, worker_count=self.workers)

    def with_overrides(self, values: Mapping[str, Any]) -> BurnerConfig:
        """Return a copy with parsed override values applied."""

        parsed = ConfigLoader.parse_values(values, source_label="overrides")
        return replace(self, **parsed)

    def as_plan_metadata(self) -> dict[str, Any]:
        """Return non-secret settings safe to log in the run plan."""

        return {
            "model_id": self.model_id,
            "region": self.region,
            "profile": self.profile or "default",
            "rpm": self.calls_per_minute,
            "workers": self.workers,
            "avg_in": self.avg_input_tokens,
            "max_out": self.resolved_max_output_tokens(),
            "temperature": self.temperature,
            "target_usd": f"{self.target_usd}",
            "stop_ratio": f"{self.stop_ratio}",
            "max_seconds": self.max_seconds,
            "prices_per_1k": {"in": f"{self.price_in}", "out": f"{self.price_out}"},
            "billing_source": self.billing_source,
            "state_file": str(self.state_file) if self.state_file is not None else None,
            "exhaust_mode": self.exhaust_mode,
        }

    @staticmethod
    def _require_non_empty(value: str, field_name: str) -> None:
        """Validate that string fields are not empty."""

        if not isinstance(value, str) or not value.strip():
            raise ValueError(f"`{field_name}` must be a non-empty string.")

    @staticmethod
    def _require_positive(value: float, field_name: str) -> None:
        """Validate that numeric fields are strictly positive."""

        if value <= 0:
            raise ValueError(f"`{field_name}` must be positive.")


def _parse_max_output_tokens(value: object, field_name: str) -> int | str:
    """Accept a positive integer or the `auto` token."""

    normalized = normalize_optional_string(value)
    if normalized is not None and normalized.lower() == "auto":
        return "auto"
    return parse_int(value, field_name)


def _parse_optional_path(value: object, field_name: str) -> Path | None:
    """Parse an optional filesystem path."""

    _ = field_name
    normalized = normalize_optional_string(value)
    return Path(normalized).expanduser() if normalized is not None else None


def _parse_optional_string(value: object, field_name: str) -> str | None:
    """Parse an optional string; blank values become `None`."""

    _ = field_name
    return normalize_optional_string(value)


def _parse_string(value: object, field_name: str) -> str:
    """Parse a string field, keeping blank values for validation to report."""

    _ = field_name
    return normalize_optional_string(value) or ""


def _parse_billing_source(value: object, field_name: str) -> str:
    """Parse the billing source token in lowercase."""

    return _parse_string(value, field_name).lower()


_FIELD_PARSERS: dict[str, Callable[[object, str], Any]] = {
    "model_id": _parse_string,
    "region": _parse_string,
    "profile": _parse_optional_string,
    "calls_per_minute": parse_float,
    "workers": parse_int,
    "avg_input_tokens": parse_int,
    "max_output_tokens": _parse_max_output_tokens,
    "temperature": parse_float,
    "target_usd": parse_decimal,
    "stop_ratio": parse_decimal,
    "max_seconds": parse_float,
    "status_every": parse_float,
    "price_in": parse_decimal,
    "price_out": parse_decimal,
    "state_file": _parse_optional_path,
    "billing_source": _parse_billing_source,
    "billing_service": _parse_optional_string,
    "billing_poll_seconds": parse_float,
    "max_retries": parse_int,
    "backoff_base_seconds": parse_float,
    "backoff_max_seconds": parse_float,
    "shutdown_grace_seconds": parse_float,
    "read_timeout_seconds": parse_float,
    "exhaust_mode": parse_required_boolean,
}


class ConfigLoader:
    """Factory methods for creating `BurnerConfig` from external sources."""

    _SUPPORTED_KEYS = frozenset(item.name for item in fields(BurnerConfig))
    _ENV_FALLBACKS = {"region": ("AWS_REGION", "AWS_DEFAULT_REGION"), "profile": ("AWS_PROFILE",)}

    @staticmethod
    def parse_values(values: Mapping[str, Any], source_label: str) -> dict[str, Any]:
        """Validate keys and coerce raw values to their typed field values."""

        unknown = sorted(set(values).difference(ConfigLoader._SUPPORTED_KEYS))
        if unknown:
            key_list = ", ".join(unknown)
            raise ValueError(f"{source_label} includes unsupported key(s): {key_list}.")

        parsed: dict[str, Any] = {}
        for key, raw_value in values.items():
            parser = _FIELD_PARSERS[key]
            try:
                parsed[key] = parser(raw_value, key)
            except ValueError as exc:
                raise ValueError(f"{source_label}: {exc}") from exc
        return parsed

    @staticmethod
    def read_yaml_values(path: Path) -> dict[str, Any]:
        """Read raw values from a YAML mapping file."""

        payload = yaml.safe_load(path.read_text(encoding="utf-8"))
        if payload is None:
            return {}
        if not isinstance(payload, Mapping):
            raise ValueError(f"YAML config `{path}` must contain a top-level mapping/object.")
        return {str(key): value for key, value in payload.items()}

    @staticmethod
    def read_env_values(env: Mapping[str, str] | None = None) -> dict[str, Any]:
        """Read raw values from `BEDROCK_BURNER_*` and AWS fallback variables."""

        env_map: Mapping[str, str] = os.environ if env is None else env
        values: dict[str, Any] = {}
        for key in sorted(ConfigLoader._SUPPORTED_KEYS):
            raw_value = normalize_optional_string(env_map.get(f"{_ENV_PREFIX}{key.upper()}"))
            if raw_value is not None:
                values[key] = raw_value
        for key, fallback_names in ConfigLoader._ENV_FALLBACKS.items():
            if key in values:
                continue
            for env_name in fallback_names:
                raw_value = normalize_optional_string(env_map.get(env_name))
                if raw_value is not None:
                    values[key] = raw_value
                    break
        return values

    @staticmethod
    def from_sources(sources: RuntimeConfigSources) -> BurnerConfig:
        """Build a validated config from merged sources."""

        parsed = ConfigLoader.parse_values(sources.merged(), source_label="Configuration")
        config = BurnerConfig(**parsed)
        config.validate()
        return config

    @staticmethod
    def from_yaml(path: Path) -> BurnerConfig:
        """Create a validated config from a YAML file."""

        values = ConfigLoader.read_yaml_values(path)
        parsed = ConfigLoader.parse_values(values, source_label=f"YAML `{path}`")
        config = BurnerConfig(**parsed)
        config.validate()
        return config

    @staticmethod
    def from_env(env: Mapping[str, str] | None = None) -> BurnerConfig:
        """Create a validated config from environment variables."""

        values = ConfigLoader.read_env_values(env)
        parsed = ConfigLoader.parse_values(values, source_label="Environment")
        config = BurnerConfig(**parsed)
        config.validate()
        return config

    @staticmethod
    def resolve(
        *,
        config_file: Path | None,
        cli_values: Mapping[str, Any],
        env: Mapping[str, str] | None = None,
    ) -> BurnerConfig:
        """Resolve the effective config with precedence CLI > env > YAML > defaults."""

        file_values = ConfigLoader.read_yaml_values(config_file) if config_file else {}
        sources = RuntimeConfigSources(
            file=file_values,
            env=ConfigLoader.read_env_values(env),
            cli=dict(cli_values),
        )
        return ConfigLoader.from_sources(sources)

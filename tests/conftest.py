"""Shared pytest fixtures for the bedrock-burner test suite."""

from __future__ import annotations

import io
from decimal import Decimal

import pytest

from bedrock_burner.models.datatypes import PricingConfig
from bedrock_burner.telemetry.logger import RunLogger
from tests.fakes import FakeClock


@pytest.fixture
def fake_clock() -> FakeClock:
    """Provide a fake monotonic clock starting at zero."""

    return FakeClock()


@pytest.fixture
def log_stream() -> io.StringIO:
    """Provide an in-memory sink for run log lines."""

    return io.StringIO()


@pytest.fixture
def run_logger(log_stream: io.StringIO) -> RunLogger:
    """Provide a run logger writing into `log_stream`."""

    return RunLogger(sink=log_stream)


@pytest.fixture
def pricing() -> PricingConfig:
    """Provide the default per-1k token prices."""

    return PricingConfig(
        price_per_1k_input_usd=Decimal("0.003"),
        price_per_1k_output_usd=Decimal("0.015"),
    )

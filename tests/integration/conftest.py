"""Integration-test fixtures isolating the CLI from AWS and the host environment."""

from __future__ import annotations

import os

import pytest

from bedrock_burner import cli_runtime
from tests.fakes import FakeSession, InstallClient, ScriptedInvocationClient


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Drop host configuration variables so only test inputs apply."""

    for name in list(os.environ):
        if name.startswith("BEDROCK_BURNER_") or name in {
            "AWS_REGION",
            "AWS_DEFAULT_REGION",
            "AWS_PROFILE",
        }:
            monkeypatch.delenv(name, raising=False)


@pytest.fixture
def fake_session(monkeypatch: pytest.MonkeyPatch) -> FakeSession:
    """Replace AWS session creation with a credential-free fake."""

    session = FakeSession()
    monkeypatch.setattr(cli_runtime, "create_session", lambda config: session)
    return session


@pytest.fixture
def install_client(
    monkeypatch: pytest.MonkeyPatch, fake_session: FakeSession
) -> InstallClient:
    """Return a helper that installs a scripted invocation client for `run`."""

    _ = fake_session

    def _install(client: ScriptedInvocationClient) -> ScriptedInvocationClient:
        """Route invocation-client creation to `client`."""

        monkeypatch.setattr(
            cli_runtime, "create_invocation_client", lambda config, session: client
        )
        return client

    return _install

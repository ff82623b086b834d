"""Unit tests for CLI diagnostics rendering."""

from __future__ import annotations

import pytest
import typer

from bedrock_burner.cli_rendering import exit_with_command_error
from bedrock_burner.errors import SetupError


def test_exit_with_command_error_renders_stage_and_hint(
    capsys: pytest.CaptureFixture[str],
) -> None:
    """Setup errors should print stage, detail, and hint, then exit with the given code."""

    error = SetupError(stage="credentials", detail="No AWS credentials found.", hint="Set a role.")

    with pytest.raises(typer.Exit) as exc_info:
        exit_with_command_error("run", error)

    captured = capsys.readouterr()
    assert exc_info.value.exit_code == 1
    assert "run failed at stage `credentials`: No AWS credentials found." in captured.err
    assert "Hint: Set a role." in captured.err


def test_exit_with_command_error_renders_generic_errors_with_custom_code(
    capsys: pytest.CaptureFixture[str],
) -> None:
    """Other exceptions should print a generic line and honor the exit code."""

    with pytest.raises(typer.Exit) as exc_info:
        exit_with_command_error("run", RuntimeError("access denied"), code=2)

    assert exc_info.value.exit_code == 2
    assert "run failed: access denied" in capsys.readouterr().err

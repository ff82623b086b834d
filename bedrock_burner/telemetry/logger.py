"""Structured run logging utilities.

Responsibilities:
- Emit concise, deterministic event lines for the invocation loop.
- Emit JSON status and final summary lines for log-based monitoring.
"""

from __future__ import annotations

import json
import sys
from typing import Any, TextIO

from loguru import logger as _loguru_logger


def _sanitize_context_value(value: object) -> str:
    """Convert context values into stable, shell-safe tokens."""

    raw = str(value).strip()
    if not raw:
        return "none"
    return "".join(
        character if character.isalnum() or character in {"-", "_", ".", ":", "/"} else "_"
        for character in raw
    )


def _format_context(context: dict[str, object]) -> str:
    """Serialize context key/value pairs in deterministic key order."""

    if not context:
        return ""
    tokens = [
        f"{key}={_sanitize_context_value(context[key])}"
        for key in sorted(context.keys())
    ]
    return " " + " ".join(tokens)


class RunLogger:
    """Emit deterministic run events for CLI- and journal-observable activity."""

    def __init__(self, sink: TextIO | None = None, level: str = "INFO") -> None:
        """Initialize logger sink and configure deterministic formatting."""

        self._sink = sink or sys.stderr
        _loguru_logger.remove()
        _loguru_logger.add(self._sink, format="{message}", level=level, colorize=False)

    def _emit(self, level: str, event: str, stage: str, **context: object) -> None:
        """Emit one structured runtime log line."""

        line = f"[run] level={level} stage={stage} event={event}{_format_context(context)}"
        _loguru_logger.log(level, line)

    def info(self, stage: str, event: str, **context: object) -> None:
        """Emit an informational runtime event."""

        self._emit("INFO", event, stage, **context)

    def warning(self, stage: str, event: str, **context: object) -> None:
        """Emit a degraded-mode or retry-budget warning event."""

        self._emit("WARNING", event, stage, **context)

    def error(self, stage: str, event: str, **context: object) -> None:
        """Emit a failure event without sensitive payload details."""

        self._emit("ERROR", event, stage, **context)

    def log_plan(self, plan: dict[str, Any]) -> None:
        """Emit the resolved run plan as one JSON line."""

        _loguru_logger.info("[plan] " + json.dumps(plan, sort_keys=True))

    def log_status(self, status: dict[str, Any]) -> None:
        """Emit one periodic status snapshot as a JSON line."""

        _loguru_logger.info("[status] " + json.dumps(status, sort_keys=True))

    def log_final(self, summary: dict[str, Any]) -> None:
        """Emit the final run summary as a JSON line."""

        _loguru_logger.info("[final] " + json.dumps(summary, sort_keys=True))

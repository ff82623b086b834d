"""Persisted accumulated-cost record shared across process restarts.

Responsibilities:
- Read the accumulated USD value recorded by earlier runs.
- Add per-attempt cost with an exclusive-lock read-modify-write so
  concurrent writers never lose updates.
- Replace the record atomically so a crash never leaves a partial file.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
import fcntl
import json
import os
from pathlib import Path
from typing import Iterator


class AccumulatedCostStore:
    """JSON file holding `{"accumulated_usd": "<decimal>"}` under a sidecar lock."""

    def __init__(self, path: Path) -> None:
        """Initialize the store for a state file path."""

        self.path = path
        self.lock_path = path.with_name(f"{path.name}.lock")

    @contextmanager
    def _locked(self, mode: int) -> Iterator[None]:
        """Hold an advisory `flock` on the sidecar lock file."""

        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.lock_path, "a+") as lock_file:
            fcntl.flock(lock_file, mode)
            try:
                yield
            finally:
                fcntl.flock(lock_file, fcntl.LOCK_UN)

    def load(self) -> Decimal:
        """Return the persisted accumulated USD value, or zero when absent."""

        with self._locked(fcntl.LOCK_SH):
            return self._read_unlocked()

    def add(self, amount_usd: Decimal) -> Decimal:
        """Add a non-negative amount to the persisted value and return the new total."""

        if amount_usd < 0:
            raise ValueError("Accumulated cost can only grow.")
        with self._locked(fcntl.LOCK_EX):
            total = self._read_unlocked() + amount_usd
            self._write_unlocked(total)
            return total

    def reset(self) -> Decimal:
        """Reset the persisted value to zero and return the previous total."""

        with self._locked(fcntl.LOCK_EX):
            previous = self._read_unlocked()
            self._write_unlocked(Decimal(0))
            return previous

    def _read_unlocked(self) -> Decimal:
        """Parse the state file; caller must hold the lock."""

        if not self.path.exists():
            return Decimal(0)
        raw_text = self.path.read_text(encoding="utf-8")
        if not raw_text.strip():
            return Decimal(0)
        try:
            payload = json.loads(raw_text)
        except json.JSONDecodeError as exc:
            raise ValueError(f"State file `{self.path}` is not valid JSON.") from exc
        if not isinstance(payload, dict) or "accumulated_usd" not in payload:
            raise ValueError(f"State file `{self.path}` is missing `accumulated_usd`.")
        try:
            value = Decimal(str(payload["accumulated_usd"]))
        except InvalidOperation as exc:
            raise ValueError(
                f"State file `{self.path}` has a non-numeric `accumulated_usd`."
            ) from exc
        if not value.is_finite() or value < 0:
            raise ValueError(f"State file `{self.path}` has an invalid `accumulated_usd`.")
        return value

    def _write_unlocked(self, total: Decimal) -> None:
        """Write the state file atomically; caller must hold the exclusive lock."""

        payload = {
            "accumulated_usd": f"{total:f}",
            "updated_at": datetime.now(timezone.utc).isoformat(timespec="seconds"),
        }
        tmp_path = self.path.with_name(f"{self.path.name}.tmp")
        tmp_path.write_text(json.dumps(payload, sort_keys=True, indent=2), encoding="utf-8")
        os.replace(tmp_path, self.path)

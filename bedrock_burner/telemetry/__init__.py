"""Telemetry: spend ledger, structured logging, and status reporting."""

from .ledger import SpendLedger
from .logger import RunLogger

__all__ = ["RunLogger", "SpendLedger"]

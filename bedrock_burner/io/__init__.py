"""Persistent state helpers."""

from .state_store import AccumulatedCostStore

__all__ = ["AccumulatedCostStore"]

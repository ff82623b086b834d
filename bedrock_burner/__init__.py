"""Top-level package for bedrock-burner.

This package spends a fixed Amazon Bedrock budget with paced, concurrent
inference calls and stops on budget, time, permanent error, or interrupt.
The main orchestration entry point is `WorkerPool`.
"""

from .runner.worker_pool import WorkerPool

__all__ = ["WorkerPool", "__version__"]

__version__ = "0.1.0"

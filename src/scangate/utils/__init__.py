"""Shared async utilities."""

from scangate.utils.concurrency import CancellationToken, WorkerPool, run_with_timeout

__all__ = ["CancellationToken", "WorkerPool", "run_with_timeout"]

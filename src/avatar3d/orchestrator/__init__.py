"""
Orchestrator Module
===================

Bounded-concurrency batch execution with per-frame retry.

Example:
    from avatar3d.orchestrator import BatchOrchestrator, RetryPolicy

    orchestrator = BatchOrchestrator(client, RetryPolicy(max_retries=5), concurrency=8)
    async for event in orchestrator.run(photo, specs, x_steps=5, y_steps=5):
        ...
"""

from avatar3d.orchestrator.batch import BatchJob, BatchMetrics, BatchOrchestrator
from avatar3d.orchestrator.retry import FrameState, RetryPolicy


__all__ = [
    "BatchJob",
    "BatchMetrics",
    "BatchOrchestrator",
    "FrameState",
    "RetryPolicy",
]

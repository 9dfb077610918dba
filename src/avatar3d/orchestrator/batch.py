"""
Batch Orchestrator
==================

Runs a grid of frame generations against the remote client under a
bounded worker pool and streams typed events as frames finish.

This module provides the BatchOrchestrator class which:
    - Emits a ``config`` event before any work starts
    - Dispatches frames to ``min(concurrency, frames)`` asyncio workers
    - Retries rate-limited frames with exponential backoff
    - Emits one ``progress`` event per frame in completion order
    - Ends with exactly one ``complete`` (or ``error``) event

Design Rules:
    - Claiming the next frame never awaits (no duplicate dispatch)
    - The completed counter is bumped and the event queued in one step
    - A failed frame is reported as ``status=failed`` and never fails the batch
    - Only errors escaping the per-frame handling abort the batch
    - Closing the event stream cancels outstanding workers
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import AsyncIterator, Awaitable, Callable, Dict, Optional, Sequence

from avatar3d.grid.steps import FrameSpec
from avatar3d.images.codec import encode_base64
from avatar3d.models.events import (
    BatchConfig,
    CompleteEvent,
    ConfigEvent,
    ErrorEvent,
    FrameStatus,
    OrchestratorEvent,
    ProgressEvent,
    StepPayload,
)
from avatar3d.orchestrator.retry import FrameState, RetryPolicy
from avatar3d.remote.client import GenerationClient
from avatar3d.remote.errors import RemoteGenerationError, classify_error


logger = logging.getLogger(__name__)


SleepFn = Callable[[float], Awaitable[None]]


class BatchMetrics:
    """Aggregate counters across batches for observability."""

    __slots__ = (
        "batches_started",
        "batches_completed",
        "batches_failed",
        "frames_succeeded",
        "frames_failed",
        "rate_limit_retries",
    )

    def __init__(self) -> None:
        self.batches_started: int = 0
        self.batches_completed: int = 0
        self.batches_failed: int = 0
        self.frames_succeeded: int = 0
        self.frames_failed: int = 0
        self.rate_limit_retries: int = 0

    def to_dict(self) -> dict:
        """Export metrics as dict."""
        return {name: getattr(self, name) for name in self.__slots__}


@dataclass
class BatchJob:
    """
    In-flight state of one batch.

    Attributes:
        specs: Frames in row-major order
        cursor: Next undispatched position in ``specs``
        completed: Frames that reached a terminal state
        succeeded: Frames that produced an image
        failed: Frames given up on
        in_flight: Remote calls currently running
        peak_in_flight: Highest ``in_flight`` observed
        states: FrameState per grid index
    """

    specs: Sequence[FrameSpec]
    cursor: int = 0
    completed: int = 0
    succeeded: int = 0
    failed: int = 0
    in_flight: int = 0
    peak_in_flight: int = 0
    states: Dict[int, FrameState] = field(default_factory=dict)

    def __post_init__(self) -> None:
        for spec in self.specs:
            self.states[spec.index] = FrameState.PENDING

    @property
    def total(self) -> int:
        return len(self.specs)

    def claim(self) -> Optional[FrameSpec]:
        """Take the next undispatched frame, or None when exhausted."""
        if self.cursor >= len(self.specs):
            return None
        spec = self.specs[self.cursor]
        self.cursor += 1
        return spec

    def mark_finished(self, index: int, ok: bool) -> int:
        """Record a terminal frame and return the new completed count."""
        self.states[index] = FrameState.SUCCEEDED if ok else FrameState.GIVEN_UP
        if ok:
            self.succeeded += 1
        else:
            self.failed += 1
        self.completed += 1
        return self.completed


@dataclass(frozen=True)
class _WorkerExit:
    error: Optional[BaseException] = None


class BatchOrchestrator:
    """
    Single-use executor for one batch of frames.

    Attributes:
        client: Remote generation backend
        retry_policy: Backoff schedule for rate-limited frames
        concurrency: Maximum simultaneous remote calls
        attempt_timeout: Seconds allowed per remote call (None = unlimited)
        batch_timeout: Wall-clock ceiling for the batch (None = unlimited)
        metrics: Shared counters updated as the batch runs

    Example:
        orchestrator = BatchOrchestrator(client, RetryPolicy(), concurrency=8)

        async for event in orchestrator.run(photo, specs, x_steps=5, y_steps=5):
            send(event)
    """

    def __init__(
        self,
        client: GenerationClient,
        retry_policy: Optional[RetryPolicy] = None,
        concurrency: int = 8,
        attempt_timeout: Optional[float] = None,
        batch_timeout: Optional[float] = None,
        metrics: Optional[BatchMetrics] = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            client: Backend exposing ``call_frame``
            retry_policy: Retry limits (defaults to RetryPolicy())
            concurrency: Worker pool size, >= 1
            attempt_timeout: Per-attempt timeout in seconds
            batch_timeout: Whole-batch timeout in seconds
            metrics: Shared metrics object (a private one if omitted)
            sleep: Backoff sleep function (injectable for tests)
        """
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")

        self.client = client
        self.retry_policy = retry_policy or RetryPolicy()
        self.concurrency = concurrency
        self.attempt_timeout = attempt_timeout
        self.batch_timeout = batch_timeout
        self.metrics = metrics or BatchMetrics()
        self._sleep = sleep

        self._started: bool = False
        self._job: Optional[BatchJob] = None

    @property
    def job(self) -> Optional[BatchJob]:
        """State of the running (or finished) batch."""
        return self._job

    async def run(
        self,
        source_image: bytes,
        specs: Sequence[FrameSpec],
        x_steps: int,
        y_steps: int,
        prefix: str = "avatar",
        estimated_cost: float = 0.0,
    ) -> AsyncIterator[OrchestratorEvent]:
        """
        Execute the batch, yielding events as they happen.

        Args:
            source_image: Encoded photo bytes passed to every frame
            specs: Frames in row-major order
            x_steps: Grid columns (for the config event)
            y_steps: Grid rows (for the config event)
            prefix: Filename prefix (for the config event)
            estimated_cost: Cost estimate (for the config event)

        Yields:
            ConfigEvent, then ProgressEvent per frame, then CompleteEvent
            or ErrorEvent

        Raises:
            RuntimeError: If called more than once
        """
        if self._started:
            raise RuntimeError("BatchOrchestrator is single-use")
        self._started = True

        job = BatchJob(specs=specs)
        self._job = job
        self.metrics.batches_started += 1

        yield ConfigEvent(
            config=BatchConfig(
                x_steps=x_steps,
                y_steps=y_steps,
                prefix=prefix,
                total_images=job.total,
                estimated_cost=estimated_cost,
            )
        )

        if job.total == 0:
            self.metrics.batches_completed += 1
            yield CompleteEvent()
            return

        pool_size = min(self.concurrency, job.total)
        logger.info(
            f"Batch started: frames={job.total}, workers={pool_size}, "
            f"max_retries={self.retry_policy.max_retries}"
        )

        queue: asyncio.Queue = asyncio.Queue()

        def _on_worker_done(task: asyncio.Task) -> None:
            if task.cancelled():
                return
            queue.put_nowait(_WorkerExit(error=task.exception()))

        workers = []
        for i in range(pool_size):
            task = asyncio.create_task(
                self._worker(job, source_image, queue),
                name=f"batch_worker_{i}",
            )
            task.add_done_callback(_on_worker_done)
            workers.append(task)

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.batch_timeout if self.batch_timeout else None
        exited = 0

        try:
            while exited < pool_size:
                timeout = None if deadline is None else max(0.0, deadline - loop.time())
                try:
                    item = await asyncio.wait_for(queue.get(), timeout=timeout)
                except asyncio.TimeoutError:
                    self.metrics.batches_failed += 1
                    logger.error(
                        f"Batch timed out after {self.batch_timeout:g}s "
                        f"({job.completed}/{job.total} frames finished)"
                    )
                    yield ErrorEvent(error=f"Batch timed out after {self.batch_timeout:g}s")
                    return

                if isinstance(item, _WorkerExit):
                    if item.error is not None:
                        self.metrics.batches_failed += 1
                        logger.error(f"Batch aborted: {item.error!r}")
                        yield ErrorEvent(error=str(item.error) or "Generation failed")
                        return
                    exited += 1
                    continue

                yield item

            self.metrics.batches_completed += 1
            logger.info(
                f"Batch complete: {job.succeeded}/{job.total} succeeded, "
                f"{job.failed} failed, peak_in_flight={job.peak_in_flight}"
            )
            yield CompleteEvent()

        finally:
            pending = [w for w in workers if not w.done()]
            for worker in pending:
                worker.cancel()
            if pending:
                logger.info(f"Cancelling {len(pending)} outstanding batch workers")
                await asyncio.gather(*pending, return_exceptions=True)

    async def _worker(
        self,
        job: BatchJob,
        source_image: bytes,
        queue: asyncio.Queue,
    ) -> None:
        """Process frames until the cursor is exhausted."""
        while True:
            spec = job.claim()
            if spec is None:
                return
            await self._process_frame(job, source_image, spec, queue)

    async def _process_frame(
        self,
        job: BatchJob,
        source_image: bytes,
        spec: FrameSpec,
        queue: asyncio.Queue,
    ) -> None:
        """Drive one frame through its retry state machine."""
        attempt = 0

        while True:
            job.states[spec.index] = FrameState.ATTEMPTING
            try:
                image = await self._attempt(job, source_image, spec)
            except Exception as e:
                error = classify_error(e)

                if self.retry_policy.should_retry(attempt, error):
                    delay = self.retry_policy.backoff_seconds(attempt)
                    self.metrics.rate_limit_retries += 1
                    logger.warning(
                        f"Frame {spec.index} rate limited, retrying in {delay:.1f}s "
                        f"(attempt {attempt + 1}/{self.retry_policy.max_retries})"
                    )
                    job.states[spec.index] = FrameState.PENDING
                    await self._sleep(delay)
                    attempt += 1
                    continue

                logger.error(
                    f"Frame {spec.index} failed after {attempt + 1} attempt(s): {error}"
                )
                self._emit(job, queue, spec, error=str(error) or type(error).__name__)
                return

            self._emit(job, queue, spec, image=image)
            return

    async def _attempt(self, job: BatchJob, source_image: bytes, spec: FrameSpec) -> bytes:
        """One remote call, bounded by the per-attempt timeout."""
        job.in_flight += 1
        job.peak_in_flight = max(job.peak_in_flight, job.in_flight)
        try:
            if self.attempt_timeout is None:
                return await self.client.call_frame(source_image, spec)
            try:
                return await asyncio.wait_for(
                    self.client.call_frame(source_image, spec),
                    timeout=self.attempt_timeout,
                )
            except asyncio.TimeoutError:
                raise RemoteGenerationError(
                    f"Attempt timed out after {self.attempt_timeout:g}s"
                )
        finally:
            job.in_flight -= 1

    def _emit(
        self,
        job: BatchJob,
        queue: asyncio.Queue,
        spec: FrameSpec,
        image: Optional[bytes] = None,
        error: Optional[str] = None,
    ) -> None:
        """Count a finished frame and queue its progress event."""
        ok = image is not None
        event = ProgressEvent(
            completed=job.mark_finished(spec.index, ok),
            total=job.total,
            index=spec.index,
            step=StepPayload.model_validate(spec.to_payload()),
            image_base64=encode_base64(image) if ok else "",
            status=FrameStatus.OK if ok else FrameStatus.FAILED,
            error=error,
        )

        if ok:
            self.metrics.frames_succeeded += 1
        else:
            self.metrics.frames_failed += 1

        queue.put_nowait(event)

"""
Orchestrator Tests
==================

Tests for the retry policy and the batch orchestrator.

Remote calls are replaced by ScriptedClient and backoff sleeps by
RecordingSleep, so no test waits on real backoff delays.
"""

import asyncio

import pytest

from avatar3d.config import OrchestratorConfig
from avatar3d.grid import generate_steps
from avatar3d.models import CompleteEvent, ConfigEvent, ErrorEvent, FrameStatus, ProgressEvent
from avatar3d.orchestrator import BatchMetrics, BatchOrchestrator, FrameState, RetryPolicy
from avatar3d.remote import RateLimitError, RemoteGenerationError


def run_batch(orchestrator, x_steps=3, y_steps=3, source=b"photo"):
    """Run a batch to completion and return every event."""
    specs = generate_steps(x_steps, y_steps)

    async def collect():
        return [
            event
            async for event in orchestrator.run(source, specs, x_steps=x_steps, y_steps=y_steps)
        ]

    return asyncio.run(collect())


def progress_events(events):
    return [e for e in events if isinstance(e, ProgressEvent)]


class TestRetryPolicy:
    """Tests for RetryPolicy."""

    def test_default_backoff_schedule(self):
        """Verify 5s, 10s, 20s, 40s then capped at 60s."""
        policy = RetryPolicy()

        assert [policy.backoff_seconds(n) for n in range(6)] == [5.0, 10.0, 20.0, 40.0, 60.0, 60.0]

    def test_should_retry_only_retryable(self):
        """Verify only rate-limit errors are retried."""
        policy = RetryPolicy(max_retries=5)

        assert policy.should_retry(0, RateLimitError("429"))
        assert not policy.should_retry(0, RemoteGenerationError("boom", status=500))

    def test_max_retries_bounds_attempts(self):
        """Verify max_retries counts every attempt."""
        policy = RetryPolicy(max_retries=3)
        error = RateLimitError("429")

        assert policy.should_retry(0, error)
        assert policy.should_retry(1, error)
        assert not policy.should_retry(2, error)

    def test_single_attempt_never_retries(self):
        policy = RetryPolicy(max_retries=1)
        assert not policy.should_retry(0, RateLimitError("429"))

    def test_from_config(self):
        """Verify policy is built from the orchestrator section."""
        cfg = OrchestratorConfig(max_retries=2, initial_backoff_ms=100, backoff_multiplier=3, max_backoff_ms=500)
        policy = RetryPolicy.from_config(cfg)

        assert policy.max_retries == 2
        assert [policy.backoff_ms(n) for n in range(3)] == [100, 300, 500]

    @pytest.mark.parametrize("kwargs", [
        {"max_retries": 0},
        {"initial_backoff_ms": -1},
        {"multiplier": 0.5},
    ])
    def test_invalid_values(self, kwargs):
        with pytest.raises(ValueError):
            RetryPolicy(**kwargs)


class TestBatchEvents:
    """Tests for the event sequence of a batch."""

    def test_event_order(self, scripted_client):
        """Verify config first, one progress per frame, complete last."""
        events = run_batch(BatchOrchestrator(scripted_client(), concurrency=4))

        assert isinstance(events[0], ConfigEvent)
        assert isinstance(events[-1], CompleteEvent)
        assert len(progress_events(events)) == 9
        assert len(events) == 11

    def test_config_event(self, scripted_client):
        """Verify the config event describes the grid."""
        specs = generate_steps(3, 2)
        orchestrator = BatchOrchestrator(scripted_client())

        async def first_event():
            stream = orchestrator.run(b"photo", specs, x_steps=3, y_steps=2, prefix="me", estimated_cost=0.5)
            event = await stream.__anext__()
            await stream.aclose()
            return event

        event = asyncio.run(first_event())

        assert event.config.x_steps == 3
        assert event.config.y_steps == 2
        assert event.config.prefix == "me"
        assert event.config.total_images == 6
        assert event.config.estimated_cost == 0.5

    def test_completed_strictly_increasing(self, scripted_client):
        """Verify completed goes 1..N with no gaps or repeats."""
        client = scripted_client(delays={0: 0.03, 4: 0.02, 7: 0.01})
        events = run_batch(BatchOrchestrator(client, concurrency=3))
        progress = progress_events(events)

        assert [e.completed for e in progress] == list(range(1, 10))
        assert all(e.total == 9 for e in progress)

    def test_every_index_reported_once(self, scripted_client):
        """Verify each frame appears exactly once, in completion order."""
        client = scripted_client(delays={0: 0.05})
        progress = progress_events(run_batch(BatchOrchestrator(client, concurrency=9)))

        indices = [e.index for e in progress]
        assert sorted(indices) == list(range(9))
        # The slow first frame finishes last
        assert indices[-1] == 0

    def test_progress_payload(self, scripted_client):
        """Verify progress events carry the step and the encoded image."""
        progress = progress_events(run_batch(BatchOrchestrator(scripted_client())))
        by_index = {e.index: e for e in progress}

        event = by_index[0]
        assert event.status == FrameStatus.OK
        assert event.ok
        assert event.step.filename == "avatar_y-20_p-20_px-15_py-15.png"
        assert event.image_base64 == "ZnJhbWUtMA=="  # b"frame-0"
        assert event.error is None

    def test_each_frame_called_once_on_success(self, scripted_client):
        """Verify no frame is dispatched twice."""
        client = scripted_client(delay=0.001)
        run_batch(BatchOrchestrator(client, concurrency=4), x_steps=5, y_steps=5)

        assert sorted(client.calls) == list(range(25))

    def test_empty_batch(self, scripted_client):
        """Verify an empty grid completes immediately."""
        client = scripted_client()
        orchestrator = BatchOrchestrator(client)

        async def collect():
            return [e async for e in orchestrator.run(b"photo", [], x_steps=1, y_steps=1)]

        events = asyncio.run(collect())

        assert [e.type for e in events] == ["config", "complete"]
        assert client.calls == []

    def test_single_use(self, scripted_client):
        """Verify an orchestrator runs one batch only."""
        orchestrator = BatchOrchestrator(scripted_client())
        run_batch(orchestrator, 1, 1)

        async def second_run():
            stream = orchestrator.run(b"photo", generate_steps(1, 1), x_steps=1, y_steps=1)
            await stream.__anext__()

        with pytest.raises(RuntimeError):
            asyncio.run(second_run())

    def test_invalid_concurrency(self, scripted_client):
        with pytest.raises(ValueError):
            BatchOrchestrator(scripted_client(), concurrency=0)


class TestConcurrency:
    """Tests for the worker pool bound."""

    def test_in_flight_never_exceeds_concurrency(self, scripted_client):
        """Verify at most `concurrency` remote calls run at once."""
        client = scripted_client(delay=0.01)
        orchestrator = BatchOrchestrator(client, concurrency=4)
        run_batch(orchestrator, x_steps=5, y_steps=4)

        assert client.peak_in_flight == 4
        assert orchestrator.job.peak_in_flight == 4
        assert orchestrator.job.in_flight == 0

    def test_pool_clamped_to_frame_count(self, scripted_client):
        """Verify a 3x3 grid with concurrency 16 runs exactly 9 calls at once."""
        client = scripted_client(delay=0.01)
        orchestrator = BatchOrchestrator(client, concurrency=16)
        events = run_batch(orchestrator, 3, 3)

        assert client.peak_in_flight == 9
        assert len(progress_events(events)) == 9

    def test_sequential_with_concurrency_one(self, scripted_client):
        client = scripted_client(delay=0.001)
        orchestrator = BatchOrchestrator(client, concurrency=1)
        events = run_batch(orchestrator, 2, 2)

        assert client.peak_in_flight == 1
        assert [e.index for e in progress_events(events)] == [0, 1, 2, 3]


class TestRetries:
    """Tests for per-frame retry behavior."""

    def test_rate_limited_frame_retries_then_succeeds(self, scripted_client, recording_sleep):
        """Verify a 429 is retried with growing backoff."""
        client = scripted_client(script={3: [RateLimitError("429"), RateLimitError("429"), b"late"]})
        orchestrator = BatchOrchestrator(client, concurrency=2, sleep=recording_sleep)
        progress = progress_events(run_batch(orchestrator))

        frame = next(e for e in progress if e.index == 3)
        assert frame.ok
        assert client.call_count(3) == 3
        assert recording_sleep.delays == [5.0, 10.0]
        assert orchestrator.metrics.rate_limit_retries == 2
        assert orchestrator.job.states[3] == FrameState.SUCCEEDED

    def test_retry_exhaustion_reports_failed_frame(self, scripted_client, recording_sleep):
        """Verify a frame that stays rate limited is given up after max_retries attempts."""
        client = scripted_client(script={0: RateLimitError("429 Too Many Requests")})
        orchestrator = BatchOrchestrator(
            client,
            retry_policy=RetryPolicy(max_retries=5),
            sleep=recording_sleep,
        )
        events = run_batch(orchestrator)
        progress = progress_events(events)

        frame = next(e for e in progress if e.index == 0)
        assert frame.status == FrameStatus.FAILED
        assert frame.image_base64 == ""
        assert "429" in frame.error
        assert client.call_count(0) == 5
        assert recording_sleep.delays == [5.0, 10.0, 20.0, 40.0]

        # The batch still completes and counts the failed frame
        assert isinstance(events[-1], CompleteEvent)
        assert [e.completed for e in progress] == list(range(1, 10))
        assert orchestrator.job.states[0] == FrameState.GIVEN_UP
        assert orchestrator.job.failed == 1
        assert orchestrator.job.succeeded == 8

    def test_status_429_is_rate_limit(self, scripted_client, recording_sleep):
        """Verify errors carrying status 429 are retried like RateLimitError."""
        client = scripted_client(script={1: [RemoteGenerationError("slow down", status=429), b"ok"]})
        orchestrator = BatchOrchestrator(client, sleep=recording_sleep)
        run_batch(orchestrator)

        assert client.call_count(1) == 2
        assert recording_sleep.delays == [5.0]

    def test_non_retryable_error_not_retried(self, scripted_client, recording_sleep):
        """Verify other remote errors fail the frame on the first attempt."""
        client = scripted_client(script={2: RemoteGenerationError("model crashed", status=500)})
        orchestrator = BatchOrchestrator(client, sleep=recording_sleep)
        events = run_batch(orchestrator)

        frame = next(e for e in progress_events(events) if e.index == 2)
        assert frame.status == FrameStatus.FAILED
        assert frame.error == "model crashed"
        assert client.call_count(2) == 1
        assert recording_sleep.delays == []
        assert isinstance(events[-1], CompleteEvent)

    def test_unexpected_exception_fails_frame_only(self, scripted_client, recording_sleep):
        """Verify arbitrary client exceptions are contained to their frame."""
        client = scripted_client(script={5: ValueError("bad payload")})
        orchestrator = BatchOrchestrator(client, sleep=recording_sleep)
        events = run_batch(orchestrator)

        frame = next(e for e in progress_events(events) if e.index == 5)
        assert frame.status == FrameStatus.FAILED
        assert "ValueError" in frame.error
        assert isinstance(events[-1], CompleteEvent)

    def test_metrics(self, scripted_client, recording_sleep):
        """Verify shared metrics are updated."""
        metrics = BatchMetrics()
        client = scripted_client(script={0: RemoteGenerationError("nope")})
        run_batch(BatchOrchestrator(client, metrics=metrics, sleep=recording_sleep))

        assert metrics.to_dict() == {
            "batches_started": 1,
            "batches_completed": 1,
            "batches_failed": 0,
            "frames_succeeded": 8,
            "frames_failed": 1,
            "rate_limit_retries": 0,
        }


class TestTimeouts:
    """Tests for attempt and batch timeouts."""

    def test_attempt_timeout_fails_frame(self, scripted_client, recording_sleep):
        """Verify a hung call fails its frame without retries."""
        client = scripted_client(delays={4: 5.0})
        orchestrator = BatchOrchestrator(client, attempt_timeout=0.05, sleep=recording_sleep)
        events = run_batch(orchestrator)

        frame = next(e for e in progress_events(events) if e.index == 4)
        assert frame.status == FrameStatus.FAILED
        assert "timed out" in frame.error
        assert client.call_count(4) == 1
        assert isinstance(events[-1], CompleteEvent)

    def test_batch_timeout_emits_error(self, scripted_client):
        """Verify the batch deadline ends the stream with an error event."""
        client = scripted_client(delays={0: 5.0})
        orchestrator = BatchOrchestrator(client, concurrency=2, batch_timeout=0.1)
        events = run_batch(orchestrator, 2, 2)

        assert isinstance(events[-1], ErrorEvent)
        assert "timed out" in events[-1].error
        assert not any(isinstance(e, CompleteEvent) for e in events)
        assert client.cancelled == 1
        assert orchestrator.metrics.batches_failed == 1


class TestAbort:
    """Tests for fatal errors and cancellation."""

    def test_fatal_error_ends_stream(self, scripted_client):
        """Verify an error escaping frame handling aborts with one error event."""

        class BrokenOrchestrator(BatchOrchestrator):
            def _emit(self, job, queue, spec, image=None, error=None):
                if spec.index == 2:
                    raise RuntimeError("event queue broke")
                super()._emit(job, queue, spec, image=image, error=error)

        client = scripted_client(delays={i: 1.0 for i in range(3, 9)})
        orchestrator = BrokenOrchestrator(client, concurrency=3)
        events = run_batch(orchestrator)

        assert isinstance(events[-1], ErrorEvent)
        assert events[-1].error == "event queue broke"
        assert sum(1 for e in events if isinstance(e, (ErrorEvent, CompleteEvent))) == 1
        assert orchestrator.metrics.batches_failed == 1

    def test_closing_stream_cancels_workers(self, scripted_client):
        """Verify closing the event stream cancels outstanding remote calls."""
        client = scripted_client(delays={1: 10.0, 2: 10.0})
        orchestrator = BatchOrchestrator(client, concurrency=3)
        specs = generate_steps(3, 1)

        async def consume_then_close():
            stream = orchestrator.run(b"photo", specs, x_steps=3, y_steps=1)
            first = await stream.__anext__()
            second = await stream.__anext__()
            await stream.aclose()
            return first, second

        first, second = asyncio.run(consume_then_close())

        assert isinstance(first, ConfigEvent)
        assert isinstance(second, ProgressEvent)
        assert second.index == 0
        assert client.cancelled == 2

"""
Stream Tests
============

Tests for event serialization, the SSE transport and the client-side
reader.
"""

import asyncio
import base64
import json

import pytest

from avatar3d.grid import generate_steps
from avatar3d.models import (
    BatchConfig,
    CompleteEvent,
    ConfigEvent,
    ErrorEvent,
    FrameStatus,
    ProgressEvent,
    StepPayload,
    is_terminal,
    parse_event,
)
from avatar3d.stream import (
    FrameAssembler,
    aiter_sse_payloads,
    encode_event,
    iter_sse_payloads,
    sse_stream,
)


def make_config(x_steps=2, y_steps=2):
    return ConfigEvent(config=BatchConfig(
        x_steps=x_steps,
        y_steps=y_steps,
        prefix="avatar",
        total_images=x_steps * y_steps,
        estimated_cost=0.00392,
    ))


def make_progress(index, completed, total=4, image=b"img", status=FrameStatus.OK, error=None):
    spec = generate_steps(2, 2)[index]
    return ProgressEvent(
        completed=completed,
        total=total,
        index=index,
        step=StepPayload.model_validate(spec.to_payload()),
        image_base64=base64.b64encode(image).decode("ascii") if image else "",
        status=status,
        error=error,
    )


def decode_frame(frame: bytes) -> dict:
    text = frame.decode("utf-8")
    assert text.startswith("data: ")
    assert text.endswith("\n\n")
    return json.loads(text[len("data: "):-2])


class TestEncodeEvent:
    """Tests for wire encoding."""

    def test_config_event_uses_camel_case(self):
        """Verify config keys match the client contract."""
        payload = decode_frame(encode_event(make_config()))

        assert payload == {
            "type": "config",
            "config": {
                "xSteps": 2,
                "ySteps": 2,
                "prefix": "avatar",
                "totalImages": 4,
                "estimatedCost": 0.00392,
            },
        }

    def test_progress_event(self):
        """Verify progress keeps snake_case step keys and camelCase image key."""
        payload = decode_frame(encode_event(make_progress(1, 1)))

        assert payload["type"] == "progress"
        assert payload["completed"] == 1
        assert payload["total"] == 4
        assert payload["index"] == 1
        assert payload["status"] == "ok"
        assert payload["imageBase64"] == "aW1n"
        assert payload["step"]["filename"] == "avatar_y20_p-20_px15_py-15.png"
        assert payload["step"]["rotate_yaw"] == 20.0
        assert "error" not in payload

    def test_failed_progress_event(self):
        """Verify failed frames carry an empty image and the error."""
        event = make_progress(0, 1, image=None, status=FrameStatus.FAILED, error="RateLimitError: 429")
        payload = decode_frame(encode_event(event))

        assert payload["status"] == "failed"
        assert payload["imageBase64"] == ""
        assert payload["error"] == "RateLimitError: 429"
        assert not event.ok

    def test_terminal_events(self):
        assert decode_frame(encode_event(CompleteEvent())) == {"type": "complete"}
        assert decode_frame(encode_event(ErrorEvent(error="boom"))) == {"type": "error", "error": "boom"}


class TestParseEvent:
    """Tests for decoding wire payloads back into events."""

    def test_parse_each_type(self):
        assert isinstance(parse_event(decode_frame(encode_event(make_config()))), ConfigEvent)
        assert isinstance(parse_event(decode_frame(encode_event(make_progress(2, 1)))), ProgressEvent)
        assert isinstance(parse_event({"type": "complete"}), CompleteEvent)
        assert parse_event({"type": "error", "error": "x"}).error == "x"

    def test_unknown_type_rejected(self):
        with pytest.raises(ValueError):
            parse_event({"type": "bogus"})

    def test_is_terminal(self):
        assert is_terminal(CompleteEvent())
        assert is_terminal(ErrorEvent(error="x"))
        assert not is_terminal(make_config())
        assert not is_terminal(make_progress(0, 1))


class TestSseStream:
    """Tests for the SSE transport generator."""

    def test_frames_in_order(self):
        """Verify every event becomes one frame, in order."""

        async def source():
            yield make_config()
            yield make_progress(0, 1)
            yield CompleteEvent()

        async def collect():
            return [decode_frame(f) async for f in sse_stream(source())]

        frames = asyncio.run(collect())

        assert [f["type"] for f in frames] == ["config", "progress", "complete"]

    def test_stops_after_terminal_event(self):
        """Verify nothing is sent after complete."""

        async def source():
            yield CompleteEvent()
            yield make_progress(0, 1)

        async def collect():
            return [decode_frame(f) async for f in sse_stream(source())]

        assert [f["type"] for f in asyncio.run(collect())] == ["complete"]

    def test_source_exception_becomes_error_frame(self):
        """Verify a failing source ends the stream with an error frame."""

        async def source():
            yield make_config()
            raise RuntimeError("orchestrator crashed")

        async def collect():
            return [decode_frame(f) async for f in sse_stream(source())]

        frames = asyncio.run(collect())

        assert frames[-1] == {"type": "error", "error": "orchestrator crashed"}

    def test_closing_transport_closes_source(self):
        """Verify a client disconnect propagates to the event source."""
        closed = []

        async def source():
            try:
                yield make_config()
                await asyncio.sleep(10)
                yield CompleteEvent()
            finally:
                closed.append(True)

        async def disconnect_early():
            stream = sse_stream(source())
            await stream.__anext__()
            await stream.aclose()

        asyncio.run(disconnect_early())

        assert closed == [True]


class TestSsePayloadReader:
    """Tests for parsing data: frames."""

    def test_iter_payloads(self):
        lines = [
            'data: {"type": "config", "config": {}}',
            "",
            ": keep-alive",
            'data: {"type": "complete"}',
            "",
        ]
        assert list(iter_sse_payloads(lines)) == [
            {"type": "config", "config": {}},
            {"type": "complete"},
        ]

    def test_multi_line_chunks(self):
        """Verify chunks holding several lines are split."""
        chunk = 'data: {"type": "error", "error": "x"}\n\ndata: {"type": "complete"}\n\n'
        assert [p["type"] for p in iter_sse_payloads([chunk])] == ["error", "complete"]

    def test_final_frame_without_terminator(self):
        assert list(iter_sse_payloads(['data: {"type": "complete"}'])) == [{"type": "complete"}]

    def test_async_payloads_from_encoded_stream(self):
        """Verify frames produced by the transport read back as events."""

        async def lines():
            for event in (make_config(), make_progress(3, 1), CompleteEvent()):
                for line in encode_event(event).decode("utf-8").split("\n"):
                    yield line

        async def collect():
            return [parse_event(p) async for p in aiter_sse_payloads(lines())]

        events = asyncio.run(collect())

        assert [e.type for e in events] == ["config", "progress", "complete"]
        assert events[1].index == 3


class TestFrameAssembler:
    """Tests for rebuilding the grid from events."""

    def test_grid_order_independent_of_arrival(self):
        """Verify frames are placed by index regardless of completion order."""
        assembler = FrameAssembler()
        assembler.feed(make_config())
        for completed, index in enumerate([3, 0, 2, 1], start=1):
            assembler.feed(make_progress(index, completed, image=f"img{index}".encode()))
        assembler.feed(CompleteEvent())

        assert assembler.finished
        assert assembler.error is None
        assert assembler.progress == 100.0
        assert assembler.images_in_grid_order() == [b"img0", b"img1", b"img2", b"img3"]

    def test_failed_frames_are_dropped(self):
        assembler = FrameAssembler()
        assembler.feed(make_config())
        assembler.feed(make_progress(1, 1, image=None, status=FrameStatus.FAILED, error="429"))
        assembler.feed(make_progress(0, 2))

        assert assembler.dropped == [1]
        assert assembler.progress == 50.0
        assert assembler.images_in_grid_order() == [b"img", None, None, None]

    def test_error_event_finishes(self):
        assembler = FrameAssembler()
        assembler.feed(make_config())
        assembler.feed(ErrorEvent(error="Batch timed out after 300s"))
        assembler.feed(make_progress(0, 1))

        assert assembler.finished
        assert assembler.error == "Batch timed out after 300s"
        assert assembler.frames == {}

    def test_progress_before_config(self):
        assembler = FrameAssembler()
        assert assembler.total == 0
        assert assembler.progress == 0.0

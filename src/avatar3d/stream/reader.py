"""
Stream Reader
=============

Client-side decoding of the batch event stream.

This module provides:
    - iter_sse_payloads / aiter_sse_payloads: ``data:`` frames -> dicts
    - FrameAssembler: accumulates progress events and rebuilds the grid
      by index regardless of arrival order

Example:
    assembler = FrameAssembler()
    async for payload in aiter_sse_payloads(response.aiter_lines()):
        assembler.feed(parse_event(payload))

    frames = assembler.images_in_grid_order()
"""

import base64
import json
import logging
from typing import AsyncIterable, AsyncIterator, Dict, Iterable, Iterator, List, Optional

from avatar3d.models.events import (
    BatchConfig,
    CompleteEvent,
    ConfigEvent,
    ErrorEvent,
    OrchestratorEvent,
    ProgressEvent,
)


logger = logging.getLogger(__name__)


class _FrameParser:
    """Incremental ``data:`` line accumulator."""

    def __init__(self) -> None:
        self._data: List[str] = []

    def feed(self, line: str) -> Optional[dict]:
        line = line.rstrip("\r\n")
        if not line:
            if not self._data:
                return None
            raw = "\n".join(self._data)
            self._data = []
            return json.loads(raw)
        if line.startswith(":"):
            return None
        if line.startswith("data:"):
            value = line[len("data:"):]
            self._data.append(value[1:] if value.startswith(" ") else value)
        return None


def iter_sse_payloads(lines: Iterable[str]) -> Iterator[dict]:
    """Decode an iterable of text lines into JSON payloads."""
    parser = _FrameParser()
    for chunk in lines:
        for line in chunk.splitlines() or [""]:
            payload = parser.feed(line)
            if payload is not None:
                yield payload
    # A final frame without its blank-line terminator
    payload = parser.feed("")
    if payload is not None:
        yield payload


async def aiter_sse_payloads(lines: AsyncIterable[str]) -> AsyncIterator[dict]:
    """Async variant of iter_sse_payloads (e.g. for ``response.aiter_lines()``)."""
    parser = _FrameParser()
    async for chunk in lines:
        for line in chunk.splitlines() or [""]:
            payload = parser.feed(line)
            if payload is not None:
                yield payload
    payload = parser.feed("")
    if payload is not None:
        yield payload


class FrameAssembler:
    """
    Rebuilds the frame grid from a stream of events.

    Attributes:
        config: Batch configuration (after the config event)
        frames: Progress events keyed by grid index
        dropped: Indices of frames that finished without an image
        finished: True after complete or error
        error: Batch-level error message, if any
    """

    def __init__(self) -> None:
        self.config: Optional[BatchConfig] = None
        self.frames: Dict[int, ProgressEvent] = {}
        self.dropped: List[int] = []
        self.finished: bool = False
        self.error: Optional[str] = None
        self._last_completed: int = 0

    def feed(self, event: OrchestratorEvent) -> None:
        """Apply one event."""
        if self.finished:
            logger.warning(f"Event after stream end ignored: {event.type}")
            return

        if isinstance(event, ConfigEvent):
            self.config = event.config
        elif isinstance(event, ProgressEvent):
            if event.completed != self._last_completed + 1:
                logger.warning(
                    f"Completed count jumped: got {event.completed}, "
                    f"expected {self._last_completed + 1}"
                )
            self._last_completed = event.completed
            self.frames[event.index] = event
            if not event.ok:
                self.dropped.append(event.index)
        elif isinstance(event, CompleteEvent):
            self.finished = True
        elif isinstance(event, ErrorEvent):
            self.finished = True
            self.error = event.error

    @property
    def total(self) -> int:
        return self.config.total_images if self.config else 0

    @property
    def progress(self) -> float:
        """Percent of frames finished (0-100)."""
        if not self.total:
            return 100.0 if self.finished else 0.0
        return 100.0 * self._last_completed / self.total

    def images_in_grid_order(self) -> List[Optional[bytes]]:
        """Decoded frames by grid index; ``None`` marks a missing frame."""
        images: List[Optional[bytes]] = []
        for index in range(self.total):
            event = self.frames.get(index)
            if event is None or not event.ok:
                images.append(None)
            else:
                images.append(base64.b64decode(event.image_base64))
        return images

"""
Server-Sent Event Transport
===========================

Serializes orchestrator events onto a ``text/event-stream`` body.

Framing:
    data: {"type": "progress", ...}\\n\\n

Design Rules:
    - Pure consumer: serializes whatever the orchestrator yields
    - One frame per event, flushed as soon as it is produced
    - The stream ends right after the terminal event
    - An exception escaping the event source becomes an ``error`` frame
"""

import logging
from typing import AsyncIterator

from avatar3d.models.events import ErrorEvent, OrchestratorEvent, is_terminal


logger = logging.getLogger(__name__)


SSE_MEDIA_TYPE = "text/event-stream"

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}


def encode_event(event: OrchestratorEvent) -> bytes:
    """Encode one event as a UTF-8 ``data:`` frame."""
    payload = event.model_dump_json(by_alias=True, exclude_none=True)
    return f"data: {payload}\n\n".encode("utf-8")


async def sse_stream(events: AsyncIterator[OrchestratorEvent]) -> AsyncIterator[bytes]:
    """
    Stream encoded frames for an async event source.

    Closing this generator (client disconnect) closes the source too, so
    the orchestrator can cancel its outstanding work.
    """
    try:
        async for event in events:
            yield encode_event(event)
            if is_terminal(event):
                break
    except Exception as e:
        logger.error(f"Event source failed: {e!r}")
        yield encode_event(ErrorEvent(error=str(e) or "Generation failed"))
    finally:
        aclose = getattr(events, "aclose", None)
        if aclose is not None:
            await aclose()

"""
Stream Module
=============

Event-stream transport between the orchestrator and HTTP clients.

This module provides:
    - encode_event / sse_stream: server-side ``data:`` framing
    - iter_sse_payloads / FrameAssembler: client-side decoding and grid
      reassembly

Example:
    from fastapi.responses import StreamingResponse
    from avatar3d.stream import SSE_HEADERS, SSE_MEDIA_TYPE, sse_stream

    return StreamingResponse(
        sse_stream(orchestrator.run(...)),
        media_type=SSE_MEDIA_TYPE,
        headers=SSE_HEADERS,
    )
"""

from avatar3d.stream.reader import FrameAssembler, aiter_sse_payloads, iter_sse_payloads
from avatar3d.stream.sse import SSE_HEADERS, SSE_MEDIA_TYPE, encode_event, sse_stream


__all__ = [
    "FrameAssembler",
    "aiter_sse_payloads",
    "iter_sse_payloads",
    "SSE_HEADERS",
    "SSE_MEDIA_TYPE",
    "encode_event",
    "sse_stream",
]

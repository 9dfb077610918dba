"""
Model Output Normalization
==========================

Hosted models answer with one of a few shapes:
    - a URL string pointing at the result (needs a second fetch)
    - a byte stream / file-like output object, usually also exposing
      the hosted ``url`` (replicate ``FileOutput``)
    - raw bytes
    - a list wrapping any of the above

These are mapped onto a small closed variant type by ``parse_output`` and
turned into bytes by ``read_output``. Outputs with a hosted URL are
downloaded through the shared httpx client and keep that URL. Supporting
a new shape means adding a variant and one branch in each function.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Optional, Union

import httpx

from avatar3d.remote.errors import RemoteGenerationError, UnexpectedOutputError


logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class UrlOutput:
    """Result hosted at a URL."""

    url: str


@dataclass(frozen=True, slots=True)
class StreamOutput:
    """Result delivered as an (async or sync) iterable of byte chunks."""

    source: Any
    url: Optional[str] = None


@dataclass(frozen=True, slots=True)
class InlineOutput:
    """Result already materialized in memory."""

    data: bytes


ModelOutput = Union[UrlOutput, StreamOutput, InlineOutput]


def parse_output(raw: Any, key: Optional[str] = None) -> ModelOutput:
    """
    Map a raw model response onto a ModelOutput variant.

    Args:
        raw: Value returned by the model client
        key: For dict responses, the field holding the result
            (e.g. ``model_file`` for image-to-3D)

    Raises:
        UnexpectedOutputError: If the shape is not recognized
    """
    if isinstance(raw, dict):
        if key is None or raw.get(key) is None:
            raise UnexpectedOutputError(
                f"Model output has no {key or 'result'!r} field: keys={sorted(raw)}"
            )
        return parse_output(raw[key])

    if isinstance(raw, (list, tuple)):
        if not raw:
            raise UnexpectedOutputError("Model returned an empty list")
        return parse_output(raw[0], key)

    if isinstance(raw, str):
        if not raw:
            raise UnexpectedOutputError("Model returned an empty URL")
        return UrlOutput(url=raw)

    if isinstance(raw, (bytes, bytearray, memoryview)):
        return InlineOutput(data=bytes(raw))

    if hasattr(raw, "__aiter__") or hasattr(raw, "__iter__"):
        url = getattr(raw, "url", None)
        # Inline data: URLs are decoded by the output object itself
        if not (isinstance(url, str) and url.startswith(("http://", "https://"))):
            url = None
        return StreamOutput(source=raw, url=url)

    raise UnexpectedOutputError(f"Unexpected output type from model: {type(raw).__name__}")


def _join_chunks(source: Any) -> bytes:
    return b"".join(bytes(chunk) for chunk in source)


async def _read_stream(source: Any) -> bytes:
    if hasattr(source, "__aiter__"):
        chunks = []
        async for chunk in source:
            chunks.append(bytes(chunk))
        return b"".join(chunks)
    # Sync file-like outputs may block on I/O
    return await asyncio.to_thread(_join_chunks, source)


async def fetch_bytes(http: httpx.AsyncClient, url: str) -> bytes:
    """
    Download a result by URL.

    Raises:
        RemoteGenerationError: On non-2xx responses (status preserved so
            429s are still recognized as rate limits)
    """
    logger.debug(f"Fetching model output: {url[:60]}...")
    response = await http.get(url)
    if response.status_code >= 400:
        raise RemoteGenerationError(
            f"Failed to fetch output: {response.status_code}",
            status=response.status_code,
        )
    return response.content


async def read_output(output: ModelOutput, http: httpx.AsyncClient) -> bytes:
    """
    Resolve a ModelOutput variant to raw bytes.

    Raises:
        UnexpectedOutputError: If the resolved payload is empty
        RemoteGenerationError: If a URL fetch fails
    """
    if isinstance(output, UrlOutput):
        data = await fetch_bytes(http, output.url)
    elif isinstance(output, StreamOutput):
        if output.url:
            data = await fetch_bytes(http, output.url)
        else:
            data = await _read_stream(output.source)
    elif isinstance(output, InlineOutput):
        data = output.data
    else:
        raise UnexpectedOutputError(f"Unknown output variant: {output!r}")

    if not data:
        raise UnexpectedOutputError("Model output resolved to zero bytes")

    logger.debug(f"Model output resolved: {len(data)} bytes")
    return data

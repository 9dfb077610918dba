"""
Test Configuration
==================

Pytest fixtures and test doubles for Avatar3D.
"""

import asyncio
import base64
from typing import Dict, List, Optional

import cv2
import numpy as np
import pytest

from avatar3d.config import Settings
from avatar3d.grid import FrameSpec
from avatar3d.remote import ModelFile


class ScriptedClient:
    """
    Generation client whose per-frame outcomes are scripted.

    ``script`` maps a frame index to either a list of outcomes consumed one
    per attempt (bytes or an exception instance) or a single exception that
    is raised on every attempt. Unscripted frames succeed.
    """

    def __init__(
        self,
        script: Optional[Dict[int, object]] = None,
        delay: float = 0.0,
        delays: Optional[Dict[int, float]] = None,
        configured: bool = True,
    ) -> None:
        self.script = dict(script or {})
        self.delay = delay
        self.delays = dict(delays or {})
        self._configured = configured
        self.calls: List[int] = []
        self.in_flight = 0
        self.peak_in_flight = 0
        self.cancelled = 0
        self.restyle_calls = 0
        self.closed = False

    @property
    def configured(self) -> bool:
        return self._configured

    async def call_frame(self, source_image: bytes, spec: FrameSpec) -> bytes:
        self.calls.append(spec.index)
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delays.get(spec.index, self.delay))
            outcome = self.script.get(spec.index)
            if isinstance(outcome, list) and outcome:
                outcome = outcome.pop(0)
            if isinstance(outcome, BaseException):
                raise outcome
            if isinstance(outcome, bytes):
                return outcome
            return f"frame-{spec.index}".encode()
        except asyncio.CancelledError:
            self.cancelled += 1
            raise
        finally:
            self.in_flight -= 1

    async def restyle(self, image: bytes, prompt: str, full_body: bool = False) -> bytes:
        self.restyle_calls += 1
        return b"restyled:" + image

    async def image_to_3d(
        self,
        image: bytes,
        texture_size: int = 1024,
        mesh_quality: float = 0.9,
    ) -> ModelFile:
        return ModelFile(data=b"glTF-model", url="https://example.invalid/model.glb")

    async def aclose(self) -> None:
        self.closed = True

    def call_count(self, index: int) -> int:
        return self.calls.count(index)


class RecordingSleep:
    """Backoff sleep that records delays instead of waiting."""

    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        await asyncio.sleep(0)


@pytest.fixture
def png_bytes() -> bytes:
    """A small, valid PNG image."""
    image = np.zeros((64, 48, 3), dtype=np.uint8)
    image[:, :, 1] = 200
    ok, encoded = cv2.imencode(".png", image)
    assert ok
    return encoded.tobytes()


@pytest.fixture
def png_base64(png_bytes) -> str:
    return base64.b64encode(png_bytes).decode("ascii")


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def scripted_client():
    """Factory for ScriptedClient instances."""
    return ScriptedClient


@pytest.fixture
def test_settings() -> Settings:
    """Settings tuned for tests: small grids, no real timeouts."""
    return Settings.model_validate({
        "replicate": {"backend": "mock"},
        "generation": {"x_steps": 3, "y_steps": 3, "max_steps": 6},
        "orchestrator": {
            "concurrency": 4,
            "max_retries": 5,
            "attempt_timeout_seconds": 5,
            "batch_timeout_seconds": 30,
        },
        "cache": {"preprocess_max_entries": 2},
        "history": {"max_renders": 3, "thumbnail_size": 32},
    })

"""
Mock Generation Client
======================

Deterministic local backend for development and demos.

Produces a small PNG per frame with a face sketch whose position follows
the frame's yaw/pitch and whose pupils follow the pupil offsets, so the
parallax viewer can be exercised without hosted models or credentials.

Design Rules:
    - No network access
    - Identical inputs always yield identical bytes
    - Restyle echoes the input photo
"""

import asyncio
import json
import logging
import struct

import cv2
import numpy as np

from avatar3d.grid.steps import FrameSpec
from avatar3d.remote.client import ModelFile
from avatar3d.remote.errors import RemoteGenerationError


logger = logging.getLogger(__name__)


def _minimal_glb() -> bytes:
    """An empty but well-formed glTF 2.0 binary container."""
    body = json.dumps({"asset": {"version": "2.0", "generator": "avatar3d-mock"}}).encode("utf-8")
    body += b" " * (-len(body) % 4)
    chunk = struct.pack("<II", len(body), 0x4E4F534A) + body
    header = struct.pack("<4sII", b"glTF", 2, 12 + len(chunk))
    return header + chunk


class MockGenerationClient:
    """
    Deterministic mock generation backend.

    Attributes:
        size: Output image edge length in pixels
        latency: Simulated seconds per call
    """

    def __init__(self, size: int = 256, latency: float = 0.0) -> None:
        self.size = size
        self.latency = latency
        self._call_count: int = 0

        logger.info(f"MockGenerationClient initialized: size={size}px, latency={latency}s")

    @property
    def configured(self) -> bool:
        return True

    async def _simulate_latency(self) -> None:
        self._call_count += 1
        if self.latency > 0:
            await asyncio.sleep(self.latency)

    def render_frame(self, spec: FrameSpec) -> bytes:
        """Render the frame synchronously (also used by tests)."""
        size = self.size
        canvas = np.full((size, size, 3), 32, dtype=np.uint8)

        # Head follows rotation; 20 degrees moves it a quarter of the canvas
        cx = int(size / 2 + spec.rotate_yaw / 80.0 * size)
        cy = int(size / 2 + spec.rotate_pitch / 80.0 * size)
        radius = size // 4
        cv2.circle(canvas, (cx, cy), radius, (180, 200, 230), -1)

        # Pupils follow pupil offsets
        eye_dy = radius // 4
        eye_dx = radius // 2
        pupil_shift_x = int(spec.pupil_x / 15.0 * (radius // 8))
        pupil_shift_y = int(spec.pupil_y / 15.0 * (radius // 8))
        for side in (-1, 1):
            ex, ey = cx + side * eye_dx, cy - eye_dy
            cv2.circle(canvas, (ex, ey), radius // 6, (255, 255, 255), -1)
            cv2.circle(canvas, (ex + pupil_shift_x, ey + pupil_shift_y), radius // 12, (20, 20, 20), -1)

        cv2.putText(
            canvas,
            f"#{spec.index} y{spec.rotate_yaw:g} p{spec.rotate_pitch:g}",
            (6, size - 10),
            cv2.FONT_HERSHEY_SIMPLEX,
            0.4,
            (220, 220, 220),
            1,
            cv2.LINE_AA,
        )

        ok, encoded = cv2.imencode(".png", canvas)
        if not ok:
            raise RemoteGenerationError(f"Mock render failed for frame {spec.index}")
        return encoded.tobytes()

    async def call_frame(self, source_image: bytes, spec: FrameSpec) -> bytes:
        await self._simulate_latency()
        return self.render_frame(spec)

    async def restyle(self, image: bytes, prompt: str, full_body: bool = False) -> bytes:
        await self._simulate_latency()
        return image

    async def image_to_3d(
        self,
        image: bytes,
        texture_size: int = 1024,
        mesh_quality: float = 0.9,
    ) -> ModelFile:
        await self._simulate_latency()
        return ModelFile(data=_minimal_glb())

    async def aclose(self) -> None:
        pass

    def get_metrics(self) -> dict:
        return {"call_count": self._call_count, "error_count": 0}

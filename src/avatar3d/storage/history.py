"""
Render History
==============

Keyed store of past renders, newest first.

Design Rules:
    - Fixed capacity (drops oldest on overflow)
    - Thumbnails generated on save from the processed image
    - Optional JSON file persistence, rewritten atomically on every change
    - In-memory state only changes after the file write succeeds
    - Does NOT store GLB models (too large)
"""

import json
import logging
import os
import threading
import time
import uuid
from pathlib import Path
from typing import List, Optional

from avatar3d.images.codec import ImageDecodeError, decode_image_payload, make_thumbnail
from avatar3d.models.requests import SaveRenderRequest
from avatar3d.models.responses import RenderSummary, SavedRender


logger = logging.getLogger(__name__)


class RenderNotFoundError(KeyError):
    """Raised when a render id is not in the history."""
    pass


class RenderStoreError(Exception):
    """Raised when the history file cannot be written."""
    pass


def _new_render_id() -> str:
    return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:7]}"


class RenderHistory:
    """
    Bounded render history.

    Attributes:
        max_renders: Maximum renders kept
        thumbnail_size: Thumbnail bounding box in pixels
        path: JSON persistence file (None = memory only)
        evicted_count: Renders dropped due to capacity

    Example:
        history = RenderHistory(max_renders=10)
        render = history.save(request)
        history.list()  # newest first
    """

    def __init__(
        self,
        max_renders: int = 10,
        thumbnail_size: int = 200,
        path: Optional[str] = None,
    ) -> None:
        """
        Initialize render history.

        Args:
            max_renders: Maximum renders to keep. Must be >= 1.
            thumbnail_size: Thumbnail bounding box in pixels
            path: Optional JSON file to load from and persist to
        """
        if max_renders < 1:
            raise ValueError("max_renders must be >= 1")

        self.max_renders = max_renders
        self.thumbnail_size = thumbnail_size
        self.path = Path(path) if path else None
        self.evicted_count: int = 0
        self._renders: List[SavedRender] = []
        self._lock = threading.Lock()

        if self.path is not None:
            self._load()

    def _load(self) -> None:
        if self.path is None or not self.path.exists():
            return

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw = json.load(f)
            self._renders = [SavedRender.model_validate(item) for item in raw][: self.max_renders]
        except (OSError, ValueError) as e:
            logger.error(f"Could not load render history from {self.path}: {e}")
            self._renders = []
            return

        logger.info(f"Loaded {len(self._renders)} renders from {self.path}")

    def _persist(self, renders: List[SavedRender]) -> None:
        """
        Write the given renders to the history file.

        Raises:
            RenderStoreError: If the file cannot be written
        """
        if self.path is None:
            return

        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump([r.model_dump(mode="json", by_alias=True) for r in renders], f)
            os.replace(tmp_path, self.path)
        except OSError as e:
            logger.error(f"Could not write render history to {self.path}: {e}")
            raise RenderStoreError(f"Could not write render history: {e.strerror or e}") from e

    def _thumbnail(self, image_base64: str) -> str:
        try:
            data = decode_image_payload(image_base64)
        except ImageDecodeError as e:
            logger.warning(f"Thumbnail skipped, processed image not decodable: {e}")
            return image_base64
        return make_thumbnail(data, self.thumbnail_size)

    def save(self, request: SaveRenderRequest) -> SavedRender:
        """
        Add a render at the front of the history.

        Returns:
            The stored render (with id, timestamp and thumbnail)

        Raises:
            RenderStoreError: If persisting fails (history left unchanged)
        """
        render = SavedRender(
            id=_new_render_id(),
            created_at=int(time.time() * 1000),
            mode=request.mode,
            preview_thumbnail=self._thumbnail(request.processed_image_base64),
            frame_count=request.frame_count,
            x_steps=request.x_steps,
            y_steps=request.y_steps,
            style_prompt=request.style_prompt,
            original_image_base64=request.original_image_base64,
            processed_image_base64=request.processed_image_base64,
        )

        with self._lock:
            renders = [render] + self._renders
            dropped = renders[self.max_renders:]
            renders = renders[: self.max_renders]

            self._persist(renders)
            self._renders = renders
            if dropped:
                self.evicted_count += len(dropped)
                logger.info(f"History full, dropped {len(dropped)} oldest render(s)")

        logger.info(f"Saved render {render.id} (mode={render.mode})")
        return render

    def list(self) -> List[RenderSummary]:
        """Renders newest first, without full-size images."""
        heavy = {"original_image_base64", "processed_image_base64"}
        return [RenderSummary.model_validate(r.model_dump(exclude=heavy)) for r in self._renders]

    def get(self, render_id: str) -> SavedRender:
        """
        Raises:
            RenderNotFoundError: If the id is unknown
        """
        for render in self._renders:
            if render.id == render_id:
                return render
        raise RenderNotFoundError(render_id)

    def delete(self, render_id: str) -> None:
        """
        Raises:
            RenderNotFoundError: If the id is unknown
        """
        with self._lock:
            remaining = [r for r in self._renders if r.id != render_id]
            if len(remaining) == len(self._renders):
                raise RenderNotFoundError(render_id)
            self._persist(remaining)
            self._renders = remaining

    def clear(self) -> int:
        """
        Remove all renders.

        Returns:
            Number of renders removed.
        """
        with self._lock:
            cleared = len(self._renders)
            self._persist([])
            self._renders = []
        return cleared

    def __len__(self) -> int:
        return len(self._renders)

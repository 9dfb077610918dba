"""
Stream Event Models
===================

Typed events emitted by the batch orchestrator and serialized by the
streaming transport.

Event Contract (one JSON object per ``data:`` frame):
    {"type": "config", "config": {"xSteps": 5, "ySteps": 5, "prefix": "avatar",
                                  "totalImages": 25, "estimatedCost": 0.0245}}
    {"type": "progress", "completed": 3, "total": 25, "index": 7,
     "step": {...}, "imageBase64": "iVBORw0...", "status": "ok"}
    {"type": "progress", ..., "imageBase64": "", "status": "failed",
     "error": "RateLimitError: ..."}
    {"type": "complete"}
    {"type": "error", "error": "Batch timed out after 300s"}

Ordering:
    - ``config`` precedes every ``progress``
    - ``progress`` arrives in completion order; ``completed`` grows by 1
    - ``complete`` or ``error`` is always last
"""

from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class FrameStatus(str, Enum):
    """
    Outcome of a single frame.

    Attributes:
        OK: The frame produced an image
        FAILED: Retries exhausted or a terminal error; no image
    """

    OK = "ok"
    FAILED = "failed"


class _WireModel(BaseModel):
    """Base for camelCase wire models."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class BatchConfig(_WireModel):
    """Grid summary sent before any frame work begins."""

    x_steps: int = Field(..., ge=1, alias="xSteps")
    y_steps: int = Field(..., ge=1, alias="ySteps")
    prefix: str = Field(..., description="Filename prefix")
    total_images: int = Field(..., ge=0, alias="totalImages")
    estimated_cost: float = Field(..., ge=0, alias="estimatedCost")


class StepPayload(_WireModel):
    """Per-frame generation parameters as exposed to clients."""

    filename: str
    rotate_yaw: float
    rotate_pitch: float
    pupil_x: float
    pupil_y: float
    crop_factor: float
    output_quality: int
    src_ratio: float
    sample_ratio: float


class ConfigEvent(_WireModel):
    type: Literal["config"] = "config"
    config: BatchConfig


class ProgressEvent(_WireModel):
    """
    One finished frame (success or give-up).

    Attributes:
        completed: Running count of finished frames
        total: Frames in the batch
        index: Row-major grid index of this frame
        step: Parameters the frame was generated with
        image_base64: Base64 image, empty when the frame failed
        status: ok | failed
        error: Failure description when status is failed
    """

    type: Literal["progress"] = "progress"
    completed: int = Field(..., ge=1)
    total: int = Field(..., ge=1)
    index: int = Field(..., ge=0)
    step: StepPayload
    image_base64: str = Field(default="", alias="imageBase64")
    status: FrameStatus = FrameStatus.OK
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == FrameStatus.OK and bool(self.image_base64)

    def __repr__(self) -> str:
        """Compact repr that doesn't dump the full image."""
        return (
            f"ProgressEvent(completed={self.completed}/{self.total}, "
            f"index={self.index}, status={self.status.value})"
        )


class CompleteEvent(_WireModel):
    type: Literal["complete"] = "complete"


class ErrorEvent(_WireModel):
    type: Literal["error"] = "error"
    error: str


OrchestratorEvent = Union[ConfigEvent, ProgressEvent, CompleteEvent, ErrorEvent]

StreamEvent = Annotated[OrchestratorEvent, Field(discriminator="type")]

_event_adapter: TypeAdapter = TypeAdapter(StreamEvent)


def parse_event(data: dict) -> OrchestratorEvent:
    """Validate a decoded JSON object into the matching event model."""
    return _event_adapter.validate_python(data)


def is_terminal(event: OrchestratorEvent) -> bool:
    """True for the events that end a stream."""
    return isinstance(event, (CompleteEvent, ErrorEvent))

"""
Response Schemas
================

Pydantic models for non-streaming JSON responses.
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from avatar3d.models.events import BatchConfig, FrameStatus, StepPayload


class _ResponseModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ErrorResponse(_ResponseModel):
    error: str


class GeneratedImage(_ResponseModel):
    """One frame in a non-streaming batch response."""

    index: int = Field(..., ge=0)
    step: StepPayload
    image_base64: str = Field(default="", alias="imageBase64")
    status: FrameStatus = FrameStatus.OK


class GenerateResponse(_ResponseModel):
    """Body of ``POST /generate``; images are ordered by grid index."""

    success: bool = True
    images: List[GeneratedImage]
    config: BatchConfig
    failed: int = Field(default=0, ge=0, description="Frames without an image")


class PreprocessResponse(_ResponseModel):
    success: bool = True
    image_base64: str = Field(..., alias="imageBase64")
    cached: bool = False


class Generate3DResponse(_ResponseModel):
    success: bool = True
    glb_base64: str = Field(..., alias="glbBase64")
    glb_url: Optional[str] = Field(default=None, alias="glbUrl")


class RenderSummary(_ResponseModel):
    """History entry without the full-size images."""

    id: str
    created_at: int = Field(..., alias="createdAt", description="Epoch milliseconds")
    mode: str
    preview_thumbnail: str = Field(..., alias="previewThumbnail")
    frame_count: Optional[int] = Field(default=None, alias="frameCount")
    x_steps: Optional[int] = Field(default=None, alias="xSteps")
    y_steps: Optional[int] = Field(default=None, alias="ySteps")
    style_prompt: Optional[str] = Field(default=None, alias="stylePrompt")


class SavedRender(RenderSummary):
    """Full history entry."""

    original_image_base64: str = Field(..., alias="originalImageBase64")
    processed_image_base64: str = Field(..., alias="processedImageBase64")

"""
Request Schemas
===============

Pydantic models for JSON request bodies.

Handlers validate bodies explicitly (instead of FastAPI body parameters)
so that every rejection is a ``400 {"error": ...}`` rather than a 422.

Example:
    body = GenerateBatchRequest.model_validate(
        {"imageBase64": "iVBORw0...", "xSteps": 3, "ySteps": 3}
    )
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class _RequestModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class GenerateBatchRequest(_RequestModel):
    """
    Body of ``POST /generate-batch`` and ``POST /generate``.

    Attributes:
        image_base64: Source photo (base64 or data URI)
        x_steps: Grid columns (defaults to configuration)
        y_steps: Grid rows (defaults to configuration)
        prefix: Filename prefix for generated frames
    """

    image_base64: Optional[str] = Field(default=None, alias="imageBase64")
    x_steps: Optional[int] = Field(default=None, ge=1, alias="xSteps")
    y_steps: Optional[int] = Field(default=None, ge=1, alias="ySteps")
    prefix: str = Field(default="avatar", min_length=1, max_length=64)


class PreprocessRequest(_RequestModel):
    """Body of ``POST /preprocess``."""

    image_base64: Optional[str] = Field(default=None, alias="imageBase64")
    full_body: bool = Field(default=False, alias="fullBody")
    style_prompt: Optional[str] = Field(default=None, alias="stylePrompt", max_length=500)


class Generate3DRequest(_RequestModel):
    """Body of ``POST /generate-3d``."""

    image_base64: Optional[str] = Field(default=None, alias="imageBase64")
    texture_size: int = Field(default=1024, ge=256, le=4096, alias="textureSize")
    mesh_quality: float = Field(default=0.9, gt=0, le=1.0, alias="meshQuality")


class SaveRenderRequest(_RequestModel):
    """Body of ``POST /renders``."""

    mode: str = Field(default="cursor", pattern="^(cursor|3d-model)$")
    original_image_base64: str = Field(..., min_length=1, alias="originalImageBase64")
    processed_image_base64: str = Field(..., min_length=1, alias="processedImageBase64")
    frame_count: Optional[int] = Field(default=None, ge=0, alias="frameCount")
    x_steps: Optional[int] = Field(default=None, ge=1, alias="xSteps")
    y_steps: Optional[int] = Field(default=None, ge=1, alias="ySteps")
    style_prompt: Optional[str] = Field(default=None, alias="stylePrompt")

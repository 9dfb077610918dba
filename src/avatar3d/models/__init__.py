"""
Data Models
===========

Pydantic models for the Avatar3D service.

This module re-exports all data models for convenient access.

Models:
    Requests:
        - GenerateBatchRequest, PreprocessRequest, Generate3DRequest,
          SaveRenderRequest

    Events:
        - ConfigEvent, ProgressEvent, CompleteEvent, ErrorEvent
        - BatchConfig, StepPayload, FrameStatus

    Responses:
        - GenerateResponse, PreprocessResponse, Generate3DResponse
        - RenderSummary, SavedRender, ErrorResponse
"""

from avatar3d.models.events import (
    BatchConfig,
    CompleteEvent,
    ConfigEvent,
    ErrorEvent,
    FrameStatus,
    OrchestratorEvent,
    ProgressEvent,
    StepPayload,
    is_terminal,
    parse_event,
)
from avatar3d.models.requests import (
    Generate3DRequest,
    GenerateBatchRequest,
    PreprocessRequest,
    SaveRenderRequest,
)
from avatar3d.models.responses import (
    ErrorResponse,
    Generate3DResponse,
    GeneratedImage,
    GenerateResponse,
    PreprocessResponse,
    RenderSummary,
    SavedRender,
)

__all__ = [
    # Events
    "BatchConfig",
    "CompleteEvent",
    "ConfigEvent",
    "ErrorEvent",
    "FrameStatus",
    "OrchestratorEvent",
    "ProgressEvent",
    "StepPayload",
    "is_terminal",
    "parse_event",
    # Requests
    "Generate3DRequest",
    "GenerateBatchRequest",
    "PreprocessRequest",
    "SaveRenderRequest",
    # Responses
    "ErrorResponse",
    "Generate3DResponse",
    "GeneratedImage",
    "GenerateResponse",
    "PreprocessResponse",
    "RenderSummary",
    "SavedRender",
]

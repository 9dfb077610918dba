"""
Remote Module
=============

Clients for the hosted image models.

This module treats image synthesis as a black box. The orchestrator only
sees ``call_frame(source_image, spec) -> bytes`` and the error taxonomy.

Components:
    - GenerationClient: Protocol for generation backends
    - ReplicateGenerationClient: Replicate API (production)
    - MockGenerationClient: Deterministic local backend
    - parse_output / read_output: Response shape normalization
"""

from avatar3d.remote.client import (
    GenerationClient,
    ModelFile,
    ReplicateGenerationClient,
)
from avatar3d.remote.errors import (
    RateLimitError,
    RemoteGenerationError,
    ServiceNotConfiguredError,
    UnexpectedOutputError,
    classify_error,
    is_rate_limited,
)
from avatar3d.remote.mock import MockGenerationClient
from avatar3d.remote.outputs import (
    InlineOutput,
    ModelOutput,
    StreamOutput,
    UrlOutput,
    parse_output,
    read_output,
)
from avatar3d.remote.prompts import build_restyle_prompt


__all__ = [
    "GenerationClient",
    "ModelFile",
    "ReplicateGenerationClient",
    "MockGenerationClient",
    "RateLimitError",
    "RemoteGenerationError",
    "ServiceNotConfiguredError",
    "UnexpectedOutputError",
    "classify_error",
    "is_rate_limited",
    "InlineOutput",
    "ModelOutput",
    "StreamOutput",
    "UrlOutput",
    "parse_output",
    "read_output",
    "build_restyle_prompt",
]

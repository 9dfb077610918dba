"""
Remote Generation Client
========================

Production client for the hosted image models on Replicate.

This client:
    - Builds model inputs from FrameSpecs and embeds the source photo as a
      data URI
    - Normalizes every response shape into raw bytes
    - Classifies failures (HTTP 429 is retryable, everything else terminal)

Design Rules:
    - One call, one result: retries belong to the orchestrator
    - Fail fast on missing credentials
    - Log all model calls
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

import httpx
import replicate

from avatar3d.grid.steps import FrameSpec
from avatar3d.images.codec import to_data_uri
from avatar3d.remote.errors import ServiceNotConfiguredError, classify_error
from avatar3d.remote.outputs import StreamOutput, UrlOutput, parse_output, read_output


logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ModelFile:
    """Image-to-3D result: GLB bytes plus the hosted URL when one exists."""

    data: bytes
    url: Optional[str] = None

    def __repr__(self) -> str:
        return f"ModelFile(size={len(self.data)}, url={self.url!r})"


class GenerationClient(Protocol):
    """
    Protocol for generation backends.

    Implemented by:
        - ReplicateGenerationClient (production)
        - MockGenerationClient (local development)
    """

    @property
    def configured(self) -> bool:
        """Whether the backend has the credentials it needs."""
        ...

    async def call_frame(self, source_image: bytes, spec: FrameSpec) -> bytes:
        """Generate one frame; raises RemoteGenerationError on failure."""
        ...

    async def restyle(self, image: bytes, prompt: str, full_body: bool = False) -> bytes:
        """Restyle the uploaded photo."""
        ...

    async def image_to_3d(
        self,
        image: bytes,
        texture_size: int = 1024,
        mesh_quality: float = 0.9,
    ) -> ModelFile:
        """Convert an image into a GLB model."""
        ...

    async def aclose(self) -> None:
        ...


class ReplicateGenerationClient:
    """
    Generation backend backed by the Replicate API.

    Attributes:
        expression_model: Model reference for per-frame head rotation
        restyle_model: Model reference for the restyle step
        model_3d: Model reference for image-to-3D

    Example:
        client = ReplicateGenerationClient(api_token=token)
        png = await client.call_frame(photo_bytes, spec)
        await client.aclose()
    """

    def __init__(
        self,
        api_token: Optional[str],
        expression_model: str,
        restyle_model: str,
        model_3d: str,
        fetch_timeout: float = 60.0,
        http: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """
        Initialize the Replicate client.

        Args:
            api_token: Replicate API token (None leaves the client unconfigured)
            expression_model: Expression editor model reference
            restyle_model: Restyle model reference
            model_3d: Image-to-3D model reference
            fetch_timeout: Timeout for downloading outputs by URL
            http: Optional shared httpx client for output downloads
        """
        self.expression_model = expression_model
        self.restyle_model = restyle_model
        self.model_3d = model_3d
        self.fetch_timeout = fetch_timeout

        self._client: Optional[replicate.Client] = (
            replicate.Client(api_token=api_token) if api_token else None
        )
        self._http = http
        self._owns_http = http is None
        self._call_count: int = 0
        self._error_count: int = 0

        if self._client is None:
            logger.warning("ReplicateGenerationClient created without an API token")
        else:
            logger.info(f"ReplicateGenerationClient initialized: model={expression_model}")

    @property
    def configured(self) -> bool:
        return self._client is not None

    @property
    def call_count(self) -> int:
        """Total model calls made."""
        return self._call_count

    @property
    def error_count(self) -> int:
        """Total failed model calls."""
        return self._error_count

    def _http_client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(
                timeout=self.fetch_timeout,
                follow_redirects=True,
            )
        return self._http

    async def _run(
        self,
        model: str,
        payload: Dict[str, Any],
        key: Optional[str] = None,
    ) -> ModelFile:
        """Run a model and resolve its output to bytes."""
        if self._client is None:
            raise ServiceNotConfiguredError("REPLICATE_API_TOKEN is not set")

        self._call_count += 1
        try:
            raw = await self._client.async_run(model, input=payload)
            output = parse_output(raw, key)
            data = await read_output(output, self._http_client())
        except Exception as e:
            self._error_count += 1
            error = classify_error(e)
            if error is e:
                raise
            raise error from e

        url = output.url if isinstance(output, (UrlOutput, StreamOutput)) else None
        return ModelFile(data=data, url=url)

    async def call_frame(self, source_image: bytes, spec: FrameSpec) -> bytes:
        """
        Generate one grid frame.

        Args:
            source_image: Encoded photo bytes
            spec: Frame parameters

        Returns:
            Encoded image bytes

        Raises:
            RateLimitError: On HTTP 429 (retryable)
            RemoteGenerationError: On any other failure
        """
        logger.info(
            f"Generating frame {spec.index}: yaw={spec.rotate_yaw}, "
            f"pitch={spec.rotate_pitch}, pupil_x={spec.pupil_x}, pupil_y={spec.pupil_y}"
        )
        payload = spec.model_input(to_data_uri(source_image))
        result = await self._run(self.expression_model, payload)
        logger.debug(f"Frame {spec.index}: {len(result.data)} bytes")
        return result.data

    async def restyle(self, image: bytes, prompt: str, full_body: bool = False) -> bytes:
        """Restyle the uploaded photo into the cartoon base image."""
        logger.info(f"Restyling image: full_body={full_body}")
        payload = {
            "prompt": prompt,
            "image_input": [to_data_uri(image)],
            "resolution": "2K",
            "aspect_ratio": "9:16" if full_body else "1:1",
            "output_format": "png",
            "safety_filter_level": "block_only_high",
        }
        result = await self._run(self.restyle_model, payload)
        return result.data

    async def image_to_3d(
        self,
        image: bytes,
        texture_size: int = 1024,
        mesh_quality: float = 0.9,
    ) -> ModelFile:
        """Generate a textured GLB model from a single image."""
        logger.info(f"Generating 3D model: texture_size={texture_size}, mesh={mesh_quality}")
        payload = {
            "seed": 0,
            "images": [to_data_uri(image)],
            "texture_size": texture_size,
            "mesh_simplify": mesh_quality,
            "generate_color": True,
            "generate_model": True,
            "randomize_seed": True,
            "generate_normal": True,
            "ss_sampling_steps": 12,
            "slat_sampling_steps": 12,
            "ss_guidance_strength": 7.5,
            "slat_guidance_strength": 3,
        }
        return await self._run(self.model_3d, payload, key="model_file")

    async def aclose(self) -> None:
        """Close the output download client if this instance created it."""
        if self._http is not None and self._owns_http:
            await self._http.aclose()
            self._http = None

    def get_metrics(self) -> dict:
        """Get client metrics for observability."""
        return {
            "call_count": self._call_count,
            "error_count": self._error_count,
        }

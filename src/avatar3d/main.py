"""
Avatar3D Main Application
=========================

FastAPI entry point for the avatar generation service.

Pipeline:
    photo -> (optional) restyle -> grid steps -> batch orchestrator
          -> N remote frame calls -> event stream -> client

Endpoints:
    GET    /                - Service information
    GET    /health          - Liveness probe
    GET    /metrics         - Batch, cache and client counters
    POST   /generate-batch  - Stream a frame grid as server-sent events
    POST   /generate        - Generate a frame grid, return all frames at once
    POST   /preprocess      - Restyle the uploaded photo (cached)
    POST   /generate-3d     - Convert an image into a GLB model
    GET    /renders         - Render history (newest first)
    POST   /renders         - Save a render
    GET    /renders/{id}    - One render with full images
    DELETE /renders/{id}    - Delete one render
    DELETE /renders         - Clear history
"""

import asyncio
import logging
import os
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, List, Optional, Sequence, Type, TypeVar

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ValidationError

from avatar3d.config import Settings, settings
from avatar3d.grid import FrameSpec, calculate_cost, generate_steps
from avatar3d.images import ImageDecodeError, decode_image_payload, encode_base64
from avatar3d.models import (
    ErrorEvent,
    Generate3DRequest,
    Generate3DResponse,
    GenerateBatchRequest,
    GeneratedImage,
    GenerateResponse,
    PreprocessRequest,
    PreprocessResponse,
    ProgressEvent,
    SaveRenderRequest,
)
from avatar3d.models.events import BatchConfig, ConfigEvent
from avatar3d.orchestrator import BatchMetrics, BatchOrchestrator, RetryPolicy
from avatar3d.orchestrator.batch import SleepFn
from avatar3d.remote import (
    GenerationClient,
    MockGenerationClient,
    RemoteGenerationError,
    ReplicateGenerationClient,
    ServiceNotConfiguredError,
    build_restyle_prompt,
)
from avatar3d.storage import PreprocessCache, RenderHistory, RenderNotFoundError, RenderStoreError
from avatar3d.stream import SSE_HEADERS, SSE_MEDIA_TYPE, sse_stream


logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

NOT_CONFIGURED_MESSAGE = "Server not configured. Missing API token."


class BadRequestError(Exception):
    """Raised for request bodies rejected before any remote work."""
    pass


# =============================================================================
# Application Context
# =============================================================================

@dataclass
class AppContext:
    """
    Everything a request handler needs, owned by the application.

    Attributes:
        settings: Loaded configuration
        client: Generation backend
        preprocess_cache: Restyled image cache
        history: Render history
        metrics: Batch counters shared by all orchestrators
        sleep: Backoff sleep used by orchestrators
    """

    settings: Settings
    client: GenerationClient
    preprocess_cache: PreprocessCache
    history: RenderHistory
    metrics: BatchMetrics = field(default_factory=BatchMetrics)
    sleep: SleepFn = asyncio.sleep
    startup_time: float = field(default_factory=time.time)

    def new_orchestrator(self) -> BatchOrchestrator:
        """A fresh single-use orchestrator configured from settings."""
        cfg = self.settings.orchestrator
        return BatchOrchestrator(
            client=self.client,
            retry_policy=RetryPolicy.from_config(cfg),
            concurrency=cfg.concurrency,
            attempt_timeout=cfg.attempt_timeout_seconds,
            batch_timeout=cfg.batch_timeout_seconds,
            metrics=self.metrics,
            sleep=self.sleep,
        )


def create_generation_client(app_settings: Settings) -> GenerationClient:
    """
    Create the generation backend based on config.

    Raises:
        ValueError: On an unknown backend name
    """
    backend = app_settings.replicate.backend

    if backend == "mock":
        logger.info("Using MockGenerationClient")
        return MockGenerationClient()

    elif backend == "replicate":
        logger.info(f"Using ReplicateGenerationClient: model={app_settings.replicate.expression_model}")
        return ReplicateGenerationClient(
            api_token=app_settings.replicate.api_token,
            expression_model=app_settings.replicate.expression_model,
            restyle_model=app_settings.replicate.restyle_model,
            model_3d=app_settings.replicate.model_3d,
            fetch_timeout=app_settings.replicate.fetch_timeout_seconds,
        )

    else:
        raise ValueError(f"Unknown generation backend: {backend}")


def build_context(
    app_settings: Settings,
    client: Optional[GenerationClient] = None,
    sleep: Optional[SleepFn] = None,
) -> AppContext:
    return AppContext(
        settings=app_settings,
        client=client if client is not None else create_generation_client(app_settings),
        preprocess_cache=PreprocessCache(max_entries=app_settings.cache.preprocess_max_entries),
        history=RenderHistory(
            max_renders=app_settings.history.max_renders,
            thumbnail_size=app_settings.history.thumbnail_size,
            path=app_settings.history.path,
        ),
        sleep=sleep or asyncio.sleep,
    )


def get_context(request: Request) -> AppContext:
    return request.app.state.context


# =============================================================================
# Request Helpers
# =============================================================================

def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


def _dump(model: BaseModel) -> dict:
    return model.model_dump(mode="json", by_alias=True, exclude_none=True)


async def _read_body(request: Request) -> dict:
    try:
        body = await request.json()
    except ValueError:
        raise BadRequestError("Invalid JSON body")
    if not isinstance(body, dict):
        raise BadRequestError("Request body must be a JSON object")
    return body


def _validate(model_cls: Type[ModelT], body: dict) -> ModelT:
    try:
        return model_cls.model_validate(body)
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ()))
        raise BadRequestError(f"Invalid {location or 'request'}: {first.get('msg')}")


def _require_image(body: dict) -> None:
    if not body.get("imageBase64"):
        raise BadRequestError("No image provided")


def _decode_image(payload: str) -> bytes:
    try:
        return decode_image_payload(payload)
    except ImageDecodeError as e:
        raise BadRequestError(f"Invalid image data: {e}")


def _require_configured(ctx: AppContext) -> None:
    if not ctx.client.configured:
        raise ServiceNotConfiguredError(NOT_CONFIGURED_MESSAGE)


@dataclass(frozen=True)
class BatchPlan:
    """A validated batch request, ready for the orchestrator."""

    source_image: bytes
    specs: Sequence[FrameSpec]
    x_steps: int
    y_steps: int
    prefix: str
    estimated_cost: float


async def _plan_batch(request: Request, ctx: AppContext) -> BatchPlan:
    """Validate a batch request and expand its grid."""
    body = await _read_body(request)
    _require_image(body)
    batch = _validate(GenerateBatchRequest, body)
    _require_configured(ctx)

    gen = ctx.settings.generation
    x_steps = batch.x_steps or gen.x_steps
    y_steps = batch.y_steps or gen.y_steps
    if x_steps > gen.max_steps or y_steps > gen.max_steps:
        raise BadRequestError(f"Grid steps must be between 1 and {gen.max_steps}")

    source_image = _decode_image(batch.image_base64)

    specs = generate_steps(
        x_steps,
        y_steps,
        rotate_bound=gen.rotate_bound,
        pupil_bound=gen.pupil_bound,
        prefix=batch.prefix,
        crop_factor=gen.crop_factor,
        output_quality=gen.output_quality,
        src_ratio=gen.src_ratio,
        sample_ratio=gen.sample_ratio,
        output_format=gen.output_format,
    )

    return BatchPlan(
        source_image=source_image,
        specs=specs,
        x_steps=x_steps,
        y_steps=y_steps,
        prefix=batch.prefix,
        estimated_cost=calculate_cost(x_steps, y_steps, gen.cost_per_image),
    )


# =============================================================================
# Application Factory
# =============================================================================

def create_app(
    app_settings: Optional[Settings] = None,
    client: Optional[GenerationClient] = None,
    sleep: Optional[SleepFn] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        app_settings: Configuration (defaults to the global settings)
        client: Generation backend override (defaults to config selection)
        sleep: Backoff sleep override for orchestrators
    """
    app_settings = app_settings or settings
    context = build_context(app_settings, client=client, sleep=sleep)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Application lifespan manager."""
        context.startup_time = time.time()
        logger.info(f"Starting {app_settings.app.name} {app_settings.app.version}")
        logger.info(
            f"Backend: {app_settings.replicate.backend}, "
            f"concurrency={app_settings.orchestrator.concurrency}, "
            f"max_retries={app_settings.orchestrator.max_retries}"
        )

        yield

        logger.info("Shutting down gracefully...")
        await context.client.aclose()
        logger.info("Shutdown complete")

    app = FastAPI(
        title="Avatar3D",
        description="Head-rotation frame grids and 3D models from a single photo",
        version=app_settings.app.version,
        lifespan=lifespan,
    )
    app.state.context = context

    # -------------------------------------------------------------------------
    # Error handlers
    # -------------------------------------------------------------------------

    @app.exception_handler(BadRequestError)
    async def bad_request_handler(request: Request, exc: BadRequestError) -> JSONResponse:
        return _error(str(exc), 400)

    @app.exception_handler(ServiceNotConfiguredError)
    async def not_configured_handler(request: Request, exc: ServiceNotConfiguredError) -> JSONResponse:
        logger.error(f"Request rejected, backend not configured: {exc}")
        return _error(NOT_CONFIGURED_MESSAGE, 500)

    @app.exception_handler(RenderNotFoundError)
    async def render_not_found_handler(request: Request, exc: RenderNotFoundError) -> JSONResponse:
        return _error(f"Render not found: {exc.args[0] if exc.args else ''}", 404)

    @app.exception_handler(RenderStoreError)
    async def render_store_handler(request: Request, exc: RenderStoreError) -> JSONResponse:
        logger.error(f"Render history not saved: {exc}")
        return _error(str(exc), 500)

    # -------------------------------------------------------------------------
    # Service endpoints
    # -------------------------------------------------------------------------

    @app.get("/")
    async def root() -> JSONResponse:
        """Service information endpoint."""
        return JSONResponse({
            "service": "Avatar3D",
            "version": app_settings.app.version,
            "name": app_settings.app.name,
            "status": "running",
            "backend": app_settings.replicate.backend,
            "configured": context.client.configured,
        })

    @app.get("/health")
    async def health() -> JSONResponse:
        """Liveness probe - always 200 while the process is up."""
        return JSONResponse({
            "status": "healthy",
            "uptime_seconds": round(time.time() - context.startup_time, 1),
        })

    @app.get("/metrics")
    async def metrics(ctx: AppContext = Depends(get_context)) -> JSONResponse:
        """Detailed metrics for observability."""
        client_metrics = {}
        get_metrics = getattr(ctx.client, "get_metrics", None)
        if get_metrics is not None:
            client_metrics = get_metrics()

        return JSONResponse({
            "uptime_seconds": round(time.time() - ctx.startup_time, 1),
            "backend": ctx.settings.replicate.backend,
            "batches": ctx.metrics.to_dict(),
            "preprocess_cache": ctx.preprocess_cache.metrics(),
            "history_size": len(ctx.history),
            "client": client_metrics,
        })

    # -------------------------------------------------------------------------
    # Generation endpoints
    # -------------------------------------------------------------------------

    @app.post("/generate-batch")
    async def generate_batch(
        request: Request,
        ctx: AppContext = Depends(get_context),
    ) -> StreamingResponse:
        """Stream a frame grid as ``data:`` events (config, progress*, complete|error)."""
        plan = await _plan_batch(request, ctx)
        logger.info(
            f"Streaming batch: {plan.x_steps}x{plan.y_steps} frames, "
            f"prefix={plan.prefix}, est_cost=${plan.estimated_cost:.4f}"
        )

        events = ctx.new_orchestrator().run(
            plan.source_image,
            plan.specs,
            x_steps=plan.x_steps,
            y_steps=plan.y_steps,
            prefix=plan.prefix,
            estimated_cost=plan.estimated_cost,
        )
        return StreamingResponse(
            sse_stream(events),
            media_type=SSE_MEDIA_TYPE,
            headers=SSE_HEADERS,
        )

    @app.post("/generate")
    async def generate(
        request: Request,
        ctx: AppContext = Depends(get_context),
    ) -> JSONResponse:
        """Generate a frame grid and return every frame in one response."""
        plan = await _plan_batch(request, ctx)
        logger.info(f"Generating batch: {plan.x_steps}x{plan.y_steps} frames")

        config: Optional[BatchConfig] = None
        frames: List[ProgressEvent] = []

        events = ctx.new_orchestrator().run(
            plan.source_image,
            plan.specs,
            x_steps=plan.x_steps,
            y_steps=plan.y_steps,
            prefix=plan.prefix,
            estimated_cost=plan.estimated_cost,
        )
        try:
            async for event in events:
                if isinstance(event, ConfigEvent):
                    config = event.config
                elif isinstance(event, ProgressEvent):
                    frames.append(event)
                elif isinstance(event, ErrorEvent):
                    return _error(event.error, 500)
        finally:
            await events.aclose()

        frames.sort(key=lambda e: e.index)
        response = GenerateResponse(
            images=[
                GeneratedImage(
                    index=e.index,
                    step=e.step,
                    image_base64=e.image_base64,
                    status=e.status,
                )
                for e in frames
            ],
            config=config,
            failed=sum(1 for e in frames if not e.ok),
        )
        return JSONResponse(_dump(response))

    @app.post("/preprocess")
    async def preprocess(
        request: Request,
        ctx: AppContext = Depends(get_context),
    ) -> JSONResponse:
        """Restyle the uploaded photo, reusing cached results."""
        body = await _read_body(request)
        _require_image(body)
        req = _validate(PreprocessRequest, body)
        _require_configured(ctx)

        key = ctx.preprocess_cache.key(req.image_base64, req.style_prompt, req.full_body)
        cached = ctx.preprocess_cache.get(key)
        if cached is not None:
            logger.info("Preprocess cache hit")
            return JSONResponse(_dump(PreprocessResponse(image_base64=cached, cached=True)))

        image = _decode_image(req.image_base64)
        prompt = build_restyle_prompt(req.full_body, req.style_prompt)

        try:
            restyled = await ctx.client.restyle(image, prompt, full_body=req.full_body)
        except RemoteGenerationError as e:
            logger.error(f"Preprocess failed: {e}")
            return _error(str(e) or "Preprocessing failed", 500)

        restyled_b64 = encode_base64(restyled)
        ctx.preprocess_cache.put(key, restyled_b64)
        return JSONResponse(_dump(PreprocessResponse(image_base64=restyled_b64)))

    @app.post("/generate-3d")
    async def generate_3d(
        request: Request,
        ctx: AppContext = Depends(get_context),
    ) -> JSONResponse:
        """Convert an image into a GLB model."""
        body = await _read_body(request)
        _require_image(body)
        req = _validate(Generate3DRequest, body)
        _require_configured(ctx)

        image = _decode_image(req.image_base64)

        try:
            model = await ctx.client.image_to_3d(
                image,
                texture_size=req.texture_size,
                mesh_quality=req.mesh_quality,
            )
        except RemoteGenerationError as e:
            logger.error(f"3D generation failed: {e}")
            return _error(str(e) or "3D generation failed", 500)

        return JSONResponse(_dump(Generate3DResponse(
            glb_base64=encode_base64(model.data),
            glb_url=model.url,
        )))

    # -------------------------------------------------------------------------
    # Render history
    # -------------------------------------------------------------------------

    @app.get("/renders")
    async def list_renders(ctx: AppContext = Depends(get_context)) -> JSONResponse:
        return JSONResponse([_dump(r) for r in ctx.history.list()])

    @app.post("/renders")
    async def save_render(
        request: Request,
        ctx: AppContext = Depends(get_context),
    ) -> JSONResponse:
        body = await _read_body(request)
        # Thumbnailing and the file write run off the event loop
        render = await asyncio.to_thread(ctx.history.save, _validate(SaveRenderRequest, body))
        return JSONResponse(_dump(render), status_code=201)

    @app.get("/renders/{render_id}")
    async def get_render(render_id: str, ctx: AppContext = Depends(get_context)) -> JSONResponse:
        return JSONResponse(_dump(ctx.history.get(render_id)))

    @app.delete("/renders/{render_id}")
    async def delete_render(render_id: str, ctx: AppContext = Depends(get_context)) -> JSONResponse:
        await asyncio.to_thread(ctx.history.delete, render_id)
        return JSONResponse({"success": True})

    @app.delete("/renders")
    async def clear_renders(ctx: AppContext = Depends(get_context)) -> JSONResponse:
        cleared = await asyncio.to_thread(ctx.history.clear)
        return JSONResponse({"success": True, "cleared": cleared})

    return app


# =============================================================================
# FastAPI Application
# =============================================================================

app = create_app()


def main() -> None:
    import uvicorn

    # Cloud Run uses PORT env var
    port = int(os.environ.get("PORT", settings.server.port))

    uvicorn.run(
        "avatar3d.main:app",
        host=settings.server.host,
        port=port,
        reload=False,
    )


if __name__ == "__main__":
    main()

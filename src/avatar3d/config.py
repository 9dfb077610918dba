"""
Avatar3D Configuration
======================

This module handles configuration loading for the generation service.

Configuration Sources (in order of precedence):
    1. Environment variables (highest priority)
    2. config.yaml file
    3. Default values (lowest priority)

Environment Variable Mapping:
    REPLICATE_API_TOKEN          -> replicate.api_token
    AVATAR3D_BACKEND             -> replicate.backend
    AVATAR3D_CONCURRENCY         -> orchestrator.concurrency
    AVATAR3D_MAX_RETRIES         -> orchestrator.max_retries
    AVATAR3D_INITIAL_BACKOFF_MS  -> orchestrator.initial_backoff_ms
    AVATAR3D_BATCH_TIMEOUT       -> orchestrator.batch_timeout_seconds
    AVATAR3D_HISTORY_PATH        -> history.path
    AVATAR3D_PORT                -> server.port
    AVATAR3D_LOG_LEVEL           -> logging.level
    PORT                         -> server.port (Cloud Run)

Example:
    from avatar3d.config import settings

    print(settings.generation.rotate_bound)
    print(settings.orchestrator.concurrency)
"""

import os
import logging
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field


logger = logging.getLogger(__name__)


# =============================================================================
# Configuration Models
# =============================================================================

class AppConfig(BaseModel):
    """Service identification configuration."""

    name: str = Field(default="avatar3d", description="Service name")
    version: str = Field(default="v0.1.0", description="API version")


class ReplicateConfig(BaseModel):
    """Hosted model backend configuration."""

    backend: str = Field(
        default="replicate",
        description="Generation backend: 'replicate' or 'mock'",
    )
    api_token: Optional[str] = Field(
        default=None,
        description="Replicate API token (usually from REPLICATE_API_TOKEN)",
    )
    expression_model: str = Field(
        default=(
            "fofr/expression-editor:"
            "bf913bc90e1c44ba288ba3942a538693b72e8cc7df576f3beebe56adc0a92b86"
        ),
        description="Model used for per-frame head rotation",
    )
    restyle_model: str = Field(
        default="google/nano-banana-pro",
        description="Model used to restyle the uploaded photo",
    )
    model_3d: str = Field(
        default="firtoz/trellis",
        description="Image-to-3D model",
    )
    fetch_timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Timeout for downloading model outputs by URL",
    )


class GenerationConfig(BaseModel):
    """Grid defaults and fixed per-frame rendering parameters."""

    x_steps: int = Field(default=5, ge=1, description="Default horizontal steps")
    y_steps: int = Field(default=5, ge=1, description="Default vertical steps")
    max_steps: int = Field(default=15, ge=1, description="Upper bound on steps per axis")
    rotate_bound: float = Field(default=20.0, gt=0, description="Max head rotation (degrees)")
    pupil_bound: float = Field(default=15.0, gt=0, description="Max pupil offset")
    crop_factor: float = Field(default=1.7, gt=0, description="Face crop factor")
    output_quality: int = Field(default=100, ge=1, le=100, description="Output quality")
    src_ratio: float = Field(default=1.0, gt=0, description="Source sampling ratio")
    sample_ratio: float = Field(default=1.0, gt=0, description="Sample ratio")
    output_format: str = Field(default="png", description="Output image format")
    cost_per_image: float = Field(
        default=0.00098,
        ge=0,
        description="Estimated cost per generated frame (USD)",
    )


class OrchestratorConfig(BaseModel):
    """Batch execution configuration."""

    concurrency: int = Field(default=8, ge=1, description="Worker pool size")
    max_retries: int = Field(
        default=5,
        ge=1,
        description="Maximum attempts per frame on rate-limit errors",
    )
    initial_backoff_ms: int = Field(
        default=5000,
        ge=0,
        description="Backoff before the first retry",
    )
    backoff_multiplier: float = Field(
        default=2.0,
        ge=1.0,
        description="Backoff growth factor per retry",
    )
    max_backoff_ms: int = Field(
        default=60000,
        ge=0,
        description="Upper bound on a single backoff",
    )
    attempt_timeout_seconds: Optional[float] = Field(
        default=120.0,
        gt=0,
        description="Per-attempt timeout for remote calls (None = no limit)",
    )
    batch_timeout_seconds: Optional[float] = Field(
        default=300.0,
        gt=0,
        description="Wall-clock ceiling for a whole batch (None = no limit)",
    )


class CacheConfig(BaseModel):
    """Preprocessed image cache configuration."""

    preprocess_max_entries: int = Field(
        default=10,
        ge=1,
        description="Maximum cached restyled images",
    )


class HistoryConfig(BaseModel):
    """Render history configuration."""

    max_renders: int = Field(default=10, ge=1, description="Renders kept in history")
    thumbnail_size: int = Field(default=200, ge=16, description="Thumbnail bounding box (px)")
    path: Optional[str] = Field(
        default=None,
        description="JSON file for persisting history (None = memory only)",
    )


class ServerConfig(BaseModel):
    """Server configuration."""

    host: str = Field(default="0.0.0.0", description="Bind host")
    port: int = Field(default=8001, ge=1, le=65535, description="Bind port")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="json", description="Log format: json or text")


class Settings(BaseModel):
    """
    Main settings class for the Avatar3D service.

    Loads configuration from YAML file and environment variables.
    Environment variables take precedence over file values.
    """

    app: AppConfig = Field(default_factory=AppConfig)
    replicate: ReplicateConfig = Field(default_factory=ReplicateConfig)
    generation: GenerationConfig = Field(default_factory=GenerationConfig)
    orchestrator: OrchestratorConfig = Field(default_factory=OrchestratorConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    history: HistoryConfig = Field(default_factory=HistoryConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# =============================================================================
# Configuration Loading
# =============================================================================

def load_config(config_path: Optional[str] = None) -> Settings:
    """
    Load configuration from YAML file and environment variables.

    Priority (highest to lowest):
        1. Environment variables
        2. YAML config file
        3. Default values

    Args:
        config_path: Path to config.yaml. If None, searches common locations.

    Returns:
        Settings: Loaded configuration
    """
    if config_path is None:
        search_paths = [
            Path("config.yaml"),
            Path("config.yml"),
            Path("/app/config.yaml"),
            Path(__file__).parent.parent.parent / "config.yaml",
        ]
        for path in search_paths:
            if path.exists():
                config_path = str(path)
                break

    config_data = {}
    if config_path and Path(config_path).exists():
        logger.info(f"Loading config from: {config_path}")
        with open(config_path, "r") as f:
            config_data = yaml.safe_load(f) or {}
    else:
        logger.warning("No config file found, using defaults and environment variables")

    _apply_env_overrides(config_data)

    return Settings.model_validate(config_data)


def _apply_env_overrides(config_data: dict) -> None:
    """Apply environment variable overrides to config data."""

    # Backend credentials
    if env_token := os.environ.get("REPLICATE_API_TOKEN"):
        config_data.setdefault("replicate", {})["api_token"] = env_token
    if env_backend := os.environ.get("AVATAR3D_BACKEND"):
        config_data.setdefault("replicate", {})["backend"] = env_backend

    # Orchestrator
    if env_conc := os.environ.get("AVATAR3D_CONCURRENCY"):
        config_data.setdefault("orchestrator", {})["concurrency"] = int(env_conc)
    if env_retries := os.environ.get("AVATAR3D_MAX_RETRIES"):
        config_data.setdefault("orchestrator", {})["max_retries"] = int(env_retries)
    if env_backoff := os.environ.get("AVATAR3D_INITIAL_BACKOFF_MS"):
        config_data.setdefault("orchestrator", {})["initial_backoff_ms"] = int(env_backoff)
    if env_timeout := os.environ.get("AVATAR3D_BATCH_TIMEOUT"):
        config_data.setdefault("orchestrator", {})["batch_timeout_seconds"] = float(env_timeout)

    # History
    if env_history := os.environ.get("AVATAR3D_HISTORY_PATH"):
        config_data.setdefault("history", {})["path"] = env_history

    # Server settings (Cloud Run uses PORT env var)
    if env_port := os.environ.get("PORT"):
        config_data.setdefault("server", {})["port"] = int(env_port)
    elif env_port := os.environ.get("AVATAR3D_PORT"):
        config_data.setdefault("server", {})["port"] = int(env_port)

    # Logging settings
    if env_log := os.environ.get("AVATAR3D_LOG_LEVEL"):
        config_data.setdefault("logging", {})["level"] = env_log


def setup_logging(settings: Settings) -> None:
    """Configure logging based on settings."""
    log_level = getattr(logging, settings.logging.level.upper(), logging.INFO)

    if settings.logging.format == "json":
        log_format = '{"time": "%(asctime)s", "level": "%(levelname)s", "module": "%(name)s", "message": "%(message)s"}'
    else:
        log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=log_level,
        format=log_format,
        datefmt="%Y-%m-%dT%H:%M:%S",
    )


# =============================================================================
# Global Settings Instance
# =============================================================================

# Global settings instance - loaded on import
settings = load_config()
setup_logging(settings)

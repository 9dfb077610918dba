"""
Configuration Tests
===================

Tests for config loading, environment overrides and defaults.
"""

import pytest
from pydantic import ValidationError

from avatar3d.config import Settings, load_config


ENV_VARS = [
    "REPLICATE_API_TOKEN",
    "AVATAR3D_BACKEND",
    "AVATAR3D_CONCURRENCY",
    "AVATAR3D_MAX_RETRIES",
    "AVATAR3D_INITIAL_BACKOFF_MS",
    "AVATAR3D_BATCH_TIMEOUT",
    "AVATAR3D_HISTORY_PATH",
    "AVATAR3D_PORT",
    "AVATAR3D_LOG_LEVEL",
    "PORT",
]


@pytest.fixture
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestDefaults:
    """Tests for built-in defaults."""

    def test_generation_defaults(self):
        settings = Settings()

        assert settings.generation.x_steps == 5
        assert settings.generation.y_steps == 5
        assert settings.generation.rotate_bound == 20.0
        assert settings.generation.pupil_bound == 15.0
        assert settings.generation.cost_per_image == 0.00098

    def test_orchestrator_defaults(self):
        settings = Settings()

        assert settings.orchestrator.concurrency == 8
        assert settings.orchestrator.max_retries == 5
        assert settings.orchestrator.initial_backoff_ms == 5000
        assert settings.orchestrator.max_backoff_ms == 60000

    def test_invalid_values_rejected(self):
        with pytest.raises(ValidationError):
            Settings.model_validate({"orchestrator": {"concurrency": 0}})
        with pytest.raises(ValidationError):
            Settings.model_validate({"generation": {"output_quality": 101}})


class TestLoadConfig:
    """Tests for load_config."""

    def test_yaml_file(self, tmp_path, clean_env):
        path = tmp_path / "config.yaml"
        path.write_text(
            "replicate:\n"
            "  backend: mock\n"
            "orchestrator:\n"
            "  concurrency: 3\n"
            "history:\n"
            "  max_renders: 4\n"
        )

        settings = load_config(str(path))

        assert settings.replicate.backend == "mock"
        assert settings.orchestrator.concurrency == 3
        assert settings.history.max_renders == 4
        assert settings.generation.x_steps == 5

    def test_env_overrides_yaml(self, tmp_path, clean_env):
        path = tmp_path / "config.yaml"
        path.write_text("orchestrator:\n  concurrency: 3\n")
        clean_env.setenv("AVATAR3D_CONCURRENCY", "12")
        clean_env.setenv("REPLICATE_API_TOKEN", "r8_env")
        clean_env.setenv("AVATAR3D_BATCH_TIMEOUT", "45.5")
        clean_env.setenv("AVATAR3D_LOG_LEVEL", "DEBUG")

        settings = load_config(str(path))

        assert settings.orchestrator.concurrency == 12
        assert settings.orchestrator.batch_timeout_seconds == 45.5
        assert settings.replicate.api_token == "r8_env"
        assert settings.logging.level == "DEBUG"

    def test_port_precedence(self, tmp_path, clean_env):
        clean_env.setenv("AVATAR3D_PORT", "9000")
        assert load_config(str(tmp_path / "missing.yaml")).server.port == 9000

        clean_env.setenv("PORT", "8080")
        assert load_config(str(tmp_path / "missing.yaml")).server.port == 8080

    def test_missing_file_uses_defaults(self, tmp_path, clean_env):
        settings = load_config(str(tmp_path / "missing.yaml"))

        assert settings.server.port == 8001
        assert settings.replicate.api_token is None

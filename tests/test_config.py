"""
Configuration Tests
===================

YAML loading, environment overrides and validation.
"""

import pytest
from pydantic import ValidationError

from peerwatch.config import PipelineConfig, load_config


_ENV_VARS = (
    "PEERWATCH_CONFIG",
    "PORT",
    "PEERWATCH_PORT",
    "PEERWATCH_HOST",
    "PEERWATCH_TELEMETRY_PATH",
    "PEERWATCH_DETECTOR_BACKEND",
    "PEERWATCH_MODEL_PATH",
    "PEERWATCH_TARGET_FPS",
    "PEERWATCH_MIN_FPS",
    "PEERWATCH_SCORE_THRESHOLD",
    "PEERWATCH_CAPTURE_URL",
    "PEERWATCH_LOG_LEVEL",
)


@pytest.fixture
def clean_env(monkeypatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestLoadConfig:
    """Tests for load_config."""

    def test_defaults(self, clean_env, tmp_path):
        settings = load_config(str(tmp_path / "missing.yaml"))
        assert settings.server.port == 8080
        assert settings.pipeline.target_fps == 12
        assert settings.pipeline.min_fps == 6
        assert settings.pipeline.score_threshold == 0.4
        assert settings.detector.backend == "mock"
        assert settings.capture.url is None

    def test_yaml_file(self, clean_env, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "server:\n"
            "  port: 9000\n"
            "pipeline:\n"
            "  target_fps: 20\n"
            "telemetry:\n"
            "  path: /var/lib/peerwatch/metrics.jsonl\n"
        )
        settings = load_config(str(path))
        assert settings.server.port == 9000
        assert settings.pipeline.target_fps == 20
        assert settings.telemetry.path == "/var/lib/peerwatch/metrics.jsonl"

    def test_env_overrides_file(self, clean_env, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("server:\n  port: 9000\n")
        clean_env.setenv("PEERWATCH_PORT", "7000")
        clean_env.setenv("PEERWATCH_DETECTOR_BACKEND", "onnx")
        clean_env.setenv("PEERWATCH_SCORE_THRESHOLD", "0.55")
        clean_env.setenv("PEERWATCH_CAPTURE_URL", "ws://camera:9000/frames")

        settings = load_config(str(path))
        assert settings.server.port == 7000
        assert settings.detector.backend == "onnx"
        assert settings.pipeline.score_threshold == 0.55
        assert settings.capture.url == "ws://camera:9000/frames"

    def test_port_takes_precedence(self, clean_env, tmp_path):
        clean_env.setenv("PORT", "8081")
        clean_env.setenv("PEERWATCH_PORT", "7000")
        assert load_config(str(tmp_path / "missing.yaml")).server.port == 8081

    def test_config_env_path(self, clean_env, tmp_path):
        path = tmp_path / "custom.yaml"
        path.write_text("relay:\n  send_timeout_seconds: 1.5\n")
        clean_env.setenv("PEERWATCH_CONFIG", str(path))
        assert load_config().relay.send_timeout_seconds == 1.5


class TestPipelineConfig:
    """Tests for PipelineConfig validation."""

    def test_min_fps_above_target(self):
        with pytest.raises(ValidationError):
            PipelineConfig(target_fps=6, min_fps=12)

    def test_threshold_range(self):
        with pytest.raises(ValidationError):
            PipelineConfig(score_threshold=1.5)

    def test_latency_window_default(self):
        assert PipelineConfig().max_latency_samples == 1000
        with pytest.raises(ValidationError):
            PipelineConfig(max_latency_samples=0)

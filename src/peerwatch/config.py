"""
PeerWatch Configuration
=======================

This module handles configuration loading for the relay and detection service.

Configuration Sources (in order of precedence):
    1. Environment variables (highest priority)
    2. config.yaml file
    3. Default values (lowest priority)

Environment Variable Mapping:
    PEERWATCH_CONFIG            -> path of the YAML file to load
    PEERWATCH_HOST              -> server.host
    PEERWATCH_PORT              -> server.port
    PORT                        -> server.port (Cloud Run)
    PEERWATCH_TELEMETRY_PATH    -> telemetry.path
    PEERWATCH_DETECTOR_BACKEND  -> detector.backend
    PEERWATCH_MODEL_PATH        -> detector.model_path
    PEERWATCH_TARGET_FPS        -> pipeline.target_fps
    PEERWATCH_MIN_FPS           -> pipeline.min_fps
    PEERWATCH_SCORE_THRESHOLD   -> pipeline.score_threshold
    PEERWATCH_CAPTURE_URL       -> capture.url
    PEERWATCH_LOG_LEVEL         -> logging.level

Example:
    from peerwatch.config import settings

    print(settings.server.port)
    print(settings.pipeline.target_fps)
"""

import os
import logging
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, model_validator


logger = logging.getLogger(__name__)


# =============================================================================
# Configuration Models
# =============================================================================

class AppConfig(BaseModel):
    """Service identification."""

    name: str = Field(default="peerwatch", description="Service name")
    version: str = Field(default="v0.1.0", description="Service version")


class ServerConfig(BaseModel):
    """Server configuration."""

    host: str = Field(default="0.0.0.0", description="Bind host")
    port: int = Field(default=8080, ge=1, le=65535, description="Bind port")


class RelayConfig(BaseModel):
    """Session relay configuration."""

    send_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Maximum time to spend delivering one message to a peer",
    )


class TelemetryConfig(BaseModel):
    """Telemetry sink configuration."""

    enabled: bool = Field(default=True, description="Persist metrics messages")
    path: str = Field(
        default="metrics.jsonl",
        description="Append-only JSON Lines file for telemetry samples",
    )


class PipelineConfig(BaseModel):
    """Adaptive inference pipeline configuration."""

    enabled: bool = Field(default=True, description="Run the detection pipeline")
    target_fps: int = Field(
        default=12,
        ge=1,
        le=120,
        description="Initial inference rate (invocations per second)",
    )
    min_fps: int = Field(
        default=6,
        ge=1,
        description="Floor the adaptive rate never drops below",
    )
    fps_step: int = Field(
        default=2,
        ge=1,
        description="Amount target_fps is lowered per over-budget iteration",
    )
    input_width: int = Field(default=320, ge=16, description="Model input width")
    input_height: int = Field(default=240, ge=16, description="Model input height")
    score_threshold: float = Field(
        default=0.4,
        ge=0,
        le=1.0,
        description="Minimum score for a detection to be kept",
    )
    inference_timeout_seconds: Optional[float] = Field(
        default=2.0,
        gt=0,
        description="Per-frame inference timeout (None = wait indefinitely)",
    )
    summary_interval_seconds: float = Field(
        default=1.0,
        gt=0,
        description="Interval between performance summaries sent to displays",
    )
    subscriber_queue_size: int = Field(
        default=8,
        ge=1,
        description="Events buffered per display subscriber before dropping",
    )
    max_latency_samples: int = Field(
        default=1000,
        ge=1,
        description="Latency window (most recent frames) used for percentiles",
    )

    @model_validator(mode="after")
    def _check_fps_floor(self) -> "PipelineConfig":
        if self.min_fps > self.target_fps:
            raise ValueError("min_fps must not exceed target_fps")
        return self


class MockDetectorConfig(BaseModel):
    """Mock detection backend configuration."""

    latency_ms: float = Field(default=15.0, ge=0, description="Simulated inference time")
    label: int = Field(default=1, ge=0, description="Class index of the emitted box")
    score: float = Field(default=0.9, ge=0, le=1.0, description="Score of the emitted box")


class DetectorConfig(BaseModel):
    """Inference engine configuration."""

    backend: str = Field(
        default="mock",
        description="Detection backend: 'mock' or 'onnx'",
    )
    model_path: str = Field(
        default="./models/mobilenet_ssd.onnx",
        description="Path to the ONNX detection model",
    )
    mock: MockDetectorConfig = Field(default_factory=MockDetectorConfig)


class CaptureConfig(BaseModel):
    """Optional upstream frame source."""

    url: Optional[str] = Field(
        default=None,
        description="WebSocket URL to pull frame messages from (None = push only)",
    )
    reconnect_backoff_ms: int = Field(
        default=500,
        ge=100,
        description="Backoff in milliseconds between reconnect attempts",
    )
    max_reconnect_attempts: int = Field(
        default=0,
        ge=0,
        description="Maximum reconnection attempts (0 = unlimited)",
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="json", description="Log format: json or text")


class Settings(BaseModel):
    """
    Main settings class for PeerWatch.

    Loads configuration from YAML file and environment variables.
    Environment variables take precedence over file values.
    """

    app: AppConfig = Field(default_factory=AppConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    relay: RelayConfig = Field(default_factory=RelayConfig)
    telemetry: TelemetryConfig = Field(default_factory=TelemetryConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    detector: DetectorConfig = Field(default_factory=DetectorConfig)
    capture: CaptureConfig = Field(default_factory=CaptureConfig)
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
        config_path: Path to config.yaml. If None, uses PEERWATCH_CONFIG
            or searches common locations.

    Returns:
        Settings: Loaded configuration
    """
    if config_path is None:
        config_path = os.environ.get("PEERWATCH_CONFIG")

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

    # Server settings (Cloud Run uses PORT env var)
    if env_host := os.environ.get("PEERWATCH_HOST"):
        config_data.setdefault("server", {})["host"] = env_host
    if env_port := os.environ.get("PORT"):
        config_data.setdefault("server", {})["port"] = int(env_port)
    elif env_port := os.environ.get("PEERWATCH_PORT"):
        config_data.setdefault("server", {})["port"] = int(env_port)

    # Telemetry
    if env_telemetry := os.environ.get("PEERWATCH_TELEMETRY_PATH"):
        config_data.setdefault("telemetry", {})["path"] = env_telemetry

    # Detector
    if env_backend := os.environ.get("PEERWATCH_DETECTOR_BACKEND"):
        config_data.setdefault("detector", {})["backend"] = env_backend
    if env_model := os.environ.get("PEERWATCH_MODEL_PATH"):
        config_data.setdefault("detector", {})["model_path"] = env_model

    # Pipeline
    if env_fps := os.environ.get("PEERWATCH_TARGET_FPS"):
        config_data.setdefault("pipeline", {})["target_fps"] = int(env_fps)
    if env_min_fps := os.environ.get("PEERWATCH_MIN_FPS"):
        config_data.setdefault("pipeline", {})["min_fps"] = int(env_min_fps)
    if env_threshold := os.environ.get("PEERWATCH_SCORE_THRESHOLD"):
        config_data.setdefault("pipeline", {})["score_threshold"] = float(env_threshold)

    # Capture
    if env_capture := os.environ.get("PEERWATCH_CAPTURE_URL"):
        config_data.setdefault("capture", {})["url"] = env_capture

    # Logging
    if env_log := os.environ.get("PEERWATCH_LOG_LEVEL"):
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

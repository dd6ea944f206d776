"""
Pipeline Module
===============

Low-latency, rate-adaptive object detection.

Components:
    - FrameItem / FrameSlot: Single-slot, drop-on-overwrite frame handoff
    - letterbox / to_input_tensor: Aspect-preserving model input preparation
    - DetectorAdapter: Engine wrapper with output normalization
    - MockDetectionEngine / OnnxDetectionEngine: Inference backends
    - AdaptiveScheduler: Self-throttling inference loop
    - MetricsAggregator: FPS and latency percentiles

Design Philosophy:
    Freshness over completeness. Frames that arrive while inference is
    busy replace each other; the scheduler lowers its own rate when the
    engine cannot keep up instead of building a backlog.
"""

from peerwatch.pipeline.slot import FrameItem, FrameSlot
from peerwatch.pipeline.preprocess import LetterboxGeometry, letterbox, to_input_tensor
from peerwatch.pipeline.detector import (
    DetectionEngine,
    DetectorAdapter,
    InferenceTimeoutError,
    MockDetectionEngine,
    OnnxDetectionEngine,
    normalize_outputs,
)
from peerwatch.pipeline.metrics import MetricsAggregator, median, p95
from peerwatch.pipeline.scheduler import AdaptiveScheduler, PipelineState


__all__ = [
    "FrameItem",
    "FrameSlot",
    "LetterboxGeometry",
    "letterbox",
    "to_input_tensor",
    "DetectionEngine",
    "DetectorAdapter",
    "InferenceTimeoutError",
    "MockDetectionEngine",
    "OnnxDetectionEngine",
    "normalize_outputs",
    "MetricsAggregator",
    "median",
    "p95",
    "AdaptiveScheduler",
    "PipelineState",
]

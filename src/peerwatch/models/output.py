"""
Output Models
=============

Events the detection pipeline emits to display clients.

Output Contract (WebSocket /ws/detections):
    {
        "type": "detections",
        "frame_id": 42,
        "capture_ts": 1707321234567.0,
        "recv_ts": 1707321234580.0,
        "inference_ts": 1707321234611.0,
        "input_width": 320,
        "input_height": 240,
        "detections": [
            {"label": "1", "score": 0.91,
             "xmin": 0.1, "ymin": 0.2, "xmax": 0.4, "ymax": 0.8}
        ]
    }

    {
        "type": "summary",
        "fps": 9.8,
        "median_latency_ms": 41.0,
        "p95_latency_ms": 77.0
    }

Coordinates are in model-input (letterboxed canvas) space. Timestamps are
epoch milliseconds.
"""

from typing import List

from pydantic import BaseModel, Field


class Detection(BaseModel):
    """
    One labeled, scored box for a single frame.

    Attributes:
        label: Class label as reported by the model
        score: Confidence in [0, 1]
        xmin, ymin, xmax, ymax: Box corners in model-input space
    """

    label: str = Field(..., description="Class label")
    score: float = Field(..., description="Detection confidence")
    xmin: float
    ymin: float
    xmax: float
    ymax: float


class DetectionEvent(BaseModel):
    """
    Detection result for one frame.

    A detection list is only meaningful for the frame it was computed from,
    so the event carries that frame's identity and timings.
    """

    frame_id: int
    capture_ts: float = Field(..., description="Capture time (epoch ms)")
    recv_ts: float = Field(..., description="Time the pipeline took the frame (epoch ms)")
    inference_ts: float = Field(..., description="Inference completion time (epoch ms)")
    input_width: int
    input_height: int
    detections: List[Detection] = Field(default_factory=list)

    @property
    def latency_ms(self) -> float:
        """End-to-end latency from capture to inference completion."""
        return self.inference_ts - self.capture_ts

    def to_message(self) -> dict:
        return {"type": "detections", **self.model_dump(mode="json")}


class PerformanceSummary(BaseModel):
    """Rate and latency percentiles since the pipeline (re)started."""

    fps: float = 0.0
    median_latency_ms: float = 0.0
    p95_latency_ms: float = 0.0

    def to_message(self) -> dict:
        return {"type": "summary", **self.model_dump(mode="json")}

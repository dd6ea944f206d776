"""
Data Models
===========

Pydantic models for PeerWatch wire contracts.

Models:
    Input:
        - FrameMessage: Frame pushed or served by a capture client

    Output:
        - Detection: One labeled, scored box
        - DetectionEvent: Detections for one frame, with timings
        - PerformanceSummary: Pipeline FPS and latency percentiles
"""

from peerwatch.models.input import FrameMessage
from peerwatch.models.output import Detection, DetectionEvent, PerformanceSummary

__all__ = [
    # Input
    "FrameMessage",
    # Output
    "Detection",
    "DetectionEvent",
    "PerformanceSummary",
]

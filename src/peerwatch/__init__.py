"""
PeerWatch
=========

Two-party session relay and adaptive object-detection pipeline.

A viewing party ("initiator") and a camera party ("capture") meet in a
room on the session relay, which brokers their negotiation messages
without inspecting them. Frames from the capture side feed a rate-adaptive
detection pipeline that drops stale frames instead of queuing them.

Components:
    - relay: Room registry, control messages, per-connection relay sessions
    - telemetry: Append-only session-quality samples
    - pipeline: Frame slot, detector adapter, adaptive scheduler, metrics
    - stream: Frame ingestion from capture clients
    - observability: Fan-out of detection events to display clients

Example:
    from peerwatch.config import settings

    # Service is started via the FastAPI application
    # See main.py for entry point
"""

__version__ = "0.1.0"
__author__ = "PeerWatch Project"

__all__ = [
    "__version__",
]

"""
Telemetry Module
================

Session-quality samples reported by peers over the relay.

Components:
    - TelemetrySample: One {timestamp, room, role, bitrate, fps, latencyMs} record
    - TelemetrySink: Append-only persistence protocol
    - JsonLinesTelemetrySink / MemoryTelemetrySink: Sink implementations
    - StatsSampler: Builds metrics payloads from raw sender statistics
"""

from peerwatch.telemetry.sink import (
    JsonLinesTelemetrySink,
    MemoryTelemetrySink,
    TelemetrySample,
    TelemetrySink,
)
from peerwatch.telemetry.sampler import SenderStats, StatsSampler


__all__ = [
    "TelemetrySample",
    "TelemetrySink",
    "JsonLinesTelemetrySink",
    "MemoryTelemetrySink",
    "SenderStats",
    "StatsSampler",
]

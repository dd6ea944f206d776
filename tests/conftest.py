"""
Test Configuration
==================

Pytest fixtures and test configuration for PeerWatch.
"""

import json

import numpy as np
import pytest


class FakeConnection:
    """Records everything sent to it, like a WebSocket in tests."""

    def __init__(self, name: str = "conn", fail: bool = False):
        self.name = name
        self.fail = fail
        self.sent = []

    async def send_json(self, data):
        if self.fail:
            raise ConnectionError(f"{self.name} is gone")
        self.sent.append(data)

    def types(self):
        return [m.get("type") for m in self.sent]

    def __repr__(self):
        return f"FakeConnection({self.name})"


@pytest.fixture
def make_connection():
    """Factory for FakeConnection instances."""
    return FakeConnection


@pytest.fixture
def registry():
    """Provide an empty RoomRegistry."""
    from peerwatch.relay import RoomRegistry

    return RoomRegistry()


@pytest.fixture
def memory_sink():
    """Provide an in-memory telemetry sink."""
    from peerwatch.telemetry import MemoryTelemetrySink

    return MemoryTelemetrySink()


@pytest.fixture
def sample_image():
    """Provide a 480x640 BGR test image with a bright rectangle."""
    image = np.zeros((480, 640, 3), dtype=np.uint8)
    image[120:360, 160:480] = (0, 200, 255)
    return image


@pytest.fixture
def sample_image_b64(sample_image):
    """Provide the test image as base64 JPEG."""
    from peerwatch.stream import encode_jpeg_b64

    return encode_jpeg_b64(sample_image)


@pytest.fixture
def sample_frame_message(sample_image_b64):
    """Provide a raw frame message as sent by a capture client."""
    return json.dumps({
        "frame_id": 100,
        "capture_ts": 1707321234567.0,
        "image": sample_image_b64,
    })

"""
Stream Module
=============

Capture-side frame ingestion for the detection pipeline.

This module provides the ingestion layer for PeerWatch:
    - FrameIngestor: Validates frame messages and fills the FrameSlot
    - FrameConsumer: WebSocket client pulling frames from a capture source
    - decode_image: The single place where image handles are decoded

Example:
    from peerwatch.pipeline import FrameSlot
    from peerwatch.stream import FrameConsumer, FrameIngestor

    slot = FrameSlot()
    consumer = FrameConsumer(
        url="ws://camera:9000/frames",
        ingestor=FrameIngestor(slot),
        reconnect_backoff_ms=500,
    )

    task = asyncio.create_task(consumer.run())
"""

from peerwatch.stream.image_decoder import ImageDecodeError, decode_image, encode_jpeg_b64
from peerwatch.stream.consumer import FrameConsumer, FrameIngestor, IngestMetrics


__all__ = [
    "ImageDecodeError",
    "decode_image",
    "encode_jpeg_b64",
    "FrameConsumer",
    "FrameIngestor",
    "IngestMetrics",
]

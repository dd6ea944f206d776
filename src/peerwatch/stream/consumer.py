"""
Frame Consumer
==============

Ingestion of capture frames into the pipeline's FrameSlot.

This module provides:
    - FrameIngestor: Parses and validates frame messages, tracks ordering,
      and hands frames to the slot (shared by push and pull paths)
    - FrameConsumer: WebSocket client that pulls frames from a capture
      source and reconnects with backoff

Design Rules:
    - Image data is left encoded; only frames that survive the slot are
      decoded, by the detector
    - Out-of-order frames are logged and still accepted
    - Unparseable messages are counted and dropped
"""

import asyncio
import logging
import time
from typing import Any, Callable, Optional, Union

import websockets
from pydantic import ValidationError
from websockets.exceptions import (
    ConnectionClosed,
    ConnectionClosedOK,
    WebSocketException,
)

from peerwatch.models.input import FrameMessage
from peerwatch.pipeline.slot import FrameItem, FrameSlot


logger = logging.getLogger(__name__)


class IngestMetrics:
    """Counters shared by the push endpoint and the pull consumer."""

    __slots__ = (
        "frames_received",
        "reconnect_count",
        "last_frame_id",
        "last_capture_ts",
        "validation_warnings",
        "parse_errors",
    )

    def __init__(self) -> None:
        self.frames_received: int = 0
        self.reconnect_count: int = 0
        self.last_frame_id: int = -1
        self.last_capture_ts: float = 0.0
        self.validation_warnings: int = 0
        self.parse_errors: int = 0

    def to_dict(self) -> dict:
        return {name: getattr(self, name) for name in self.__slots__}


class FrameIngestor:
    """
    Validates frame messages and puts them into a FrameSlot.

    Attributes:
        slot: Destination slot (overwrite-on-arrival)
        metrics: Ingestion counters

    Example:
        ingestor = FrameIngestor(slot)
        async for text in websocket.iter_text():
            ingestor.ingest(text)
    """

    def __init__(
        self,
        slot: FrameSlot,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.slot = slot
        self.metrics = IngestMetrics()
        self._clock = clock

    def parse(self, raw: Union[str, bytes]) -> Optional[FrameItem]:
        """
        Parse and validate a raw frame message.

        Performs ordering validation. Logs warnings for violations but
        does not reject frames.

        Args:
            raw: Raw JSON text from the capture client

        Returns:
            FrameItem, or None on parse error
        """
        try:
            message = FrameMessage.model_validate_json(raw)
        except ValidationError as e:
            self.metrics.parse_errors += 1
            logger.error(f"Invalid frame message: {e.error_count()} error(s)")
            return None

        capture_ts = message.capture_ts or self._clock() * 1000.0

        # Validate frame_id ordering (must increase)
        last_id = self.metrics.last_frame_id
        if last_id >= 0 and message.frame_id <= last_id:
            self.metrics.validation_warnings += 1
            logger.warning(
                f"Frame ID went backwards: got {message.frame_id}, "
                f"previous was {last_id}"
            )

        # Validate timestamp monotonicity
        if self.metrics.last_capture_ts > 0 and capture_ts < self.metrics.last_capture_ts:
            self.metrics.validation_warnings += 1
            logger.warning(
                f"Capture timestamp went backwards: got {capture_ts:.0f}, "
                f"previous was {self.metrics.last_capture_ts:.0f}"
            )

        return FrameItem(
            image=message.image,
            frame_id=message.frame_id,
            capture_ts=capture_ts,
        )

    def ingest(self, raw: Union[str, bytes]) -> bool:
        """
        Parse one message and put the frame into the slot.

        Returns:
            True if a frame was accepted.
        """
        item = self.parse(raw)
        if item is None:
            return False

        self.slot.put(item)
        self.metrics.frames_received += 1
        self.metrics.last_frame_id = item.frame_id
        self.metrics.last_capture_ts = item.capture_ts
        return True


class FrameConsumer:
    """
    Pull-mode capture source: a WebSocket client feeding a FrameIngestor.

    Used when the camera side serves frames instead of pushing them to
    /ws/frames. The connection is re-established after a fixed backoff
    until stop() is called or the attempt budget is spent.

    Example:
        consumer = FrameConsumer("ws://camera:9000/frames", FrameIngestor(slot))
        task = asyncio.create_task(consumer.run())
        ...
        await consumer.stop()
        await task
    """

    def __init__(
        self,
        url: str,
        ingestor: FrameIngestor,
        reconnect_backoff_ms: int = 500,
        max_reconnect_attempts: int = 0,
    ) -> None:
        """
        Args:
            url: Capture source WebSocket URL
            ingestor: Destination for every received message
            reconnect_backoff_ms: Pause before each reconnect
            max_reconnect_attempts: Reconnect budget (0 = retry forever)
        """
        self.url = url
        self.ingestor = ingestor
        self.reconnect_backoff_ms = reconnect_backoff_ms
        self.max_reconnect_attempts = max_reconnect_attempts

        self._ws: Optional[Any] = None
        self._stopping = asyncio.Event()

    @property
    def connected(self) -> bool:
        return self._ws is not None

    @property
    def metrics(self) -> IngestMetrics:
        return self.ingestor.metrics

    def _budget_spent(self) -> bool:
        limit = self.max_reconnect_attempts
        return limit > 0 and self.metrics.reconnect_count >= limit

    async def _backoff(self) -> bool:
        """Wait before reconnecting. Returns False if stop() arrived meanwhile."""
        delay = self.reconnect_backoff_ms / 1000.0
        logger.info(
            f"Capture source {self.url} unavailable, retry "
            f"#{self.metrics.reconnect_count} in {delay:.1f}s"
        )
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return True
        return False

    async def run(self) -> None:
        """Receive frames until stop(); reconnect after every disconnect."""
        self._stopping.clear()
        logger.info(f"Pulling frames from {self.url}")

        while not self._stopping.is_set():
            try:
                await self._receive_frames()
            except (OSError, WebSocketException, asyncio.TimeoutError) as e:
                if self._stopping.is_set():
                    break
                logger.error(f"Capture source error: {e}")

            if self._stopping.is_set():
                break
            if self._budget_spent():
                logger.error(
                    f"Giving up on {self.url} after "
                    f"{self.max_reconnect_attempts} reconnect attempts"
                )
                break

            self.metrics.reconnect_count += 1
            if not await self._backoff():
                break

        logger.info(f"Stopped pulling frames from {self.url}")

    async def stop(self) -> None:
        """Ask run() to return and close the live connection, if any."""
        self._stopping.set()
        ws = self._ws
        if ws is not None:
            try:
                await ws.close()
            except ConnectionClosed:
                pass

    async def _receive_frames(self) -> None:
        async with websockets.connect(
            self.url,
            ping_interval=20,
            ping_timeout=10,
            close_timeout=5,
            max_size=None,
        ) as ws:
            self._ws = ws
            logger.info(f"Capture source connected: {self.url}")
            try:
                async for raw in ws:
                    self.ingestor.ingest(raw)
            except ConnectionClosedOK:
                logger.info("Capture source closed the connection")
            finally:
                self._ws = None

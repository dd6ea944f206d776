"""
Frame Ingestion Tests
=====================

FrameIngestor validation, the pull consumer and the display broadcaster.
"""

import asyncio
import json

import pytest

from peerwatch.observability import EventBroadcaster, Subscription
from peerwatch.pipeline import FrameSlot
from peerwatch.stream import FrameConsumer, FrameIngestor


class TestFrameIngestor:
    """Tests for FrameIngestor."""

    def test_ingest(self, sample_frame_message):
        slot = FrameSlot()
        ingestor = FrameIngestor(slot)

        assert ingestor.ingest(sample_frame_message) is True

        item = slot.take_and_clear()
        assert item.frame_id == 100
        assert item.capture_ts == 1707321234567.0
        assert ingestor.metrics.frames_received == 1
        assert ingestor.metrics.last_frame_id == 100

    def test_missing_capture_ts_uses_arrival(self):
        ingestor = FrameIngestor(FrameSlot(), clock=lambda: 1_700_000_000.0)
        item = ingestor.parse('{"frame_id": 1, "image": "abc"}')
        assert item.capture_ts == 1_700_000_000_000.0

    def test_invalid_message(self):
        slot = FrameSlot()
        ingestor = FrameIngestor(slot)
        assert ingestor.ingest("not json") is False
        assert ingestor.ingest('{"frame_id": -1, "image": "abc"}') is False
        assert ingestor.ingest('{"frame_id": 1, "image": ""}') is False
        assert ingestor.metrics.parse_errors == 3
        assert not slot.occupied

    def test_out_of_order_warns(self):
        slot = FrameSlot()
        ingestor = FrameIngestor(slot)
        ingestor.ingest(json.dumps({"frame_id": 5, "capture_ts": 2000.0, "image": "a"}))
        ingestor.ingest(json.dumps({"frame_id": 4, "capture_ts": 1000.0, "image": "b"}))

        assert ingestor.metrics.validation_warnings == 2
        # Still accepted: the newest arrival wins the slot
        assert slot.take_and_clear().frame_id == 4
        assert slot.dropped_count == 1


class TestEventBroadcaster:
    """Tests for EventBroadcaster and Subscription."""

    @pytest.mark.asyncio
    async def test_fan_out(self):
        broadcaster = EventBroadcaster(queue_size=4)
        first, second = broadcaster.subscribe(), broadcaster.subscribe()

        assert broadcaster.publish({"type": "summary"}) == 2
        assert await first.get(timeout=0.1) == {"type": "summary"}
        assert await second.get(timeout=0.1) == {"type": "summary"}

        broadcaster.unsubscribe(first)
        assert broadcaster.subscriber_count == 1
        broadcaster.unsubscribe(first)

    @pytest.mark.asyncio
    async def test_slow_subscriber_drops_oldest(self):
        sub = Subscription(maxsize=2)
        for n in range(4):
            sub.offer({"n": n})

        assert sub.dropped_count == 2
        assert await sub.get(timeout=0.1) == {"n": 2}
        assert await sub.get(timeout=0.1) == {"n": 3}
        assert await sub.get(timeout=0.01) is None


class TestFrameConsumer:
    """Tests for the pull-mode FrameConsumer."""

    @pytest.mark.asyncio
    async def test_gives_up_after_budget(self):
        ingestor = FrameIngestor(FrameSlot())
        consumer = FrameConsumer(
            "ws://127.0.0.1:1/frames",
            ingestor,
            reconnect_backoff_ms=100,
            max_reconnect_attempts=1,
        )

        await asyncio.wait_for(consumer.run(), timeout=10.0)

        assert consumer.metrics.reconnect_count == 1
        assert not consumer.connected

    @pytest.mark.asyncio
    async def test_stop_interrupts_backoff(self):
        consumer = FrameConsumer(
            "ws://127.0.0.1:1/frames",
            FrameIngestor(FrameSlot()),
            reconnect_backoff_ms=60_000,
        )
        task = asyncio.create_task(consumer.run())
        await asyncio.sleep(0.2)
        await consumer.stop()
        await asyncio.wait_for(task, timeout=5.0)
        assert task.done()

"""
Event Broadcaster
=================

Fan-out of pipeline events to display clients.

Each subscriber gets its own bounded queue. A slow display never slows
the pipeline: when its queue is full the oldest event is dropped, the same
freshness-over-completeness policy the FrameSlot applies to frames.

Design Rules:
    - publish() never blocks and never raises
    - Per-subscriber queues, drop oldest on overflow
    - Exposes minimal metrics for observability
"""

import asyncio
import logging
from typing import List, Optional


logger = logging.getLogger(__name__)


class Subscription:
    """
    One display client's bounded event queue.

    Attributes:
        maxsize: Events buffered before dropping
        dropped_count: Events dropped due to overflow
    """

    def __init__(self, maxsize: int = 8) -> None:
        if maxsize < 1:
            raise ValueError("maxsize must be >= 1")
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.maxsize = maxsize
        self.dropped_count: int = 0

    @property
    def size(self) -> int:
        return self._queue.qsize()

    def offer(self, event: dict) -> bool:
        """
        Enqueue `event`, dropping the oldest one if full.

        Returns:
            True if nothing was dropped.
        """
        dropped = False
        if self._queue.full():
            try:
                self._queue.get_nowait()
                self.dropped_count += 1
                dropped = True
            except asyncio.QueueEmpty:
                pass
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped_count += 1
            return False
        return not dropped

    async def get(self, timeout: Optional[float] = None) -> Optional[dict]:
        """
        Next event for this subscriber.

        Args:
            timeout: Maximum seconds to wait. None = wait forever.

        Returns:
            Next event, or None if timeout occurred.
        """
        try:
            if timeout is None:
                return await self._queue.get()
            return await asyncio.wait_for(self._queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None


class EventBroadcaster:
    """
    Publishes events to every current subscriber.

    Example:
        broadcaster = EventBroadcaster(queue_size=8)

        sub = broadcaster.subscribe()
        try:
            while True:
                event = await sub.get()
                await websocket.send_json(event)
        finally:
            broadcaster.unsubscribe(sub)

        # Producer side
        broadcaster.publish(event.to_message())
    """

    def __init__(self, queue_size: int = 8) -> None:
        self.queue_size = queue_size
        self._subscribers: List[Subscription] = []
        self._published: int = 0

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> Subscription:
        sub = Subscription(maxsize=self.queue_size)
        self._subscribers.append(sub)
        logger.info(f"Display subscribed ({len(self._subscribers)} active)")
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        try:
            self._subscribers.remove(sub)
        except ValueError:
            return
        logger.info(
            f"Display unsubscribed ({len(self._subscribers)} active, "
            f"{sub.dropped_count} events dropped)"
        )

    def publish(self, event: dict) -> int:
        """
        Offer `event` to all subscribers.

        Returns:
            Number of subscribers the event was offered to.
        """
        self._published += 1
        for sub in list(self._subscribers):
            sub.offer(event)
        return len(self._subscribers)

    def metrics(self) -> dict:
        return {
            "subscribers": len(self._subscribers),
            "published": self._published,
            "dropped": sum(sub.dropped_count for sub in self._subscribers),
        }

"""
Frame Slot
==========

Single-capacity, overwrite-on-arrival exchange point between the capture
side and the inference loop.

The producer never blocks and nothing is queued: a new frame replaces the
one waiting in the slot, and the replaced frame is released at once. This
keeps inference working on the freshest frame under load.

Design Rules:
    - At most one outstanding FrameItem at any time
    - Ownership moves into the slot on put() and out of it on take_and_clear()
    - A superseded item is released exactly once, immediately
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional


logger = logging.getLogger(__name__)


@dataclass(eq=False)
class FrameItem:
    """
    One captured frame awaiting inference.

    Attributes:
        image: Image handle (ndarray, base64 JPEG string or JPEG bytes)
        frame_id: Identifier assigned by the capture source
        capture_ts: Capture time in epoch milliseconds
        on_release: Called once when the item's resources are freed, and
            never while work registered with release_after() still runs
    """

    image: Any
    frame_id: int
    capture_ts: float
    on_release: Optional[Callable[["FrameItem"], None]] = None
    _released: bool = field(default=False, init=False, repr=False)
    _in_use: Optional[asyncio.Future] = field(default=None, init=False, repr=False)

    @property
    def released(self) -> bool:
        return self._released

    def release_after(self, future: asyncio.Future) -> None:
        """Hold any release() until `future`, which reads the image, is done."""
        self._in_use = future

    def release(self) -> None:
        """
        Free the image handle. Subsequent calls are no-ops.

        If work registered with release_after() is still running (e.g. an
        inference that timed out), the release runs when that work ends.
        """
        if self._released:
            return
        in_use = self._in_use
        if in_use is not None and not in_use.done():
            in_use.add_done_callback(lambda _: self.release())
            return
        self._released = True
        if self.on_release is not None:
            try:
                self.on_release(self)
            except Exception as e:
                logger.warning(f"Release hook failed for frame {self.frame_id}: {e}")
        self.image = None

    def __repr__(self) -> str:
        """Compact repr that doesn't dump the image."""
        return (
            f"FrameItem(frame_id={self.frame_id}, "
            f"capture_ts={self.capture_ts:.0f}, released={self._released})"
        )


class FrameSlot:
    """
    Arena of one: holds the latest frame only.

    Attributes:
        total_put: Frames ever handed to the slot
        dropped_count: Frames released without being taken

    Example:
        slot = FrameSlot()

        # Producer (never blocks)
        slot.put(FrameItem(image, frame_id=1, capture_ts=now_ms))

        # Consumer
        item = slot.take_and_clear()
        if item is not None:
            ...
            item.release()
    """

    def __init__(self) -> None:
        self._item: Optional[FrameItem] = None
        self._total_put: int = 0
        self._dropped_count: int = 0

    @property
    def occupied(self) -> bool:
        return self._item is not None

    @property
    def total_put(self) -> int:
        return self._total_put

    @property
    def dropped_count(self) -> int:
        return self._dropped_count

    def put(self, item: FrameItem) -> bool:
        """
        Store `item`, releasing any frame already waiting.

        Returns:
            True if the slot was empty, False if a frame was dropped.
        """
        self._total_put += 1
        previous, self._item = self._item, item

        if previous is None:
            return True

        if previous is not item:
            previous.release()
            self._dropped_count += 1
            logger.debug(
                f"Frame {previous.frame_id} superseded by {item.frame_id}. "
                f"Total dropped: {self._dropped_count}"
            )
        return False

    def take_and_clear(self) -> Optional[FrameItem]:
        """Return the waiting frame (or None) and leave the slot empty."""
        item, self._item = self._item, None
        return item

    def clear(self) -> bool:
        """
        Release and discard the waiting frame, if any.

        Returns:
            True if a frame was released.
        """
        item = self.take_and_clear()
        if item is None:
            return False
        item.release()
        self._dropped_count += 1
        return True

    def metrics(self) -> dict:
        return {
            "occupied": self.occupied,
            "total_put": self._total_put,
            "dropped_count": self._dropped_count,
        }

"""
Frame Slot Tests
================

Overwrite-on-arrival semantics and exactly-once release.
"""

from peerwatch.pipeline import FrameItem, FrameSlot


def _item(frame_id, released):
    return FrameItem(
        image=f"image-{frame_id}",
        frame_id=frame_id,
        capture_ts=1000.0 + frame_id,
        on_release=lambda item: released.append(item.frame_id),
    )


class TestFrameSlot:
    """Tests for FrameSlot."""

    def test_latest_frame_wins(self):
        released = []
        slot = FrameSlot()
        assert slot.put(_item(1, released)) is True
        assert slot.put(_item(2, released)) is False

        taken = slot.take_and_clear()
        assert taken.frame_id == 2
        assert released == [1]
        assert slot.take_and_clear() is None
        assert slot.dropped_count == 1
        assert slot.total_put == 2

    def test_put_same_item_twice(self):
        released = []
        slot = FrameSlot()
        item = _item(1, released)
        slot.put(item)
        slot.put(item)
        assert released == []
        assert slot.take_and_clear() is item

    def test_clear_releases(self):
        released = []
        slot = FrameSlot()
        slot.put(_item(1, released))
        assert slot.clear() is True
        assert released == [1]
        assert not slot.occupied
        assert slot.clear() is False

    def test_burst_keeps_one(self):
        released = []
        slot = FrameSlot()
        for frame_id in range(10):
            slot.put(_item(frame_id, released))
        assert released == list(range(9))
        assert slot.metrics() == {"occupied": True, "total_put": 10, "dropped_count": 9}


class TestFrameItem:
    """Tests for FrameItem release."""

    def test_release_once(self):
        released = []
        item = _item(7, released)
        item.release()
        item.release()
        assert released == [7]
        assert item.released
        assert item.image is None

    def test_failing_hook_still_releases(self):
        def hook(item):
            raise RuntimeError("boom")

        item = FrameItem(image="x", frame_id=1, capture_ts=1.0, on_release=hook)
        item.release()
        assert item.released
        assert item.image is None

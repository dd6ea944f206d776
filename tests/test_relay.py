"""
Relay Session Tests
===================

End-to-end behavior of RelaySession against fake connections.
"""

import json

import pytest

from peerwatch.relay import RelayMetrics, RelaySession, SessionState


def _session(conn, registry, sink=None, metrics=None):
    return RelaySession(conn, registry, telemetry=sink, metrics=metrics, send_timeout=1.0)


@pytest.fixture
def pair(registry, memory_sink, make_connection):
    """Initiator and capture sessions sharing one registry."""
    metrics = RelayMetrics()
    viewer, phone = make_connection("viewer"), make_connection("phone")
    return (
        _session(viewer, registry, memory_sink, metrics),
        _session(phone, registry, memory_sink, metrics),
    )


class TestRelaySession:
    """Tests for RelaySession."""

    @pytest.mark.asyncio
    async def test_create_join_notifies_initiator(self, pair, registry):
        viewer, phone = pair
        await viewer.handle_text('{"type": "create", "room": "abc"}')
        await phone.handle_text('{"type": "join", "room": "abc"}')

        assert viewer.connection.sent == [
            {"type": "created", "room": "abc"},
            {"type": "peer_joined", "room": "abc"},
        ]
        assert phone.connection.sent == [{"type": "joined", "room": "abc"}]
        assert viewer.state is SessionState.BOUND
        assert registry.metrics()["paired_rooms"] == 1

    @pytest.mark.asyncio
    async def test_join_without_initiator(self, registry, make_connection):
        phone = _session(make_connection("phone"), registry)
        await phone.handle_text('{"type": "join", "room": "abc"}')
        assert phone.connection.sent == [{"type": "joined", "room": "abc"}]
        assert registry.get("abc").initiator is None

    @pytest.mark.asyncio
    async def test_relay_forwards_verbatim(self, pair):
        viewer, phone = pair
        await viewer.handle_text('{"type": "create", "room": "abc"}')
        await phone.handle_text('{"type": "join", "room": "abc"}')

        offer = {"type": "offer", "sdp": {"type": "offer", "sdp": "v=0\r\n"}, "n": 1}
        await viewer.handle_text(json.dumps(offer))
        assert phone.connection.sent[-1] == offer

        ice = {"type": "ice", "candidate": {"candidate": "candidate:1", "sdpMid": "0"}}
        await phone.handle_text(json.dumps(ice))
        assert viewer.connection.sent[-1] == ice
        assert viewer.metrics.messages_forwarded == 2

    @pytest.mark.asyncio
    async def test_relay_without_peer_is_dropped(self, pair):
        viewer, _ = pair
        await viewer.handle_text('{"type": "create", "room": "abc"}')
        await viewer.handle_text('{"type": "offer", "sdp": "x"}')

        assert viewer.connection.types() == ["created"]
        assert viewer.metrics.messages_unpaired == 1

    @pytest.mark.asyncio
    async def test_messages_before_binding_ignored(self, pair):
        viewer, phone = pair
        await viewer.handle_text('{"type": "offer", "sdp": "x"}')
        await viewer.handle_text('{"type": "metrics", "fps": 10}')
        assert viewer.state is SessionState.UNBOUND
        assert viewer.connection.sent == []
        assert len(viewer.telemetry) == 0

    @pytest.mark.asyncio
    async def test_malformed_ignored(self, pair):
        viewer, _ = pair
        await viewer.handle_text("{{{")
        await viewer.handle_text('{"type": "hello"}')
        await viewer.handle_text('{"type": "create", "room": "abc"}')
        assert viewer.connection.types() == ["created"]
        assert viewer.metrics.messages_ignored == 2

    @pytest.mark.asyncio
    async def test_rebinding_ignored(self, pair, registry):
        viewer, _ = pair
        await viewer.handle_text('{"type": "create", "room": "abc"}')
        await viewer.handle_text('{"type": "join", "room": "xyz"}')
        assert viewer.room_id == "abc"
        assert "xyz" not in registry

    @pytest.mark.asyncio
    async def test_metrics_appended(self, pair, memory_sink):
        viewer, phone = pair
        await phone.handle_text('{"type": "join", "room": "abc"}')
        await phone.handle_text(
            '{"type": "metrics", "role": "phone", "bitrate": 850, "fps": 24, "latencyMs": 35}'
        )
        await phone.handle_text('{"type": "metrics"}')

        assert len(memory_sink) == 2
        first, second = memory_sink.samples
        assert first.to_record()["latencyMs"] == 35
        assert first.role == "capture"
        assert first.room == "abc"
        assert first.bitrate == 850
        assert second.fps == 0
        assert second.role == "capture"
        assert first.timestamp.endswith("+00:00")

    @pytest.mark.asyncio
    async def test_close_notifies_peer(self, pair, registry):
        viewer, phone = pair
        await viewer.handle_text('{"type": "create", "room": "abc"}')
        await phone.handle_text('{"type": "join", "room": "abc"}')

        await phone.close()
        assert viewer.connection.sent[-1] == {
            "type": "peer_left",
            "room": "abc",
            "role": "capture",
        }
        assert "abc" in registry

        await viewer.close()
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, pair):
        viewer, phone = pair
        await viewer.handle_text('{"type": "create", "room": "abc"}')
        await phone.handle_text('{"type": "join", "room": "abc"}')

        await phone.close()
        await phone.close()
        assert viewer.connection.types().count("peer_left") == 1
        assert phone.metrics.connections_closed == 1

    @pytest.mark.asyncio
    async def test_superseded_close_is_silent(self, registry, make_connection):
        phone = _session(make_connection("phone"), registry)
        old = _session(make_connection("old"), registry)
        new = _session(make_connection("new"), registry)

        await phone.handle_text('{"type": "join", "room": "abc"}')
        await old.handle_text('{"type": "create", "room": "abc"}')
        await new.handle_text('{"type": "create", "room": "abc"}')

        await old.close()
        assert "peer_left" not in phone.connection.types()
        assert registry.get("abc").initiator is new.connection

    @pytest.mark.asyncio
    async def test_failed_send_does_not_raise(self, registry, make_connection):
        viewer = _session(make_connection("viewer", fail=True), registry)
        phone = _session(make_connection("phone"), registry)

        await viewer.handle_text('{"type": "create", "room": "abc"}')
        await phone.handle_text('{"type": "join", "room": "abc"}')
        await phone.handle_text('{"type": "answer", "sdp": "x"}')

        assert phone.connection.types() == ["joined"]
        # peer_joined and the forwarded answer
        assert phone.metrics.send_failures == 2
        assert phone.metrics.messages_forwarded == 0

    @pytest.mark.asyncio
    async def test_deeply_nested_input_keeps_session(self, pair):
        viewer, phone = pair
        await viewer.handle_text('{"type": "create", "room": "abc"}')
        await phone.handle_text('{"type": "join", "room": "abc"}')

        await phone.handle_text("[" * 100000)

        assert phone.state is SessionState.BOUND
        assert "peer_left" not in viewer.connection.types()

        await phone.handle_text('{"type": "ice", "candidate": "c"}')
        assert viewer.connection.sent[-1] == {"type": "ice", "candidate": "c"}

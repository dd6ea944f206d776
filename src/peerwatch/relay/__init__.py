"""
Relay Module
============

Session relay pairing an initiator and a capture peer per room.

Components:
    - Role, Room, RoomRegistry: Room membership and lifecycle
    - parse_control_message: Validated tagged-union control messages
    - RelaySession: Per-connection state machine and message fan-out
    - RelayMetrics: Counters shared by all sessions

Example:
    registry = RoomRegistry()
    session = RelaySession(websocket, registry, telemetry=sink)
    await session.handle_text('{"type": "create", "room": "abc"}')
"""

from peerwatch.relay.registry import Role, Room, RoomRegistry
from peerwatch.relay.messages import (
    CreateMessage,
    InboundMessage,
    JoinMessage,
    MetricsMessage,
    RelayMessage,
    parse_control_message,
)
from peerwatch.relay.session import (
    Connection,
    RelayMetrics,
    RelaySession,
    SessionState,
)


__all__ = [
    "Role",
    "Room",
    "RoomRegistry",
    "CreateMessage",
    "InboundMessage",
    "JoinMessage",
    "MetricsMessage",
    "RelayMessage",
    "parse_control_message",
    "Connection",
    "RelayMetrics",
    "RelaySession",
    "SessionState",
]

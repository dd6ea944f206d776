"""
Relay Session
=============

Per-connection state machine for the session relay.

Each accepted connection gets one RelaySession. The session:
    - Binds the connection to a room on "create" (initiator) or "join" (capture)
    - Forwards offer/answer/ice payloads to the paired peer, unmodified
    - Appends "metrics" reports to the telemetry sink
    - Notifies the peer with "peer_left" when the connection closes

State Machine:
    UNBOUND --create--> BOUND (initiator)
    UNBOUND --join----> BOUND (capture)
    BOUND   --close---> CLOSED
    UNBOUND --close---> CLOSED

Design Rules:
    - The relay never parses negotiation payloads
    - Malformed, unknown or out-of-state messages are dropped silently
    - Messages for a missing peer are dropped; this is expected while
      peers connect and reconnect
    - A failed send to the peer never fails the sending session
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Optional, Protocol, Union

from peerwatch.relay import messages
from peerwatch.relay.messages import (
    CreateMessage,
    JoinMessage,
    MetricsMessage,
    RelayMessage,
    parse_control_message,
)
from peerwatch.relay.registry import Role, RoomRegistry
from peerwatch.telemetry.sink import TelemetrySample, TelemetrySink


logger = logging.getLogger(__name__)


class Connection(Protocol):
    """
    Bidirectional message channel to one client.

    FastAPI/Starlette WebSocket objects satisfy this protocol.
    """

    async def send_json(self, data: Any) -> None:
        ...


class SessionState(str, Enum):
    """Lifecycle of a relay session."""

    UNBOUND = "unbound"
    BOUND = "bound"
    CLOSED = "closed"


class RelayMetrics:
    """Relay counters shared by all sessions of one server."""

    __slots__ = (
        "connections_opened",
        "connections_closed",
        "messages_received",
        "messages_ignored",
        "messages_forwarded",
        "messages_unpaired",
        "send_failures",
        "telemetry_samples",
    )

    def __init__(self) -> None:
        self.connections_opened: int = 0
        self.connections_closed: int = 0
        self.messages_received: int = 0
        self.messages_ignored: int = 0
        self.messages_forwarded: int = 0
        self.messages_unpaired: int = 0
        self.send_failures: int = 0
        self.telemetry_samples: int = 0

    def to_dict(self) -> dict:
        return {name: getattr(self, name) for name in self.__slots__}


class RelaySession:
    """
    Relay state machine for a single connection.

    Attributes:
        connection: Channel to the client this session serves
        state: Current lifecycle state
        room_id: Room the connection is bound to (None while unbound)
        role: Role the connection holds (None while unbound)

    Example:
        session = RelaySession(websocket, registry, telemetry=sink)
        try:
            async for text in websocket.iter_text():
                await session.handle_text(text)
        finally:
            await session.close()
    """

    def __init__(
        self,
        connection: Connection,
        registry: RoomRegistry,
        telemetry: Optional[TelemetrySink] = None,
        metrics: Optional[RelayMetrics] = None,
        send_timeout: float = 5.0,
    ) -> None:
        self.connection = connection
        self.registry = registry
        self.telemetry = telemetry
        self.metrics = metrics if metrics is not None else RelayMetrics()
        self.send_timeout = send_timeout

        self._state = SessionState.UNBOUND
        self.room_id: Optional[str] = None
        self.role: Optional[Role] = None

        self.metrics.connections_opened += 1

    @property
    def state(self) -> SessionState:
        return self._state

    # -------------------------------------------------------------------------
    # Inbound
    # -------------------------------------------------------------------------

    async def handle_text(self, raw: Union[str, bytes]) -> None:
        """Parse one raw message and apply it. Malformed input is ignored."""
        if self._state is SessionState.CLOSED:
            return
        self.metrics.messages_received += 1

        message = parse_control_message(raw)
        if message is None:
            self.metrics.messages_ignored += 1
            return
        await self.handle_message(message)

    async def handle_message(self, message: messages.InboundMessage) -> None:
        """Apply one validated control message according to the current state."""
        if self._state is SessionState.UNBOUND:
            if isinstance(message, CreateMessage):
                await self._on_create(message)
            elif isinstance(message, JoinMessage):
                await self._on_join(message)
            else:
                self.metrics.messages_ignored += 1
            return

        if self._state is SessionState.BOUND:
            if isinstance(message, RelayMessage):
                await self._on_relay(message)
            elif isinstance(message, MetricsMessage):
                await self._on_metrics(message)
            else:
                # create/join after binding: the binding is immutable
                self.metrics.messages_ignored += 1

    async def _on_create(self, message: CreateMessage) -> None:
        self._bind(message.room, Role.INITIATOR)
        logger.info(f"[initiator] created room {message.room}")
        await self._send(self.connection, messages.created(message.room))

    async def _on_join(self, message: JoinMessage) -> None:
        room = self._bind(message.room, Role.CAPTURE)
        logger.info(f"[capture] joined room {message.room}")
        await self._send(self.connection, messages.joined(message.room))
        if room.initiator is not None:
            await self._send(room.initiator, messages.peer_joined(message.room))

    async def _on_relay(self, message: RelayMessage) -> None:
        peer = self.registry.peer_of(self.connection)
        if peer is None:
            self.metrics.messages_unpaired += 1
            logger.debug(
                f"[{self.role.value}] no peer in room {self.room_id}, "
                f"dropping {message.type}"
            )
            return
        if await self._send(peer, message.payload):
            self.metrics.messages_forwarded += 1

    async def _on_metrics(self, message: MetricsMessage) -> None:
        if self.telemetry is None:
            return
        role = Role.parse(message.role)
        sample = TelemetrySample.now(
            room=message.room or self.room_id,
            role=role.value if role is not None else self.role.value,
            bitrate=message.bitrate,
            fps=message.fps,
            latency_ms=message.latency_ms,
        )
        await self.telemetry.append(sample)
        self.metrics.telemetry_samples += 1

    def _bind(self, room_id: str, role: Role):
        room = self.registry.bind(self.connection, room_id, role)
        self.room_id = room_id
        self.role = role
        self._state = SessionState.BOUND
        return room

    # -------------------------------------------------------------------------
    # Close
    # -------------------------------------------------------------------------

    async def close(self) -> None:
        """
        Tear down the session after the channel closed.

        Unbinds the connection and, if it had a peer, tells the peer which
        role left. Safe to call more than once.
        """
        if self._state is SessionState.CLOSED:
            return
        was_bound = self._state is SessionState.BOUND
        self._state = SessionState.CLOSED
        self.metrics.connections_closed += 1

        if not was_bound:
            return

        peer = self.registry.peer_of(self.connection)
        self.registry.unbind(self.connection)
        logger.info(f"[{self.role.value}] left room {self.room_id}")

        if peer is not None:
            await self._send(peer, messages.peer_left(self.room_id, self.role.value))

    # -------------------------------------------------------------------------
    # Outbound
    # -------------------------------------------------------------------------

    async def _send(self, target: Connection, data: dict) -> bool:
        """Deliver `data` to `target`; failures are logged and swallowed."""
        try:
            await asyncio.wait_for(target.send_json(data), timeout=self.send_timeout)
            return True
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.metrics.send_failures += 1
            logger.debug(f"Send of {data.get('type')!r} failed: {e!r}")
            return False

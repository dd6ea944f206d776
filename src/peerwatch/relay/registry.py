"""
Room Registry
=============

In-memory mapping of room identifier to its two peer connections.

A room pairs at most one initiator connection with at most one capture
connection. Rooms are created on first reference and destroyed as soon as
both handles are empty, so abandoned rooms never accumulate.

Design Rules:
    - The registry is owned by the application and injected into sessions
    - Mutated only from the event loop that serves the connections
    - Binding a role that is already taken replaces the previous holder
    - A superseded connection leaving never evicts its replacement

Note:
    All state lives on a single asyncio loop, so no locking is done here.
    Serving connections from worker threads would require a lock per room.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


logger = logging.getLogger(__name__)


class Role(str, Enum):
    """
    Role a connection plays in a room.

    Attributes:
        INITIATOR: Viewing party that creates the room
        CAPTURE: Camera party that joins the room
    """

    INITIATOR = "initiator"
    CAPTURE = "capture"

    @property
    def other(self) -> "Role":
        """The role this one pairs with."""
        return Role.CAPTURE if self is Role.INITIATOR else Role.INITIATOR

    @classmethod
    def parse(cls, value: Any) -> Optional["Role"]:
        """
        Read a role from a message field.

        Accepts the canonical names plus the legacy "viewer" / "phone"
        aliases. Returns None for anything else.
        """
        if isinstance(value, Role):
            return value
        if not isinstance(value, str):
            return None
        return _ROLE_ALIASES.get(value.strip().lower())


_ROLE_ALIASES = {
    "initiator": Role.INITIATOR,
    "viewer": Role.INITIATOR,
    "capture": Role.CAPTURE,
    "phone": Role.CAPTURE,
}


@dataclass
class Room:
    """
    Rendezvous scope pairing one initiator with one capture connection.

    Attributes:
        room_id: Opaque, non-empty identifier supplied by clients
        initiator: Connection holding the initiator role, if any
        capture: Connection holding the capture role, if any
    """

    room_id: str
    initiator: Optional[Any] = None
    capture: Optional[Any] = None

    def handle(self, role: Role) -> Optional[Any]:
        """Connection currently holding `role`."""
        return self.initiator if role is Role.INITIATOR else self.capture

    def set_handle(self, role: Role, connection: Optional[Any]) -> None:
        if role is Role.INITIATOR:
            self.initiator = connection
        else:
            self.capture = connection

    @property
    def is_empty(self) -> bool:
        return self.initiator is None and self.capture is None

    def to_dict(self) -> dict:
        """Export occupancy for observability."""
        return {
            "room": self.room_id,
            "initiator": self.initiator is not None,
            "capture": self.capture is not None,
        }


class RoomRegistry:
    """
    Owner of all live rooms and of each connection's binding.

    Connections are opaque to the registry; they are only compared by
    identity and stored as room handles.

    Example:
        registry = RoomRegistry()

        registry.bind(viewer_ws, "lobby", Role.INITIATOR)
        registry.bind(phone_ws, "lobby", Role.CAPTURE)

        assert registry.peer_of(phone_ws) is viewer_ws

        registry.unbind(phone_ws)
        registry.unbind(viewer_ws)
        assert len(registry) == 0
    """

    def __init__(self) -> None:
        self._rooms: Dict[str, Room] = {}
        # Keyed by id() so connections need not be hashable
        self._bindings: Dict[int, Tuple[Any, str, Role]] = {}

    def __len__(self) -> int:
        return len(self._rooms)

    def __contains__(self, room_id: str) -> bool:
        return room_id in self._rooms

    def get(self, room_id: str) -> Optional[Room]:
        """Room with `room_id`, or None if it does not exist."""
        return self._rooms.get(room_id)

    def get_or_create(self, room_id: str) -> Room:
        """
        Return the room for `room_id`, creating it if unknown.

        Idempotent: repeated calls return the same Room instance.
        """
        room = self._rooms.get(room_id)
        if room is None:
            room = Room(room_id=room_id)
            self._rooms[room_id] = room
            logger.debug(f"Room created: {room_id}")
        return room

    def binding_of(self, connection: Any) -> Optional[Tuple[str, Role]]:
        """(room_id, role) the connection is bound to, if any."""
        entry = self._bindings.get(id(connection))
        if entry is None or entry[0] is not connection:
            return None
        return entry[1], entry[2]

    def bind(self, connection: Any, room_id: str, role: Role) -> Room:
        """
        Bind `connection` to `room_id` under `role`.

        Any previous holder of that role in the room is replaced (last
        writer wins), which lets a peer reconnect without an explicit leave.

        Returns:
            The room the connection is now bound to.
        """
        room = self.get_or_create(room_id)
        previous = room.handle(role)
        if previous is not None and previous is not connection:
            logger.info(f"[{role.value}] replaced in room {room_id}")
        room.set_handle(role, connection)
        self._bindings[id(connection)] = (connection, room_id, role)
        return room

    def unbind(self, connection: Any) -> Optional[Room]:
        """
        Remove `connection` from its room.

        A no-op for connections that were never bound. The role handle is
        only cleared if this connection still holds it. The room is deleted
        once both handles are empty.

        Returns:
            The room the connection was bound to (possibly now deleted),
            or None if it was not bound.
        """
        binding = self.binding_of(connection)
        if binding is None:
            return None
        del self._bindings[id(connection)]

        room_id, role = binding
        room = self._rooms.get(room_id)
        if room is None:
            return None

        if room.handle(role) is connection:
            room.set_handle(role, None)
        if room.is_empty:
            del self._rooms[room_id]
            logger.debug(f"Room destroyed: {room_id}")
        return room

    def peer_of(self, connection: Any) -> Optional[Any]:
        """
        The connection paired with `connection`, if any.

        Returns None when the connection is unbound, its room is gone,
        it has been superseded in its role, or the other role is empty.
        """
        binding = self.binding_of(connection)
        if binding is None:
            return None
        room_id, role = binding
        room = self._rooms.get(room_id)
        if room is None or room.handle(role) is not connection:
            return None
        return room.handle(role.other)

    def rooms(self) -> List[Room]:
        """Snapshot of live rooms."""
        return list(self._rooms.values())

    def metrics(self) -> dict:
        """Registry counters for observability."""
        paired = sum(
            1 for room in self._rooms.values()
            if room.initiator is not None and room.capture is not None
        )
        return {
            "rooms": len(self._rooms),
            "paired_rooms": paired,
            "bound_connections": len(self._bindings),
        }

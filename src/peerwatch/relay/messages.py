"""
Control Messages
================

Closed set of JSON control messages exchanged over the relay channel.

Inbound messages are validated on ingress into a tagged union keyed by the
"type" field. Anything that fails to parse or carries an unknown tag is
reported as None (ignored), never raised to the caller.

Wire Contract:
    {"type": "create", "room": "abc"}                -> created
    {"type": "join", "room": "abc"}                  -> joined (+ peer_joined)
    {"type": "offer" | "answer" | "ice", ...}         -> forwarded verbatim
    {"type": "metrics", "room", "role",
     "bitrate", "fps", "latencyMs"}                   -> telemetry sample

Outbound:
    {"type": "created", "room"}
    {"type": "joined", "room"}
    {"type": "peer_joined", "room"}
    {"type": "peer_left", "room", "role"}
"""

import json
import logging
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PrivateAttr,
    TypeAdapter,
    ValidationError,
    field_validator,
)


logger = logging.getLogger(__name__)


def _coerce_room(value: Any) -> str:
    """Room ids are opaque strings; numbers are accepted and trimmed."""
    if value is None:
        return ""
    if isinstance(value, (str, int, float)) and not isinstance(value, bool):
        return str(value).strip()
    raise ValueError("room must be a string")


class _RoomMessage(BaseModel):
    """Base for messages that name a room."""

    room: str

    @field_validator("room", mode="before")
    @classmethod
    def _normalize_room(cls, value: Any) -> str:
        return _coerce_room(value)

    @field_validator("room")
    @classmethod
    def _require_room(cls, value: str) -> str:
        if not value:
            raise ValueError("room must be non-empty")
        return value


class CreateMessage(_RoomMessage):
    """Initiator asks to open (or reclaim) a room."""

    type: Literal["create"]


class JoinMessage(_RoomMessage):
    """Capture party asks to join a room."""

    type: Literal["join"]


class RelayMessage(BaseModel):
    """
    Negotiation or connectivity payload destined for the paired peer.

    The relay never inspects the content. The original JSON object is kept
    as `payload` and forwarded unchanged.
    """

    model_config = ConfigDict(extra="allow")

    type: Literal["offer", "answer", "ice"]

    _payload: dict = PrivateAttr(default_factory=dict)

    @property
    def payload(self) -> dict:
        return self._payload


class MetricsMessage(BaseModel):
    """Periodic session-quality report from either peer."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    type: Literal["metrics"]
    room: Optional[str] = None
    role: Optional[str] = None
    bitrate: float = 0
    fps: float = 0
    latency_ms: float = Field(default=0, alias="latencyMs")

    @field_validator("room", mode="before")
    @classmethod
    def _normalize_room(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        return _coerce_room(value) or None

    @field_validator("bitrate", "fps", "latency_ms", mode="before")
    @classmethod
    def _default_missing(cls, value: Any) -> Any:
        return 0 if value is None else value


InboundMessage = Annotated[
    Union[CreateMessage, JoinMessage, RelayMessage, MetricsMessage],
    Field(discriminator="type"),
]

_inbound_adapter: TypeAdapter = TypeAdapter(InboundMessage)


def parse_control_message(raw: Union[str, bytes]) -> Optional[InboundMessage]:
    """
    Parse and validate one inbound control message.

    Args:
        raw: UTF-8 JSON text received from a connection

    Returns:
        The typed message, or None if the message is malformed, has an
        unknown type, or fails validation.
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError, TypeError, RecursionError) as e:
        logger.debug(f"Dropping malformed control message: {e}")
        return None

    if not isinstance(data, dict):
        return None

    try:
        message = _inbound_adapter.validate_python(data)
    except ValidationError as e:
        logger.debug(
            f"Ignoring control message type={data.get('type')!r}: "
            f"{e.error_count()} validation error(s)"
        )
        return None

    if isinstance(message, RelayMessage):
        message._payload = data
    return message


# =============================================================================
# Outbound messages
# =============================================================================

def created(room: str) -> dict:
    return {"type": "created", "room": room}


def joined(room: str) -> dict:
    return {"type": "joined", "room": room}


def peer_joined(room: str) -> dict:
    return {"type": "peer_joined", "room": room}


def peer_left(room: str, role: str) -> dict:
    return {"type": "peer_left", "room": room, "role": role}

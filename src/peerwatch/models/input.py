"""
Input Message Schema
====================

This module defines the Pydantic model for frame messages sent by capture
clients.

Capture clients either push frames to the service's /ws/frames endpoint
or serve them from a WebSocket the service's FrameConsumer connects to.
Both paths validate against the same schema.

Input Contract:
    {
        "frame_id": 1234,
        "capture_ts": 1707321234567.0,
        "image": "<base64 JPEG>"
    }

Notes:
    - capture_ts is epoch milliseconds; if omitted, arrival time is used
    - image may also be a data: URL ("data:image/jpeg;base64,...")

Example:
    from peerwatch.models.input import FrameMessage

    message = FrameMessage.model_validate_json(raw)
    print(f"Received frame {message.frame_id}")
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class FrameMessage(BaseModel):
    """
    Schema for one captured frame.

    Attributes:
        frame_id: Frame counter assigned by the capture client
        capture_ts: Capture time in epoch milliseconds
        image: Base64-encoded JPEG frame data
    """

    model_config = ConfigDict(
        extra="ignore",
        json_schema_extra={
            "example": {
                "frame_id": 1234,
                "capture_ts": 1707321234567.0,
                "image": "/9j/4AAQSkZJRg...",
            }
        },
    )

    frame_id: int = Field(
        ...,
        ge=0,
        description="Frame counter from the capture client",
    )

    capture_ts: Optional[float] = Field(
        default=None,
        gt=0,
        description="Capture time in epoch milliseconds",
    )

    image: str = Field(
        ...,
        min_length=1,
        description="Base64-encoded JPEG frame data",
    )

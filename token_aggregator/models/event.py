"""
Broadcast event models

Events published to subscribers over the push transport.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

GLOBAL_CHANNEL = "default"


class EventType(str, Enum):
    """事件类型"""
    INITIAL_DATA = "initial_data"
    PRICE_UPDATE = "price_update"
    VOLUME_SPIKE = "volume_spike"
    ERROR = "error"


class BroadcastEvent(BaseModel):
    """One frame sent to subscribers of a channel"""

    channel: str = Field(default=GLOBAL_CHANNEL)
    event_type: EventType
    payload: Any = None
    timestamp: int = Field(..., description="Epoch milliseconds")

    def to_message(self) -> dict:
        """Wire shape used by the WebSocket transport"""
        return {
            "event": self.event_type.value,
            "channel": self.channel,
            "data": self.payload,
            "timestamp": self.timestamp,
        }

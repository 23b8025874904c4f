"""
Event broadcaster

Stamps events and hands them to the push transport. Transport failures are
logged and never reach the caller.
"""

from typing import Any, Optional, Protocol

from token_aggregator.core.logger import get_logger
from token_aggregator.core.timezone_utils import now_ms
from token_aggregator.models.event import GLOBAL_CHANNEL, BroadcastEvent, EventType

logger = get_logger(__name__)


class Publisher(Protocol):
    """Transport boundary, implemented by the WebSocket connection manager"""

    async def publish(self, channel: str, event_type: str, payload: Any, timestamp: int) -> None:
        ...


class Broadcaster:
    """事件广播器"""

    def __init__(self, publisher: Optional[Publisher] = None):
        self.publisher = publisher

    def attach(self, publisher: Publisher) -> None:
        self.publisher = publisher

    async def publish(
        self,
        event_type: EventType,
        payload: Any,
        channel: str = GLOBAL_CHANNEL,
    ) -> Optional[BroadcastEvent]:
        """
        发布事件

        Returns:
            已发送的事件；没有 transport 或发送失败时返回None
        """
        event = BroadcastEvent(
            channel=channel,
            event_type=event_type,
            payload=payload,
            timestamp=now_ms(),
        )
        if self.publisher is None:
            logger.debug(f"No publisher attached, dropping {event_type.value} event")
            return None

        try:
            await self.publisher.publish(
                event.channel, event.event_type.value, event.payload, event.timestamp
            )
        except Exception as e:
            logger.error(f"Failed to publish {event_type.value} on {channel}: {e}")
            return None
        return event

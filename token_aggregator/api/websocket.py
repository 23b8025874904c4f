"""
WebSocket 连接管理

实现广播器的 transport 边界 publish(channel, event_type, payload, timestamp)，
把事件推送给订阅了该频道的所有客户端。
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Set

from fastapi import WebSocket

from token_aggregator.core.logger import get_logger
from token_aggregator.core.timezone_utils import now_ms
from token_aggregator.models.event import GLOBAL_CHANNEL, BroadcastEvent, EventType

logger = get_logger(__name__)


class ConnectionManager:
    """
    WebSocket 连接与频道订阅管理

    新连接自动加入默认频道；发送失败的连接会被移除。
    """

    def __init__(self):
        self._subscriptions: Dict[WebSocket, Set[str]] = {}
        self._lock = asyncio.Lock()

    @property
    def connection_count(self) -> int:
        return len(self._subscriptions)

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        async with self._lock:
            self._subscriptions[websocket] = {GLOBAL_CHANNEL}
        logger.info(f"WebSocket client connected ({self.connection_count} total)")

    async def disconnect(self, websocket: WebSocket) -> None:
        async with self._lock:
            removed = self._subscriptions.pop(websocket, None) is not None
        if removed:
            logger.info(f"WebSocket client disconnected ({self.connection_count} total)")

    async def subscribe(self, websocket: WebSocket, channel: str) -> None:
        async with self._lock:
            if websocket in self._subscriptions:
                self._subscriptions[websocket].add(channel)

    async def unsubscribe(self, websocket: WebSocket, channel: str) -> None:
        async with self._lock:
            if websocket in self._subscriptions:
                self._subscriptions[websocket].discard(channel)

    def channels_of(self, websocket: WebSocket) -> Set[str]:
        return set(self._subscriptions.get(websocket, set()))

    async def handle_message(self, websocket: WebSocket, message: Any) -> None:
        """
        处理客户端消息

        支持 {"action": "subscribe" | "unsubscribe", "channel": name}，其他消息忽略。
        """
        if not isinstance(message, dict):
            return
        action = message.get("action")
        channel = message.get("channel")
        if not isinstance(channel, str) or not channel:
            return

        if action == "subscribe":
            await self.subscribe(websocket, channel)
        elif action == "unsubscribe":
            await self.unsubscribe(websocket, channel)

    async def publish(self, channel: str, event_type: str, payload: Any, timestamp: int) -> None:
        """推送事件给该频道的所有订阅者"""
        message = {
            "event": event_type,
            "channel": channel,
            "data": payload,
            "timestamp": timestamp,
        }
        async with self._lock:
            targets: List[WebSocket] = [
                ws for ws, channels in self._subscriptions.items() if channel in channels
            ]

        disconnected = []
        for websocket in targets:
            try:
                await websocket.send_json(message)
            except Exception as e:
                logger.error(f"WebSocket send error: {e}")
                disconnected.append(websocket)

        for websocket in disconnected:
            await self.disconnect(websocket)

    async def send_initial_data(
        self,
        websocket: WebSocket,
        load: Callable[[], Awaitable[Any]],
    ) -> None:
        """
        向新连接发送首屏数据

        load 失败时改为发送 error 事件。
        """
        try:
            payload = await load()
            event = BroadcastEvent(
                channel=GLOBAL_CHANNEL,
                event_type=EventType.INITIAL_DATA,
                payload=payload,
                timestamp=now_ms(),
            )
        except Exception as e:
            logger.error(f"Failed to load initial data: {e}", exc_info=True)
            event = BroadcastEvent(
                channel=GLOBAL_CHANNEL,
                event_type=EventType.ERROR,
                payload={"message": "Failed to load initial data"},
                timestamp=now_ms(),
            )
        await websocket.send_json(event.to_message())

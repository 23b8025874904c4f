"""
实时推送 WebSocket 路由
"""

import json
from typing import Any, Dict, List

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from token_aggregator.core.builder import TokenServices
from token_aggregator.core.logger import get_logger
from token_aggregator.models.query import QueryFilter

logger = get_logger(__name__)

router = APIRouter()


async def load_initial_batch(services: TokenServices) -> List[Dict[str, Any]]:
    """首屏数据：缓存快照按默认排序的第一页"""
    snapshot = await services.aggregator.refresh()
    page = services.query_engine.query(
        snapshot, QueryFilter(limit=services.config.initial_batch_size)
    )
    return [record.model_dump(mode="json") for record in page.items]


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """WebSocket 推送端点"""
    services: TokenServices = websocket.app.state.services
    manager = websocket.app.state.connections

    await manager.connect(websocket)
    try:
        await manager.send_initial_data(websocket, lambda: load_initial_batch(services))
        while True:
            text = await websocket.receive_text()
            try:
                message = json.loads(text)
            except json.JSONDecodeError:
                logger.debug(f"Ignoring non-JSON WebSocket message: {text[:100]}")
                continue
            await manager.handle_message(websocket, message)
    except WebSocketDisconnect:
        pass
    finally:
        await manager.disconnect(websocket)

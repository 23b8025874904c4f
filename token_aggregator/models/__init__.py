"""
数据模型模块

本模块包含系统中所有的Pydantic数据模型。
"""

# 代币模型
from .token import (
    UNKNOWN,
    Snapshot,
    TokenRecord,
)

# 查询模型
from .query import (
    QueryFilter,
    SortField,
    SortOrder,
    TimePeriod,
    TokenPage,
)

# 事件模型
from .event import (
    GLOBAL_CHANNEL,
    BroadcastEvent,
    EventType,
)

__all__ = [
    # Token
    "UNKNOWN",
    "Snapshot",
    "TokenRecord",
    # Query
    "QueryFilter",
    "SortField",
    "SortOrder",
    "TimePeriod",
    "TokenPage",
    # Event
    "GLOBAL_CHANNEL",
    "BroadcastEvent",
    "EventType",
]

"""
Query models

Typed filter accepted by QueryEngine and the page it returns.
"""

from __future__ import annotations

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from token_aggregator.models.token import TokenRecord


class SortField(str, Enum):
    """排序字段"""
    VOLUME = "volume"
    PRICE_CHANGE = "price_change"
    MARKET_CAP = "market_cap"
    LIQUIDITY = "liquidity"


class SortOrder(str, Enum):
    """排序方向"""
    ASC = "asc"
    DESC = "desc"


class TimePeriod(str, Enum):
    """price_change 排序使用的时间窗口"""
    HOUR = "1h"
    DAY = "24h"
    WEEK = "7d"


class QueryFilter(BaseModel):
    """
    列表查询参数

    limit 与 cursor 不在这里校验范围，由 QueryEngine 负责裁剪。
    """

    sort_field: SortField = Field(default=SortField.VOLUME)
    sort_order: SortOrder = Field(default=SortOrder.DESC)
    time_period: TimePeriod = Field(default=TimePeriod.DAY)
    min_volume: Optional[float] = Field(default=None, description="Inclusive lower bound")
    min_market_cap: Optional[float] = Field(default=None, description="Inclusive lower bound")
    cursor: Optional[str] = Field(default=None, description="Opaque offset token")
    limit: Optional[int] = Field(default=None)


class TokenPage(BaseModel):
    """分页结果"""

    items: List[TokenRecord] = Field(default_factory=list)
    next_cursor: Optional[str] = None
    has_more: bool = False
    total: int = 0

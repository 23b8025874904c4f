"""
Snapshot query engine

Filter, sort and paginate the records of one snapshot. Pure and synchronous.
"""

from typing import Callable, List, Optional

from token_aggregator.models.query import QueryFilter, SortField, SortOrder, TimePeriod, TokenPage
from token_aggregator.models.token import Snapshot, TokenRecord


def price_change_for(record: TokenRecord, period: TimePeriod) -> float:
    """Percent change for the period; a missing value sorts as 0"""
    if period == TimePeriod.HOUR:
        return record.price_change_1h
    if period == TimePeriod.WEEK:
        return record.price_change_7d or 0.0
    return record.price_change_24h or 0.0


def sort_key(query_filter: QueryFilter) -> Callable[[TokenRecord], float]:
    field = query_filter.sort_field
    if field == SortField.PRICE_CHANGE:
        period = query_filter.time_period
        return lambda record: price_change_for(record, period)
    if field == SortField.MARKET_CAP:
        return lambda record: record.market_cap
    if field == SortField.LIQUIDITY:
        return lambda record: record.liquidity
    return lambda record: record.volume


def parse_cursor(cursor: Optional[str]) -> int:
    """Offset encoded in a cursor; malformed or negative values mean the start"""
    if not cursor:
        return 0
    try:
        offset = int(cursor)
    except (TypeError, ValueError):
        return 0
    return max(0, offset)


class QueryEngine:
    """
    快照查询

    Example:
        engine = QueryEngine(default_limit=20, max_limit=100)
        page = engine.query(snapshot, QueryFilter(sort_field=SortField.MARKET_CAP))
    """

    def __init__(self, default_limit: int = 20, max_limit: int = 100):
        self.max_limit = max(1, max_limit)
        self.default_limit = min(max(1, default_limit), self.max_limit)

    def clamp_limit(self, limit: Optional[int]) -> int:
        if limit is None:
            return self.default_limit
        return min(max(1, limit), self.max_limit)

    def query(self, snapshot: Snapshot, query_filter: QueryFilter) -> TokenPage:
        """
        过滤 → 稳定排序 → 分页

        相同排序值的记录保持快照中的先后顺序。
        """
        records: List[TokenRecord] = snapshot.tokens()

        if query_filter.min_volume is not None:
            records = [r for r in records if r.volume >= query_filter.min_volume]
        if query_filter.min_market_cap is not None:
            records = [r for r in records if r.market_cap >= query_filter.min_market_cap]

        records = sorted(
            records,
            key=sort_key(query_filter),
            reverse=query_filter.sort_order == SortOrder.DESC,
        )

        total = len(records)
        offset = parse_cursor(query_filter.cursor)
        limit = self.clamp_limit(query_filter.limit)
        has_more = offset + limit < total

        return TokenPage(
            items=records[offset:offset + limit],
            next_cursor=str(offset + limit) if has_more else None,
            has_more=has_more,
            total=total,
        )

"""
Record merge policy

Combines observations of the same token from several providers into one
TokenRecord. Every rule is field-local, so merging a record with itself is a
no-op and the max-combined fields do not depend on argument order.
"""

from typing import Dict, Iterable, List, Optional

from token_aggregator.models.token import UNKNOWN, TokenRecord


def _is_blank(value: str) -> bool:
    return not value or value == UNKNOWN


def _prefer_text(existing: str, incoming: str) -> str:
    if not _is_blank(existing):
        return existing
    if not _is_blank(incoming):
        return incoming
    return existing or incoming or UNKNOWN


def _prefer_present(existing: Optional[float], incoming: Optional[float]) -> Optional[float]:
    return existing if existing is not None else incoming


def merge_records(existing: TokenRecord, incoming: TokenRecord) -> TokenRecord:
    """
    合并同一代币的两条记录（existing ← incoming）

    Args:
        existing: 已有记录
        incoming: 新观测到的记录，id 必须相同

    Returns:
        合并后的新记录
    """
    if existing.id != incoming.id:
        raise ValueError(f"Cannot merge records with different ids: {existing.id} != {incoming.id}")

    return TokenRecord(
        id=existing.id,
        display_name=_prefer_text(existing.display_name, incoming.display_name),
        symbol=_prefer_text(existing.symbol, incoming.symbol),
        price=incoming.price if incoming.price > 0 else existing.price,
        market_cap=max(existing.market_cap, incoming.market_cap),
        volume=max(existing.volume, incoming.volume),
        liquidity=max(existing.liquidity, incoming.liquidity),
        transaction_count=max(existing.transaction_count, incoming.transaction_count),
        price_change_1h=(
            incoming.price_change_1h if incoming.price_change_1h != 0 else existing.price_change_1h
        ),
        price_change_24h=_prefer_present(existing.price_change_24h, incoming.price_change_24h),
        price_change_7d=_prefer_present(existing.price_change_7d, incoming.price_change_7d),
        venue=existing.venue if existing.venue != UNKNOWN else incoming.venue,
        source_tags=existing.source_tags | incoming.source_tags,
        observed_at=max(existing.observed_at, incoming.observed_at),
    )


def merge_all(records: Iterable[TokenRecord]) -> List[TokenRecord]:
    """
    按 id 合并记录，保持每个 id 第一次出现的顺序
    """
    merged: Dict[str, TokenRecord] = {}
    for record in records:
        current = merged.get(record.id)
        merged[record.id] = record if current is None else merge_records(current, record)
    return list(merged.values())

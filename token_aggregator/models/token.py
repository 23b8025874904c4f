"""
Token data models

Canonical token record and the immutable snapshot built on every refresh.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Set

from pydantic import BaseModel, ConfigDict, Field

from token_aggregator.core.timezone_utils import now_ms

UNKNOWN = "unknown"


class TokenRecord(BaseModel):
    """Merged market view of one token. `id` is the only merge key."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="Token mint address")
    display_name: str = Field(default=UNKNOWN)
    symbol: str = Field(default=UNKNOWN)
    price: float = Field(default=0.0, ge=0, description="Price in the quote asset (SOL)")
    market_cap: float = Field(default=0.0, ge=0)
    volume: float = Field(default=0.0, ge=0, description="24h volume in the quote asset")
    liquidity: float = Field(default=0.0, ge=0)
    transaction_count: int = Field(default=0, ge=0)
    price_change_1h: float = Field(default=0.0, description="Percent")
    price_change_24h: Optional[float] = Field(default=None, description="Percent")
    price_change_7d: Optional[float] = Field(default=None, description="Percent")
    venue: str = Field(default=UNKNOWN, description="DEX / protocol id")
    source_tags: Set[str] = Field(default_factory=set)
    observed_at: int = Field(default_factory=now_ms, description="Epoch milliseconds")


class Snapshot(BaseModel):
    """
    Merged view of every known token as of one refresh.

    Records keep the order in which identities were first seen, which
    QueryEngine relies on for deterministic tie-breaking.
    """

    model_config = ConfigDict(frozen=True)

    generated_at: int = Field(default_factory=now_ms)
    records: Dict[str, TokenRecord] = Field(default_factory=dict)

    @classmethod
    def from_records(
        cls,
        records: Iterable[TokenRecord],
        generated_at: Optional[int] = None,
    ) -> "Snapshot":
        by_id = {record.id: record for record in records}
        if generated_at is None:
            return cls(records=by_id)
        return cls(generated_at=generated_at, records=by_id)

    def tokens(self) -> List[TokenRecord]:
        return list(self.records.values())

    def get(self, token_id: str) -> Optional[TokenRecord]:
        return self.records.get(token_id)

    def is_empty(self) -> bool:
        return not self.records

    def __len__(self) -> int:
        return len(self.records)

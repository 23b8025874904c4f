"""
DexScreener source client

Pairs come back with nested token/volume/liquidity objects and USD-denominated
numbers; the base token of each pair is the record identity.
"""

from typing import Annotated, Any, List, Optional, Sequence

import aiohttp
from pydantic import BeforeValidator, Field, ValidationError

from token_aggregator.core.exceptions import ProviderError
from token_aggregator.core.logger import get_logger
from token_aggregator.core.timezone_utils import now_ms
from token_aggregator.models.token import UNKNOWN, TokenRecord
from token_aggregator.services.providers.base import QuotePriceSource, SourceClient
from token_aggregator.services.providers.payloads import (
    Count,
    LenientModel,
    Number,
    OptionalNumber,
    Text,
    dict_or_empty,
)
from token_aggregator.services.providers.rate_limiter import RateLimiter
from token_aggregator.services.providers.retry import RetryExecutor

logger = get_logger(__name__)

NATIVE_QUOTE_SYMBOLS = frozenset({"SOL", "WSOL"})


class DexToken(LenientModel):
    address: Text = ""
    name: Text = ""
    symbol: Text = ""


class DexTxnWindow(LenientModel):
    buys: Count = 0
    sells: Count = 0


class DexTxns(LenientModel):
    h24: Annotated[DexTxnWindow, BeforeValidator(dict_or_empty)] = Field(default_factory=DexTxnWindow)


class DexVolume(LenientModel):
    h24: Number = 0.0


class DexPriceChange(LenientModel):
    h1: Number = 0.0
    h24: OptionalNumber = None


class DexLiquidity(LenientModel):
    usd: Number = 0.0


class DexPair(LenientModel):
    """One entry of DexScreener's `pairs` array"""

    chain_id: Text = Field(default="", alias="chainId")
    dex_id: Text = Field(default="", alias="dexId")
    pair_address: Text = Field(default="", alias="pairAddress")
    base_token: Annotated[DexToken, BeforeValidator(dict_or_empty)] = Field(
        default_factory=DexToken, alias="baseToken"
    )
    quote_token: Annotated[DexToken, BeforeValidator(dict_or_empty)] = Field(
        default_factory=DexToken, alias="quoteToken"
    )
    price_native: Number = Field(default=0.0, alias="priceNative")
    price_usd: Number = Field(default=0.0, alias="priceUsd")
    txns: Annotated[DexTxns, BeforeValidator(dict_or_empty)] = Field(default_factory=DexTxns)
    volume: Annotated[DexVolume, BeforeValidator(dict_or_empty)] = Field(default_factory=DexVolume)
    price_change: Annotated[DexPriceChange, BeforeValidator(dict_or_empty)] = Field(
        default_factory=DexPriceChange, alias="priceChange"
    )
    liquidity: Annotated[DexLiquidity, BeforeValidator(dict_or_empty)] = Field(
        default_factory=DexLiquidity
    )
    fdv: Number = 0.0
    market_cap: Number = Field(default=0.0, alias="marketCap")


def parse_pairs(raw: Any, chain_id: Optional[str] = None) -> List[DexPair]:
    """Validate raw pair dicts, skipping malformed entries and other chains"""
    if not isinstance(raw, list):
        return []

    pairs: List[DexPair] = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        try:
            pair = DexPair.model_validate(item)
        except ValidationError as e:
            logger.debug(f"dexscreener: skipping malformed pair: {e}")
            continue
        if chain_id and pair.chain_id and pair.chain_id != chain_id:
            continue
        pairs.append(pair)
    return pairs


def normalize_pair(
    pair: DexPair,
    quote_usd: float,
    observed_at: Optional[int] = None,
) -> Optional[TokenRecord]:
    """
    Map a DexScreener pair to a TokenRecord in quote-asset units.

    Returns None when the pair has no base token address.
    """
    token_id = pair.base_token.address
    if not token_id:
        return None

    if pair.price_native > 0 and pair.quote_token.symbol.upper() in NATIVE_QUOTE_SYMBOLS:
        price = pair.price_native
    elif pair.price_usd > 0:
        price = pair.price_usd / quote_usd
    else:
        price = 0.0

    market_cap_usd = pair.market_cap or pair.fdv
    return TokenRecord(
        id=token_id,
        display_name=pair.base_token.name or UNKNOWN,
        symbol=pair.base_token.symbol or UNKNOWN,
        price=max(0.0, price),
        market_cap=max(0.0, market_cap_usd / quote_usd),
        volume=max(0.0, pair.volume.h24 / quote_usd),
        liquidity=max(0.0, pair.liquidity.usd / quote_usd),
        transaction_count=max(0, pair.txns.h24.buys + pair.txns.h24.sells),
        price_change_1h=pair.price_change.h1,
        price_change_24h=pair.price_change.h24,
        venue=pair.dex_id or UNKNOWN,
        source_tags={DexScreenerClient.name},
        observed_at=observed_at if observed_at is not None else now_ms(),
    )


def normalize_pairs(
    raw: Any,
    quote_usd: float,
    chain_id: Optional[str] = None,
) -> List[TokenRecord]:
    observed_at = now_ms()
    records = []
    for pair in parse_pairs(raw, chain_id):
        record = normalize_pair(pair, quote_usd, observed_at)
        if record is not None:
            records.append(record)
    return records


def _pairs_of(payload: Any) -> Any:
    if isinstance(payload, dict):
        return payload.get("pairs")
    return None


class DexScreenerClient(SourceClient):
    """
    DexScreener 数据源

    DexScreener 没有"热门代币"接口，trending 由一组种子关键词的搜索结果组成。
    """

    name = "dexscreener"

    def __init__(
        self,
        base_url: str,
        rate_limiter: RateLimiter,
        retry_executor: RetryExecutor,
        quote_source: Optional[QuotePriceSource] = None,
        quote_usd_fallback: float = 100.0,
        chain_id: str = "solana",
        seed_queries: Sequence[str] = ("bonk", "wif", "popcat"),
        max_pairs_per_query: int = 10,
        timeout: float = 10.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        super().__init__(
            base_url,
            rate_limiter=rate_limiter,
            retry_executor=retry_executor,
            quote_source=quote_source,
            quote_usd_fallback=quote_usd_fallback,
            timeout=timeout,
            session=session,
        )
        self.chain_id = chain_id
        self.seed_queries = list(seed_queries)
        self.max_pairs_per_query = max_pairs_per_query

    async def _fetch_trending(self) -> List[TokenRecord]:
        quote_usd = await self.quote_usd()
        records: List[TokenRecord] = []
        failures = 0

        for query in self.seed_queries:
            try:
                payload = await self.get_json("/latest/dex/search", params={"q": query})
            except ProviderError as e:
                failures += 1
                logger.warning(f"dexscreener: seed query '{query}' failed: {e}")
                continue
            found = normalize_pairs(_pairs_of(payload), quote_usd, self.chain_id)
            records.extend(found[: self.max_pairs_per_query])

        if self.seed_queries and failures == len(self.seed_queries):
            logger.error("dexscreener: every seed query failed")
        return records

    async def _fetch_by_identity(self, token_id: str) -> Optional[TokenRecord]:
        payload = await self.get_json(f"/latest/dex/tokens/{token_id}")
        quote_usd = await self.quote_usd()
        candidates = [
            record
            for record in normalize_pairs(_pairs_of(payload), quote_usd, self.chain_id)
            if record.id == token_id
        ]
        if not candidates:
            return None
        # most liquid pair wins
        return max(candidates, key=lambda record: record.liquidity)

    async def _search(self, query: str) -> List[TokenRecord]:
        payload = await self.get_json("/latest/dex/search", params={"q": query})
        quote_usd = await self.quote_usd()
        return normalize_pairs(_pairs_of(payload), quote_usd, self.chain_id)

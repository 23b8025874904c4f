"""
GeckoTerminal source client

JSON:API style payloads: pools carry their numbers in `attributes` and point at
the base token and DEX through `relationships`. Requests ask for
`include=base_token,dex` so token names come back in the `included` array.
"""

from typing import Annotated, Any, Dict, List, Optional

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

POOL_INCLUDES = "base_token,dex"


class GeckoWindow(LenientModel):
    h1: Number = 0.0
    h24: Number = 0.0


class GeckoChange(LenientModel):
    h1: Number = 0.0
    h24: OptionalNumber = None


class GeckoTxnWindow(LenientModel):
    buys: Count = 0
    sells: Count = 0


class GeckoTxns(LenientModel):
    h24: Annotated[GeckoTxnWindow, BeforeValidator(dict_or_empty)] = Field(
        default_factory=GeckoTxnWindow
    )


class GeckoPoolAttributes(LenientModel):
    name: Text = ""
    address: Text = ""
    base_token_price_usd: Number = 0.0
    base_token_price_native_currency: Number = 0.0
    fdv_usd: Number = 0.0
    market_cap_usd: Number = 0.0
    reserve_in_usd: Number = 0.0
    volume_usd: Annotated[GeckoWindow, BeforeValidator(dict_or_empty)] = Field(
        default_factory=GeckoWindow
    )
    price_change_percentage: Annotated[GeckoChange, BeforeValidator(dict_or_empty)] = Field(
        default_factory=GeckoChange
    )
    transactions: Annotated[GeckoTxns, BeforeValidator(dict_or_empty)] = Field(
        default_factory=GeckoTxns
    )


class GeckoRef(LenientModel):
    id: Text = ""
    type: Text = ""


class GeckoRelationship(LenientModel):
    data: Annotated[GeckoRef, BeforeValidator(dict_or_empty)] = Field(default_factory=GeckoRef)


class GeckoPoolRelationships(LenientModel):
    base_token: Annotated[GeckoRelationship, BeforeValidator(dict_or_empty)] = Field(
        default_factory=GeckoRelationship
    )
    dex: Annotated[GeckoRelationship, BeforeValidator(dict_or_empty)] = Field(
        default_factory=GeckoRelationship
    )


class GeckoPool(LenientModel):
    """One element of a `/pools` style `data` array"""

    id: Text = ""
    attributes: Annotated[GeckoPoolAttributes, BeforeValidator(dict_or_empty)] = Field(
        default_factory=GeckoPoolAttributes
    )
    relationships: Annotated[GeckoPoolRelationships, BeforeValidator(dict_or_empty)] = Field(
        default_factory=GeckoPoolRelationships
    )


class GeckoTokenAttributes(LenientModel):
    address: Text = ""
    name: Text = ""
    symbol: Text = ""
    price_usd: Number = 0.0
    fdv_usd: Number = 0.0
    market_cap_usd: Number = 0.0
    total_reserve_in_usd: Number = 0.0
    volume_usd: Annotated[GeckoWindow, BeforeValidator(dict_or_empty)] = Field(
        default_factory=GeckoWindow
    )


class GeckoToken(LenientModel):
    id: Text = ""
    attributes: Annotated[GeckoTokenAttributes, BeforeValidator(dict_or_empty)] = Field(
        default_factory=GeckoTokenAttributes
    )


def strip_network_prefix(ref_id: str, network: str) -> str:
    """'solana_So111...' -> 'So111...'"""
    prefix = f"{network}_"
    if ref_id.startswith(prefix):
        return ref_id[len(prefix):]
    return ref_id


def symbol_from_pool_name(pool_name: str) -> str:
    """'BONK / SOL' -> 'BONK'"""
    base, _, _ = pool_name.partition(" / ")
    return base.strip()


def index_included_tokens(included: Any) -> Dict[str, GeckoToken]:
    """Map `included` token resources by their JSON:API id"""
    tokens: Dict[str, GeckoToken] = {}
    if not isinstance(included, list):
        return tokens
    for item in included:
        if not isinstance(item, dict) or item.get("type") != "token":
            continue
        try:
            token = GeckoToken.model_validate(item)
        except ValidationError:
            continue
        if token.id:
            tokens[token.id] = token
    return tokens


def normalize_pool(
    pool: GeckoPool,
    network: str,
    quote_usd: float,
    included: Optional[Dict[str, GeckoToken]] = None,
    native_is_quote: bool = True,
    observed_at: Optional[int] = None,
) -> Optional[TokenRecord]:
    """
    Map a GeckoTerminal pool to a TokenRecord in quote-asset units.

    Returns None when the base token reference is missing.
    """
    base_ref = pool.relationships.base_token.data.id
    token_id = strip_network_prefix(base_ref, network)
    if not token_id:
        return None

    attrs = pool.attributes
    token = (included or {}).get(base_ref)
    symbol = (token.attributes.symbol if token else "") or symbol_from_pool_name(attrs.name)
    name = (token.attributes.name if token else "") or symbol

    if native_is_quote and attrs.base_token_price_native_currency > 0:
        price = attrs.base_token_price_native_currency
    else:
        price = attrs.base_token_price_usd / quote_usd

    market_cap_usd = attrs.market_cap_usd or attrs.fdv_usd
    return TokenRecord(
        id=token_id,
        display_name=name or UNKNOWN,
        symbol=symbol or UNKNOWN,
        price=max(0.0, price),
        market_cap=max(0.0, market_cap_usd / quote_usd),
        volume=max(0.0, attrs.volume_usd.h24 / quote_usd),
        liquidity=max(0.0, attrs.reserve_in_usd / quote_usd),
        transaction_count=max(0, attrs.transactions.h24.buys + attrs.transactions.h24.sells),
        price_change_1h=attrs.price_change_percentage.h1,
        price_change_24h=attrs.price_change_percentage.h24,
        venue=pool.relationships.dex.data.id or UNKNOWN,
        source_tags={GeckoTerminalClient.name},
        observed_at=observed_at if observed_at is not None else now_ms(),
    )


def normalize_token(
    token: GeckoToken,
    quote_usd: float,
    observed_at: Optional[int] = None,
) -> Optional[TokenRecord]:
    """Token endpoint has no DEX, change or transaction data; those stay at defaults"""
    attrs = token.attributes
    if not attrs.address:
        return None

    market_cap_usd = attrs.market_cap_usd or attrs.fdv_usd
    return TokenRecord(
        id=attrs.address,
        display_name=attrs.name or UNKNOWN,
        symbol=attrs.symbol or UNKNOWN,
        price=max(0.0, attrs.price_usd / quote_usd),
        market_cap=max(0.0, market_cap_usd / quote_usd),
        volume=max(0.0, attrs.volume_usd.h24 / quote_usd),
        liquidity=max(0.0, attrs.total_reserve_in_usd / quote_usd),
        venue=UNKNOWN,
        source_tags={GeckoTerminalClient.name},
        observed_at=observed_at if observed_at is not None else now_ms(),
    )


def normalize_pools(
    payload: Any,
    network: str,
    quote_usd: float,
    native_is_quote: bool = True,
) -> List[TokenRecord]:
    """Normalize a pools response, skipping malformed pools and pools without identity"""
    if not isinstance(payload, dict) or not isinstance(payload.get("data"), list):
        return []

    included = index_included_tokens(payload.get("included"))
    observed_at = now_ms()
    records: List[TokenRecord] = []
    for item in payload["data"]:
        if not isinstance(item, dict):
            continue
        try:
            pool = GeckoPool.model_validate(item)
        except ValidationError as e:
            logger.debug(f"geckoterminal: skipping malformed pool: {e}")
            continue
        record = normalize_pool(pool, network, quote_usd, included, native_is_quote, observed_at)
        if record is not None:
            records.append(record)
    return records


class GeckoTerminalClient(SourceClient):
    """
    GeckoTerminal 数据源

    trending = trending_pools + new_pools；new_pools 失败不影响 trending 结果。
    """

    name = "geckoterminal"

    def __init__(
        self,
        base_url: str,
        rate_limiter: RateLimiter,
        retry_executor: RetryExecutor,
        quote_source: Optional[QuotePriceSource] = None,
        quote_usd_fallback: float = 100.0,
        network: str = "solana",
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
        self.network = network

    @property
    def native_is_quote(self) -> bool:
        # base_token_price_native_currency is in SOL only on the solana network
        return self.network == "solana"

    async def _fetch_trending(self) -> List[TokenRecord]:
        params = {"include": POOL_INCLUDES}
        trending = await self.get_json(f"/networks/{self.network}/trending_pools", params=params)

        try:
            new_pools = await self.get_json(f"/networks/{self.network}/new_pools", params=params)
        except ProviderError as e:
            logger.warning(f"geckoterminal: new pools unavailable: {e}")
            new_pools = None

        quote_usd = await self.quote_usd()
        records = normalize_pools(trending, self.network, quote_usd, self.native_is_quote)
        records.extend(normalize_pools(new_pools, self.network, quote_usd, self.native_is_quote))
        return records

    async def _fetch_by_identity(self, token_id: str) -> Optional[TokenRecord]:
        payload = await self.get_json(f"/networks/{self.network}/tokens/{token_id}")
        if not isinstance(payload, dict) or not isinstance(payload.get("data"), dict):
            return None
        try:
            token = GeckoToken.model_validate(payload["data"])
        except ValidationError as e:
            logger.debug(f"geckoterminal: malformed token {token_id}: {e}")
            return None
        quote_usd = await self.quote_usd()
        return normalize_token(token, quote_usd)

    async def _search(self, query: str) -> List[TokenRecord]:
        payload = await self.get_json(
            "/search/pools",
            params={"query": query, "network": self.network, "include": POOL_INCLUDES},
        )
        quote_usd = await self.quote_usd()
        return normalize_pools(payload, self.network, quote_usd, self.native_is_quote)

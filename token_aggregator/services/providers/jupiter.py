"""
Jupiter price oracle

Supplies the USD price of the quote asset (SOL) so provider normalizers can
convert USD-denominated figures into quote units.
"""

import asyncio
import time
from typing import Any, Callable, Optional

import aiohttp

from token_aggregator.core.exceptions import ProviderError
from token_aggregator.core.logger import get_logger
from token_aggregator.services.providers.base import ProviderHTTPClient
from token_aggregator.services.providers.payloads import to_float
from token_aggregator.services.providers.rate_limiter import RateLimiter
from token_aggregator.services.providers.retry import RetryExecutor

logger = get_logger(__name__)


def extract_price(payload: Any, mint: str) -> float:
    """`{"data": {mint: {"price": "123.4"}}}` -> 123.4; anything else -> 0.0"""
    if not isinstance(payload, dict):
        return 0.0
    data = payload.get("data")
    if not isinstance(data, dict):
        return 0.0
    entry = data.get(mint)
    if not isinstance(entry, dict):
        return 0.0
    return max(0.0, to_float(entry.get("price")))


class JupiterPriceOracle(ProviderHTTPClient):
    """
    报价资产价格预言机

    价格按 ttl 缓存；刷新失败时沿用上一次成功的价格，从未成功过则使用 fallback。
    """

    name = "jupiter"

    def __init__(
        self,
        base_url: str,
        rate_limiter: RateLimiter,
        retry_executor: RetryExecutor,
        quote_mint: str,
        fallback: float = 100.0,
        ttl: float = 60.0,
        timeout: float = 10.0,
        session: Optional[aiohttp.ClientSession] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(
            base_url,
            rate_limiter=rate_limiter,
            retry_executor=retry_executor,
            timeout=timeout,
            session=session,
        )
        self.quote_mint = quote_mint
        self.fallback = fallback
        self.ttl = ttl
        self._clock = clock

        self._price: Optional[float] = None
        self._fetched_at = 0.0
        self._lock = asyncio.Lock()

    async def get_usd_price(self, mint: str) -> float:
        """
        Current USD price of a mint, 0.0 when Jupiter does not list it.

        Raises:
            ProviderError: request failed after retries
        """
        payload = await self.get_json("", params={"ids": mint})
        return extract_price(payload, mint)

    async def get_quote_usd(self) -> float:
        """USD price of the quote asset; never raises"""
        async with self._lock:
            if self._price is not None and self._clock() - self._fetched_at < self.ttl:
                return self._price

            try:
                price = await self.get_usd_price(self.quote_mint)
            except ProviderError as e:
                price = 0.0
                logger.warning(f"jupiter: quote price refresh failed: {e}")

            if price > 0:
                self._price = price
                self._fetched_at = self._clock()
                logger.debug(f"jupiter: quote price updated to {price}")
                return price

            if self._price is not None:
                return self._price
            return self.fallback

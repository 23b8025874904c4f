"""
Provider client base classes

ProviderHTTPClient owns the aiohttp session and runs every request through the
provider's RateLimiter and RetryExecutor. SourceClient adds the three market
data operations every provider exposes.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Protocol

import aiohttp

from token_aggregator.core.exceptions import (
    ProviderClientError,
    ProviderError,
    TransientProviderError,
)
from token_aggregator.core.logger import get_logger
from token_aggregator.models.token import TokenRecord
from token_aggregator.services.providers.decorators import absorb_provider_errors, log_api_call
from token_aggregator.services.providers.rate_limiter import RateLimiter
from token_aggregator.services.providers.retry import RetryExecutor, is_retryable_status

logger = get_logger(__name__)


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Retry-After header in delta-seconds form; HTTP-date form is ignored"""
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


class ProviderHTTPClient:
    """
    带限流和重试的 HTTP JSON 客户端

    每一次实际发出的请求（包括重试）都会先占用一个限流名额。
    """

    name = "provider"

    def __init__(
        self,
        base_url: str,
        rate_limiter: RateLimiter,
        retry_executor: RetryExecutor,
        timeout: float = 10.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.rate_limiter = rate_limiter
        self.retry_executor = retry_executor
        self.timeout = timeout
        self.session = session
        self._owns_session = session is None

    async def _ensure_session(self) -> aiohttp.ClientSession:
        """确保 HTTP session 存在"""
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                headers={"Accept": "application/json"},
            )
            self._owns_session = True
        return self.session

    async def close(self) -> None:
        """关闭自己创建的 HTTP session"""
        if self.session and not self.session.closed and self._owns_session:
            await self.session.close()
        self.session = None

    @log_api_call
    async def get_json(self, path: str = "", params: Optional[Dict[str, Any]] = None) -> Any:
        """
        GET base_url + path，返回解析后的 JSON

        Raises:
            TransientProviderError: 重试耗尽仍为网络错误/超时/429/5xx
            ProviderClientError: 其他 4xx 或响应体不是合法 JSON
        """
        url = f"{self.base_url}{path}"

        async def attempt() -> Any:
            await self.rate_limiter.acquire()
            return await self._request_json(url, params)

        return await self.retry_executor.run(attempt)

    async def _request_json(self, url: str, params: Optional[Dict[str, Any]]) -> Any:
        session = await self._ensure_session()
        try:
            async with session.get(url, params=params) as response:
                if 200 <= response.status < 300:
                    if response.status == 204:
                        return None
                    return await response.json(content_type=None)

                if is_retryable_status(response.status):
                    raise TransientProviderError(
                        f"HTTP {response.status}",
                        provider=self.name,
                        status_code=response.status,
                        retry_after=parse_retry_after(response.headers.get("Retry-After")),
                        details={"url": url},
                    )
                raise ProviderClientError(
                    f"HTTP {response.status}",
                    provider=self.name,
                    status_code=response.status,
                    details={"url": url},
                )
        except ProviderError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransientProviderError(
                f"Request failed: {e.__class__.__name__}",
                provider=self.name,
                details={"url": url},
                original_exception=e,
            ) from e
        except ValueError as e:
            raise ProviderClientError(
                "Malformed JSON response",
                provider=self.name,
                details={"url": url},
                original_exception=e,
            ) from e


class QuotePriceSource(Protocol):
    """Anything that can report the USD price of the quote asset"""

    async def get_quote_usd(self) -> float:
        ...


class SourceClient(ProviderHTTPClient, ABC):
    """
    数据源客户端基类

    子类实现 _fetch_trending / _fetch_by_identity / _search 以及各自的
    标准化逻辑；公开方法在重试耗尽后吸收 ProviderError，失败时返回空结果。
    """

    def __init__(
        self,
        base_url: str,
        rate_limiter: RateLimiter,
        retry_executor: RetryExecutor,
        quote_source: Optional[QuotePriceSource] = None,
        quote_usd_fallback: float = 100.0,
        timeout: float = 10.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        super().__init__(
            base_url,
            rate_limiter=rate_limiter,
            retry_executor=retry_executor,
            timeout=timeout,
            session=session,
        )
        self.quote_source = quote_source
        self.quote_usd_fallback = quote_usd_fallback

    async def quote_usd(self) -> float:
        """USD price of one unit of the quote asset, used to convert USD values"""
        if self.quote_source is None:
            return self.quote_usd_fallback
        price = await self.quote_source.get_quote_usd()
        return price if price > 0 else self.quote_usd_fallback

    @absorb_provider_errors(list)
    async def fetch_trending(self) -> List[TokenRecord]:
        records = await self._fetch_trending()
        logger.info(f"{self.name}: fetched {len(records)} trending tokens")
        return records

    @absorb_provider_errors(lambda: None)
    async def fetch_by_identity(self, token_id: str) -> Optional[TokenRecord]:
        try:
            return await self._fetch_by_identity(token_id)
        except ProviderClientError as e:
            if e.status_code == 404:
                return None
            raise

    @absorb_provider_errors(list)
    async def search(self, query: str) -> List[TokenRecord]:
        return await self._search(query)

    @abstractmethod
    async def _fetch_trending(self) -> List[TokenRecord]:
        ...

    @abstractmethod
    async def _fetch_by_identity(self, token_id: str) -> Optional[TokenRecord]:
        ...

    @abstractmethod
    async def _search(self, query: str) -> List[TokenRecord]:
        ...

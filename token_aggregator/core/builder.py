"""
Service Builder

聚合服务构建器，使用构建器模式按配置初始化所有组件，并负责按相反顺序释放资源。
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from token_aggregator.core.config import Config, get_config
from token_aggregator.core.logger import get_logger
from token_aggregator.services.aggregation.aggregator import TokenAggregator
from token_aggregator.services.broadcast.broadcaster import Broadcaster
from token_aggregator.services.broadcast.detector import ChangeDetector, ChangeThresholds
from token_aggregator.services.cache.store import CacheStore
from token_aggregator.services.providers.base import SourceClient
from token_aggregator.services.providers.dexscreener import DexScreenerClient
from token_aggregator.services.providers.geckoterminal import GeckoTerminalClient
from token_aggregator.services.providers.jupiter import JupiterPriceOracle
from token_aggregator.services.providers.rate_limiter import ProviderRateLimiters
from token_aggregator.services.providers.retry import RetryExecutor
from token_aggregator.services.query.engine import QueryEngine


@dataclass
class TokenServices:
    """Wired components handed to the API layer"""

    config: Config
    cache: CacheStore
    aggregator: TokenAggregator
    query_engine: QueryEngine
    broadcaster: Broadcaster
    detector: ChangeDetector
    sources: List[SourceClient] = field(default_factory=list)
    quote_oracle: Optional[JupiterPriceOracle] = None
    rate_limiters: Optional[ProviderRateLimiters] = None


class ServiceBuilder:
    """
    聚合服务构建器

    Example:
        builder = ServiceBuilder()
        services = await builder.build()
        ...
        await builder.cleanup()
    """

    def __init__(self, config: Optional[Config] = None):
        self.config = config
        self.logger: logging.Logger = get_logger(__name__)

        self.rate_limiters: Optional[ProviderRateLimiters] = None
        self.cache: Optional[CacheStore] = None
        self.quote_oracle: Optional[JupiterPriceOracle] = None
        self.sources: List[SourceClient] = []
        self.aggregator: Optional[TokenAggregator] = None
        self.detector: Optional[ChangeDetector] = None

    async def build(self) -> TokenServices:
        """
        构建完整的聚合服务

        Raises:
            ConfigurationError: 配置了不支持的数据源
        """
        # 1. 加载配置
        self._load_config()
        self.logger.info("[系统] 开始构建聚合服务组件...")

        # 2. 缓存
        await self._setup_cache()

        # 3. 数据源
        self._setup_sources()

        # 4. 聚合 / 查询 / 广播
        self.aggregator = TokenAggregator(
            sources=self.sources,
            cache=self.cache,
            snapshot_ttl=self.config.cache_ttl,
            identity_ttl=self.config.identity_cache_ttl,
        )
        query_engine = QueryEngine(
            default_limit=self.config.default_page_limit,
            max_limit=self.config.max_page_limit,
        )
        broadcaster = Broadcaster()
        self.detector = ChangeDetector(
            aggregator=self.aggregator,
            broadcaster=broadcaster,
            interval=self.config.refresh_interval,
            thresholds=ChangeThresholds(
                price_change_pct=self.config.price_change_threshold,
                volume_spike_floor=self.config.volume_spike_floor,
                volume_spike_pct=self.config.volume_spike_threshold,
            ),
        )

        self.logger.info("✓ [系统] 聚合服务构建完成")
        return TokenServices(
            config=self.config,
            cache=self.cache,
            aggregator=self.aggregator,
            query_engine=query_engine,
            broadcaster=broadcaster,
            detector=self.detector,
            sources=list(self.sources),
            quote_oracle=self.quote_oracle,
            rate_limiters=self.rate_limiters,
        )

    def _load_config(self) -> None:
        if self.config is None:
            self.config = get_config()
        for warning in self.config.validate_config():
            self.logger.warning(f"[配置] {warning}")
        self.logger.info("✓ [配置] 加载完成")

    async def _setup_cache(self) -> None:
        self.cache = CacheStore(
            redis_url=self.config.redis_url,
            default_ttl=self.config.cache_ttl,
            max_connect_attempts=self.config.redis_connect_attempts,
            reconnect_max_delay=self.config.redis_reconnect_max_delay,
            reconnect_interval=self.config.redis_reconnect_interval,
        )
        available = await self.cache.connect()
        mode = "Redis + 内存" if available else "仅内存（降级）"
        self.logger.info(f"✓ [缓存] {mode}")

    def _retry_executor(self, name: str) -> RetryExecutor:
        return RetryExecutor(
            max_attempts=self.config.retry_max_attempts,
            base_delay=self.config.retry_base_delay,
            backoff_factor=self.config.retry_backoff_factor,
            max_delay=self.config.retry_max_delay,
            name=name,
        )

    def _setup_sources(self) -> None:
        config = self.config
        self.rate_limiters = ProviderRateLimiters(config)

        self.quote_oracle = JupiterPriceOracle(
            base_url=config.jupiter_base_url,
            rate_limiter=self.rate_limiters.get_limiter("jupiter"),
            retry_executor=self._retry_executor("jupiter"),
            quote_mint=config.quote_mint,
            fallback=config.quote_usd_fallback,
            ttl=config.quote_price_ttl,
            timeout=config.request_timeout,
        )

        for name in config.get_enabled_providers():
            if name == DexScreenerClient.name:
                source = DexScreenerClient(
                    base_url=config.dexscreener_base_url,
                    rate_limiter=self.rate_limiters.get_limiter(name),
                    retry_executor=self._retry_executor(name),
                    quote_source=self.quote_oracle,
                    quote_usd_fallback=config.quote_usd_fallback,
                    chain_id=config.chain_id,
                    seed_queries=config.get_seed_queries(),
                    timeout=config.request_timeout,
                )
            else:
                source = GeckoTerminalClient(
                    base_url=config.geckoterminal_base_url,
                    rate_limiter=self.rate_limiters.get_limiter(name),
                    retry_executor=self._retry_executor(name),
                    quote_source=self.quote_oracle,
                    quote_usd_fallback=config.quote_usd_fallback,
                    network=config.chain_id,
                    timeout=config.request_timeout,
                )
            self.sources.append(source)

        self.logger.info(f"✓ [数据源] {', '.join(s.name for s in self.sources) or '无'}")

    async def cleanup(self) -> None:
        """清理所有资源"""
        self.logger.info("开始清理资源...")

        if self.detector:
            try:
                await self.detector.stop()
            except Exception as exc:
                self.logger.warning("停止 detector 失败: %s", exc)
            finally:
                self.detector = None

        for source in self.sources:
            try:
                await source.close()
            except Exception as exc:
                self.logger.warning("关闭数据源 %s 失败: %s", source.name, exc)
        self.sources = []

        if self.quote_oracle:
            try:
                await self.quote_oracle.close()
            except Exception as exc:
                self.logger.warning("关闭 quote_oracle 失败: %s", exc)
            finally:
                self.quote_oracle = None

        if self.cache:
            try:
                await self.cache.close()
            except Exception as exc:
                self.logger.warning("关闭缓存失败: %s", exc)
            finally:
                self.cache = None

        self.logger.info("资源清理完成")

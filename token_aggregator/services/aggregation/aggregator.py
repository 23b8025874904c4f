"""
Token aggregation service

Fans requests out to every configured source concurrently, merges the results by
token id and caches the merged snapshot.
"""

import asyncio
from typing import Any, List, Optional, Sequence

from pydantic import ValidationError

from token_aggregator.core.logger import get_logger
from token_aggregator.models.token import Snapshot, TokenRecord
from token_aggregator.services.aggregation.merge import merge_all
from token_aggregator.services.cache.store import CacheStore
from token_aggregator.services.providers.base import SourceClient

logger = get_logger(__name__)


class TokenAggregator:
    """
    多数据源聚合器

    职责:
    1. 并发调用所有数据源
    2. 按 id 合并记录
    3. 读写快照缓存与单币缓存
    """

    SNAPSHOT_KEY = "tokens:snapshot"
    IDENTITY_PREFIX = "token:"

    def __init__(
        self,
        sources: Sequence[SourceClient],
        cache: CacheStore,
        snapshot_ttl: int = 30,
        identity_ttl: int = 60,
        snapshot_key: str = SNAPSHOT_KEY,
    ):
        """
        Args:
            sources: 数据源客户端列表
            cache: 两级缓存
            snapshot_ttl: 快照缓存时间（秒）
            identity_ttl: 单币缓存时间（秒）
            snapshot_key: 快照缓存键
        """
        self.sources = list(sources)
        self.cache = cache
        self.snapshot_ttl = snapshot_ttl
        self.identity_ttl = identity_ttl
        self.snapshot_key = snapshot_key

    def identity_key(self, token_id: str) -> str:
        return f"{self.IDENTITY_PREFIX}{token_id}"

    async def refresh(self, force_bypass_cache: bool = False) -> Snapshot:
        """
        获取最新快照

        Args:
            force_bypass_cache: 为 True 时跳过缓存读取，直接请求所有数据源

        Returns:
            合并后的快照；全部数据源失败时为空快照，且不会覆盖已缓存的快照
        """
        if not force_bypass_cache:
            cached = await self.get_cached_snapshot()
            if cached is not None and not cached.is_empty():
                return cached

        results = await self._fan_out("fetch_trending", [source.fetch_trending() for source in self.sources])
        records: List[TokenRecord] = []
        for result in results:
            records.extend(result)

        snapshot = Snapshot.from_records(merge_all(records))
        if snapshot.is_empty():
            logger.warning("Refresh produced no tokens; keeping previously cached snapshot")
            return snapshot

        await self.cache.set(self.snapshot_key, snapshot.model_dump_json(), ttl=self.snapshot_ttl)
        logger.info(
            f"Refreshed snapshot: {len(snapshot)} tokens from {len(self.sources)} sources"
        )
        return snapshot

    async def get_cached_snapshot(self) -> Optional[Snapshot]:
        """读取缓存中的快照，缺失或无法解析时返回None"""
        raw = await self.cache.get(self.snapshot_key)
        if raw is None:
            return None
        try:
            return Snapshot.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(f"Discarding unreadable cached snapshot: {e}")
            return None

    async def get_by_identity(self, token_id: str) -> Optional[TokenRecord]:
        """
        按 id 查询单个代币

        Returns:
            合并后的记录，所有数据源都没有该代币时返回None
        """
        key = self.identity_key(token_id)
        raw = await self.cache.get(key)
        if raw is not None:
            try:
                return TokenRecord.model_validate_json(raw)
            except ValidationError as e:
                logger.warning(f"Discarding unreadable cached token {token_id}: {e}")

        results = await self._fan_out(
            "fetch_by_identity",
            [source.fetch_by_identity(token_id) for source in self.sources],
        )
        found = [record for record in results if record is not None]
        if not found:
            return None

        merged = merge_all(found)[0]
        await self.cache.set(key, merged.model_dump_json(), ttl=self.identity_ttl)
        return merged

    async def search(self, query: str) -> List[TokenRecord]:
        """在所有数据源中搜索，结果按 id 合并，不缓存"""
        results = await self._fan_out("search", [source.search(query) for source in self.sources])
        records: List[TokenRecord] = []
        for result in results:
            records.extend(result)
        return merge_all(records)

    async def invalidate(self, cache_key: Optional[str] = None) -> bool:
        """
        删除缓存键

        Args:
            cache_key: 要删除的键，默认为快照键
        """
        key = cache_key or self.snapshot_key
        removed = await self.cache.delete(key)
        logger.info(f"Invalidated cache key {key} (existed={removed})")
        return removed

    async def _fan_out(self, operation: str, calls: List[Any]) -> List[Any]:
        """
        并发执行所有数据源调用

        单个数据源抛出的异常被记录并跳过，不影响其他数据源的结果。
        """
        results = await asyncio.gather(*calls, return_exceptions=True)

        settled = []
        for source, result in zip(self.sources, results):
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                logger.error(
                    f"{getattr(source, 'name', source)}.{operation} failed: {result}",
                    exc_info=result,
                )
                continue
            settled.append(result)
        return settled

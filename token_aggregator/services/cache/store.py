"""
两级缓存

Redis 作为持久层，进程内字典作为降级层。任何 Redis 故障都不会向调用方抛出。
连接或超时故障会标记 Redis 不可用，改由进程内缓存提供服务；
单条命令被拒绝时只记录日志，按未命中处理，不切换到降级模式。
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional

import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from token_aggregator.core.exceptions import CacheUnavailable
from token_aggregator.core.logger import get_logger

logger = get_logger(__name__)

_BACKING_ERRORS = (RedisError, OSError, asyncio.TimeoutError)
# 只有连接层面的故障才切换到降级模式
_UNAVAILABLE_ERRORS = (RedisConnectionError, RedisTimeoutError, OSError, asyncio.TimeoutError)


@dataclass
class CacheEntry:
    """进程内缓存条目，expires_at 为单调时钟秒数"""

    key: str
    value: str
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class CacheStore:
    """
    Redis + 内存两级缓存

    值均为 JSON 文本，序列化由调用方负责。

    Example:
        cache = CacheStore("redis://localhost:6379/0", default_ttl=30)
        await cache.connect()
        await cache.set("tokens:snapshot", snapshot.model_dump_json())
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        default_ttl: int = 30,
        max_connect_attempts: int = 3,
        reconnect_base_delay: float = 0.5,
        reconnect_max_delay: float = 2.0,
        reconnect_interval: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Args:
            redis_url: Redis连接URL
            default_ttl: 默认过期时间（秒）
            max_connect_attempts: connect() 的最大尝试次数
            reconnect_base_delay: 连接重试的初始等待（秒）
            reconnect_max_delay: 连接重试的等待上限（秒）
            reconnect_interval: 降级期间两次重新探测 Redis 的最小间隔（秒）
            clock: 单调时钟，测试中可替换
            sleep: 等待函数，测试中可替换
        """
        self.redis_url = redis_url
        self.default_ttl = default_ttl
        self.max_connect_attempts = max(1, max_connect_attempts)
        self.reconnect_base_delay = reconnect_base_delay
        self.reconnect_max_delay = reconnect_max_delay
        self.reconnect_interval = reconnect_interval
        self._clock = clock
        self._sleep = sleep

        self.redis: Optional[redis.Redis] = None
        self._available = False
        self._last_probe: Optional[float] = None
        self._memory: Dict[str, CacheEntry] = {}

    # ------------------------------------------------------------------
    # Connection management
    # ------------------------------------------------------------------

    async def connect(self) -> bool:
        """
        连接 Redis，失败时按上限指数退避重试

        Returns:
            Redis 是否可用；False 表示进入降级模式（仅内存缓存）
        """
        for attempt in range(self.max_connect_attempts):
            if await self._try_connect():
                logger.info("Connected to Redis successfully")
                return True

            if attempt + 1 < self.max_connect_attempts:
                delay = min(self.reconnect_base_delay * (2 ** attempt), self.reconnect_max_delay)
                logger.warning(
                    f"Redis connection attempt {attempt + 1}/{self.max_connect_attempts} "
                    f"failed, retrying in {delay:.2f}s"
                )
                await self._sleep(delay)

        self._last_probe = self._clock()
        logger.warning(
            f"Redis unavailable after {self.max_connect_attempts} attempts, "
            f"serving from in-memory cache only"
        )
        return False

    async def _try_connect(self) -> bool:
        client = None
        try:
            client = await redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True
            )
            await client.ping()
        except _BACKING_ERRORS as e:
            logger.debug(f"Redis connect failed: {e}")
            if client is not None:
                await self._close_client(client)
            return False

        self.redis = client
        self._available = True
        return True

    async def _close_client(self, client: redis.Redis) -> None:
        try:
            await client.aclose()
        except _BACKING_ERRORS as e:
            logger.debug(f"Error while closing Redis client: {e}")

    async def close(self) -> None:
        """关闭Redis连接"""
        if self.redis is not None:
            await self._close_client(self.redis)
            self.redis = None
            logger.info("Closed Redis connection")
        self._available = False

    def is_available(self) -> bool:
        """Redis 持久层当前是否可用"""
        return self._available

    async def _backing(self) -> redis.Redis:
        """
        返回可用的 Redis 客户端

        降级期间每 reconnect_interval 秒最多重新探测一次。

        Raises:
            CacheUnavailable: Redis 当前不可用
        """
        if self._available and self.redis is not None:
            return self.redis

        now = self._clock()
        if self._last_probe is None or now - self._last_probe >= self.reconnect_interval:
            self._last_probe = now
            if self.redis is not None:
                await self._close_client(self.redis)
                self.redis = None
            if await self._try_connect():
                logger.info("Redis connection restored")
                return self.redis

        raise CacheUnavailable("Redis is unavailable", details={"redis_url": self.redis_url})

    def _mark_unavailable(self, operation: str, key: str, error: BaseException) -> None:
        if self._available:
            logger.warning(
                f"Redis {operation} failed for key {key}: {error}; "
                f"falling back to in-memory cache"
            )
        self._available = False
        self._last_probe = self._clock()

    def _command_failed(self, operation: str, key: str, error: BaseException) -> None:
        logger.warning(f"Redis {operation} rejected for key {key}: {error}")

    # ------------------------------------------------------------------
    # In-memory tier
    # ------------------------------------------------------------------

    def _memory_get(self, key: str) -> Optional[str]:
        entry = self._memory.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            del self._memory[key]
            return None
        return entry.value

    def _memory_set(self, key: str, value: str, ttl: int) -> None:
        now = self._clock()
        self._purge_expired(now)
        self._memory[key] = CacheEntry(key=key, value=value, expires_at=now + ttl)

    def _purge_expired(self, now: float) -> None:
        expired = [key for key, entry in self._memory.items() if entry.is_expired(now)]
        for key in expired:
            del self._memory[key]

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def get(self, key: str) -> Optional[str]:
        """
        获取数据

        Returns:
            JSON 文本，不存在或已过期返回None
        """
        try:
            client = await self._backing()
            value = await client.get(key)
            if value is not None:
                return value
        except CacheUnavailable:
            pass
        except _UNAVAILABLE_ERRORS as e:
            self._mark_unavailable("get", key, e)
        except RedisError as e:
            self._command_failed("get", key, e)

        return self._memory_get(key)

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        """
        写入两级缓存

        Args:
            key: 键
            value: JSON 文本
            ttl: 过期时间（秒），None 使用 default_ttl，最小为 1
        """
        ttl = max(1, ttl if ttl is not None else self.default_ttl)
        self._memory_set(key, value, ttl)

        try:
            client = await self._backing()
            await client.setex(key, ttl, value)
        except CacheUnavailable:
            pass
        except _UNAVAILABLE_ERRORS as e:
            self._mark_unavailable("set", key, e)
        except RedisError as e:
            self._command_failed("set", key, e)

    async def delete(self, key: str) -> bool:
        """
        删除数据

        Returns:
            任一层中是否存在该键
        """
        existed = self._memory.pop(key, None) is not None

        try:
            client = await self._backing()
            existed = bool(await client.delete(key)) or existed
        except CacheUnavailable:
            pass
        except _UNAVAILABLE_ERRORS as e:
            self._mark_unavailable("delete", key, e)
        except RedisError as e:
            self._command_failed("delete", key, e)

        return existed

    async def exists(self, key: str) -> bool:
        """检查键是否存在（未过期）"""
        try:
            client = await self._backing()
            if await client.exists(key):
                return True
        except CacheUnavailable:
            pass
        except _UNAVAILABLE_ERRORS as e:
            self._mark_unavailable("exists", key, e)
        except RedisError as e:
            self._command_failed("exists", key, e)

        return self._memory_get(key) is not None

    async def flush(self) -> None:
        """清空两级缓存"""
        self._memory.clear()

        try:
            client = await self._backing()
            await client.flushdb()
            logger.info("Flushed Redis cache")
        except CacheUnavailable:
            pass
        except _UNAVAILABLE_ERRORS as e:
            self._mark_unavailable("flush", "*", e)
        except RedisError as e:
            self._command_failed("flush", "*", e)

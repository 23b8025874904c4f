"""
Rate limiter for provider API calls.

Implements a sliding window limiter to stay under each provider's published quota.
"""

import asyncio
import time
from collections import deque
from typing import Callable, Deque, Dict

from token_aggregator.core.config import Config
from token_aggregator.core.logger import get_logger

logger = get_logger(__name__)


class RateLimiter:
    """
    Sliding window rate limiter.

    在任意 window_seconds 时间窗口内最多放行 max_requests 次请求，
    超出时挂起调用方直到最早的一次请求滑出窗口。
    """

    def __init__(
        self,
        max_requests: int = 5,
        window_seconds: float = 1.0,
        name: str = "default",
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        初始化限流器

        Args:
            max_requests: 窗口内允许的最大请求数
            window_seconds: 窗口长度（秒）
            name: 限流器名称（一般为数据源名称），用于日志
            clock: 单调时钟，测试中可替换
        """
        if max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")

        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.name = name
        self._clock = clock

        # 已放行请求的时间戳，按时间升序
        self._timestamps: Deque[float] = deque()

        # 统计信息
        self.total_requests = 0
        self.total_waits = 0
        self.total_wait_time = 0.0

        # 并发调用按顺序排队
        self._lock = asyncio.Lock()

        logger.info(
            f"RateLimiter[{name}] initialized: {max_requests} req / {window_seconds}s"
        )

    def _prune(self, now: float) -> None:
        cutoff = now - self.window_seconds
        while self._timestamps and self._timestamps[0] <= cutoff:
            self._timestamps.popleft()

    async def acquire(self) -> None:
        """
        获取一个请求名额，窗口已满时等待

        从不抛出异常（取消除外）；被取消时立即放弃等待。
        """
        async with self._lock:
            while True:
                now = self._clock()
                self._prune(now)

                if len(self._timestamps) < self.max_requests:
                    self._timestamps.append(now)
                    self.total_requests += 1
                    return

                wait_time = self._timestamps[0] + self.window_seconds - now
                self.total_waits += 1
                self.total_wait_time += wait_time
                logger.debug(
                    f"RateLimiter[{self.name}]: waiting {wait_time:.3f}s "
                    f"({len(self._timestamps)}/{self.max_requests} in window)"
                )
                await asyncio.sleep(wait_time)

    def get_stats(self) -> Dict[str, float]:
        """获取限流统计信息"""
        now = self._clock()
        in_window = sum(1 for t in self._timestamps if now - t < self.window_seconds)
        return {
            "total_requests": self.total_requests,
            "total_waits": self.total_waits,
            "avg_wait_time": self.total_wait_time / max(1, self.total_waits),
            "in_window": in_window,
            "max_requests": self.max_requests,
        }

    def reset(self) -> None:
        """重置限流器"""
        self._timestamps.clear()
        self.total_requests = 0
        self.total_waits = 0
        self.total_wait_time = 0.0
        logger.info(f"RateLimiter[{self.name}] reset")


class ProviderRateLimiters:
    """
    管理不同数据源的限流器

    各数据源的限流规则来自配置：
    - DexScreener: 300 requests/minute
    - GeckoTerminal: 30 requests/minute
    - Jupiter: 600 requests/minute
    """

    def __init__(self, config: Config):
        self._config = config
        self._limiters: Dict[str, RateLimiter] = {}

    def get_limiter(self, provider: str) -> RateLimiter:
        """
        获取指定数据源的限流器，不存在时按配置创建

        Raises:
            ConfigurationError: 数据源没有对应的限流配置
        """
        key = provider.lower()
        if key not in self._limiters:
            limit = self._config.get_rate_limit(key)
            self._limiters[key] = RateLimiter(
                max_requests=limit.max_requests,
                window_seconds=limit.window_seconds,
                name=key,
            )
        return self._limiters[key]

    def get_all_stats(self) -> Dict[str, Dict[str, float]]:
        """获取所有限流器的统计信息"""
        return {name: limiter.get_stats() for name, limiter in self._limiters.items()}

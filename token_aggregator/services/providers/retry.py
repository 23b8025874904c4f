"""
Retry executor for provider API calls.

Runs an operation with classified retry and capped exponential backoff.
"""

import asyncio
from typing import Awaitable, Callable, Optional, TypeVar

import aiohttp

from token_aggregator.core.exceptions import ProviderClientError, TransientProviderError
from token_aggregator.core.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def is_retryable_status(status: int) -> bool:
    """HTTP 429 and every 5xx"""
    return status == 429 or status >= 500


def is_retryable_error(error: BaseException) -> bool:
    """
    Default classification.

    Network errors, timeouts, HTTP 429 and 5xx are retryable; other 4xx are not.
    """
    if isinstance(error, TransientProviderError):
        return True
    if isinstance(error, ProviderClientError):
        return False
    if isinstance(error, aiohttp.ClientResponseError):
        return is_retryable_status(error.status)
    if isinstance(error, (asyncio.TimeoutError, aiohttp.ClientConnectionError)):
        return True
    return False


def retry_after_hint(error: BaseException) -> Optional[float]:
    """Provider supplied delay (seconds), if the error carries one"""
    value = getattr(error, "retry_after", None)
    if value is None:
        return None
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return None
    return seconds if seconds >= 0 else None


class RetryExecutor:
    """
    重试执行器

    Example:
        executor = RetryExecutor(max_attempts=3)
        data = await executor.run(lambda: client.get_json("/pairs"))
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        backoff_factor: float = 2.0,
        max_delay: float = 10.0,
        name: str = "default",
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Args:
            max_attempts: 最大尝试次数（含第一次）
            base_delay: 首次重试前的等待时间（秒）
            backoff_factor: 退避因子
            max_delay: 单次等待上限（秒）
            name: 名称，用于日志
            sleep: 等待函数，测试中可替换
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.backoff_factor = backoff_factor
        self.max_delay = max_delay
        self.name = name
        self._sleep = sleep

        self.consecutive_failures = 0

    def compute_delay(self, attempt: int) -> float:
        """Backoff before retry number `attempt` (zero-based)"""
        return min(self.base_delay * (self.backoff_factor ** attempt), self.max_delay)

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        is_retryable: Callable[[BaseException], bool] = is_retryable_error,
    ) -> T:
        """
        执行 operation，失败时按分类决定是否重试

        Args:
            operation: 无参协程工厂，每次尝试都会重新调用
            is_retryable: 错误分类函数

        Returns:
            operation 的返回值

        Raises:
            最后一次失败的异常
        """
        attempt = 0
        while True:
            try:
                result = await operation()
            except Exception as e:
                attempt += 1
                self.consecutive_failures += 1

                if not is_retryable(e):
                    logger.debug(f"[{self.name}] non-retryable error: {e}")
                    raise

                if attempt >= self.max_attempts:
                    logger.warning(
                        f"[{self.name}] giving up after {attempt} attempts: {e}"
                    )
                    raise

                hint = retry_after_hint(e)
                wait_time = hint if hint is not None else self.compute_delay(attempt - 1)
                logger.warning(
                    f"[{self.name}] attempt {attempt}/{self.max_attempts} failed: {e}. "
                    f"Retrying in {wait_time:.2f}s..."
                )
                await self._sleep(wait_time)
                continue

            self.consecutive_failures = 0
            return result

    def reset(self) -> None:
        """重置失败计数"""
        self.consecutive_failures = 0

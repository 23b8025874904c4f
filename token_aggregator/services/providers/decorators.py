"""
Decorators for provider API calls.

Provides call logging and provider-failure absorption for source clients.
"""

import functools
import time
from typing import Any, Callable

from token_aggregator.core.exceptions import ProviderError
from token_aggregator.core.logger import get_logger

logger = get_logger(__name__)


def log_api_call(func: Callable) -> Callable:
    """
    API调用日志装饰器

    记录API调用的参数和执行时间

    Example:
        @log_api_call
        async def get_json(self, path: str):
            ...
    """
    @functools.wraps(func)
    async def wrapper(*args, **kwargs) -> Any:
        start_time = time.monotonic()
        func_args = args[1:] if args else ()

        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            duration = time.monotonic() - start_time
            logger.debug(
                f"API call: {func.__name__}{func_args} failed after {duration:.2f}s: {e}"
            )
            raise

        duration = time.monotonic() - start_time
        logger.debug(f"API call: {func.__name__}{func_args} completed in {duration:.2f}s")
        return result

    return wrapper


def absorb_provider_errors(default_factory: Callable[[], Any]):
    """
    数据源错误吸收装饰器

    重试耗尽后的 ProviderError 不向上抛出，记录日志并返回 default_factory()，
    使单个数据源失败只影响它自己的贡献。其他异常照常传播。

    Example:
        @absorb_provider_errors(list)
        async def fetch_trending(self):
            ...
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(self, *args, **kwargs) -> Any:
            try:
                return await func(self, *args, **kwargs)
            except ProviderError as e:
                logger.warning(
                    f"{getattr(self, 'name', 'provider')}.{func.__name__}{args} failed: {e}"
                )
                return default_factory()

        return wrapper
    return decorator

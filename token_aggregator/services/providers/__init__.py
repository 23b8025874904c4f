"""
Providers module - external market data sources.

Provides source clients with:
- Rate limiting
- Retry logic
- Error absorption
- Payload normalization
"""

from token_aggregator.services.providers.base import ProviderHTTPClient, SourceClient
from token_aggregator.services.providers.dexscreener import DexScreenerClient
from token_aggregator.services.providers.geckoterminal import GeckoTerminalClient
from token_aggregator.services.providers.jupiter import JupiterPriceOracle
from token_aggregator.services.providers.rate_limiter import ProviderRateLimiters, RateLimiter
from token_aggregator.services.providers.retry import RetryExecutor, is_retryable_error

__all__ = [
    # Clients
    'ProviderHTTPClient',
    'SourceClient',
    'DexScreenerClient',
    'GeckoTerminalClient',
    'JupiterPriceOracle',

    # Rate limiting
    'RateLimiter',
    'ProviderRateLimiters',

    # Retry
    'RetryExecutor',
    'is_retryable_error',
]

"""Tests for ServiceBuilder"""

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from token_aggregator.core.builder import ServiceBuilder
from token_aggregator.core.config import Config
from token_aggregator.core.exceptions import ConfigurationError
from token_aggregator.services.providers.dexscreener import DexScreenerClient
from token_aggregator.services.providers.geckoterminal import GeckoTerminalClient


pytestmark = pytest.mark.asyncio


@pytest.fixture
def offline_redis(monkeypatch):
    async def _from_url(*args, **kwargs):
        raise RedisConnectionError("connection refused")

    monkeypatch.setattr("redis.asyncio.from_url", _from_url)


async def test_build_wires_components(offline_redis):
    config = Config(
        enabled_providers="dexscreener,geckoterminal",
        redis_connect_attempts=1,
        refresh_interval=2.5,
        max_page_limit=50,
        dexscreener_seed_queries="bonk,wif",
    )
    builder = ServiceBuilder(config)

    services = await builder.build()

    assert [type(s) for s in services.sources] == [DexScreenerClient, GeckoTerminalClient]
    assert services.sources[0].seed_queries == ["bonk", "wif"]
    assert services.sources[0].quote_source is services.quote_oracle
    assert services.aggregator.sources == services.sources
    assert services.detector.interval == 2.5
    assert services.query_engine.max_limit == 50
    assert not services.cache.is_available()
    assert set(services.rate_limiters.get_all_stats()) == {"jupiter", "dexscreener", "geckoterminal"}

    await builder.cleanup()
    assert builder.sources == []
    assert builder.cache is None


async def test_build_rejects_unknown_provider(offline_redis):
    builder = ServiceBuilder(Config(enabled_providers="dexscreener,birdeye", redis_connect_attempts=1))

    with pytest.raises(ConfigurationError):
        await builder.build()

    await builder.cleanup()

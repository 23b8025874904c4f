"""Tests for TokenAggregator"""

from typing import Dict, List, Optional

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from token_aggregator.models.token import Snapshot, TokenRecord
from token_aggregator.services.aggregation.aggregator import TokenAggregator
from token_aggregator.services.cache.store import CacheStore


pytestmark = [pytest.mark.asyncio, pytest.mark.usefixtures("offline_redis")]


class FakeSource:
    """Source client double with canned results"""

    def __init__(
        self,
        name: str,
        trending: Optional[List[TokenRecord]] = None,
        by_id: Optional[Dict[str, TokenRecord]] = None,
        error: Optional[Exception] = None,
    ):
        self.name = name
        self.trending = trending or []
        self.by_id = by_id or {}
        self.error = error
        self.calls = {"fetch_trending": 0, "fetch_by_identity": 0, "search": 0}

    async def fetch_trending(self) -> List[TokenRecord]:
        self.calls["fetch_trending"] += 1
        if self.error:
            raise self.error
        return list(self.trending)

    async def fetch_by_identity(self, token_id: str) -> Optional[TokenRecord]:
        self.calls["fetch_by_identity"] += 1
        if self.error:
            raise self.error
        return self.by_id.get(token_id)

    async def search(self, query: str) -> List[TokenRecord]:
        self.calls["search"] += 1
        if self.error:
            raise self.error
        return [r for r in self.trending if query.lower() in r.symbol.lower()]


def _rec(token_id: str, source: str, **kwargs) -> TokenRecord:
    return TokenRecord(id=token_id, source_tags={source}, **kwargs)


@pytest.fixture
def offline_redis(monkeypatch):
    async def _from_url(*args, **kwargs):
        raise RedisConnectionError("connection refused")

    monkeypatch.setattr("redis.asyncio.from_url", _from_url)


async def _memory_cache() -> CacheStore:
    cache = CacheStore(
        "redis://unused", default_ttl=30, max_connect_attempts=1, reconnect_interval=3600
    )
    await cache.connect()
    return cache


async def test_refresh_merges_sources_in_first_seen_order():
    dex = FakeSource("dexscreener", trending=[
        _rec("A", "dexscreener", symbol="AAA", volume=10, price=1.0),
        _rec("B", "dexscreener", symbol="BBB", volume=5),
    ])
    gecko = FakeSource("geckoterminal", trending=[
        _rec("C", "geckoterminal", symbol="CCC"),
        _rec("A", "geckoterminal", volume=30, venue="orca"),
    ])
    aggregator = TokenAggregator([dex, gecko], await _memory_cache())

    snapshot = await aggregator.refresh()

    assert [r.id for r in snapshot.tokens()] == ["A", "B", "C"]
    merged = snapshot.get("A")
    assert merged.volume == 30
    assert merged.symbol == "AAA"
    assert merged.venue == "orca"
    assert merged.source_tags == {"dexscreener", "geckoterminal"}


async def test_refresh_uses_cache_until_bypassed():
    source = FakeSource("dexscreener", trending=[_rec("A", "dexscreener")])
    aggregator = TokenAggregator([source], await _memory_cache())

    first = await aggregator.refresh()
    second = await aggregator.refresh()
    assert source.calls["fetch_trending"] == 1
    assert [r.id for r in second.tokens()] == [r.id for r in first.tokens()]

    await aggregator.refresh(force_bypass_cache=True)
    assert source.calls["fetch_trending"] == 2


async def test_partial_failure_keeps_other_sources():
    good = FakeSource("dexscreener", trending=[_rec("A", "dexscreener")])
    bad = FakeSource("geckoterminal", error=RuntimeError("boom"))
    aggregator = TokenAggregator([good, bad], await _memory_cache())

    snapshot = await aggregator.refresh()

    assert [r.id for r in snapshot.tokens()] == ["A"]


async def test_total_failure_does_not_overwrite_cached_snapshot():
    cache = await _memory_cache()
    source = FakeSource("dexscreener", trending=[_rec("A", "dexscreener")])
    aggregator = TokenAggregator([source], cache)
    await aggregator.refresh()

    source.error = RuntimeError("down")
    empty = await aggregator.refresh(force_bypass_cache=True)

    assert empty.is_empty()
    cached = Snapshot.model_validate_json(await cache.get(aggregator.snapshot_key))
    assert [r.id for r in cached.tokens()] == ["A"]


async def test_get_by_identity_merges_and_caches():
    dex = FakeSource("dexscreener", by_id={"A": _rec("A", "dexscreener", price=2.0)})
    gecko = FakeSource("geckoterminal", by_id={"A": _rec("A", "geckoterminal", liquidity=9)})
    cache = await _memory_cache()
    aggregator = TokenAggregator([dex, gecko], cache, identity_ttl=60)

    record = await aggregator.get_by_identity("A")

    assert record.price == 2.0
    assert record.liquidity == 9
    assert record.source_tags == {"dexscreener", "geckoterminal"}
    assert await cache.exists("token:A")

    again = await aggregator.get_by_identity("A")
    assert again == record
    assert dex.calls["fetch_by_identity"] == 1


async def test_get_by_identity_absent_everywhere():
    aggregator = TokenAggregator(
        [FakeSource("dexscreener"), FakeSource("geckoterminal", error=RuntimeError("x"))],
        await _memory_cache(),
    )

    assert await aggregator.get_by_identity("missing") is None


async def test_search_merges_results():
    dex = FakeSource("dexscreener", trending=[_rec("A", "dexscreener", symbol="BONK")])
    gecko = FakeSource("geckoterminal", trending=[
        _rec("A", "geckoterminal", symbol="BONK", volume=3),
        _rec("Z", "geckoterminal", symbol="ZZZ"),
    ])
    aggregator = TokenAggregator([dex, gecko], await _memory_cache())

    results = await aggregator.search("bonk")

    assert [r.id for r in results] == ["A"]
    assert results[0].source_tags == {"dexscreener", "geckoterminal"}


async def test_invalidate_defaults_to_snapshot_key():
    cache = await _memory_cache()
    aggregator = TokenAggregator([FakeSource("dexscreener", trending=[_rec("A", "dexscreener")])], cache)
    await aggregator.refresh()

    assert await aggregator.invalidate() is True
    assert await cache.get(aggregator.snapshot_key) is None
    assert await aggregator.invalidate("token:nothing") is False


async def test_unreadable_cached_snapshot_is_ignored():
    cache = await _memory_cache()
    await cache.set(TokenAggregator.SNAPSHOT_KEY, "not json")
    source = FakeSource("dexscreener", trending=[_rec("A", "dexscreener")])
    aggregator = TokenAggregator([source], cache)

    snapshot = await aggregator.refresh()

    assert source.calls["fetch_trending"] == 1
    assert len(snapshot) == 1

from __future__ import annotations

from typing import Dict, Optional

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError

from token_aggregator.services.cache.store import CacheEntry, CacheStore


pytestmark = pytest.mark.asyncio


class FakeRedis:
    """Minimal async Redis stub for unit tests."""

    def __init__(self) -> None:
        self.store: Dict[str, str] = {}
        self.ttl_map: Dict[str, int] = {}
        self.fail = False
        self.reject: Optional[Exception] = None
        self.closed = False

    def _check(self) -> None:
        if self.fail:
            raise RedisConnectionError("connection refused")
        if self.reject is not None:
            raise self.reject

    async def ping(self) -> bool:
        self._check()
        return True

    async def setex(self, key: str, ttl: int, value: str) -> None:
        self._check()
        self.store[key] = value
        self.ttl_map[key] = ttl

    async def get(self, key: str) -> Optional[str]:
        self._check()
        return self.store.get(key)

    async def delete(self, key: str) -> int:
        self._check()
        existed = key in self.store
        self.store.pop(key, None)
        self.ttl_map.pop(key, None)
        return int(existed)

    async def exists(self, key: str) -> int:
        self._check()
        return int(key in self.store)

    async def flushdb(self) -> None:
        self._check()
        self.store.clear()
        self.ttl_map.clear()

    async def aclose(self) -> None:
        self.closed = True


class Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


async def _no_sleep(_seconds):
    return None


@pytest.fixture
def fake_redis(monkeypatch):
    client = FakeRedis()

    async def _from_url(*args, **kwargs):  # pragma: no cover - simple stub
        return client

    monkeypatch.setattr("redis.asyncio.from_url", _from_url)
    return client


@pytest.fixture
def clock():
    return Clock()


def _store(clock: Clock, **kwargs) -> CacheStore:
    kwargs.setdefault("reconnect_interval", 30.0)
    return CacheStore(
        "redis://localhost:6379/15",
        default_ttl=30,
        clock=clock,
        sleep=_no_sleep,
        **kwargs,
    )


async def test_set_get_through_redis(fake_redis, clock):
    cache = _store(clock)
    assert await cache.connect() is True
    assert cache.is_available()

    await cache.set("tokens:snapshot", '{"a": 1}')

    assert fake_redis.store["tokens:snapshot"] == '{"a": 1}'
    assert fake_redis.ttl_map["tokens:snapshot"] == 30
    assert await cache.get("tokens:snapshot") == '{"a": 1}'
    assert await cache.exists("tokens:snapshot")


async def test_per_call_ttl(fake_redis, clock):
    cache = _store(clock)
    await cache.connect()

    await cache.set("token:abc", "{}", ttl=60)

    assert fake_redis.ttl_map["token:abc"] == 60


async def test_delete_removes_both_tiers(fake_redis, clock):
    cache = _store(clock)
    await cache.connect()
    await cache.set("k", "v")

    assert await cache.delete("k") is True
    assert await cache.get("k") is None
    assert await cache.exists("k") is False
    assert await cache.delete("k") is False


async def test_flush_clears_everything(fake_redis, clock):
    cache = _store(clock)
    await cache.connect()
    await cache.set("a", "1")
    await cache.set("b", "2")

    await cache.flush()

    assert fake_redis.store == {}
    assert await cache.get("a") is None


async def test_connect_failure_degrades_to_memory(fake_redis, clock):
    fake_redis.fail = True
    cache = _store(clock, max_connect_attempts=3)

    assert await cache.connect() is False
    assert not cache.is_available()

    await cache.set("k", "v", ttl=10)
    assert await cache.get("k") == "v"
    assert await cache.exists("k")

    clock.now += 11
    assert await cache.get("k") is None


async def test_redis_failure_mid_operation_falls_back(fake_redis, clock):
    cache = _store(clock)
    await cache.connect()
    await cache.set("k", "v")

    fake_redis.fail = True

    assert await cache.get("k") == "v"
    assert not cache.is_available()
    await cache.set("other", "x")
    assert await cache.get("other") == "x"


async def test_rejected_command_keeps_redis_available(fake_redis, clock):
    cache = _store(clock)
    await cache.connect()
    await cache.set("k", "v")

    fake_redis.reject = ResponseError("WRONGTYPE Operation against a key")

    assert await cache.get("k") == "v"
    await cache.set("other", "x")
    assert await cache.delete("missing") is False
    assert cache.is_available()

    fake_redis.reject = None
    await cache.set("other", "y")
    assert fake_redis.store["other"] == "y"


async def test_non_positive_ttl_clamped(fake_redis, clock):
    cache = _store(clock)
    await cache.connect()

    await cache.set("k", "v", ttl=0)

    assert fake_redis.ttl_map["k"] == 1
    assert await cache.get("k") == "v"
    assert cache.is_available()


async def test_reprobe_after_interval(fake_redis, clock):
    cache = _store(clock, reconnect_interval=30.0)
    await cache.connect()
    fake_redis.fail = True
    await cache.get("k")
    assert not cache.is_available()

    fake_redis.fail = False
    await cache.set("k", "v")
    assert not cache.is_available()
    assert "k" not in fake_redis.store

    clock.now += 31
    await cache.set("k", "v2")
    assert cache.is_available()
    assert fake_redis.store["k"] == "v2"


async def test_memory_tier_lazy_purge(fake_redis, clock):
    fake_redis.fail = True
    cache = _store(clock, max_connect_attempts=1)
    await cache.connect()
    await cache.set("old", "1", ttl=5)

    clock.now += 6
    await cache.set("new", "2", ttl=5)

    assert "old" not in cache._memory
    assert "new" in cache._memory


async def test_close_releases_client(fake_redis, clock):
    cache = _store(clock)
    await cache.connect()

    await cache.close()

    assert fake_redis.closed
    assert not cache.is_available()


async def test_cache_entry_expiry():
    entry = CacheEntry(key="k", value="v", expires_at=10.0)

    assert not entry.is_expired(9.9)
    assert entry.is_expired(10.0)

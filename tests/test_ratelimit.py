import math
import os
import uuid

import pytest
import redis.asyncio as aioredis
from redis.exceptions import RedisError

from checkin_svc.core import ratelimit
from checkin_svc.core.ratelimit import MemoryRateLimiter, RedisRateLimiter


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


async def test_allows_up_to_budget_then_blocks():
    clock = FakeClock()
    limiter = MemoryRateLimiter(max_reqs=5, window_seconds=60, clock=clock)

    decisions = [await limiter.hit("1.1.1.1") for _ in range(6)]
    assert [d.allowed for d in decisions] == [True] * 5 + [False]
    assert decisions[-1].retry_after == 60


async def test_retry_after_counts_down_and_window_resets():
    clock = FakeClock()
    limiter = MemoryRateLimiter(max_reqs=1, window_seconds=60, clock=clock)
    await limiter.hit("k")

    clock.now += 45.5
    blocked = await limiter.hit("k")
    assert not blocked.allowed
    assert blocked.retry_after == 15

    clock.now += 15
    assert (await limiter.hit("k")).allowed


async def test_keys_are_independent():
    limiter = MemoryRateLimiter(max_reqs=1, window_seconds=60, clock=FakeClock())
    assert (await limiter.hit("a")).allowed
    assert not (await limiter.hit("a")).allowed
    assert (await limiter.hit("b")).allowed


async def test_sweep_drops_only_expired_windows():
    clock = FakeClock()
    limiter = MemoryRateLimiter(max_reqs=1, window_seconds=60, clock=clock)
    await limiter.hit("old")
    clock.now += 30
    await limiter.hit("new")
    clock.now += 31

    assert limiter.sweep() == 1
    assert not (await limiter.hit("new")).allowed


class FakeRedis:
    """Just enough of redis.asyncio for INCR/TTL/EXPIRE windows."""

    def __init__(self, clock):
        self.clock = clock
        self.values = {}
        self.expiry = {}

    def _purge(self, key):
        if key in self.expiry and self.clock() >= self.expiry[key]:
            self.values.pop(key, None)
            self.expiry.pop(key, None)

    async def incr(self, key):
        self._purge(key)
        self.values[key] = self.values.get(key, 0) + 1
        return self.values[key]

    async def ttl(self, key):
        self._purge(key)
        if key not in self.values:
            return -2
        if key not in self.expiry:
            return -1
        return math.ceil(self.expiry[key] - self.clock())

    async def expire(self, key, seconds):
        self.expiry[key] = self.clock() + seconds
        return True

    def pipeline(self):
        return FakePipeline(self)


class FakePipeline:
    def __init__(self, redis):
        self.redis = redis
        self.calls = []

    def incr(self, key):
        self.calls.append(("incr", key))

    def ttl(self, key):
        self.calls.append(("ttl", key))

    async def execute(self):
        return [await getattr(self.redis, name)(key) for name, key in self.calls]


@pytest.fixture
def fake_redis(monkeypatch):
    clock = FakeClock()
    fake = FakeRedis(clock)
    monkeypatch.setattr(ratelimit, "get_redis", lambda: fake)
    return fake


async def test_redis_limiter_budget_and_retry_after(fake_redis):
    limiter = RedisRateLimiter(max_reqs=2, window_seconds=60)
    decisions = [await limiter.hit("9.9.9.9") for _ in range(3)]
    assert [d.allowed for d in decisions] == [True, True, False]
    assert decisions[-1].retry_after == 60
    assert fake_redis.expiry["rl:checkin:9.9.9.9"] == fake_redis.clock() + 60


async def test_redis_limiter_window_resets(fake_redis):
    limiter = RedisRateLimiter(max_reqs=1, window_seconds=60)
    await limiter.hit("k")
    fake_redis.clock.now += 20
    blocked = await limiter.hit("k")
    assert not blocked.allowed
    assert blocked.retry_after == 40

    fake_redis.clock.now += 40
    assert (await limiter.hit("k")).allowed


async def test_redis_limiter_restores_lost_expiry(fake_redis):
    limiter = RedisRateLimiter(max_reqs=5, window_seconds=30)
    fake_redis.values["rl:checkin:k"] = 3  # counter left without a TTL
    assert (await limiter.hit("k")).allowed
    assert "rl:checkin:k" in fake_redis.expiry


async def test_redis_limiter_against_live_server(monkeypatch):
    client = aioredis.from_url(
        os.environ.get("REDIS_URL", "redis://127.0.0.1:6379/15"), decode_responses=True, socket_connect_timeout=1,
    )
    try:
        await client.ping()
    except (RedisError, OSError):
        await client.aclose()
        pytest.skip("no redis server")
    monkeypatch.setattr(ratelimit, "get_redis", lambda: client)
    limiter = RedisRateLimiter(max_reqs=1, window_seconds=5, prefix=f"rl:test:{uuid.uuid4().hex}")
    try:
        assert (await limiter.hit("k")).allowed
        blocked = await limiter.hit("k")
        assert not blocked.allowed
        assert 1 <= blocked.retry_after <= 5
    finally:
        await client.delete(f"{limiter.prefix}:k")
        await client.aclose()

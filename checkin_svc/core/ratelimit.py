from __future__ import annotations
import asyncio
import math
import time
from dataclasses import dataclass
from typing import Dict, Protocol

from .config import get_settings
from .redis import get_redis

_settings = get_settings()


@dataclass(frozen=True)
class RateDecision:
    allowed: bool
    retry_after: int | None = None  # seconds


class RateLimiter(Protocol):
    async def hit(self, key: str) -> RateDecision: ...


class MemoryRateLimiter:
    """Fixed window counter per key, held in process memory.

    Single instance only: two app instances each get their own budget.
    Use ``RedisRateLimiter`` when running more than one.
    """

    def __init__(self, max_reqs: int, window_seconds: int, clock=time.monotonic):
        self.max_reqs = max_reqs
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: Dict[str, list[float]] = {}  # key -> [count, reset_at]
        self._lock = asyncio.Lock()

    async def hit(self, key: str) -> RateDecision:
        async with self._lock:
            now = self._clock()
            entry = self._windows.get(key)
            if entry is None or now >= entry[1]:
                self._windows[key] = [1, now + self.window_seconds]
                return RateDecision(True)
            entry[0] += 1
            if entry[0] > self.max_reqs:
                return RateDecision(False, max(1, math.ceil(entry[1] - now)))
            return RateDecision(True)

    def sweep(self) -> int:
        """Drop expired windows. Returns how many were removed."""
        now = self._clock()
        stale = [k for k, (_, reset_at) in self._windows.items() if now >= reset_at]
        for k in stale:
            self._windows.pop(k, None)
        return len(stale)

    def reset(self) -> None:
        self._windows.clear()


class RedisRateLimiter:
    """Fixed window counter shared through Redis (INCR + EXPIRE on first hit)."""

    def __init__(self, max_reqs: int, window_seconds: int, prefix: str = "rl:checkin"):
        self.max_reqs = max_reqs
        self.window_seconds = window_seconds
        self.prefix = prefix

    async def hit(self, key: str) -> RateDecision:
        r = get_redis()
        rkey = f"{self.prefix}:{key}"
        pipe = r.pipeline()
        pipe.incr(rkey)
        pipe.ttl(rkey)
        count, ttl = await pipe.execute()
        if int(ttl) < 0:
            # first hit of the window (or a key that lost its expiry)
            await r.expire(rkey, self.window_seconds)
            ttl = self.window_seconds
        if int(count) > self.max_reqs:
            return RateDecision(False, max(1, int(ttl)))
        return RateDecision(True)


class DisabledRateLimiter:
    async def hit(self, key: str) -> RateDecision:
        return RateDecision(True)


_limiter: RateLimiter | None = None

def get_rate_limiter() -> RateLimiter:
    global _limiter
    if _limiter is None:
        if not _settings.rl_enabled:
            _limiter = DisabledRateLimiter()
        elif _settings.rl_backend == "redis":
            _limiter = RedisRateLimiter(_settings.rl_max_reqs, _settings.rl_window_seconds)
        else:
            _limiter = MemoryRateLimiter(_settings.rl_max_reqs, _settings.rl_window_seconds)
    return _limiter

def sweep_rate_limiter() -> int:
    limiter = get_rate_limiter()
    if isinstance(limiter, MemoryRateLimiter):
        return limiter.sweep()
    return 0

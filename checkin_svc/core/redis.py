from __future__ import annotations
import redis.asyncio as redis
from .config import get_settings

_settings = get_settings()
_r: redis.Redis | None = None

def get_redis() -> redis.Redis:
    global _r
    if _r is None:
        _r = redis.from_url(_settings.redis_url, decode_responses=True)
    return _r

async def ping_redis() -> bool:
    try:
        r = get_redis()
        pong = await r.ping()
        return bool(pong)
    except Exception:
        return False

async def close_redis() -> None:
    global _r
    if _r is not None:
        await _r.aclose()
        _r = None

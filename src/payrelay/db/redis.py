"""Redis connection — shared counters for rate limiting.

Learn: Redis is optional here. The relay itself never touches it (fan-out
is in-process); it only backs the per-IP request counters. If the ping
fails at startup the app runs without rate limiting.
"""

from typing import Optional

import redis.asyncio as aioredis

from payrelay.config import settings

# Initialized in the lifespan
_redis: Optional[aioredis.Redis] = None


async def init_redis() -> aioredis.Redis:
    global _redis
    client = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
    )
    try:
        await client.ping()
    except Exception:
        await client.aclose()
        raise
    _redis = client
    return _redis


async def close_redis() -> None:
    global _redis
    if _redis:
        await _redis.aclose()
        _redis = None


def get_redis() -> aioredis.Redis:
    """Get the Redis connection. Raises RuntimeError if it isn't up."""
    if _redis is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis

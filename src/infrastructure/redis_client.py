"""Redis async connection pool for the event publisher."""

from __future__ import annotations

import redis.asyncio as aioredis

_pool: aioredis.ConnectionPool | None = None


def get_redis(url: str) -> aioredis.Redis:
    """Return a Redis client backed by the shared connection pool."""
    global _pool
    if _pool is None:
        _pool = aioredis.ConnectionPool.from_url(url, decode_responses=True)
    return aioredis.Redis(connection_pool=_pool)


async def close_redis() -> None:
    global _pool
    if _pool is not None:
        await _pool.disconnect()
        _pool = None

"""
Shared Redis client.

One connection pool per process, created on first use so importing this
module never opens a socket.  ``close_redis`` is called from the app
lifespan on shutdown.
"""

from __future__ import annotations

from typing import Optional

import redis.asyncio as aioredis

from ridehail.config import settings

_pool: Optional[aioredis.ConnectionPool] = None


async def get_redis() -> aioredis.Redis:
    """Return a Redis client backed by the shared connection pool."""
    global _pool
    if _pool is None:
        _pool = aioredis.ConnectionPool.from_url(
            settings.redis_url, decode_responses=True
        )
    return aioredis.Redis(connection_pool=_pool)


async def close_redis() -> None:
    global _pool
    if _pool is not None:
        await _pool.disconnect()
        _pool = None

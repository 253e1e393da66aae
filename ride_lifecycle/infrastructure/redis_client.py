"""
Redis async connection pool.

Only needed when ``RIDE_LOCK_BACKEND=redis``: per-ride locks and the
dispatcher's cycle lock then live in Redis so several API processes can
share one database.
"""

import redis.asyncio as aioredis

from ride_lifecycle.config import settings

_pool = aioredis.ConnectionPool.from_url(
    settings.redis_url, decode_responses=True
)


async def get_redis() -> aioredis.Redis:
    """Return a Redis client backed by the shared connection pool."""
    return aioredis.Redis(connection_pool=_pool)


async def close_redis() -> None:
    """Disconnect every pooled connection (application shutdown)."""
    await _pool.disconnect()

"""Redis async connection pool shared by locks and the change feed."""

import redis.asyncio as aioredis

from carpool.config import settings

_pool = aioredis.ConnectionPool.from_url(
    settings.redis_url, decode_responses=True
)


async def get_redis() -> aioredis.Redis:
    """Return a Redis client backed by the shared connection pool."""
    return aioredis.Redis(connection_pool=_pool)

"""Redis async client factory."""

import redis.asyncio as aioredis

from taxidispatch.config import settings


def create_redis(url: str = settings.redis_url) -> aioredis.Redis:
    """Return a Redis client with its own connection pool."""
    pool = aioredis.ConnectionPool.from_url(url, decode_responses=True)
    return aioredis.Redis(connection_pool=pool)

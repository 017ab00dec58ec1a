"""Redis connection pool configuration.

Redis is the cache store for feed snapshots, webhook idempotency markers,
the optimistic like queue and generation rate-limit counters. None of
those are authoritative; the relational store is.
"""

from typing import Optional

import redis.asyncio as redis

from app.core.config import settings


class RedisConnection:
    """
    Redis connection pool manager.

    Provides connection pooling with configurable max connections.
    """

    def __init__(self, url: Optional[str] = None):
        self.url = url or settings.REDIS_URL
        self.pool: Optional[redis.ConnectionPool] = None
        self.client: Optional[redis.Redis] = None

    async def connect(self) -> None:
        """Create Redis connection pool."""
        if self.pool is None:
            self.pool = redis.ConnectionPool.from_url(
                self.url,
                max_connections=settings.REDIS_MAX_CONNECTIONS,
                decode_responses=True,  # Queue records and feeds are JSON text
                health_check_interval=30,
            )
            self.client = redis.Redis(connection_pool=self.pool)

    async def get_client(self) -> redis.Redis:
        """Get Redis client (create pool if not exists)."""
        if self.client is None:
            await self.connect()
        return self.client

    async def ping(self) -> bool:
        """Test Redis connection."""
        try:
            client = await self.get_client()
            return await client.ping()
        except redis.RedisError:
            return False

    async def close(self) -> None:
        """Close Redis connection pool."""
        if self.client:
            await self.client.aclose()
            self.client = None
        if self.pool:
            await self.pool.disconnect()
            self.pool = None


# Global Redis connection instance
redis_conn = RedisConnection()


async def get_redis() -> redis.Redis:
    """
    Dependency for FastAPI routes to get Redis client.

    Usage:
        @app.get("/feed/home")
        async def home_feed(redis: Redis = Depends(get_redis)):
            cached = await redis.get("feed:home:user_123")
            ...
    """
    return await redis_conn.get_client()


async def init_redis() -> None:
    """Initialize Redis connection pool (run on startup)."""
    await redis_conn.connect()


async def close_redis() -> None:
    """Close Redis connection pool (run on shutdown)."""
    await redis_conn.close()

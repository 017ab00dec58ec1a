"""Per-account rate limiting.

This module provides:
- Fixed-window counters per account, stored in Redis with a TTL
- A generation limit (GENERATION_RATE_LIMIT per hour) and an interaction limit
- Graceful degradation if Redis is unavailable (fail open)
- Rate limit headers (X-RateLimit-*) on rejection
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import redis.asyncio as redis
from fastapi import HTTPException, status

from app.core.config import settings

logger = logging.getLogger(__name__)

GENERATION_PREFIX = "ratelimit:ai"
INTERACTION_PREFIX = "ratelimit:interaction"
INTERACTION_LIMIT = 30  # Likes/unlikes per minute
INTERACTION_WINDOW_SECONDS = 60


def _format_window(seconds: int) -> str:
    if seconds % 3600 == 0:
        return f"{seconds // 3600}h"
    if seconds % 60 == 0:
        return f"{seconds // 60}m"
    return f"{seconds}s"


class RateLimitExceeded(HTTPException):
    """Exception raised when rate limit is exceeded."""

    def __init__(self, retry_after: int, limit: int, window: str = "1h"):
        """Initialize rate limit exception.

        Args:
            retry_after: Seconds until limit resets
            limit: Maximum allowed requests
            window: Time window (e.g., "1h")
        """
        super().__init__(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={
                "error": "rate_limit_exceeded",
                "message": f"Limited to {limit} requests per {window}.",
                "limit": limit,
                "window": window,
                "retry_after": retry_after,
            },
            headers={
                "Retry-After": str(retry_after),
                "X-RateLimit-Limit": str(limit),
                "X-RateLimit-Remaining": "0",
                "X-RateLimit-Reset": str(
                    int((datetime.now(timezone.utc) + timedelta(seconds=retry_after)).timestamp())
                ),
            },
        )


class AccountRateLimiter:
    """Fixed-window request counter keyed by account.

    The counter is incremented before it is compared, so concurrent
    requests cannot all observe the same pre-increment count.
    """

    def __init__(
        self,
        redis_client: Optional[redis.Redis],
        prefix: str,
        limit: int,
        window_seconds: int,
    ):
        self.redis = redis_client
        self.prefix = prefix
        self.limit = limit
        self.window_seconds = window_seconds

    def _key(self, account_id: str) -> str:
        return f"{self.prefix}:{account_id}"

    async def _retry_after(self, key: str) -> int:
        ttl = await self.redis.ttl(key)
        if ttl == -1:  # Key exists but has no expiration
            await self.redis.expire(key, self.window_seconds)
            return self.window_seconds
        if ttl < 0:
            return self.window_seconds
        return ttl

    async def enforce(self, account_id: str) -> dict:
        """Count a request and raise if the account is over its limit.

        Returns:
            Dict with rate limit info (limit, remaining, current)

        Raises:
            RateLimitExceeded: If rate limit is exceeded
        """
        if not self.redis:
            logger.warning("Redis not available, skipping rate limit check")
            return {"limit": self.limit, "remaining": self.limit, "current": 0}

        key = self._key(account_id)
        try:
            current = await self.redis.incr(key)
            if current == 1:
                await self.redis.expire(key, self.window_seconds)

            if current > self.limit:
                retry_after = await self._retry_after(key)
                logger.info(f"Rate limit hit: {key} ({current}/{self.limit})")
                raise RateLimitExceeded(
                    retry_after=retry_after,
                    limit=self.limit,
                    window=_format_window(self.window_seconds),
                )

        except redis.RedisError as e:
            # If Redis operation fails, allow the request (fail open)
            logger.error(f"Rate limit check failed: {e}")
            return {"limit": self.limit, "remaining": self.limit, "current": 0}

        return {"limit": self.limit, "remaining": self.limit - current, "current": current}


def get_generation_limiter(redis_client: Optional[redis.Redis]) -> AccountRateLimiter:
    """Limiter for AI generation endpoints."""
    return AccountRateLimiter(
        redis_client,
        prefix=GENERATION_PREFIX,
        limit=settings.GENERATION_RATE_LIMIT,
        window_seconds=settings.GENERATION_RATE_WINDOW_SECONDS,
    )


def get_interaction_limiter(redis_client: Optional[redis.Redis]) -> AccountRateLimiter:
    """Limiter for like/unlike endpoints."""
    return AccountRateLimiter(
        redis_client,
        prefix=INTERACTION_PREFIX,
        limit=INTERACTION_LIMIT,
        window_seconds=INTERACTION_WINDOW_SECONDS,
    )

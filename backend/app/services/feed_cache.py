"""Materialized first-page feeds in Redis.

Each scope has a fixed TTL. A cache read failure is treated as a miss and
a write failure is ignored, so Redis being down only costs latency.
Invalidation failures are raised: a stale feed that cannot be cleared is
something the caller has to know about.
"""

import enum
import logging
from typing import Optional

import pydantic
import redis.asyncio as redis

from app.core.config import settings
from app.schemas.feed import CachedFeed, FeedItem

logger = logging.getLogger(__name__)


class FeedScope(str, enum.Enum):
    """Feed cache scopes."""

    HOME = "home"  # keyed by viewer account id
    EXPLORE = "explore"  # keyed by sort order
    USER = "user"  # keyed by author account id


EXPLORE_SORTS = ("recent", "popular")


def feed_key(scope: FeedScope, key: str) -> str:
    """Redis key for a cached feed."""
    return f"feed:{scope.value}:{key}"


def scope_ttl(scope: FeedScope) -> int:
    """TTL in seconds for a scope."""
    return {
        FeedScope.HOME: settings.FEED_TTL_HOME_SECONDS,
        FeedScope.EXPLORE: settings.FEED_TTL_EXPLORE_SECONDS,
        FeedScope.USER: settings.FEED_TTL_USER_SECONDS,
    }[scope]


class FeedCacheManager:
    """Read, write and invalidate cached feeds."""

    def __init__(self, client: redis.Redis):
        self.client = client

    async def get(self, scope: FeedScope, key: str) -> Optional[CachedFeed]:
        """Return the cached feed head and its total, or None on a miss."""
        cache_key = feed_key(scope, key)
        try:
            raw = await self.client.get(cache_key)
        except redis.RedisError as e:
            logger.warning(f"Feed cache read failed for {cache_key}: {e}")
            return None

        if raw is None:
            return None

        try:
            return CachedFeed.model_validate_json(raw)
        except pydantic.ValidationError:
            logger.warning(f"Discarding unreadable cached feed {cache_key}")
            return None

    async def put(
        self,
        scope: FeedScope,
        key: str,
        items: list[FeedItem],
        total: Optional[int] = None,
    ) -> None:
        """Cache a feed head with the scope's TTL.

        total is the size of the whole feed; it defaults to len(items).
        """
        cache_key = feed_key(scope, key)
        entry = CachedFeed(items=items, total=len(items) if total is None else total)
        try:
            await self.client.setex(cache_key, scope_ttl(scope), entry.model_dump_json())
        except redis.RedisError as e:
            logger.warning(f"Feed cache write failed for {cache_key}: {e}")

    async def invalidate(self, scope: FeedScope, key: str) -> None:
        """Drop a cached feed.

        Raises:
            redis.RedisError: If the key could not be deleted
        """
        cache_key = feed_key(scope, key)
        try:
            await self.client.delete(cache_key)
        except redis.RedisError as e:
            logger.error(f"Feed cache invalidation failed for {cache_key}: {e}")
            raise

    async def invalidate_explore(self) -> None:
        """Drop every cached explore ordering."""
        keys = [feed_key(FeedScope.EXPLORE, sort) for sort in EXPLORE_SORTS]
        try:
            await self.client.delete(*keys)
        except redis.RedisError as e:
            logger.error(f"Explore feed invalidation failed: {e}")
            raise

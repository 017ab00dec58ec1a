"""Tests for the Redis feed cache."""

from datetime import datetime, timezone
from uuid import uuid4

import pytest
import redis.asyncio as redis

from app.models.social import Visibility
from app.schemas.feed import FeedAuthor, FeedItem
from app.services.feed_cache import FeedCacheManager, FeedScope, feed_key


def make_item(caption: str = "hello") -> FeedItem:
    return FeedItem(
        id=uuid4(),
        caption=caption,
        visibility=Visibility.PUBLIC,
        created_at=datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc),
        user=FeedAuthor(id="user_a", username="alice"),
        like_count=3,
    )


@pytest.fixture
def cache(fake_redis) -> FeedCacheManager:
    return FeedCacheManager(fake_redis)


# ============================================================================
# Read/Write Tests
# ============================================================================


class TestGetPut:
    async def test_miss_returns_none(self, cache):
        assert await cache.get(FeedScope.HOME, "user_a") is None

    async def test_put_then_get(self, cache):
        items = [make_item("first"), make_item("second")]

        await cache.put(FeedScope.USER, "user_a", items)
        cached = await cache.get(FeedScope.USER, "user_a")

        assert [item.caption for item in cached.items] == ["first", "second"]
        assert cached.items[0].id == items[0].id
        assert cached.items[0].like_count == 3
        assert cached.total == 2

    async def test_total_is_stored_with_the_head(self, cache):
        await cache.put(FeedScope.EXPLORE, "recent", [make_item()], total=60)

        cached = await cache.get(FeedScope.EXPLORE, "recent")

        assert len(cached.items) == 1
        assert cached.total == 60

    @pytest.mark.parametrize(
        "scope, ttl",
        [(FeedScope.HOME, 300), (FeedScope.EXPLORE, 600), (FeedScope.USER, 900)],
    )
    async def test_scope_ttl(self, cache, fake_redis, scope, ttl):
        await cache.put(scope, "k", [make_item()])
        assert await fake_redis.ttl(feed_key(scope, "k")) == ttl

    async def test_entry_expires(self, cache, fake_redis):
        await cache.put(FeedScope.HOME, "user_a", [make_item()])

        fake_redis.advance(301)

        assert await cache.get(FeedScope.HOME, "user_a") is None

    async def test_unreadable_entry_is_a_miss(self, cache, fake_redis):
        await fake_redis.set(feed_key(FeedScope.HOME, "user_a"), "not json")
        assert await cache.get(FeedScope.HOME, "user_a") is None


class TestRedisFailures:
    async def test_read_error_is_a_miss(self, redis_down):
        cache = FeedCacheManager(redis_down)
        assert await cache.get(FeedScope.EXPLORE, "recent") is None

    async def test_write_error_is_ignored(self, redis_down):
        cache = FeedCacheManager(redis_down)
        await cache.put(FeedScope.EXPLORE, "recent", [make_item()])

    async def test_invalidate_error_is_raised(self, redis_down):
        cache = FeedCacheManager(redis_down)
        with pytest.raises(redis.ConnectionError):
            await cache.invalidate(FeedScope.HOME, "user_a")

    async def test_invalidate_explore_error_is_raised(self, redis_down):
        cache = FeedCacheManager(redis_down)
        with pytest.raises(redis.ConnectionError):
            await cache.invalidate_explore()


# ============================================================================
# Invalidation Tests
# ============================================================================


class TestInvalidate:
    async def test_invalidate_single_key(self, cache):
        await cache.put(FeedScope.HOME, "user_a", [make_item()])
        await cache.put(FeedScope.HOME, "user_b", [make_item()])

        await cache.invalidate(FeedScope.HOME, "user_a")

        assert await cache.get(FeedScope.HOME, "user_a") is None
        assert await cache.get(FeedScope.HOME, "user_b") is not None

    async def test_invalidate_explore_drops_every_sort(self, cache):
        await cache.put(FeedScope.EXPLORE, "recent", [make_item()])
        await cache.put(FeedScope.EXPLORE, "popular", [make_item()])

        await cache.invalidate_explore()

        assert await cache.get(FeedScope.EXPLORE, "recent") is None
        assert await cache.get(FeedScope.EXPLORE, "popular") is None

"""Feed assembly and the social writes that invalidate feeds.

Only the first page of a feed is served from cache. A miss on page 1
reads FEED_CACHE_SIZE rows from the store, caches them with the feed's
total, and slices the requested page out; later pages always read through
to the store.
"""

import logging
from typing import Awaitable, Callable, Optional
from uuid import UUID

import redis.asyncio as redis
from sqlalchemy import Select, delete, desc, exists, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.models.account import Account
from app.models.generation_job import GenerationJob, JobStatus
from app.models.social import Follow, Like, Post, Visibility
from app.schemas.feed import FeedAuthor, FeedContent, FeedItem, FeedResponse, Pagination
from app.services.errors import (
    AccountNotFoundError,
    NotFoundError,
    UpstreamError,
    ValidationError,
)
from app.services.feed_cache import EXPLORE_SORTS, FeedCacheManager, FeedScope

logger = logging.getLogger(__name__)


class FeedService:
    """Service for reading feeds and writing posts and follows."""

    def __init__(self, db: AsyncSession, cache: FeedCacheManager):
        self.db = db
        self.cache = cache

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _feed_query(self, viewer_id: Optional[str]) -> Select:
        like_count = (
            select(func.count(Like.id))
            .where(Like.post_id == Post.id)
            .correlate(Post)
            .scalar_subquery()
        )
        columns = [Post, Account, GenerationJob, like_count.label("like_count")]
        if viewer_id:
            liked = exists().where(Like.post_id == Post.id, Like.account_id == viewer_id)
            columns.append(liked.label("liked_by_me"))

        return (
            select(*columns)
            .join(Account, Post.account_id == Account.id)
            .outerjoin(GenerationJob, Post.content_id == GenerationJob.id)
        )

    @staticmethod
    def _to_item(row) -> FeedItem:
        post, author, job = row[0], row[1], row[2]
        return FeedItem(
            id=post.id,
            caption=post.caption,
            visibility=post.visibility,
            created_at=post.created_at,
            user=FeedAuthor(id=author.id, username=author.username, avatar_url=author.avatar_url),
            content=(
                FeedContent(
                    id=job.id,
                    prompt=job.prompt,
                    generation_type=job.generation_type,
                    result_url=job.result_url,
                )
                if job is not None
                else None
            ),
            like_count=row.like_count or 0,
            liked_by_me=bool(row.liked_by_me) if "liked_by_me" in row._fields else None,
        )

    async def _fetch(self, query: Select, limit: int, offset: int) -> list[FeedItem]:
        result = await self.db.execute(query.limit(limit).offset(offset))
        return [self._to_item(row) for row in result.all()]

    async def _count(self, where_clause) -> int:
        return await self.db.scalar(select(func.count(Post.id)).where(where_clause)) or 0

    async def _paged(
        self,
        scope: FeedScope,
        key: str,
        page: int,
        limit: int,
        fetch: Callable[[int, int], Awaitable[list[FeedItem]]],
        count: Callable[[], Awaitable[int]],
    ) -> FeedResponse:
        if page < 1 or limit < 1:
            raise ValidationError("Invalid pagination parameters")

        offset = (page - 1) * limit

        if page == 1:
            cached = await self.cache.get(scope, key)
            # A head shorter than the requested page cannot serve it
            if cached is not None and len(cached.items) >= min(limit, cached.total):
                return FeedResponse(
                    data=cached.items[:limit],
                    pagination=Pagination(
                        page=page, limit=limit, total=cached.total, has_more=limit < cached.total
                    ),
                    cached=True,
                )

            items = await fetch(max(settings.FEED_CACHE_SIZE, limit), 0)
            total = await count()
            if items:
                await self.cache.put(scope, key, items, total)
            data = items[:limit]
        else:
            data = await fetch(limit, offset)
            total = await count()

        return FeedResponse(
            data=data,
            pagination=Pagination(
                page=page, limit=limit, total=total, has_more=offset + limit < total
            ),
        )

    async def home_feed(self, viewer_id: str, page: int = 1, limit: int = 20) -> FeedResponse:
        """Posts from accounts the viewer follows, newest first."""
        following = select(Follow.following_id).where(Follow.follower_id == viewer_id)
        where_clause = Post.account_id.in_(following) & Post.visibility.in_(
            [Visibility.PUBLIC, Visibility.FOLLOWERS]
        )
        query = self._feed_query(viewer_id).where(where_clause).order_by(desc(Post.created_at))

        return await self._paged(
            FeedScope.HOME,
            viewer_id,
            page,
            limit,
            lambda lim, off: self._fetch(query, lim, off),
            lambda: self._count(where_clause),
        )

    async def explore_feed(
        self, sort: str = "recent", page: int = 1, limit: int = 20
    ) -> FeedResponse:
        """Public posts, by recency or like count."""
        if sort not in EXPLORE_SORTS:
            raise ValidationError(f"Invalid sort '{sort}'. Valid sorts: {', '.join(EXPLORE_SORTS)}")

        where_clause = Post.visibility == Visibility.PUBLIC
        query = self._feed_query(None).where(where_clause)
        if sort == "popular":
            query = query.order_by(desc("like_count"), desc(Post.created_at))
        else:
            query = query.order_by(desc(Post.created_at))

        return await self._paged(
            FeedScope.EXPLORE,
            sort,
            page,
            limit,
            lambda lim, off: self._fetch(query, lim, off),
            lambda: self._count(where_clause),
        )

    async def user_feed(self, author_id: str, page: int = 1, limit: int = 20) -> FeedResponse:
        """An author's public posts, newest first."""
        where_clause = (Post.account_id == author_id) & (Post.visibility == Visibility.PUBLIC)
        query = self._feed_query(None).where(where_clause).order_by(desc(Post.created_at))

        return await self._paged(
            FeedScope.USER,
            author_id,
            page,
            limit,
            lambda lim, off: self._fetch(query, lim, off),
            lambda: self._count(where_clause),
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create_post(
        self,
        account_id: str,
        content_id: Optional[UUID] = None,
        caption: Optional[str] = None,
        visibility: Visibility = Visibility.PUBLIC,
    ) -> Post:
        """Publish a post and invalidate the feeds it appears in.

        Raises:
            NotFoundError: If content_id is not a completed generation owned by the account
            UpstreamError: If the post was saved but feed invalidation failed
        """
        if content_id is not None:
            job = await self.db.scalar(
                select(GenerationJob).where(
                    GenerationJob.id == content_id,
                    GenerationJob.account_id == account_id,
                    GenerationJob.status == JobStatus.COMPLETED,
                )
            )
            if job is None:
                raise NotFoundError(f"Generation {content_id} not found")

        post = Post(
            account_id=account_id,
            content_id=content_id,
            caption=caption,
            visibility=visibility,
        )
        self.db.add(post)
        await self.db.commit()
        await self.db.refresh(post)

        logger.info(f"Post {post.id} created by account {account_id}")

        try:
            await self.cache.invalidate(FeedScope.USER, account_id)
            await self.cache.invalidate_explore()
        except redis.RedisError as e:
            raise UpstreamError("Post saved but feed cache invalidation failed") from e

        return post

    async def follow(self, follower_id: str, following_id: str) -> bool:
        """Follow an account. Following twice is a no-op.

        Returns:
            True if a new follow edge was created
        """
        if follower_id == following_id:
            raise ValidationError("Accounts cannot follow themselves")

        target = await self.db.scalar(select(Account.id).where(Account.id == following_id))
        if target is None:
            raise AccountNotFoundError(following_id)

        created = True
        try:
            async with self.db.begin_nested():
                self.db.add(Follow(follower_id=follower_id, following_id=following_id))
        except IntegrityError:
            created = False
        await self.db.commit()

        await self._invalidate_home(follower_id)
        return created

    async def unfollow(self, follower_id: str, following_id: str) -> bool:
        """Remove a follow edge. Unfollowing a non-followed account is a no-op.

        Returns:
            True if an edge was removed
        """
        result = await self.db.execute(
            delete(Follow).where(
                Follow.follower_id == follower_id,
                Follow.following_id == following_id,
            )
        )
        await self.db.commit()

        await self._invalidate_home(follower_id)
        return result.rowcount > 0

    async def _invalidate_home(self, account_id: str) -> None:
        try:
            await self.cache.invalidate(FeedScope.HOME, account_id)
        except redis.RedisError as e:
            raise UpstreamError("Feed cache invalidation failed") from e


def get_feed_service(db: AsyncSession, redis_client: redis.Redis) -> FeedService:
    """Factory function to create FeedService."""
    return FeedService(db, FeedCacheManager(redis_client))

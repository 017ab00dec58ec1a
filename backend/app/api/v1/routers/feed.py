"""API routes for feeds.

This module provides REST endpoints for:
- GET /api/v1/feed/home - Posts from followed accounts
- GET /api/v1/feed/explore - Public posts by recency or popularity
- GET /api/v1/feed/user/{account_id} - An account's public posts

The first page of each feed is served from the Redis feed cache.
"""

import logging
from typing import Literal

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
import redis.asyncio as redis

from app.api.deps import get_current_account, get_db, get_redis
from app.api.errors import to_http_exception
from app.models.account import Account
from app.schemas.feed import FeedResponse
from app.services.errors import LedgerError
from app.services.feed_service import get_feed_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/feed", tags=["feed"])


@router.get(
    "/home",
    response_model=FeedResponse,
    summary="Home feed",
    description="Posts from accounts the authenticated account follows",
)
async def home_feed(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=50),
    current_account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
    redis_client: redis.Redis = Depends(get_redis),
) -> FeedResponse:
    """Get the home feed, newest first."""
    try:
        return await get_feed_service(db, redis_client).home_feed(
            current_account.id, page=page, limit=limit
        )
    except LedgerError as e:
        raise to_http_exception(e)


@router.get(
    "/explore",
    response_model=FeedResponse,
    summary="Explore feed",
    description="Public posts from everyone",
)
async def explore_feed(
    sort: Literal["recent", "popular"] = Query(default="recent"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=50),
    db: AsyncSession = Depends(get_db),
    redis_client: redis.Redis = Depends(get_redis),
) -> FeedResponse:
    """Get the explore feed.

    No authentication required. Items never carry liked_by_me because the
    cached page is shared by every viewer.
    """
    try:
        return await get_feed_service(db, redis_client).explore_feed(
            sort=sort, page=page, limit=limit
        )
    except LedgerError as e:
        raise to_http_exception(e)


@router.get(
    "/user/{account_id}",
    response_model=FeedResponse,
    summary="User feed",
    description="Public posts by one account",
)
async def user_feed(
    account_id: str,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=50),
    db: AsyncSession = Depends(get_db),
    redis_client: redis.Redis = Depends(get_redis),
) -> FeedResponse:
    """Get an account's public posts, newest first."""
    try:
        return await get_feed_service(db, redis_client).user_feed(
            account_id, page=page, limit=limit
        )
    except LedgerError as e:
        raise to_http_exception(e)

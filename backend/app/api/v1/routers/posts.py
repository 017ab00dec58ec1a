"""API routes for posts, likes and follows.

This module provides REST endpoints for:
- POST /api/v1/posts - Share a generation
- POST /api/v1/posts/{post_id}/like - Queue a like
- DELETE /api/v1/posts/{post_id}/like - Queue an unlike
- POST /api/v1/users/{account_id}/follow - Follow an account
- DELETE /api/v1/users/{account_id}/follow - Unfollow an account
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession
import redis.asyncio as redis

from app.api.deps import (
    enforce_interaction_rate_limit,
    get_current_account,
    get_db,
    get_redis,
)
from app.api.errors import to_http_exception
from app.core.arq_config import enqueue_job
from app.core.config import settings
from app.models.account import Account
from app.schemas.feed import (
    FollowResponse,
    InteractionResponse,
    PostCreateRequest,
    PostResponse,
)
from app.services.errors import LedgerError, UpstreamError
from app.services.feed_service import get_feed_service
from app.services.interaction_queue import DRAIN_JOB_ID, InteractionQueue

logger = logging.getLogger(__name__)

router = APIRouter(tags=["social"])


@router.post(
    "/posts",
    response_model=PostResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create post",
    description="Share a completed generation with an optional caption",
)
async def create_post(
    request: PostCreateRequest,
    current_account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
    redis_client: redis.Redis = Depends(get_redis),
) -> PostResponse:
    """Create a post.

    Raises:
        HTTPException(404): If content_id is not a completed generation of the caller
        HTTPException(502): If the post was saved but feeds could not be invalidated
    """
    try:
        post = await get_feed_service(db, redis_client).create_post(
            current_account.id,
            content_id=request.content_id,
            caption=request.caption,
            visibility=request.visibility,
        )
    except LedgerError as e:
        raise to_http_exception(e)
    return PostResponse.model_validate(post)


async def _request_drain() -> None:
    # A full batch is waiting; drain now instead of at the next cron tick
    try:
        await enqueue_job("drain_like_queue", _job_id=DRAIN_JOB_ID)
    except Exception as e:
        logger.warning(f"Could not schedule an early like-queue drain: {e}")


async def _enqueue(
    redis_client: redis.Redis, account_id: str, post_id: UUID, action: str
) -> InteractionResponse:
    queue = InteractionQueue(redis_client)
    try:
        await queue.enqueue(account_id, post_id, action)
        pending = await queue.pending_count()
    except redis.RedisError as e:
        logger.error(f"Failed to queue {action} on post {post_id}: {e}")
        raise to_http_exception(UpstreamError("Interaction queue unavailable"))
    except LedgerError as e:
        raise to_http_exception(e)

    if pending >= settings.LIKE_QUEUE_BATCH_SIZE:
        await _request_drain()
    return InteractionResponse(post_id=post_id, action=action, queued=True)


@router.post(
    "/posts/{post_id}/like",
    response_model=InteractionResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Like a post",
    description="Queue a like; it is persisted by the next drain",
    dependencies=[Depends(enforce_interaction_rate_limit)],
)
async def like_post(
    post_id: UUID,
    current_account: Account = Depends(get_current_account),
    redis_client: redis.Redis = Depends(get_redis),
) -> InteractionResponse:
    """Queue a like.

    The post is not looked up here; a like on a missing post is counted as
    a failure when the queue is drained.
    """
    return await _enqueue(redis_client, current_account.id, post_id, "like")


@router.delete(
    "/posts/{post_id}/like",
    response_model=InteractionResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Unlike a post",
    description="Queue an unlike; it is persisted by the next drain",
    dependencies=[Depends(enforce_interaction_rate_limit)],
)
async def unlike_post(
    post_id: UUID,
    current_account: Account = Depends(get_current_account),
    redis_client: redis.Redis = Depends(get_redis),
) -> InteractionResponse:
    """Queue an unlike."""
    return await _enqueue(redis_client, current_account.id, post_id, "unlike")


@router.post(
    "/users/{account_id}/follow",
    response_model=FollowResponse,
    summary="Follow an account",
)
async def follow(
    account_id: str,
    current_account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
    redis_client: redis.Redis = Depends(get_redis),
) -> FollowResponse:
    """Follow an account. Following twice is a no-op."""
    try:
        await get_feed_service(db, redis_client).follow(current_account.id, account_id)
    except LedgerError as e:
        raise to_http_exception(e)
    return FollowResponse(account_id=account_id, following=True)


@router.delete(
    "/users/{account_id}/follow",
    response_model=FollowResponse,
    summary="Unfollow an account",
)
async def unfollow(
    account_id: str,
    current_account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
    redis_client: redis.Redis = Depends(get_redis),
) -> FollowResponse:
    """Unfollow an account."""
    try:
        await get_feed_service(db, redis_client).unfollow(current_account.id, account_id)
    except LedgerError as e:
        raise to_http_exception(e)
    return FollowResponse(account_id=account_id, following=False)

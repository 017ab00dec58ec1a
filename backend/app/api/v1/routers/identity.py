"""API routes for identity provider webhooks.

This module provides REST endpoints for:
- POST /api/v1/auth/webhooks/identity - Account lifecycle events
"""

import logging

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
import redis.asyncio as redis

from app.api.deps import get_db, get_redis
from app.api.errors import to_http_exception
from app.schemas.identity import IdentityWebhookResponse
from app.services.errors import LedgerError
from app.services.identity_sync import get_identity_sync

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post(
    "/webhooks/identity",
    response_model=IdentityWebhookResponse,
    status_code=status.HTTP_200_OK,
    summary="Identity provider webhook",
    description="Create, update and delete accounts from signed identity events",
    include_in_schema=False,
)
async def identity_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    redis_client: redis.Redis = Depends(get_redis),
) -> IdentityWebhookResponse:
    """Apply one identity lifecycle event.

    user.created opens the account with its welcome credits.
    """
    payload = await request.body()
    sync = get_identity_sync(db, redis_client)

    try:
        result = await sync.handle_webhook(payload, request.headers)
    except LedgerError as e:
        logger.warning(f"Identity webhook rejected: {e}")
        raise to_http_exception(e)

    return result

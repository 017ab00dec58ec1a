"""API dependencies for FastAPI route handlers.

This module provides dependency injection functions for:
- Database sessions
- Redis connections
- Authentication (identity provider session JWT)
- Per-account rate limits
"""

import logging
from typing import AsyncGenerator, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession
import redis.asyncio as redis

from app.core.config import settings
from app.core.database import get_db as get_db_session
from app.core.redis import get_redis as get_redis_client
from app.middleware.rate_limit import get_generation_limiter, get_interaction_limiter
from app.models.account import Account
from app.services.ledger import get_credit_ledger

logger = logging.getLogger(__name__)

# HTTP Bearer token scheme for identity session tokens
security = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency to get database session.

    Yields:
        AsyncSession for database operations
    """
    async for session in get_db_session():
        yield session


async def get_redis() -> redis.Redis:
    """Dependency to get Redis client.

    Returns:
        Redis client instance
    """
    return await get_redis_client()


def decode_session_token(token: str) -> str:
    """Verify an identity session token and return its subject.

    Args:
        token: Encoded JWT from the Authorization header

    Returns:
        The account id carried in the ``sub`` claim

    Raises:
        HTTPException: 401 if the token is invalid, expired or has no subject
    """
    try:
        claims = jwt.decode(
            token,
            settings.IDENTITY_JWT_KEY,
            algorithms=[settings.IDENTITY_JWT_ALGORITHM],
            options={"verify_aud": False},
        )
    except JWTError as e:
        logger.info(f"Rejected session token: {e}")
        raise _unauthorized("Invalid or expired token")

    subject = claims.get("sub")
    if not subject:
        raise _unauthorized("Invalid or expired token")
    return subject


async def get_current_account(
    db: AsyncSession = Depends(get_db),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Account:
    """Dependency to get the authenticated account.

    The identity provider owns sign-in; we only verify its session token
    and load the account the identity webhook created.

    Raises:
        HTTPException: 401 if the token is missing or invalid, or the
            account has not been provisioned yet
    """
    if not credentials:
        raise _unauthorized("Not authenticated")

    account_id = decode_session_token(credentials.credentials)
    account = await get_credit_ledger(db).get_account(account_id)
    if account is None:
        raise _unauthorized("Account not found")
    return account


async def enforce_generation_rate_limit(
    account: Account = Depends(get_current_account),
    redis_client: redis.Redis = Depends(get_redis),
) -> dict:
    """Count a generation request against the account's hourly limit."""
    return await get_generation_limiter(redis_client).enforce(account.id)


async def enforce_interaction_rate_limit(
    account: Account = Depends(get_current_account),
    redis_client: redis.Redis = Depends(get_redis),
) -> dict:
    """Count a like/unlike against the account's per-minute limit."""
    return await get_interaction_limiter(redis_client).enforce(account.id)

"""Optimistic interaction queue for likes.

Like and unlike actions are pushed onto a Redis list and acknowledged
immediately; a single arq cron task drains the list into the likes table
in batches. Records popped by a drain that crashes before commit are
lost, which is accepted for likes.
"""

import logging
import time
from dataclasses import dataclass
from typing import Literal, Optional
from uuid import UUID

import pydantic
import redis.asyncio as redis
from pydantic import BaseModel
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.models.social import Like
from app.services.errors import ValidationError

logger = logging.getLogger(__name__)

QUEUE_KEY = "queue:likes"
DRAIN_JOB_ID = "drain_like_queue:eager"  # arq job id for out-of-schedule drains

Action = Literal["like", "unlike"]


class InteractionRecord(BaseModel):
    """A queued like/unlike."""

    user_id: str
    post_id: UUID
    action: Action
    timestamp: int  # Unix milliseconds


@dataclass
class DrainResult:
    """Counts from one drain pass."""

    processed: int = 0
    failed: int = 0

    @property
    def popped(self) -> int:
        return self.processed + self.failed


class InteractionQueue:
    """Buffer likes in Redis and flush them to the database."""

    def __init__(self, client: redis.Redis, db: Optional[AsyncSession] = None):
        """Initialize the queue.

        Args:
            client: Redis client holding the list
            db: Database session, required only for draining
        """
        self.client = client
        self.db = db

    async def enqueue(self, user_id: str, post_id: UUID, action: str) -> InteractionRecord:
        """Push an action onto the queue.

        Raises:
            ValidationError: If action is not like or unlike
        """
        if action not in ("like", "unlike"):
            raise ValidationError(f"Unknown interaction '{action}'")

        record = InteractionRecord(
            user_id=user_id,
            post_id=post_id,
            action=action,
            timestamp=int(time.time() * 1000),
        )
        await self.client.lpush(QUEUE_KEY, record.model_dump_json())
        return record

    async def pending_count(self) -> int:
        """Number of records waiting to be drained."""
        return await self.client.llen(QUEUE_KEY)

    async def drain_batch(self, max_items: Optional[int] = None) -> DrainResult:
        """Apply up to max_items of the oldest queued records.

        Each record runs in its own SAVEPOINT. Malformed records and
        per-record database errors are logged and counted without
        aborting the batch.

        Returns:
            DrainResult with processed and failed counts
        """
        if self.db is None:
            raise RuntimeError("InteractionQueue.drain_batch requires a database session")

        batch_size = max_items or settings.LIKE_QUEUE_BATCH_SIZE
        raw_items = await self.client.rpop(QUEUE_KEY, batch_size)
        result = DrainResult()
        if not raw_items:
            return result

        for raw in raw_items:
            try:
                record = InteractionRecord.model_validate_json(raw)
            except pydantic.ValidationError as e:
                result.failed += 1
                logger.error(f"Dropping malformed interaction record {raw!r}: {e.error_count()} errors")
                continue

            try:
                if record.action == "like":
                    await self._apply_like(record)
                else:
                    await self._apply_unlike(record)
                result.processed += 1
            except SQLAlchemyError as e:
                result.failed += 1
                logger.error(
                    f"Failed to apply {record.action} by {record.user_id} "
                    f"on post {record.post_id}: {e}"
                )

        await self.db.commit()

        logger.info(
            f"Drained {result.popped} interactions "
            f"({result.processed} applied, {result.failed} failed)"
        )
        return result

    async def _like_exists(self, record: InteractionRecord) -> bool:
        like_id = await self.db.scalar(
            select(Like.id).where(
                Like.account_id == record.user_id,
                Like.post_id == record.post_id,
            )
        )
        return like_id is not None

    async def _apply_like(self, record: InteractionRecord) -> None:
        if await self._like_exists(record):
            return
        try:
            async with self.db.begin_nested():
                self.db.add(Like(account_id=record.user_id, post_id=record.post_id))
        except IntegrityError:
            # Duplicate pair is a no-op; anything else (missing post) is a failure
            if not await self._like_exists(record):
                raise

    async def _apply_unlike(self, record: InteractionRecord) -> None:
        async with self.db.begin_nested():
            await self.db.execute(
                delete(Like).where(
                    Like.account_id == record.user_id,
                    Like.post_id == record.post_id,
                )
            )

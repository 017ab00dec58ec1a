"""Redis-backed delivery claims for webhook idempotency.

A delivery is claimed with SET NX EX before any side effect runs. A
second delivery of the same id finds the key and is acknowledged without
processing. If processing fails after the claim, the claim is released so
the sender's retry can succeed.
"""

import logging
from typing import Optional

import redis.asyncio as redis

from app.core.config import settings

logger = logging.getLogger(__name__)

KEY_PREFIX = "webhook:processed"


def marker_key(source: str, delivery_id: str) -> str:
    """Build the idempotency marker key for a delivery."""
    return f"{KEY_PREFIX}:{source}:{delivery_id}"


class DeliveryClaims:
    """Claim and release webhook deliveries."""

    def __init__(self, client: redis.Redis, source: str, ttl_seconds: Optional[int] = None):
        self.client = client
        self.source = source
        self.ttl_seconds = ttl_seconds or settings.WEBHOOK_IDEMPOTENCY_TTL_SECONDS

    async def claim(self, delivery_id: str) -> bool:
        """Atomically claim a delivery.

        Returns:
            True if this caller owns the delivery, False if it was already seen
        """
        acquired = await self.client.set(
            marker_key(self.source, delivery_id), "1", nx=True, ex=self.ttl_seconds
        )
        if not acquired:
            logger.info(f"Duplicate {self.source} delivery {delivery_id}, skipping")
        return bool(acquired)

    async def release(self, delivery_id: str) -> None:
        """Drop a claim so a retry of the same delivery is processed."""
        try:
            await self.client.delete(marker_key(self.source, delivery_id))
        except redis.RedisError as e:
            # The claim will expire on its own; retries are blocked until then
            logger.error(
                f"Failed to release {self.source} delivery claim {delivery_id}: {e}"
            )

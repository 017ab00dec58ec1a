"""Identity provider lifecycle sync.

Accounts are owned by the external identity provider. Its signed
``user.created``, ``user.updated`` and ``user.deleted`` events (Svix
signing scheme) are mirrored into the accounts table; account creation
seeds the welcome grant through the credit ledger.
"""

import base64
import binascii
import logging
from typing import Mapping, Optional

import pydantic
import redis.asyncio as redis
from sqlalchemy import delete, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from svix.webhooks import Webhook, WebhookVerificationError

from app.core.config import settings
from app.models.account import Account
from app.schemas.identity import IdentityEvent, IdentityUser, IdentityWebhookResponse
from app.services.errors import SignatureVerificationError, UpstreamError, ValidationError
from app.services.idempotency import DeliveryClaims
from app.services.ledger import CreditLedger

logger = logging.getLogger(__name__)

ID_HEADER = "svix-id"
TIMESTAMP_HEADER = "svix-timestamp"
SIGNATURE_HEADER = "svix-signature"

SECRET_PREFIX = "whsec_"


def load_webhook(secret: Optional[str]) -> Webhook:
    """Build a Svix verifier from a ``whsec_``-prefixed signing secret.

    Raises:
        SignatureVerificationError: If the secret is missing or not base64
    """
    if not secret:
        raise SignatureVerificationError("IDENTITY_WEBHOOK_SECRET not configured")

    encoded = secret[len(SECRET_PREFIX):] if secret.startswith(SECRET_PREFIX) else secret
    try:
        key = base64.b64decode(encoded, validate=True)
    except binascii.Error as e:
        raise SignatureVerificationError("Malformed webhook secret") from e
    if not key:
        raise SignatureVerificationError("Malformed webhook secret")
    return Webhook(key)


def verify_identity_signature(
    payload: bytes,
    headers: Mapping[str, str],
    secret: Optional[str],
) -> str:
    """Verify a Svix-signed delivery.

    Timestamps more than five minutes from now are rejected by the Svix
    verifier. Any one of several space-separated ``v1`` signatures may match.

    Args:
        payload: Raw request body
        headers: Request headers (svix-id, svix-timestamp, svix-signature)
        secret: ``whsec_``-prefixed signing secret

    Returns:
        The message id, used as the delivery id

    Raises:
        SignatureVerificationError: Missing headers, stale timestamp or no
            matching signature
    """
    webhook = load_webhook(secret)

    normalized = {key.lower(): value for key, value in headers.items()}
    msg_id = normalized.get(ID_HEADER)
    if not msg_id or not normalized.get(TIMESTAMP_HEADER) or not normalized.get(SIGNATURE_HEADER):
        raise SignatureVerificationError("Missing svix headers")

    try:
        webhook.verify(payload, normalized)
    except WebhookVerificationError as e:
        raise SignatureVerificationError(f"Invalid webhook signature: {e}") from e
    except ValueError as e:
        # Unparseable signature list or non-UTF-8 body
        raise SignatureVerificationError("Invalid webhook signature") from e

    return msg_id


class IdentitySync:
    """Mirror identity provider users into accounts."""

    def __init__(self, db: AsyncSession, redis_client: redis.Redis):
        self.db = db
        self.ledger = CreditLedger(db)
        self.claims = DeliveryClaims(redis_client, source="identity")

    async def handle_webhook(
        self,
        payload: bytes,
        headers: Mapping[str, str],
        secret: Optional[str] = None,
    ) -> IdentityWebhookResponse:
        """Verify, deduplicate and apply one lifecycle event.

        Raises:
            SignatureVerificationError: Bad signature (nothing claimed)
            UpstreamError: Redis unavailable for the claim
            ValidationError: Malformed event payload
        """
        msg_id = verify_identity_signature(
            payload,
            headers,
            secret if secret is not None else settings.IDENTITY_WEBHOOK_SECRET,
        )

        try:
            claimed = await self.claims.claim(msg_id)
        except redis.RedisError as e:
            logger.error(f"Cannot claim identity delivery {msg_id}: {e}")
            raise UpstreamError("Idempotency store unavailable") from e

        if not claimed:
            return IdentityWebhookResponse(status="duplicate")

        try:
            return await self._apply(payload)
        except Exception:
            await self.db.rollback()
            await self.claims.release(msg_id)
            raise

    async def _apply(self, payload: bytes) -> IdentityWebhookResponse:
        try:
            event = IdentityEvent.model_validate_json(payload)
        except pydantic.ValidationError as e:
            raise ValidationError(f"Malformed identity event ({e.error_count()} errors)") from e

        handlers = {
            "user.created": self._on_created,
            "user.updated": self._on_updated,
            "user.deleted": self._on_deleted,
        }
        handler = handlers.get(event.type)
        if handler is None:
            logger.debug(f"Ignoring identity event {event.type}")
            return IdentityWebhookResponse(status="ignored", event_type=event.type)

        await handler(event.data)
        return IdentityWebhookResponse(
            status="processed", event_type=event.type, account_id=event.data.id
        )

    async def _on_created(self, user: IdentityUser) -> None:
        if not user.primary_email:
            raise ValidationError(f"user.created for {user.id} has no email address")

        try:
            await self.ledger.open_account(
                account_id=user.id,
                email=user.primary_email,
                username=user.username or f"user_{user.id[:8]}",
                avatar_url=user.image_url,
            )
        except IntegrityError:
            await self.db.rollback()
            if await self.ledger.get_account(user.id) is None:
                raise
            logger.info(f"Account {user.id} already exists, skipping welcome grant")
            return

        logger.info(f"Account created from identity provider: {user.id}")

    async def _on_updated(self, user: IdentityUser) -> None:
        values: dict = {}
        if user.primary_email:
            values["email"] = user.primary_email
        if user.username:
            values["username"] = user.username
        if user.image_url:
            values["avatar_url"] = user.image_url
        if not values:
            return

        await self.db.execute(update(Account).where(Account.id == user.id).values(**values))
        await self.db.commit()
        logger.info(f"Account updated from identity provider: {user.id}")

    async def _on_deleted(self, user: IdentityUser) -> None:
        await self.db.execute(delete(Account).where(Account.id == user.id))
        await self.db.commit()
        logger.info(f"Account deleted from identity provider: {user.id}")


def get_identity_sync(db: AsyncSession, redis_client: redis.Redis) -> IdentitySync:
    """Factory function to create IdentitySync."""
    return IdentitySync(db, redis_client)

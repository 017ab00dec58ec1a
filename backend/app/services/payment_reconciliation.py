"""WooCommerce payment reconciliation.

This service provides:
- Credit package definitions and checkout URL creation
- Webhook signature verification
- At-most-once crediting of completed orders
- Transaction status tracking for pending, failed and refunded orders

Each delivery is claimed in Redis before anything is credited. The credit
and the completion of its transaction row commit together, so a delivery
that fails part-way leaves neither behind and can be retried.
"""

import base64
import hashlib
import hmac
import logging
import re
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Mapping, Optional
from urllib.parse import urlencode
from uuid import uuid4

import pydantic
import redis.asyncio as redis
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.models.account import Account
from app.models.credit_transaction import CreditTransaction, TransactionStatus
from app.schemas.payments import CreditPackage, WebhookResponse, WooCommerceOrder
from app.services.errors import (
    AccountNotFoundError,
    NotFoundError,
    SignatureVerificationError,
    UpstreamError,
    ValidationError,
)
from app.services.idempotency import DeliveryClaims
from app.services.ledger import CreditLedger

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-wc-webhook-signature"
DELIVERY_HEADER = "x-wc-webhook-delivery-id"

CREDITS_META_KEY = "_legion_credits"
SESSION_META_KEY = "_legion_session_id"

_DIGITS = re.compile(r"\d+")

# Credit package definitions
# Keys match the WooCommerce products configured on the storefront
CREDIT_PACKAGES: list[CreditPackage] = [
    CreditPackage(
        id="5",
        name="50 Credits",
        credits=50,
        bonus=0,
        price_inr=99,
        price_usd_cents=119,
        product_id=102,
    ),
    CreditPackage(
        id="10",
        name="110 Credits",
        credits=100,
        bonus=10,
        price_inr=179,
        price_usd_cents=219,
        product_id=100,
        popular=True,
    ),
    CreditPackage(
        id="50",
        name="600 Credits",
        credits=500,
        bonus=100,
        price_inr=799,
        price_usd_cents=959,
        product_id=101,
    ),
]

PACKAGE_LOOKUP: dict[str, CreditPackage] = {pkg.id: pkg for pkg in CREDIT_PACKAGES}


def compute_signature(payload: bytes, secret: str) -> str:
    """Base64 HMAC-SHA256 of the raw body, as WooCommerce signs it."""
    digest = hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_signature(payload: bytes, signature: Optional[str], secret: Optional[str]) -> None:
    """Verify a WooCommerce webhook signature.

    Args:
        payload: Raw request body
        signature: X-WC-Webhook-Signature header value
        secret: Webhook secret

    Raises:
        SignatureVerificationError: If the secret or signature is missing,
            or the signature does not match
    """
    if not secret:
        raise SignatureVerificationError("WOOCOMMERCE_WEBHOOK_SECRET not configured")
    if not signature:
        raise SignatureVerificationError("Missing webhook signature")

    expected = compute_signature(payload, secret)
    if not hmac.compare_digest(expected.encode("ascii"), signature.strip().encode("utf-8")):
        raise SignatureVerificationError("Invalid webhook signature")


def delivery_id(headers: Mapping[str, str], payload: bytes) -> str:
    """Identify a delivery by its header, falling back to a body hash."""
    header_value = headers.get(DELIVERY_HEADER)
    if header_value:
        return header_value.strip()
    return hashlib.sha256(payload).hexdigest()


def _parse_positive_int(value: object) -> Optional[int]:
    try:
        parsed = int(str(value).strip())
    except (TypeError, ValueError):
        return None
    return parsed if parsed > 0 else None


def extract_credits(order: WooCommerceOrder) -> int:
    """Determine how many credits an order buys.

    The first line item that carries the credits meta key, or whose name
    mentions credits, is the credit item. Its meta value wins over a number
    embedded in its name. Either is the total for the order, so the item
    quantity is not applied.

    Raises:
        ValidationError: If no credit item is present or the amount is not
            a positive integer
    """
    item = next(
        (
            li
            for li in order.line_items
            if li.meta(CREDITS_META_KEY) is not None or "credits" in li.name.lower()
        ),
        None,
    )
    if item is None:
        raise ValidationError(f"No credit package found in order {order.id}")

    meta_value = item.meta(CREDITS_META_KEY)
    if meta_value is not None:
        credits = _parse_positive_int(meta_value)
    else:
        match = _DIGITS.search(item.name)
        credits = _parse_positive_int(match.group(0)) if match else None

    if credits is None:
        raise ValidationError(f"Invalid credit amount in order {order.id}")

    return credits


def _minor_units(total: str) -> Optional[int]:
    try:
        return int((Decimal(total) * 100).to_integral_value())
    except (InvalidOperation, TypeError):
        return None


class PaymentReconciler:
    """Service for WooCommerce checkout and order reconciliation."""

    def __init__(self, db: AsyncSession, redis_client: redis.Redis):
        """Initialize the reconciler.

        Args:
            db: Database session
            redis_client: Redis client for delivery claims
        """
        self.db = db
        self.ledger = CreditLedger(db)
        self.claims = DeliveryClaims(redis_client, source="woocommerce")

    @staticmethod
    def get_packages() -> list[CreditPackage]:
        """Get all available credit packages."""
        return CREDIT_PACKAGES.copy()

    @staticmethod
    def get_package(package_id: str) -> CreditPackage:
        """Get a specific credit package by ID.

        Raises:
            ValidationError: If package ID is not found
        """
        package = PACKAGE_LOOKUP.get(package_id)
        if not package:
            raise ValidationError(
                f"Invalid package ID: {package_id}. "
                f"Valid packages: {', '.join(PACKAGE_LOOKUP.keys())}"
            )
        return package

    async def create_checkout(
        self, account: Account, package_id: str
    ) -> tuple[CreditTransaction, str]:
        """Open a pending transaction and build the storefront checkout URL.

        Args:
            account: Purchasing account
            package_id: Credit package ID

        Returns:
            Tuple of (pending transaction, checkout URL)
        """
        package = self.get_package(package_id)
        session_id = f"cs_{uuid4().hex}"

        transaction = await self.ledger.record_transaction(
            account.id,
            package.total_credits,
            TransactionStatus.PENDING,
            session_id=session_id,
            amount_paid=package.price_inr * 100,
            currency="INR",
            metadata={"package_id": package.id, "package_name": package.name},
        )

        query = urlencode(
            {
                "add-to-cart": package.product_id,
                "billing_email": account.email,
                "billing_first_name": account.username,
                "legion_user_id": account.id,
                "legion_session_id": session_id,
            }
        )
        checkout_url = f"{settings.WORDPRESS_URL.rstrip('/')}/checkout/?{query}"

        logger.info(
            f"Checkout {session_id} opened for account {account.id}, "
            f"package {package.id} ({package.total_credits} credits)"
        )
        return transaction, checkout_url

    async def get_payment_status(self, account_id: str, session_id: str) -> CreditTransaction:
        """Look up a checkout session's transaction.

        Raises:
            NotFoundError: If the session does not exist or belongs to another account
        """
        result = await self.db.execute(
            select(CreditTransaction).where(CreditTransaction.session_id == session_id)
        )
        transaction = result.scalar_one_or_none()
        if transaction is None or transaction.account_id != account_id:
            raise NotFoundError(f"Checkout session {session_id} not found")
        return transaction

    async def handle_order_webhook(
        self,
        payload: bytes,
        signature: Optional[str],
        delivery: str,
        secret: Optional[str] = None,
    ) -> WebhookResponse:
        """Verify, deduplicate and apply one order webhook delivery.

        Args:
            payload: Raw request body
            signature: X-WC-Webhook-Signature header value
            delivery: Delivery identifier (see delivery_id)
            secret: Override for settings.WOOCOMMERCE_WEBHOOK_SECRET

        Returns:
            WebhookResponse describing the outcome

        Raises:
            SignatureVerificationError: Bad or missing signature (nothing claimed)
            UpstreamError: Redis unavailable for the claim
            ValidationError: Malformed order or credit amount
            AccountNotFoundError: Billing email matches no account
        """
        verify_signature(
            payload, signature, secret if secret is not None else settings.WOOCOMMERCE_WEBHOOK_SECRET
        )

        try:
            claimed = await self.claims.claim(delivery)
        except redis.RedisError as e:
            logger.error(f"Cannot claim WooCommerce delivery {delivery}: {e}")
            raise UpstreamError("Idempotency store unavailable") from e

        if not claimed:
            return WebhookResponse(status="duplicate", message="Delivery already processed")

        try:
            return await self._process_order(payload)
        except Exception:
            await self.db.rollback()
            await self.claims.release(delivery)
            raise

    async def _process_order(self, payload: bytes) -> WebhookResponse:
        try:
            order = WooCommerceOrder.model_validate_json(payload)
        except pydantic.ValidationError as e:
            raise ValidationError(f"Malformed order payload ({e.error_count()} errors)") from e

        logger.info(f"Processing WooCommerce order {order.id} with status '{order.status}'")

        if order.status == "completed":
            return await self._complete_order(order)
        if order.status in ("processing", "pending", "failed"):
            return await self._advance_pending(order)
        if order.status == "refunded":
            return await self._refund_order(order)

        return WebhookResponse(
            status="ignored",
            order_id=order.id,
            message=f"Order status '{order.status}' not handled",
        )

    async def _find_transaction(
        self, order: WooCommerceOrder, account_id: Optional[str] = None
    ) -> Optional[CreditTransaction]:
        """Find the transaction for an order, by order id then by checkout session."""
        query = select(CreditTransaction).where(CreditTransaction.order_id == str(order.id))
        if account_id:
            query = query.where(CreditTransaction.account_id == account_id)
        transaction = (await self.db.execute(query)).scalar_one_or_none()
        if transaction is not None:
            return transaction

        session_id = order.meta(SESSION_META_KEY)
        if not session_id:
            return None
        query = select(CreditTransaction).where(CreditTransaction.session_id == str(session_id))
        if account_id:
            query = query.where(CreditTransaction.account_id == account_id)
        return (await self.db.execute(query)).scalar_one_or_none()

    async def _complete_order(self, order: WooCommerceOrder) -> WebhookResponse:
        credits = extract_credits(order)

        account = await self.ledger.get_account_by_email(order.billing.email)
        if account is None:
            logger.error(f"No account for billing email on order {order.id}")
            raise AccountNotFoundError(order.billing.email)
        account_id = account.id

        transaction = await self._find_transaction(order, account_id)

        if transaction is not None and transaction.status == TransactionStatus.COMPLETED:
            logger.warning(f"Order {order.id} already credited, skipping")
            return self._already_credited(order, account_id)
        if transaction is not None and transaction.status == TransactionStatus.REFUNDED:
            return WebhookResponse(
                status="ignored",
                order_id=order.id,
                account_id=account_id,
                message="Order already refunded",
            )

        completed_at = datetime.now(timezone.utc)
        amount_paid = _minor_units(order.total)

        # The row is completed and the account credited in one commit. An
        # open checkout is claimed with a conditional UPDATE; a new row
        # relies on the unique order_id. Either way a second delivery for
        # the same order finds nothing to claim.
        try:
            if transaction is None or transaction.status == TransactionStatus.FAILED:
                transaction = CreditTransaction(
                    account_id=account_id,
                    credits_delta=credits,
                    status=TransactionStatus.COMPLETED,
                    order_id=str(order.id),
                    amount_paid=amount_paid,
                    currency=order.currency,
                    tx_metadata={"source": "woocommerce", "billing_email": order.billing.email},
                    completed_at=completed_at,
                )
                self.db.add(transaction)
                await self.db.flush()
                transaction_id = transaction.id
            else:
                claim = (
                    update(CreditTransaction)
                    .where(
                        CreditTransaction.id == transaction.id,
                        CreditTransaction.status.in_(
                            [TransactionStatus.PENDING, TransactionStatus.PROCESSING]
                        ),
                    )
                    .values(
                        status=TransactionStatus.COMPLETED,
                        order_id=str(order.id),
                        credits_delta=credits,
                        amount_paid=amount_paid,
                        currency=order.currency,
                        completed_at=completed_at,
                    )
                    .returning(CreditTransaction.id)
                    .execution_options(synchronize_session="fetch")
                )
                transaction_id = (await self.db.execute(claim)).scalar_one_or_none()
                if transaction_id is None:
                    await self.db.rollback()
                    logger.warning(f"Order {order.id} was credited by another delivery")
                    return self._already_credited(order, account_id)

            new_balance = await self.ledger.credit(account_id, credits, commit=False)
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            logger.warning(f"Order {order.id} is already recorded by another delivery")
            return self._already_credited(order, account_id)

        await self.ledger.record_snapshot(
            account_id, transaction_id, new_balance - credits, new_balance, "purchase"
        )

        logger.info(
            f"Credited {credits} credits to account {account_id} for order {order.id}. "
            f"New balance: {new_balance}"
        )
        return WebhookResponse(
            status="credited",
            order_id=order.id,
            account_id=account_id,
            credits_added=credits,
            new_balance=new_balance,
        )

    @staticmethod
    def _already_credited(order: WooCommerceOrder, account_id: str) -> WebhookResponse:
        return WebhookResponse(
            status="duplicate",
            order_id=order.id,
            account_id=account_id,
            message="Order already credited",
        )

    async def _advance_pending(self, order: WooCommerceOrder) -> WebhookResponse:
        """Move a pending transaction forward for non-final order statuses.

        The order id is kept in metadata only; the order_id column is set
        when the order completes.
        """
        transaction = await self._find_transaction(order)
        target = {
            "processing": TransactionStatus.PROCESSING,
            "failed": TransactionStatus.FAILED,
        }.get(order.status)

        if transaction is not None and target is not None and transaction.can_transition_to(target):
            metadata_key = (
                "order_id" if target == TransactionStatus.PROCESSING else "failed_order_id"
            )
            transaction.status = target
            transaction.tx_metadata = {**(transaction.tx_metadata or {}), metadata_key: order.id}
            await self.db.commit()
            logger.info(f"Transaction {transaction.id} moved to {target.value} (order {order.id})")

        return WebhookResponse(
            status="acknowledged",
            order_id=order.id,
            message=f"Order not completed yet ({order.status})",
        )

    async def _refund_order(self, order: WooCommerceOrder) -> WebhookResponse:
        """Claw back credits for a refunded order.

        The completed row is claimed with a conditional UPDATE, and the
        claw-back commits with it, so a refund is applied at most once.
        """
        transaction = await self._find_transaction(order)
        if transaction is None or transaction.status != TransactionStatus.COMPLETED:
            return self._nothing_to_refund(order)
        transaction_id = transaction.id

        claim = (
            update(CreditTransaction)
            .where(
                CreditTransaction.id == transaction_id,
                CreditTransaction.status == TransactionStatus.COMPLETED,
            )
            .values(status=TransactionStatus.REFUNDED)
            .returning(CreditTransaction.account_id, CreditTransaction.credits_delta)
            .execution_options(synchronize_session="fetch")
        )
        claimed = (await self.db.execute(claim)).one_or_none()
        if claimed is None:
            await self.db.rollback()
            logger.warning(f"Order {order.id} was refunded by another delivery")
            return self._nothing_to_refund(order)

        account_id, amount = claimed
        new_balance = await self.ledger.debit(account_id, amount, commit=False)
        await self.db.commit()

        await self.ledger.record_snapshot(
            account_id, transaction_id, new_balance + amount, new_balance, "purchase_refund"
        )

        logger.info(f"Refunded order {order.id}: removed {amount} credits from {account_id}")
        return WebhookResponse(
            status="refunded",
            order_id=order.id,
            account_id=account_id,
            credits_added=-amount,
            new_balance=new_balance,
        )

    @staticmethod
    def _nothing_to_refund(order: WooCommerceOrder) -> WebhookResponse:
        return WebhookResponse(
            status="ignored",
            order_id=order.id,
            message="No completed transaction for refunded order",
        )


def get_payment_reconciler(db: AsyncSession, redis_client: redis.Redis) -> PaymentReconciler:
    """Factory function to create PaymentReconciler."""
    return PaymentReconciler(db, redis_client)

"""API routes for WooCommerce credit purchases.

This module provides REST endpoints for:
- GET /api/v1/payments/packages - List credit packages
- POST /api/v1/payments/checkout - Open a checkout session
- GET /api/v1/payments/status/{session_id} - Poll a checkout session
- POST /api/v1/payments/woo/webhook - Handle WooCommerce order webhooks
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
import redis.asyncio as redis

from app.api.deps import get_current_account, get_db, get_redis
from app.api.errors import to_http_exception
from app.models.account import Account
from app.schemas.payments import (
    CheckoutRequest,
    CheckoutResponse,
    CreditPackage,
    CreditPackageResponse,
    CreditPackagesResponse,
    PaymentStatusResponse,
    WebhookResponse,
)
from app.services.errors import LedgerError
from app.services.payment_reconciliation import (
    SIGNATURE_HEADER,
    PaymentReconciler,
    delivery_id,
    get_payment_reconciler,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


def _package_response(package: CreditPackage) -> CreditPackageResponse:
    return CreditPackageResponse(
        id=package.id,
        name=package.name,
        credits=package.credits,
        bonus=package.bonus,
        total_credits=package.total_credits,
        price_inr=package.price_inr,
        price_usd_cents=package.price_usd_cents,
        popular=package.popular,
        value=package.value,
    )


@router.get(
    "/packages",
    response_model=CreditPackagesResponse,
    summary="List credit packages",
    description="Get all available credit packages for purchase",
)
async def list_packages() -> CreditPackagesResponse:
    """List all available credit packages.

    No authentication required - packages are public information.
    """
    packages = PaymentReconciler.get_packages()
    return CreditPackagesResponse(
        packages=[_package_response(pkg) for pkg in packages],
        currency="INR",
    )


@router.post(
    "/checkout",
    response_model=CheckoutResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create checkout session",
    description="Open a pending purchase and get the storefront checkout URL",
)
async def create_checkout(
    request: CheckoutRequest,
    current_account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
    redis_client: redis.Redis = Depends(get_redis),
) -> CheckoutResponse:
    """Create a checkout session for a credit package.

    The returned session id is carried through the storefront in the order
    meta, and can be polled at /payments/status/{session_id}.

    Raises:
        HTTPException(400): If package_id is invalid
    """
    reconciler = get_payment_reconciler(db, redis_client)
    try:
        transaction, checkout_url = await reconciler.create_checkout(
            current_account, request.package_id
        )
        package = reconciler.get_package(request.package_id)
    except LedgerError as e:
        raise to_http_exception(e)

    return CheckoutResponse(
        session_id=transaction.session_id,
        checkout_url=checkout_url,
        package=_package_response(package),
    )


@router.get(
    "/status/{session_id}",
    response_model=PaymentStatusResponse,
    summary="Get payment status",
    description="Get the status of a checkout session owned by the authenticated account",
)
async def get_payment_status(
    session_id: str,
    current_account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
    redis_client: redis.Redis = Depends(get_redis),
) -> PaymentStatusResponse:
    """Poll a checkout session.

    Raises:
        HTTPException(404): If the session does not exist or belongs to another account
    """
    reconciler = get_payment_reconciler(db, redis_client)
    try:
        transaction = await reconciler.get_payment_status(current_account.id, session_id)
    except LedgerError as e:
        raise to_http_exception(e)

    return PaymentStatusResponse(
        session_id=transaction.session_id,
        status=transaction.status,
        credits_amount=transaction.credits_delta,
        amount_paid=transaction.amount_paid,
        created_at=transaction.created_at,
        completed_at=transaction.completed_at,
    )


@router.post(
    "/woo/webhook",
    response_model=WebhookResponse,
    status_code=status.HTTP_200_OK,
    summary="WooCommerce webhook handler",
    description="Handle WooCommerce order webhooks (signature verified)",
    include_in_schema=False,  # Hide from public API docs
)
async def handle_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    redis_client: redis.Redis = Depends(get_redis),
) -> WebhookResponse:
    """Handle WooCommerce order webhooks.

    This endpoint must be reachable without authentication as it is called
    by the storefront. Security is provided by the HMAC signature over the
    raw body, and every delivery is claimed in Redis before it is applied.

    A non-2xx response makes WooCommerce retry the delivery, which is safe
    because the claim is released whenever processing fails.

    Raises:
        HTTPException(401): If signature verification fails
        HTTPException(400): If the order payload or credit amount is invalid
        HTTPException(404): If the billing email matches no account
        HTTPException(502): If the idempotency store is unavailable
    """
    try:
        payload = await request.body()
    except Exception as e:
        logger.error(f"Failed to read webhook payload: {e}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid request body",
        )

    reconciler = get_payment_reconciler(db, redis_client)
    delivery = delivery_id(request.headers, payload)

    try:
        result = await reconciler.handle_order_webhook(
            payload,
            request.headers.get(SIGNATURE_HEADER),
            delivery,
        )
    except LedgerError as e:
        logger.warning(f"WooCommerce delivery {delivery} rejected: {e}")
        raise to_http_exception(e)

    logger.info(f"WooCommerce delivery {delivery} processed: {result.status}")
    return result

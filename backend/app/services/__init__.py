"""Services for handling business logic and external integrations."""

from app.services.errors import (
    AccountNotFoundError,
    ErrorKind,
    InsufficientBalanceError,
    LedgerError,
    NotFoundError,
    RefundFailedError,
    SignatureVerificationError,
    UpstreamError,
    ValidationError,
)
from app.services.feed_service import FeedService, get_feed_service
from app.services.generation_service import GenerationService, get_generation_service
from app.services.identity_sync import IdentitySync, get_identity_sync
from app.services.interaction_queue import InteractionQueue
from app.services.ledger import CreditLedger, get_credit_ledger
from app.services.payment_reconciliation import PaymentReconciler, get_payment_reconciler

__all__ = [
    # Errors
    "ErrorKind",
    "LedgerError",
    "ValidationError",
    "InsufficientBalanceError",
    "NotFoundError",
    "AccountNotFoundError",
    "SignatureVerificationError",
    "UpstreamError",
    "RefundFailedError",
    # Ledger
    "CreditLedger",
    "get_credit_ledger",
    # Generation
    "GenerationService",
    "get_generation_service",
    # Payments and identity
    "PaymentReconciler",
    "get_payment_reconciler",
    "IdentitySync",
    "get_identity_sync",
    # Social
    "FeedService",
    "get_feed_service",
    "InteractionQueue",
]

"""Pydantic schemas for API requests and responses."""

from app.schemas.credits import (
    CreditBalanceResponse,
    TransactionHistoryResponse,
    TransactionResponse,
)
from app.schemas.feed import (
    CachedFeed,
    FeedAuthor,
    FeedContent,
    FeedItem,
    FeedResponse,
    FollowResponse,
    InteractionResponse,
    Pagination,
    PostCreateRequest,
    PostResponse,
)
from app.schemas.generation import (
    GenerationHistoryResponse,
    GenerationJobResponse,
    GenerationResultResponse,
    ImageGenerationRequest,
    TextGenerationRequest,
)
from app.schemas.identity import IdentityEvent, IdentityUser, IdentityWebhookResponse
from app.schemas.payments import (
    CheckoutRequest,
    CheckoutResponse,
    CreditPackage,
    CreditPackageResponse,
    CreditPackagesResponse,
    PaymentStatusResponse,
    WebhookResponse,
    WooCommerceOrder,
)

__all__ = [
    # Credit schemas
    "CreditBalanceResponse",
    "TransactionResponse",
    "TransactionHistoryResponse",
    # Generation schemas
    "ImageGenerationRequest",
    "TextGenerationRequest",
    "GenerationJobResponse",
    "GenerationResultResponse",
    "GenerationHistoryResponse",
    # Payment schemas
    "CreditPackage",
    "CreditPackageResponse",
    "CreditPackagesResponse",
    "CheckoutRequest",
    "CheckoutResponse",
    "PaymentStatusResponse",
    "WooCommerceOrder",
    "WebhookResponse",
    # Identity schemas
    "IdentityEvent",
    "IdentityUser",
    "IdentityWebhookResponse",
    # Feed schemas
    "CachedFeed",
    "FeedAuthor",
    "FeedContent",
    "FeedItem",
    "FeedResponse",
    "Pagination",
    "PostCreateRequest",
    "PostResponse",
    "InteractionResponse",
    "FollowResponse",
]

"""Pydantic schemas for WooCommerce payment integration.

This module defines request and response models for:
- Credit package definitions
- Checkout creation and status polling
- WooCommerce order webhook payloads
"""

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.models.credit_transaction import TransactionStatus


class CreditPackage(BaseModel):
    """Credit package available for purchase."""

    id: str = Field(description="Package identifier")
    name: str = Field(description="Human-readable package name")
    credits: int = Field(ge=1, description="Number of credits included")
    bonus: int = Field(default=0, ge=0, description="Bonus credits on top of the base amount")
    price_inr: int = Field(ge=0, description="Price in rupees")
    price_usd_cents: int = Field(ge=0, description="Indicative price in US cents")
    product_id: int = Field(description="WooCommerce product ID")
    popular: bool = Field(default=False, description="Mark as popular/recommended")

    @property
    def total_credits(self) -> int:
        """Credits granted including bonus."""
        return self.credits + self.bonus

    @property
    def value(self) -> float:
        """Credits per rupee."""
        return round(self.total_credits / self.price_inr, 2) if self.price_inr else 0.0

    class Config:
        json_schema_extra = {
            "example": {
                "id": "10",
                "name": "110 Credits",
                "credits": 100,
                "bonus": 10,
                "price_inr": 179,
                "price_usd_cents": 219,
                "product_id": 100,
                "popular": True,
            }
        }


class CreditPackageResponse(BaseModel):
    """Credit package as shown to clients."""

    id: str
    name: str
    credits: int
    bonus: int
    total_credits: int
    price_inr: int
    price_usd_cents: int
    popular: bool
    value: float = Field(description="Credits per rupee")


class CreditPackagesResponse(BaseModel):
    """Response containing all available credit packages."""

    packages: list[CreditPackageResponse] = Field(description="Available credit packages")
    currency: str = Field(default="INR", description="Currency for all packages")


class CheckoutRequest(BaseModel):
    """Request to start a WooCommerce checkout."""

    package_id: Literal["5", "10", "50"] = Field(description="Credit package ID to purchase")


class CheckoutResponse(BaseModel):
    """Response containing the checkout redirect."""

    session_id: str = Field(description="Checkout session ID for status polling")
    checkout_url: str = Field(description="URL to redirect the user to")
    package: CreditPackageResponse


class PaymentStatusResponse(BaseModel):
    """Status of a checkout session's transaction."""

    session_id: str
    status: TransactionStatus
    credits_amount: int
    amount_paid: Optional[int] = None
    created_at: datetime
    completed_at: Optional[datetime] = None


# WooCommerce webhook payload


class WooMetaData(BaseModel):
    """A WooCommerce meta_data entry."""

    model_config = ConfigDict(extra="ignore")

    key: str
    value: Any = None


class WooLineItem(BaseModel):
    """A WooCommerce order line item."""

    model_config = ConfigDict(extra="ignore")

    id: int = 0
    name: str = ""
    quantity: int = 1
    meta_data: list[WooMetaData] = Field(default_factory=list)

    def meta(self, key: str) -> Any:
        """Return the first meta value for a key, or None."""
        for entry in self.meta_data:
            if entry.key == key:
                return entry.value
        return None


class WooBilling(BaseModel):
    """Billing details of a WooCommerce order."""

    model_config = ConfigDict(extra="ignore")

    email: str
    first_name: str = ""
    last_name: str = ""


class WooCommerceOrder(BaseModel):
    """The subset of a WooCommerce order payload used for reconciliation."""

    model_config = ConfigDict(extra="ignore")

    id: int
    status: str
    customer_id: int = 0
    billing: WooBilling
    line_items: list[WooLineItem] = Field(default_factory=list)
    total: str = "0"
    currency: str = "INR"
    date_paid: Optional[str] = None
    meta_data: list[WooMetaData] = Field(default_factory=list)

    def meta(self, key: str) -> Any:
        """Return the first order-level meta value for a key, or None."""
        for entry in self.meta_data:
            if entry.key == key:
                return entry.value
        return None


WebhookStatus = Literal["credited", "duplicate", "acknowledged", "ignored", "refunded"]


class WebhookResponse(BaseModel):
    """Outcome of processing one webhook delivery."""

    status: WebhookStatus
    order_id: Optional[int] = None
    account_id: Optional[str] = None
    credits_added: Optional[int] = None
    new_balance: Optional[int] = None
    message: Optional[str] = None

"""Pydantic schemas for credit API endpoints.

This module defines response models for:
- Credit balance queries
- Transaction history
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.models.credit_transaction import TransactionStatus


class CreditBalanceResponse(BaseModel):
    """Response model for credit balance queries."""

    credits_balance: int = Field(description="Current credit balance")
    is_premium: bool = Field(description="Premium account flag")
    is_low_balance: bool = Field(description="True if balance is below warning threshold")


class TransactionResponse(BaseModel):
    """Response model for a single transaction."""

    id: UUID = Field(description="Transaction ID")
    credits_delta: int = Field(description="Credit change (positive=add, negative=deduct)")
    status: TransactionStatus = Field(description="Transaction status")
    order_id: Optional[str] = Field(default=None, description="Payment processor order ID")
    amount_paid: Optional[int] = Field(default=None, description="Amount paid in minor units")
    currency: Optional[str] = Field(default=None, description="ISO currency code")
    metadata: Optional[dict] = Field(
        default=None,
        validation_alias="tx_metadata",
        description="Additional transaction context",
    )
    created_at: datetime = Field(description="Transaction timestamp")
    completed_at: Optional[datetime] = Field(default=None, description="Completion timestamp")

    class Config:
        from_attributes = True


class TransactionHistoryResponse(BaseModel):
    """Response model for transaction history queries."""

    transactions: list[TransactionResponse] = Field(description="List of transactions")
    total: int = Field(description="Total number of transactions")
    limit: int = Field(description="Page size limit")
    offset: int = Field(description="Current offset")

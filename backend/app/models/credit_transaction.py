"""Credit transaction model for purchase and ledger auditing."""

import enum
from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import DateTime, Enum, ForeignKey, Integer, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from app.core.database import Base


class TransactionStatus(str, enum.Enum):
    """Transaction lifecycle statuses.

    State transitions:
    - PENDING -> PROCESSING (processor accepted the order)
    - PENDING/PROCESSING -> COMPLETED (paid, credits granted)
    - PENDING/PROCESSING -> FAILED (payment failed)
    - COMPLETED -> REFUNDED (order refunded, credits clawed back)
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


ALLOWED_TRANSITIONS: dict[TransactionStatus, frozenset[TransactionStatus]] = {
    TransactionStatus.PENDING: frozenset(
        {TransactionStatus.PROCESSING, TransactionStatus.COMPLETED, TransactionStatus.FAILED}
    ),
    TransactionStatus.PROCESSING: frozenset(
        {TransactionStatus.COMPLETED, TransactionStatus.FAILED}
    ),
    TransactionStatus.COMPLETED: frozenset({TransactionStatus.REFUNDED}),
    TransactionStatus.FAILED: frozenset(),
    TransactionStatus.REFUNDED: frozenset(),
}


class CreditTransaction(Base):
    """
    Audit record of a balance-affecting event.

    Append-only: only status and completed_at move forward after insert.
    """

    __tablename__ = "credit_transactions"

    # Primary key
    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)

    # Foreign key to account
    account_id: Mapped[str] = mapped_column(
        String(255), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )

    # Amounts
    credits_delta: Mapped[int] = mapped_column(
        Integer, nullable=False
    )  # Positive for grants/purchases/refunds, negative for spend
    amount_paid: Mapped[Optional[int]] = mapped_column(
        Integer, nullable=True
    )  # Minor units (paise/cents), null for non-purchase deltas
    currency: Mapped[Optional[str]] = mapped_column(String(8), nullable=True)

    # External references, unique for idempotency
    order_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, unique=True, index=True
    )
    session_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, unique=True, index=True
    )
    idempotency_key: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, unique=True
    )

    status: Mapped[TransactionStatus] = mapped_column(
        Enum(TransactionStatus), default=TransactionStatus.PENDING, nullable=False, index=True
    )

    # 'metadata' is reserved by SQLAlchemy
    tx_metadata: Mapped[Optional[dict]] = mapped_column("metadata", JSONB, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, index=True
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Relationships
    account: Mapped["Account"] = relationship("Account", back_populates="transactions")

    def can_transition_to(self, status: TransactionStatus) -> bool:
        """Check whether moving to the given status is a forward transition."""
        return status in ALLOWED_TRANSITIONS[self.status]

    def __repr__(self) -> str:
        return (
            f"<CreditTransaction(id={self.id}, status={self.status.value}, "
            f"delta={self.credits_delta})>"
        )

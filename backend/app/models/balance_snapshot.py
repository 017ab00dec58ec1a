"""Balance snapshot model for ledger reconciliation."""

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from app.core.database import Base


class BalanceSnapshot(Base):
    """
    Point-in-time record of a balance change.

    Insert-only. Never UPDATE or DELETE records. account_id is not a foreign
    key, so the audit trail survives the account being deleted; the link to
    a deleted transaction is cleared instead of removing the row.
    """

    __tablename__ = "credit_balance_snapshots"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)

    account_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    transaction_id: Mapped[Optional[UUID]] = mapped_column(
        ForeignKey("credit_transactions.id", ondelete="SET NULL"), nullable=True
    )

    balance_before: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)
    change_amount: Mapped[int] = mapped_column(Integer, nullable=False)

    reason: Mapped[str] = mapped_column(String(255), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, index=True
    )

    def __repr__(self) -> str:
        return (
            f"<BalanceSnapshot(account_id={self.account_id}, "
            f"{self.balance_before}->{self.balance_after}, reason={self.reason})>"
        )

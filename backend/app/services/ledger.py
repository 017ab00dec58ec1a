"""Credit ledger for account balances, transactions and audit snapshots.

This service provides business logic for:
- Checking and reading account balances
- Debiting credits atomically (generation costs, refund claw-backs)
- Crediting credits (purchases, grants, refunds)
- Recording transactions and balance snapshots
- Opening accounts with the welcome grant

Balance mutations are single conditional UPDATE statements; concurrent
debits against the same account are serialized by the database, never by
an in-process lock or a read-then-write in Python.
"""

import logging
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.models.account import Account
from app.models.balance_snapshot import BalanceSnapshot
from app.models.credit_transaction import CreditTransaction, TransactionStatus
from app.services.errors import (
    AccountNotFoundError,
    InsufficientBalanceError,
    ValidationError,
)

logger = logging.getLogger(__name__)

LOW_BALANCE_THRESHOLD = 10  # Warning threshold


def _require_positive(amount: int) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValidationError(f"Amount must be a positive integer, got {amount!r}")


class CreditLedger:
    """Service for managing account credit balances and their audit trail."""

    def __init__(self, db: AsyncSession):
        """Initialize the ledger.

        Args:
            db: Database session for ledger operations
        """
        self.db = db

    async def get_account(self, account_id: str) -> Optional[Account]:
        """Load an account, bypassing any stale copy in the identity map."""
        stmt = (
            select(Account)
            .where(Account.id == account_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_account_by_email(self, email: str) -> Optional[Account]:
        """Load an account by its (case-insensitive) email address."""
        stmt = select(Account).where(func.lower(Account.email) == email.strip().lower())
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_balance(self, account_id: str) -> int:
        """Get the current balance for an account.

        Args:
            account_id: The account's ID

        Returns:
            Current credit balance

        Raises:
            AccountNotFoundError: If the account does not exist
        """
        stmt = select(Account.credits_balance).where(Account.id == account_id)
        balance = await self.db.scalar(stmt)
        if balance is None:
            raise AccountNotFoundError(account_id)
        return balance

    async def has_sufficient_balance(self, account_id: str, amount: int) -> bool:
        """Check whether an account can cover an amount.

        This is advisory only: the balance may change before a subsequent
        debit, which re-checks atomically.

        Args:
            account_id: The account's ID
            amount: Required credit amount

        Returns:
            True if the account exists and its balance covers the amount

        Raises:
            ValidationError: If amount is not positive
        """
        _require_positive(amount)
        stmt = select(Account.credits_balance).where(Account.id == account_id)
        balance = await self.db.scalar(stmt)
        return balance is not None and balance >= amount

    async def debit(self, account_id: str, amount: int, *, commit: bool = True) -> int:
        """Atomically deduct credits from an account.

        The balance check and the decrement are one statement, so two
        concurrent debits can never both pass the check and overdraw.

        Args:
            account_id: The account's ID
            amount: Number of credits to deduct (must be positive)
            commit: Commit immediately. Pass False to fold the debit into
                the caller's transaction (the caller then commits or rolls back).

        Returns:
            New balance after the debit

        Raises:
            ValidationError: If amount is not positive
            InsufficientBalanceError: If the balance is below amount or the
                account does not exist (the statement cannot tell them apart)
        """
        _require_positive(amount)

        stmt = (
            update(Account)
            .where(Account.id == account_id, Account.credits_balance >= amount)
            .values(credits_balance=Account.credits_balance - amount)
            .returning(Account.credits_balance)
        )
        result = await self.db.execute(stmt)
        new_balance = result.scalar_one_or_none()

        if new_balance is None:
            if commit:
                await self.db.rollback()
            logger.info(f"Debit of {amount} credits rejected for account {account_id}")
            raise InsufficientBalanceError(account_id=account_id, required=amount)

        if commit:
            await self.db.commit()

        logger.info(
            f"Debited {amount} credits from account {account_id}. "
            f"New balance: {new_balance}"
        )
        if new_balance <= LOW_BALANCE_THRESHOLD:
            logger.debug(f"Account {account_id} is low on credits ({new_balance})")

        return new_balance

    async def credit(self, account_id: str, amount: int, *, commit: bool = True) -> int:
        """Atomically add credits to an account.

        Args:
            account_id: The account's ID
            amount: Number of credits to add (must be positive)
            commit: Commit immediately (see debit)

        Returns:
            New balance after the credit

        Raises:
            ValidationError: If amount is not positive
            AccountNotFoundError: If the account does not exist
        """
        _require_positive(amount)

        stmt = (
            update(Account)
            .where(Account.id == account_id)
            .values(credits_balance=Account.credits_balance + amount)
            .returning(Account.credits_balance)
        )
        result = await self.db.execute(stmt)
        new_balance = result.scalar_one_or_none()

        if new_balance is None:
            if commit:
                await self.db.rollback()
            raise AccountNotFoundError(account_id)

        if commit:
            await self.db.commit()

        logger.info(
            f"Credited {amount} credits to account {account_id}. "
            f"New balance: {new_balance}"
        )

        return new_balance

    async def record_transaction(
        self,
        account_id: str,
        credits_delta: int,
        status: TransactionStatus = TransactionStatus.COMPLETED,
        *,
        order_id: Optional[str] = None,
        session_id: Optional[str] = None,
        idempotency_key: Optional[str] = None,
        amount_paid: Optional[int] = None,
        currency: Optional[str] = None,
        metadata: Optional[dict] = None,
        commit: bool = True,
    ) -> CreditTransaction:
        """Append a transaction record.

        Args:
            account_id: The account's ID
            credits_delta: Signed credit change
            status: Initial status (completed for immediate ledger moves)
            order_id: Payment processor order reference
            session_id: Checkout session reference
            idempotency_key: Caller-supplied dedupe key
            amount_paid: Amount charged in minor units
            currency: ISO currency code
            metadata: Optional additional context
            commit: Commit immediately. Pass False to flush only, so the row
                lands in the same commit as a debit or credit it describes.

        Returns:
            The persisted CreditTransaction
        """
        transaction = CreditTransaction(
            account_id=account_id,
            credits_delta=credits_delta,
            status=status,
            order_id=order_id,
            session_id=session_id,
            idempotency_key=idempotency_key,
            amount_paid=amount_paid,
            currency=currency,
            tx_metadata=metadata,
            completed_at=(
                datetime.now(timezone.utc) if status == TransactionStatus.COMPLETED else None
            ),
        )
        self.db.add(transaction)
        if commit:
            await self.db.commit()
            await self.db.refresh(transaction)
        else:
            await self.db.flush()

        logger.debug(
            f"Recorded transaction {transaction.id} for account {account_id} "
            f"(delta={credits_delta}, status={status.value})"
        )
        return transaction

    async def record_snapshot(
        self,
        account_id: str,
        transaction_id: Optional[UUID],
        balance_before: int,
        balance_after: int,
        reason: str,
    ) -> Optional[BalanceSnapshot]:
        """Write a balance snapshot, best-effort.

        The insert runs inside a SAVEPOINT; a failure is logged and the
        balance change it describes stands.

        Returns:
            The snapshot, or None if it could not be written
        """
        snapshot = BalanceSnapshot(
            account_id=account_id,
            transaction_id=transaction_id,
            balance_before=balance_before,
            balance_after=balance_after,
            change_amount=balance_after - balance_before,
            reason=reason,
        )
        try:
            async with self.db.begin_nested():
                self.db.add(snapshot)
            await self.db.commit()
        except SQLAlchemyError as e:
            logger.error(
                f"Failed to record balance snapshot for account {account_id} "
                f"({reason}, {balance_before}->{balance_after}): {e}"
            )
            return None
        return snapshot

    async def open_account(
        self,
        account_id: str,
        email: str,
        username: str,
        avatar_url: Optional[str] = None,
        welcome_credits: Optional[int] = None,
    ) -> Account:
        """Create an account seeded with the welcome grant.

        The grant is recorded as a completed transaction with a
        ``welcome_grant`` snapshot.

        Args:
            account_id: Identity provider user id
            email: Primary email address
            username: Unique handle
            avatar_url: Optional profile image
            welcome_credits: Override for settings.WELCOME_CREDITS

        Returns:
            The new Account
        """
        grant = settings.WELCOME_CREDITS if welcome_credits is None else welcome_credits

        account = Account(
            id=account_id,
            email=email,
            username=username,
            avatar_url=avatar_url,
            credits_balance=grant,
        )
        self.db.add(account)
        await self.db.commit()
        await self.db.refresh(account)

        if grant > 0:
            transaction = await self.record_transaction(
                account_id,
                grant,
                TransactionStatus.COMPLETED,
                idempotency_key=f"welcome:{account_id}",
                metadata={"reason": "welcome_grant"},
            )
            await self.record_snapshot(account_id, transaction.id, 0, grant, "welcome_grant")

        logger.info(f"Opened account {account_id} with {grant} credits")
        return account

    async def get_transaction_history(
        self,
        account_id: str,
        limit: int = 50,
        offset: int = 0,
        status: Optional[TransactionStatus] = None,
    ) -> tuple[list[CreditTransaction], int]:
        """Get transaction history for an account.

        Args:
            account_id: The account's ID
            limit: Maximum number of transactions to return
            offset: Offset for pagination
            status: Optional filter by status

        Returns:
            Tuple of (list of transactions, total count)
        """
        base_query = select(CreditTransaction).where(CreditTransaction.account_id == account_id)

        if status:
            base_query = base_query.where(CreditTransaction.status == status)

        count_query = select(func.count()).select_from(base_query.subquery())
        total = await self.db.scalar(count_query) or 0

        query = (
            base_query
            .order_by(CreditTransaction.created_at.desc())
            .offset(offset)
            .limit(limit)
        )
        result = await self.db.execute(query)
        transactions = list(result.scalars().all())

        return transactions, total


def get_credit_ledger(db: AsyncSession) -> CreditLedger:
    """Factory function to create CreditLedger.

    Args:
        db: Database session

    Returns:
        Configured CreditLedger instance
    """
    return CreditLedger(db)

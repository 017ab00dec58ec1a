"""Unit tests for the credit ledger.

Tests cover:
- Balance checks and reads
- Atomic debit (including two sessions racing for the same credits)
- Credit and the debit/credit round trip
- Amount validation
- Transactions, snapshots and the welcome grant
"""

import asyncio
from uuid import uuid4

import pytest
import pytest_asyncio
from sqlalchemy import event, select
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from app.models.account import Account
from app.models.balance_snapshot import BalanceSnapshot
from app.models.credit_transaction import CreditTransaction, TransactionStatus
from app.services.errors import (
    AccountNotFoundError,
    ErrorKind,
    InsufficientBalanceError,
    ValidationError,
)
from app.services.ledger import CreditLedger, get_credit_ledger


@pytest_asyncio.fixture
async def locking_session_factory(engine):
    """Sessions that take the write lock when their transaction begins.

    Mirrors the row lock Postgres takes for an UPDATE: a second writer waits
    for the first to commit and then evaluates its WHERE clause against the
    committed balance.
    """
    locking_engine = create_async_engine(engine.url, future=True)

    @event.listens_for(locking_engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(locking_engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    yield sessionmaker(locking_engine, class_=AsyncSession, expire_on_commit=False)

    await locking_engine.dispose()


@pytest.fixture
def ledger(db_session: AsyncSession) -> CreditLedger:
    """Provide a ledger instance."""
    return get_credit_ledger(db_session)


# ============================================================================
# Balance Check Tests
# ============================================================================


class TestBalanceChecks:
    """Tests for has_sufficient_balance and get_balance."""

    async def test_sufficient_when_balance_covers_amount(self, ledger, test_account):
        assert await ledger.has_sufficient_balance(test_account.id, 20) is True
        assert await ledger.has_sufficient_balance(test_account.id, 21) is False

    async def test_missing_account_is_not_sufficient(self, ledger):
        assert await ledger.has_sufficient_balance("user_missing", 1) is False

    @pytest.mark.parametrize("amount", [0, -5])
    async def test_non_positive_amount_rejected(self, ledger, test_account, amount):
        with pytest.raises(ValidationError):
            await ledger.has_sufficient_balance(test_account.id, amount)

    async def test_get_balance(self, ledger, test_account):
        assert await ledger.get_balance(test_account.id) == 20

    async def test_get_balance_missing_account(self, ledger):
        with pytest.raises(AccountNotFoundError) as exc_info:
            await ledger.get_balance("user_missing")
        assert exc_info.value.kind == ErrorKind.NOT_FOUND


# ============================================================================
# Debit Tests
# ============================================================================


class TestDebit:
    """Tests for atomic debits."""

    async def test_debit_returns_new_balance(self, ledger, test_account):
        assert await ledger.debit(test_account.id, 10) == 10
        assert await ledger.get_balance(test_account.id) == 10

    async def test_debit_to_exactly_zero(self, ledger, test_account):
        assert await ledger.debit(test_account.id, 20) == 0

    async def test_insufficient_balance_leaves_balance_unchanged(self, ledger, test_account):
        with pytest.raises(InsufficientBalanceError) as exc_info:
            await ledger.debit(test_account.id, 21)

        assert exc_info.value.kind == ErrorKind.INSUFFICIENT_BALANCE
        assert exc_info.value.required == 21
        assert await ledger.get_balance(test_account.id) == 20

    async def test_missing_account_reports_insufficient_balance(self, ledger):
        with pytest.raises(InsufficientBalanceError):
            await ledger.debit("user_missing", 5)

    @pytest.mark.parametrize("amount", [0, -1, 2.5, True])
    async def test_invalid_amounts_rejected(self, ledger, test_account, amount):
        with pytest.raises(ValidationError):
            await ledger.debit(test_account.id, amount)
        assert await ledger.get_balance(test_account.id) == 20

    async def test_stale_in_memory_balance_cannot_overdraw(
        self, session_factory, test_account
    ):
        """A session holding an old copy of the account still cannot overdraw it."""
        async with session_factory() as session_a, session_factory() as session_b:
            ledger_a = CreditLedger(session_a)
            ledger_b = CreditLedger(session_b)

            stale = await ledger_a.get_account(test_account.id)
            assert stale.credits_balance == 20
            await session_a.commit()

            assert await ledger_b.debit(test_account.id, 15) == 5

            # Session A still believes the balance is 20
            assert stale.credits_balance == 20
            with pytest.raises(InsufficientBalanceError):
                await ledger_a.debit(test_account.id, 15)

            assert await ledger_b.get_balance(test_account.id) == 5

    async def test_concurrent_debits_exactly_one_succeeds(
        self, locking_session_factory, session_factory, test_account
    ):
        """Balance 20, two concurrent debits of 15: one wins, one is rejected."""

        async def attempt():
            async with locking_session_factory() as session:
                try:
                    return await CreditLedger(session).debit(test_account.id, 15)
                except InsufficientBalanceError as e:
                    return e

        results = await asyncio.gather(attempt(), attempt())

        successes = [r for r in results if isinstance(r, int)]
        failures = [r for r in results if isinstance(r, InsufficientBalanceError)]
        assert successes == [5]
        assert len(failures) == 1

        async with session_factory() as session:
            assert await CreditLedger(session).get_balance(test_account.id) == 5

    async def test_uncommitted_debit_rolls_back_with_caller(
        self, db_session, ledger, test_account
    ):
        assert await ledger.debit(test_account.id, 5, commit=False) == 15
        await db_session.rollback()

        assert await ledger.get_balance(test_account.id) == 20


# ============================================================================
# Credit Tests
# ============================================================================


class TestCredit:
    """Tests for credits and round trips."""

    async def test_credit_returns_new_balance(self, ledger, test_account):
        assert await ledger.credit(test_account.id, 30) == 50

    async def test_credit_missing_account(self, ledger):
        with pytest.raises(AccountNotFoundError):
            await ledger.credit("user_missing", 10)

    async def test_credit_rejects_non_positive(self, ledger, test_account):
        with pytest.raises(ValidationError):
            await ledger.credit(test_account.id, 0)

    async def test_debit_then_credit_restores_balance(self, ledger, test_account):
        await ledger.debit(test_account.id, 7)
        await ledger.credit(test_account.id, 7)

        assert await ledger.get_balance(test_account.id) == 20


# ============================================================================
# Transaction and Snapshot Tests
# ============================================================================


class TestAuditTrail:
    """Tests for transaction records and balance snapshots."""

    async def test_record_completed_transaction_sets_completed_at(self, ledger, test_account):
        tx = await ledger.record_transaction(
            test_account.id, -10, metadata={"reason": "generation"}
        )

        assert tx.status == TransactionStatus.COMPLETED
        assert tx.completed_at is not None
        assert tx.tx_metadata == {"reason": "generation"}

    async def test_record_pending_transaction_has_no_completed_at(self, ledger, test_account):
        tx = await ledger.record_transaction(
            test_account.id, 110, TransactionStatus.PENDING, session_id="cs_abc"
        )

        assert tx.completed_at is None
        assert tx.session_id == "cs_abc"

    async def test_record_snapshot(self, db_session, ledger, test_account):
        tx = await ledger.record_transaction(test_account.id, -10)
        snapshot = await ledger.record_snapshot(test_account.id, tx.id, 20, 10, "generation_image")

        assert snapshot is not None
        assert snapshot.change_amount == -10

        stored = (await db_session.execute(select(BalanceSnapshot))).scalars().all()
        assert [(s.balance_before, s.balance_after, s.reason) for s in stored] == [
            (20, 10, "generation_image")
        ]

    async def test_snapshot_failure_is_swallowed(self, db_session, ledger, test_account, caplog):
        """A snapshot that cannot be written does not undo the balance change."""
        await ledger.debit(test_account.id, 5)

        # Unknown transaction id violates the foreign key
        snapshot = await ledger.record_snapshot(test_account.id, uuid4(), 20, 15, "generation_text")

        assert snapshot is None
        assert "Failed to record balance snapshot" in caplog.text
        assert await ledger.get_balance(test_account.id) == 15

    async def test_transaction_history_is_newest_first_and_filterable(
        self, ledger, test_account
    ):
        await ledger.record_transaction(test_account.id, -10)
        await ledger.record_transaction(
            test_account.id, 110, TransactionStatus.PENDING, session_id="cs_1"
        )

        transactions, total = await ledger.get_transaction_history(test_account.id)
        assert total == 2

        pending, pending_total = await ledger.get_transaction_history(
            test_account.id, status=TransactionStatus.PENDING
        )
        assert pending_total == 1
        assert pending[0].session_id == "cs_1"


# ============================================================================
# Account Opening Tests
# ============================================================================


class TestOpenAccount:
    """Tests for account creation with the welcome grant."""

    async def test_open_account_seeds_welcome_grant(self, db_session, ledger):
        account = await ledger.open_account("user_new", "new@example.com", "newbie")

        assert account.credits_balance == 100

        tx = (
            await db_session.execute(
                select(CreditTransaction).where(CreditTransaction.account_id == "user_new")
            )
        ).scalar_one()
        assert tx.credits_delta == 100
        assert tx.idempotency_key == "welcome:user_new"

        snapshot = (await db_session.execute(select(BalanceSnapshot))).scalar_one()
        assert (snapshot.balance_before, snapshot.balance_after) == (0, 100)
        assert snapshot.reason == "welcome_grant"

    async def test_open_account_without_grant(self, db_session, ledger):
        account = await ledger.open_account(
            "user_zero", "zero@example.com", "zero", welcome_credits=0
        )

        assert account.credits_balance == 0
        transactions = (await db_session.execute(select(CreditTransaction))).scalars().all()
        assert transactions == []

    async def test_get_account_by_email_is_case_insensitive(self, ledger, test_account):
        account = await ledger.get_account_by_email("  USER_TEST@Example.com ")
        assert account is not None
        assert account.id == test_account.id

    async def test_get_account_refreshes_identity_map(self, db_session, ledger, test_account):
        await ledger.debit(test_account.id, 3)
        account = await ledger.get_account(test_account.id)
        assert isinstance(account, Account)
        assert account.credits_balance == 17

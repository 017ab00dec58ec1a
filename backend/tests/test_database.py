"""Database schema and model tests."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import database
from app.models import (
    Account,
    BalanceSnapshot,
    CreditTransaction,
    Follow,
    Like,
    Post,
    TransactionStatus,
)
from app.services.ledger import CreditLedger


@pytest.mark.asyncio
async def test_database_connection(db_session: AsyncSession):
    """Test basic database connectivity."""
    result = await db_session.execute(select(1))
    assert result.scalar() == 1


@pytest.mark.asyncio
async def test_account_crud(db_session: AsyncSession):
    """Test Account create, read and update."""
    account = Account(id="user_crud", email="crud@example.com", username="crud")
    db_session.add(account)
    await db_session.commit()
    await db_session.refresh(account)

    assert account.credits_balance == 0
    assert account.is_premium is False
    assert account.created_at is not None

    account.bio = "hello"
    await db_session.commit()

    result = await db_session.execute(select(Account).where(Account.email == "crud@example.com"))
    assert result.scalar_one().bio == "hello"


@pytest.mark.asyncio
async def test_balance_cannot_go_negative(db_session: AsyncSession):
    """The check constraint rejects a negative balance."""
    db_session.add(
        Account(id="user_neg", email="neg@example.com", username="neg", credits_balance=-1)
    )
    with pytest.raises(IntegrityError):
        await db_session.commit()


@pytest.mark.asyncio
async def test_transaction_references_are_unique(db_session: AsyncSession, test_account):
    """Two transactions cannot share an order id."""
    db_session.add(CreditTransaction(account_id=test_account.id, credits_delta=50, order_id="42"))
    await db_session.commit()

    db_session.add(CreditTransaction(account_id=test_account.id, credits_delta=50, order_id="42"))
    with pytest.raises(IntegrityError):
        await db_session.commit()


@pytest.mark.asyncio
async def test_jsonb_metadata_storage(db_session: AsyncSession, test_account):
    """Transaction metadata round-trips through the JSONB column."""
    transaction = CreditTransaction(
        account_id=test_account.id,
        credits_delta=110,
        tx_metadata={"package_id": "10", "bonus": 10},
    )
    db_session.add(transaction)
    await db_session.commit()
    await db_session.refresh(transaction)

    assert transaction.tx_metadata["package_id"] == "10"
    assert transaction.status == TransactionStatus.PENDING


def test_transaction_transitions():
    """Status only moves forward."""
    transaction = CreditTransaction(status=TransactionStatus.PENDING)
    assert transaction.can_transition_to(TransactionStatus.PROCESSING)
    assert transaction.can_transition_to(TransactionStatus.COMPLETED)
    assert not transaction.can_transition_to(TransactionStatus.REFUNDED)

    transaction.status = TransactionStatus.COMPLETED
    assert transaction.can_transition_to(TransactionStatus.REFUNDED)
    assert not transaction.can_transition_to(TransactionStatus.PENDING)

    transaction.status = TransactionStatus.REFUNDED
    assert not transaction.can_transition_to(TransactionStatus.COMPLETED)


@pytest.mark.asyncio
async def test_like_pair_is_unique(db_session: AsyncSession, test_account):
    """An account can like a post once."""
    post = Post(account_id=test_account.id, caption="mine")
    db_session.add(post)
    await db_session.commit()

    db_session.add(Like(account_id=test_account.id, post_id=post.id))
    await db_session.commit()

    db_session.add(Like(account_id=test_account.id, post_id=post.id))
    with pytest.raises(IntegrityError):
        await db_session.commit()


@pytest.mark.asyncio
async def test_cascade_delete(db_session: AsyncSession, make_account):
    """Deleting an account removes its posts, likes, follows and transactions."""
    await make_account("user_gone")
    await make_account("user_stays")

    post = Post(account_id="user_gone", caption="bye")
    db_session.add(post)
    await db_session.flush()
    db_session.add_all(
        [
            Like(account_id="user_stays", post_id=post.id),
            Follow(follower_id="user_stays", following_id="user_gone"),
            CreditTransaction(account_id="user_gone", credits_delta=100),
        ]
    )
    await db_session.commit()

    await db_session.execute(delete(Account).where(Account.id == "user_gone"))
    await db_session.commit()

    assert await db_session.scalar(select(Post.id)) is None
    assert await db_session.scalar(select(Like.id)) is None
    assert await db_session.scalar(select(Follow.id)) is None
    assert await db_session.scalar(select(CreditTransaction.id)) is None


@pytest.mark.asyncio
async def test_snapshots_survive_account_delete(db_session: AsyncSession):
    """Balance snapshots stay behind when their account is deleted."""
    ledger = CreditLedger(db_session)
    await ledger.open_account("user_audit", "audit@example.com", "audit", welcome_credits=100)

    await db_session.execute(delete(Account).where(Account.id == "user_audit"))
    await db_session.commit()

    result = await db_session.execute(
        select(BalanceSnapshot)
        .where(BalanceSnapshot.account_id == "user_audit")
        .execution_options(populate_existing=True)
    )
    snapshot = result.scalar_one()
    assert snapshot.reason == "welcome_grant"
    assert (snapshot.balance_before, snapshot.balance_after) == (0, 100)
    # Its transaction was removed with the account, so the link is cleared
    assert snapshot.transaction_id is None


@pytest.mark.asyncio
async def test_close_db_disposes_engine(monkeypatch):
    """close_db disposes a created engine and forgets it; without one it is a no-op."""
    monkeypatch.setattr(database, "engine", None)
    monkeypatch.setattr(database, "AsyncSessionLocal", None)
    await database.close_db()

    fake_engine = MagicMock()
    fake_engine.dispose = AsyncMock()
    monkeypatch.setattr(database, "engine", fake_engine)
    monkeypatch.setattr(database, "AsyncSessionLocal", MagicMock())

    await database.close_db()

    fake_engine.dispose.assert_awaited_once()
    assert database.engine is None
    assert database.AsyncSessionLocal is None

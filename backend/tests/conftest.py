"""Pytest configuration and shared fixtures for backend tests.

Database tests run against a fresh aiosqlite file per test. JSONB columns
are rendered as JSON on SQLite, and the pysqlite transaction handling is
replaced with explicit BEGIN so SAVEPOINTs behave as they do on Postgres.
"""

import os
import sys
import time
from typing import Optional

import pytest
import pytest_asyncio
import redis.asyncio as redis
from sqlalchemy import event
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.orm import sessionmaker

# Add parent directory to path for app module discovery
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Set test environment BEFORE importing app modules
os.environ.setdefault("ENVIRONMENT", "test")

from app.core.database import Base
import app.models  # noqa: F401  registers every table on Base.metadata
from app.models.account import Account


@compiles(JSONB, "sqlite")
def _compile_jsonb_sqlite(type_, compiler, **kw):
    return "JSON"


# ============================================================================
# Redis test double
# ============================================================================


class FakeRedis:
    """In-memory stand-in for the redis.asyncio commands the app uses.

    Values are stored as text, as with decode_responses=True. Expiry is
    evaluated against a controllable clock; call advance() to move it.
    Set ``error`` to an exception instance to make every command raise it.
    """

    def __init__(self):
        self.values: dict[str, str] = {}
        self.lists: dict[str, list[str]] = {}
        self.expires_at: dict[str, float] = {}
        self.now = float(int(time.time()))
        self.error: Optional[Exception] = None

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def _check(self) -> None:
        if self.error is not None:
            raise self.error

    def _purge(self, key: str) -> None:
        deadline = self.expires_at.get(key)
        if deadline is not None and deadline <= self.now:
            self.values.pop(key, None)
            self.lists.pop(key, None)
            self.expires_at.pop(key, None)

    def _exists(self, key: str) -> bool:
        self._purge(key)
        return key in self.values or key in self.lists

    @staticmethod
    def _text(value) -> str:
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return str(value)

    async def ping(self) -> bool:
        self._check()
        return True

    async def get(self, key: str) -> Optional[str]:
        self._check()
        self._purge(key)
        return self.values.get(key)

    async def set(self, key: str, value, ex: Optional[int] = None, nx: bool = False):
        self._check()
        if nx and self._exists(key):
            return None
        self.values[key] = self._text(value)
        if ex is not None:
            self.expires_at[key] = self.now + ex
        else:
            self.expires_at.pop(key, None)
        return True

    async def setex(self, key: str, seconds: int, value) -> bool:
        return await self.set(key, value, ex=seconds)

    async def delete(self, *keys: str) -> int:
        self._check()
        removed = 0
        for key in keys:
            if self._exists(key):
                removed += 1
            self.values.pop(key, None)
            self.lists.pop(key, None)
            self.expires_at.pop(key, None)
        return removed

    async def incr(self, key: str) -> int:
        self._check()
        self._purge(key)
        current = int(self.values.get(key, "0")) + 1
        self.values[key] = str(current)
        return current

    async def expire(self, key: str, seconds: int) -> bool:
        self._check()
        if not self._exists(key):
            return False
        self.expires_at[key] = self.now + seconds
        return True

    async def ttl(self, key: str) -> int:
        self._check()
        if not self._exists(key):
            return -2
        deadline = self.expires_at.get(key)
        if deadline is None:
            return -1
        return max(int(deadline - self.now), 0)

    async def lpush(self, key: str, *values) -> int:
        self._check()
        items = self.lists.setdefault(key, [])
        for value in values:
            items.insert(0, self._text(value))
        return len(items)

    async def rpop(self, key: str, count: Optional[int] = None):
        self._check()
        items = self.lists.get(key)
        if not items:
            return None
        if count is None:
            value = items.pop()
            popped = value
        else:
            popped = [items.pop() for _ in range(min(count, len(items)))]
        if not items:
            self.lists.pop(key, None)
        return popped

    async def llen(self, key: str) -> int:
        self._check()
        return len(self.lists.get(key, []))


# ============================================================================
# Fixtures
# ============================================================================


@pytest_asyncio.fixture
async def engine(tmp_path):
    """Fresh SQLite database file with every table created."""
    db_path = tmp_path / "legion_test.db"
    test_engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}", future=True)

    @event.listens_for(test_engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # Let SQLAlchemy emit BEGIN itself so SAVEPOINT nests correctly
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    @event.listens_for(test_engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    """Session factory configured like app.core.database."""
    return sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory):
    """Provide a test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def fake_redis() -> FakeRedis:
    """Provide an in-memory Redis double."""
    return FakeRedis()


@pytest.fixture
def redis_down() -> FakeRedis:
    """Redis double whose every command fails."""
    client = FakeRedis()
    client.error = redis.ConnectionError("Connection refused")
    return client


@pytest.fixture
def make_account(session_factory):
    """Factory creating accounts with a given balance.

    Accounts are written through their own session so no test session is
    left holding an open read transaction.
    """

    async def _make(
        account_id: str = "user_test",
        balance: int = 20,
        email: Optional[str] = None,
        username: Optional[str] = None,
    ) -> Account:
        account = Account(
            id=account_id,
            email=email or f"{account_id}@example.com",
            username=username or account_id,
            credits_balance=balance,
        )
        async with session_factory() as session:
            session.add(account)
            await session.commit()
        return account

    return _make


@pytest_asyncio.fixture
async def test_account(make_account) -> Account:
    """Account with 20 credits."""
    return await make_account()

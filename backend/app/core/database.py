"""Database engine and session lifecycle.

The schema is owned by the Alembic migrations; this module only manages
connections. Ledger services commit their own units of work, so get_db
commits whatever a request leaves pending and rolls back on error.
"""

from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import NullPool

# Declarative base for models (can be imported without engine)
Base = declarative_base()

# Created on first use, disposed by close_db
engine: Optional[AsyncEngine] = None
AsyncSessionLocal: Optional[sessionmaker] = None


def get_engine() -> AsyncEngine:
    """Get or create the async engine."""
    global engine
    if engine is None:
        from app.core.config import settings

        if settings.ENVIRONMENT == "test":
            pool_options = {"poolclass": NullPool}
        else:
            pool_options = {
                "pool_size": settings.DATABASE_POOL_SIZE,
                "max_overflow": settings.DATABASE_MAX_OVERFLOW,
                "pool_pre_ping": True,
            }

        engine = create_async_engine(
            settings.DATABASE_URL,
            echo=settings.ENVIRONMENT == "development",
            future=True,
            **pool_options,
        )
    return engine


def get_session_factory() -> sessionmaker:
    """Get or create the session factory. Loaded objects stay usable after commit."""
    global AsyncSessionLocal
    if AsyncSessionLocal is None:
        AsyncSessionLocal = sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
            autocommit=False,
            autoflush=False,
        )
    return AsyncSessionLocal


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency for FastAPI routes to get a database session.

    Usage:
        @router.get("/credits/balance")
        async def get_balance(db: AsyncSession = Depends(get_db)):
            ...
    """
    session_factory = get_session_factory()
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def close_db() -> None:
    """Dispose of the engine's pooled connections, if an engine was created."""
    global engine, AsyncSessionLocal
    if engine is None:
        return
    await engine.dispose()
    engine = None
    AsyncSessionLocal = None

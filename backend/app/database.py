"""Database engine, session factory, and declarative base.

One DeclarativeBase for everything the ledger touches:
  - batches, ledger_transactions    → owned by the ledger (append-only)
  - cooperatives, farmers, lands, … → reference registry, read-only here

Two FastAPI dependencies:
  - get_db()               → request-scoped session for read paths
  - get_session_factory()  → factory handed to run_atomic() for mutations,
                             which need a fresh transaction per retry attempt
"""

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from app.config import settings

engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_size=20,
    max_overflow=10,
)

async_session = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


class Base(DeclarativeBase):
    pass


# ── Session dependencies ────────────────────────────────────

async def get_db() -> AsyncSession:
    """Yield a session for read-only request handling."""
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the session factory used by mutating endpoints.

    Overridden in tests to point at the test engine.
    """
    return async_session

"""Async SQLAlchemy engine and session factory.

Learn: SQLAlchemy 2.0 async mode. One engine per process, one AsyncSession
per request via FastAPI dependency injection. Services commit their own
writes; a request that fails half-way is rolled back here so the session
never goes back to the pool mid-transaction.
"""

from typing import AsyncIterator

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from techflow.config import settings

# pool_pre_ping: dashboards stay open for hours, so idle connections get
# dropped by Postgres or a proxy in between.
engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_size=settings.db_pool_size,
    max_overflow=settings.db_max_overflow,
    pool_pre_ping=True,
)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency: one session per request, rolled back on error."""
    async with async_session_factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """FastAPI dependency for handlers that open their own short sessions.

    Long-lived WebSocket handlers use this instead of get_db so no pooled
    connection stays checked out for the life of the socket.
    """
    return async_session_factory

"""SQLAlchemy 2.x async database setup.

This module defines the async engine and session factory but does not
hard-code any connection credentials.
"""

from __future__ import annotations

from typing import Any, AsyncIterator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .config import DatabaseSettings, settings


def build_engine(db_settings: DatabaseSettings) -> AsyncEngine:
    """Create an async engine honouring the configured pool limits.

    SQLite drivers do not accept pool sizing, so those options are only
    passed for server databases.
    """
    options: dict[str, Any] = {"echo": db_settings.echo}
    if not db_settings.url.startswith("sqlite"):
        options["pool_size"] = db_settings.pool_size
        options["max_overflow"] = db_settings.max_overflow
        options["pool_pre_ping"] = True
    return create_async_engine(db_settings.url, **options)


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=bind, expire_on_commit=False, class_=AsyncSession)


engine: AsyncEngine = build_engine(settings.db)

AsyncSessionMaker = build_session_factory(engine)


async def get_session() -> AsyncIterator[AsyncSession]:
    """FastAPI-friendly async session dependency.

    Usage:
        async def endpoint(session: AsyncSession = Depends(get_session)):
            ...
    """

    async with AsyncSessionMaker() as session:
        yield session


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """FastAPI dependency returning the factory used for per-chunk transactions."""
    return AsyncSessionMaker

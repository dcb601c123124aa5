"""Database connection and session management.

Uses lazy initialization to ensure the engine is created within
the correct event loop context, avoiding asyncpg event loop issues.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool, StaticPool

from oncall.config import settings

# Engine and session maker - lazily initialized
_engine: Optional[AsyncEngine] = None
_async_session_maker: Optional[async_sessionmaker[AsyncSession]] = None


def get_engine() -> AsyncEngine:
    """Get or create the database engine.

    Creates the engine lazily to ensure it's created within
    the correct event loop context.

    SQLite URLs (used by the test suite) share a single connection so an
    in-memory database survives across sessions. When testing=True against
    a server database, NullPool avoids event loop issues with connection
    pooling across different test event loops.
    """
    global _engine
    if _engine is None:
        if settings.database_url.startswith("sqlite"):
            _engine = create_async_engine(
                settings.database_url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        elif settings.testing:
            _engine = create_async_engine(
                settings.database_url,
                echo=settings.log_format == "text",
                poolclass=NullPool,
            )
        else:
            _engine = create_async_engine(
                settings.database_url,
                echo=settings.log_format == "text",
                pool_size=5,
                max_overflow=10,
                pool_pre_ping=True,
            )
    return _engine


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    """Get or create the session maker."""
    global _async_session_maker
    if _async_session_maker is None:
        _async_session_maker = async_sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
        )
    return _async_session_maker


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency for getting database sessions."""
    session_maker = get_session_maker()
    async with session_maker() as session:
        try:
            yield session
        finally:
            await session.close()


@asynccontextmanager
async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Context manager for database sessions."""
    session_maker = get_session_maker()
    async with session_maker() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_models() -> None:
    """Create all tables from the ORM metadata.

    Production schemas are managed by Alembic; this is for local
    development and the test suite.
    """
    from oncall.models import Base

    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def check_database_connection() -> bool:
    """
    Check if the database is reachable.

    Returns:
        True if database is connected, False otherwise.
    """
    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
            return True
    except Exception:
        return False


async def close_database() -> None:
    """Close the database engine and all connections."""
    global _engine, _async_session_maker
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _async_session_maker = None


async def reset_database() -> None:
    """Reset the database engine for testing.

    This disposes the current engine and clears the references,
    allowing a new engine to be created in a different event loop.
    """
    await close_database()

"""Database connection and session management.

Provides async SQLAlchemy engine and session factory builders.
"""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


def normalize_database_url(url: str) -> str:
    """Make sure SQLite and PostgreSQL URLs use their async drivers."""
    if url.startswith("sqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+asyncpg://", 1)
    return url


def create_engine(url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine for the given database URL."""
    url = normalize_database_url(url)
    if url.startswith("sqlite"):
        # SQLite async requires aiosqlite
        return create_async_engine(url, echo=echo)
    # PostgreSQL with asyncpg
    return create_async_engine(
        url,
        echo=echo,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Async session factory bound to the engine."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def init_db(engine: AsyncEngine) -> None:
    """Initialize database tables.

    Creates all tables defined in models if they don't exist.
    For production, manage the schema with migrations instead.
    """
    # Register models on Base.metadata
    from antifraud.db import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

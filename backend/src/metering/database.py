"""Database handle with an explicit lifecycle.

A ``Database`` is constructed once at process start (application lifespan or
worker startup), passed to whoever needs sessions, and disposed at shutdown.
"""
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

logger = structlog.get_logger(__name__)

# Declarative base for all models
Base = declarative_base()


class Database:
    """Owns the async engine and session factory."""

    def __init__(self, url: str, echo: bool = False, **engine_kwargs):
        """
        Create the engine and session factory.

        Args:
            url: SQLAlchemy async connection string
            echo: Echo SQL statements
            engine_kwargs: Extra keyword arguments for ``create_async_engine``
        """
        if url.startswith("postgresql"):
            engine_kwargs.setdefault("pool_pre_ping", True)
            engine_kwargs.setdefault("pool_size", 20)
            engine_kwargs.setdefault("max_overflow", 10)

        self.url = url
        self.engine: AsyncEngine = create_async_engine(url, echo=echo, **engine_kwargs)
        self.session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Provide a transactional session.

        Commits on success, rolls back on error.

        Yields:
            AsyncSession: Database session
        """
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def create_all(self) -> None:
        """Create all tables (tests and local development only)."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        """Close all pooled connections."""
        await self.engine.dispose()
        logger.info("database_disposed")


def dialect_insert(session: AsyncSession, table):
    """
    ``INSERT`` construct supporting ``ON CONFLICT`` for the session's dialect.

    Both PostgreSQL and SQLite expose ``on_conflict_do_update`` and
    ``on_conflict_do_nothing`` with the same signature.
    """
    if session.get_bind().dialect.name == "postgresql":
        return pg_insert(table)
    return sqlite_insert(table)

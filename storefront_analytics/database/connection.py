"""
Database Connection Management

Async engine and session factory for the analytics store (SQLAlchemy 2.0).
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from .models import Base

logger = structlog.get_logger(__name__)


class Database:
    """
    Owns one async engine and hands out sessions.

    Example:
        database = Database(settings.database.async_url)
        async with database.session() as session:
            await session.execute(query)
        await database.dispose()
    """

    def __init__(
        self,
        url: str,
        echo: bool = False,
        engine: Optional[AsyncEngine] = None,
    ):
        if engine is None:
            engine_config = {
                "echo": echo,
                "pool_pre_ping": True,
            }
            # asyncpg pools its own connections
            if url.startswith("postgresql"):
                engine_config["poolclass"] = NullPool
            engine = create_async_engine(url, **engine_config)

        self.engine = engine
        self._session_factory = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    @classmethod
    def from_settings(cls, settings) -> "Database":
        return cls(settings.database.async_url, echo=settings.database.echo)

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Session that commits on success and rolls back on error.

        Yields:
            AsyncSession: Database session
        """
        session = self._session_factory()
        try:
            yield session
            await session.commit()
        except Exception as e:
            logger.error("Database session error, rolling back", error=str(e), error_type=type(e).__name__)
            await session.rollback()
            raise
        finally:
            await session.close()

    async def ping(self) -> bool:
        """Return True when the database answers a trivial query"""
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except Exception as e:
            logger.error("Database ping failed", error=str(e))
            return False
        return True

    async def create_all(self) -> None:
        """Create every table that does not exist yet"""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database schema ensured", tables=sorted(Base.metadata.tables))

    async def dispose(self) -> None:
        await self.engine.dispose()
        logger.info("Database engine disposed")

"""Async database engine, session factory, and lifespan management.

Uses SQLAlchemy 2.0 async with asyncpg driver for PostgreSQL.
Redis client for cross-process identity locks.

Nothing connects at import time: a Database is built from settings and
opened/closed explicitly by the application lifespan.
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import AsyncGenerator

import redis.asyncio as aioredis
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from src.config import Settings

logger = logging.getLogger(__name__)


class Database:
    """Owns the async engine, the session factory and the Redis client."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self.engine: AsyncEngine = create_async_engine(
            settings.db.database_url,
            echo=settings.log_level == "DEBUG",
            pool_size=10,
            max_overflow=20,
            pool_pre_ping=True,
            pool_recycle=3600,
        )
        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )
        self.redis: aioredis.Redis = aioredis.from_url(
            settings.db.redis_url,
            decode_responses=True,
        )

    async def init(self) -> None:
        """Verify connectivity and, outside production, create the log tables.

        In production, tables are created via Alembic migrations.
        """
        async with self.engine.begin() as conn:
            # Import here to ensure all models are registered with Base.metadata
            from src.models import Base

            if not self._settings.is_production:
                await conn.run_sync(Base.metadata.create_all)
        logger.info("Database initialized")

    async def close(self) -> None:
        """Dispose database engine and Redis connections."""
        await self.engine.dispose()
        await self.redis.aclose()
        logger.info("Database connections closed")


@contextlib.asynccontextmanager
async def db_lifespan(database: Database) -> AsyncGenerator[Database, None]:
    """Context manager for database lifecycle.

    Usage in FastAPI lifespan:
        @asynccontextmanager
        async def lifespan(app: FastAPI):
            async with db_lifespan(Database(settings)) as database:
                yield
    """
    await database.init()
    try:
        yield database
    finally:
        await database.close()

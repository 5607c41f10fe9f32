"""Database engine and session management."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from kbclient.config import StorageSettings
from kbclient.domain.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

_ASYNC_DRIVERS = ("aiosqlite", "asyncpg", "asyncmy", "aiomysql", "psycopg")


class Database:
    """Database connection and session manager."""

    def __init__(self, settings: StorageSettings) -> None:
        """Initialize database with storage settings.

        Raises:
            ConfigurationError: If the URL does not name an async driver
        """
        self.settings = settings
        url = make_url(settings.database_url)

        if url.get_driver_name() not in _ASYNC_DRIVERS:
            raise ConfigurationError(
                f"database_url must use an async driver (e.g. sqlite+aiosqlite), "
                f"got {url.drivername!r}"
            )

        engine_kwargs: dict[str, Any] = {"pool_pre_ping": True}

        if url.get_backend_name() == "sqlite":
            # Hey future me - the session db usually sits in ~/.kbclient which may not
            # exist on a fresh install. SQLite won't create parent directories itself.
            if url.database and url.database != ":memory:":
                Path(url.database).expanduser().parent.mkdir(parents=True, exist_ok=True)
            engine_kwargs["connect_args"] = {
                "check_same_thread": False,
                "timeout": 30,  # Wait up to 30s for lock
            }

        self._engine = create_async_engine(url, **engine_kwargs)
        self._session_factory = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    @asynccontextmanager
    async def session_scope(self) -> AsyncGenerator[AsyncSession, None]:
        """Provide a transactional scope for database operations."""
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                # Rollback on any exception to keep the transaction atomic, then re-raise.
                await session.rollback()
                raise
            finally:
                await session.close()

    async def create_tables(self) -> None:
        """Create all tables that do not exist yet."""
        from kbclient.infrastructure.persistence.models import Base

        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.debug("Session storage tables ready")

    async def close(self) -> None:
        """Close database connection."""
        await self._engine.dispose()

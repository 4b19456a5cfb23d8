"""SQLAlchemy-backed rate-limit store.

Uses SQLAlchemy 2.0 async patterns with SQLite (aiosqlite) or PostgreSQL
(asyncpg). Each store owns its engine; there are no module-level globals.

Examples:
    >>> store = SQLRateLimitStore("sqlite+aiosqlite:///./rate_limits.db")
    >>> await store.init()
    >>> await store.get_hit_date("gemini")

Tests:
    - tests/unit/test_rate_limit.py::TestSQLRateLimitStore
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import date

from sqlalchemy import delete, event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from hockey_ai.storage.base import RateLimitStore
from hockey_ai.storage.models import Base, RateLimitHit

logger = logging.getLogger(__name__)


class SQLRateLimitStore(RateLimitStore):
    """Rate-limit records in a relational database.

    Attributes:
        database_url: SQLAlchemy async URL
    """

    def __init__(self, database_url: str, echo: bool = False) -> None:
        self.database_url = database_url
        self._echo = echo
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None
        self._initialized = False

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    @property
    def engine(self) -> AsyncEngine:
        """Get or create the async engine."""
        if self._engine is None:
            if self.is_sqlite:
                kwargs = {"connect_args": {"check_same_thread": False}}
                if ":memory:" in self.database_url:
                    # In-memory: share one connection so tables survive
                    kwargs["poolclass"] = StaticPool
                self._engine = create_async_engine(self.database_url, echo=self._echo, **kwargs)

                @event.listens_for(self._engine.sync_engine, "connect")
                def set_sqlite_pragma(dbapi_connection, connection_record):
                    cursor = dbapi_connection.cursor()
                    cursor.execute("PRAGMA journal_mode=WAL")
                    cursor.execute("PRAGMA busy_timeout=5000")
                    cursor.close()

            else:
                self._engine = create_async_engine(
                    self.database_url,
                    echo=self._echo,
                    pool_size=5,
                    max_overflow=10,
                    pool_pre_ping=True,
                )
            logger.info(f"Rate-limit store engine created: {self.database_url.split('@')[-1]}")
        return self._engine

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            self._session_factory = async_sessionmaker(
                self.engine,
                class_=AsyncSession,
                expire_on_commit=False,
                autoflush=False,
            )
        return self._session_factory

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Session committed on success, rolled back on error."""
        session = self.session_factory()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    async def init(self) -> None:
        """Create tables if missing."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        self._initialized = True
        logger.debug("Rate-limit tables ready")

    async def _ensure_initialized(self) -> None:
        if not self._initialized:
            await self.init()

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
            self._initialized = False

    async def get_hit_date(self, provider: str) -> date | None:
        await self._ensure_initialized()
        async with self.session() as session:
            record = await session.get(RateLimitHit, provider)
            return record.hit_date if record else None

    async def set_hit_date(self, provider: str, day: date) -> None:
        await self._ensure_initialized()
        async with self.session() as session:
            record = await session.get(RateLimitHit, provider)
            if record is None:
                session.add(RateLimitHit(provider=provider, hit_date=day))
            else:
                record.hit_date = day

    async def clear(self, provider: str) -> None:
        await self._ensure_initialized()
        async with self.session() as session:
            await session.execute(delete(RateLimitHit).where(RateLimitHit.provider == provider))

"""
Database — one async engine plus its session factory, owned by the SQL store
that uses it and released when that store is closed.

Plain URLs are mapped to their async driver:
  postgresql:// or postgres://  → postgresql+asyncpg://
  sqlite://                     → sqlite+aiosqlite://
"""
from __future__ import annotations

import structlog
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import (
    AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine,
)

from database.models import Base

logger = structlog.get_logger()

_ASYNC_DRIVERS = (
    ("postgresql://", "postgresql+asyncpg://"),
    ("postgres://", "postgresql+asyncpg://"),
    ("sqlite://", "sqlite+aiosqlite://"),
)

# Server databases only; SQLite gets a single-file connection instead.
_POOL_OPTIONS = {
    "pool_size": 10,
    "max_overflow": 20,
    "pool_timeout": 30,
    "pool_recycle": 1800,
    "pool_pre_ping": True,
}


def async_url(db_url: str) -> str:
    for plain, driver in _ASYNC_DRIVERS:
        if db_url.startswith(plain):
            return driver + db_url[len(plain):]
    return db_url


def redact_url(url: str) -> str:
    """Strip user and password so the URL can be logged."""
    return url.split("@")[-1] if "@" in url else url


class Database:
    def __init__(self, url: str, echo: bool = False):
        self.url = async_url(url)
        options: dict = {"echo": echo}
        if self.url.startswith("sqlite"):
            options["connect_args"] = {"check_same_thread": False}
        else:
            options.update(_POOL_OPTIONS)
        self.engine: AsyncEngine = create_async_engine(self.url, **options)
        self._sessions = async_sessionmaker(self.engine, class_=AsyncSession, expire_on_commit=False)
        logger.info("database_engine_created", dialect=self.dialect, url=redact_url(self.url))

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Transactional scope: commit on success, roll back on any error."""
        async with self._sessions() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def create_tables(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("database_tables_ready",
                    dialect=self.dialect,
                    tables=sorted(Base.metadata.tables))

    async def table_names(self) -> list[str]:
        async with self.engine.connect() as conn:
            return await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())

    async def dispose(self) -> None:
        await self.engine.dispose()
        logger.info("database_closed", dialect=self.dialect)

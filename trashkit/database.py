"""
Async database access.

A thin holder for the async engine and session factory shared by the trash
query engine, the lifecycle services and the audit storage.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import MetaData
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

logger = logging.getLogger(__name__)


class Database:
    """
    Async SQLAlchemy engine plus session factory.

    Usage:
        db = Database("sqlite+aiosqlite:///./trashkit.db")
        async with db.session() as s:
            ...
    """

    def __init__(self, url: str, echo: bool = False) -> None:
        self.url = url
        self._engine: AsyncEngine = create_async_engine(
            url, echo=echo, pool_pre_ping=True
        )
        self._sessionmaker: async_sessionmaker[AsyncSession] = async_sessionmaker(
            bind=self._engine,
            expire_on_commit=False,
            autoflush=False,
        )

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    @property
    def sessions(self) -> async_sessionmaker[AsyncSession]:
        return self._sessionmaker

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """
        Provides an AsyncSession with safe commit/rollback semantics.
        """
        session: AsyncSession = self._sessionmaker()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    async def create_all(self, *metadatas: MetaData) -> None:
        """
        Create tables for the given metadata collections. Use in dev/tests.
        """
        async with self._engine.begin() as conn:
            for metadata in metadatas:
                await conn.run_sync(metadata.create_all)
        logger.debug("Created tables for %d metadata collection(s)", len(metadatas))

    async def drop_all(self, *metadatas: MetaData) -> None:
        async with self._engine.begin() as conn:
            for metadata in reversed(metadatas):
                await conn.run_sync(metadata.drop_all)

    async def dispose(self) -> None:
        await self._engine.dispose()

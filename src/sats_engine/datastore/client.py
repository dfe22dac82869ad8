"""Ledger datastore — owns the async engine and hands out sessions.

Reads go through :meth:`Datastore.session`. Writes that have to land
together (marking inputs pending, recording a broadcast and its change) go
through :meth:`Datastore.unit_of_work`, which commits on exit and rolls back
when the block raises.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sats_engine.datastore.engines import create_engine
from sats_engine.datastore.migrations import run_auto_migrate

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from sqlalchemy.ext.asyncio import AsyncEngine

    from sats_engine.config.settings import DatabaseConfig

logger = logging.getLogger(__name__)

_ERR_NOT_OPEN = "Datastore is not open. Call open() first."


class Datastore:
    """Async SQLAlchemy engine plus session factory for the ledger database.

    Usage::

        ds = Datastore(config.db)
        await ds.open(migrate=True)
        async with ds.unit_of_work() as session:
            session.add(row)
        await ds.close()
    """

    def __init__(self, config: DatabaseConfig) -> None:
        self._config = config
        self._engine: AsyncEngine | None = None
        self._sessions: async_sessionmaker[AsyncSession] | None = None

    @property
    def is_open(self) -> bool:
        return self._engine is not None

    @property
    def engine(self) -> AsyncEngine:
        """The underlying async engine.

        Raises:
            RuntimeError: If the datastore is not open.
        """
        if self._engine is None:
            raise RuntimeError(_ERR_NOT_OPEN)
        return self._engine

    async def open(self, *, migrate: bool = False) -> None:
        """Create the engine; with *migrate*, create any missing ledger tables.

        Opening an already open datastore does nothing.
        """
        if self._engine is not None:
            return
        self._engine = create_engine(self._config)
        self._sessions = async_sessionmaker(self._engine, expire_on_commit=False)
        if migrate:
            await run_auto_migrate(self._engine)
        logger.debug("Datastore opened (migrate=%s)", migrate)

    async def close(self) -> None:
        """Dispose the engine. Safe to call more than once."""
        if self._engine is None:
            return
        await self._engine.dispose()
        self._engine = None
        self._sessions = None
        logger.debug("Datastore closed")

    def session(self) -> AsyncSession:
        """A fresh session, to be used as an async context manager.

        Raises:
            RuntimeError: If the datastore is not open.
        """
        if self._sessions is None:
            raise RuntimeError(_ERR_NOT_OPEN)
        return self._sessions()

    @asynccontextmanager
    async def unit_of_work(self) -> AsyncIterator[AsyncSession]:
        """Yield a session whose changes commit together or not at all."""
        async with self.session() as session, session.begin():
            yield session

    async def ping(self) -> bool:
        """Whether a trivial query round-trips; used by health reporting."""
        if self._sessions is None:
            return False
        try:
            async with self.session() as session:
                await session.execute(text("SELECT 1"))
        except SQLAlchemyError as exc:
            logger.warning("Datastore ping failed: %s", exc)
            return False
        return True

"""Schema creation for development and tests.

Production deployments run the Alembic environment in ``alembic/env.py``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sats_engine.engine.models.base import Base

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine


async def run_auto_migrate(engine: AsyncEngine) -> None:
    """Create all ledger tables that do not exist yet."""
    # Registers every model on Base.metadata
    import sats_engine.engine.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_all_tables(engine: AsyncEngine) -> None:
    """Drop all ledger tables (tests only)."""
    import sats_engine.engine.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

"""Database engine factory — SQLite (aiosqlite) or any async SQLAlchemy DSN."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool

if TYPE_CHECKING:
    from sats_engine.config.settings import DatabaseConfig


def create_engine(config: DatabaseConfig) -> AsyncEngine:
    """Create an async SQLAlchemy engine from database configuration.

    In-memory SQLite shares one connection so every session sees the same
    database; file-backed SQLite enforces foreign keys on each connection.
    """
    kwargs: dict[str, Any] = {
        "echo": config.debug_sql,
    }

    is_sqlite = config.dsn.startswith("sqlite")
    if is_sqlite and ":memory:" in config.dsn:
        kwargs["poolclass"] = StaticPool
    elif not is_sqlite:
        kwargs["pool_size"] = config.max_idle_connections
        kwargs["max_overflow"] = config.max_open_connections - config.max_idle_connections
        kwargs["pool_pre_ping"] = True

    engine = create_async_engine(config.dsn, **kwargs)

    if is_sqlite:

        @event.listens_for(engine.sync_engine, "connect")
        def _enable_foreign_keys(dbapi_connection, _record) -> None:  # type: ignore[no-untyped-def]
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine

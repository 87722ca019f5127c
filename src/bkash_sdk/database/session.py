"""Engine and session wiring for the reference invoice ledger."""

import os
import logging
from typing import AsyncGenerator, Optional

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    create_async_engine as sa_create_async_engine,
    AsyncSession,
    async_sessionmaker,
    AsyncEngine,
)
from sqlalchemy.pool import StaticPool

from .models import Base

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./bkash_billing.db"

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def get_database_url() -> str:
    """Ledger URL from DATABASE_URL; plain postgres schemes get the asyncpg driver."""
    url = os.getenv("DATABASE_URL") or DEFAULT_DATABASE_URL
    for scheme in ("postgresql://", "postgres://"):
        if url.startswith(scheme):
            return "postgresql+asyncpg://" + url[len(scheme):]
    return url


def _use_immediate_transactions(engine: AsyncEngine) -> None:
    """Hand SQLite transaction control to SQLAlchemy.

    The driver's own implicit BEGIN is disabled and every transaction opens
    with BEGIN IMMEDIATE, so savepoints work and concurrent settlements
    queue on the database write lock instead of failing on upgrade.
    """
    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_async_engine(database_url: Optional[str] = None, echo: bool = False) -> AsyncEngine:
    """Create the ledger engine.

    Args:
        database_url: Connection URL. If None, uses get_database_url().
        echo: If True, log all SQL statements.
    """
    url = database_url or get_database_url()
    if not url.startswith("sqlite"):
        return sa_create_async_engine(url, echo=echo)

    options = {"connect_args": {"check_same_thread": False}}
    if ":memory:" in url:
        # one shared connection, otherwise every checkout sees an empty database
        options["poolclass"] = StaticPool
    engine = sa_create_async_engine(url, echo=echo, **options)
    _use_immediate_transactions(engine)
    return engine


def get_async_session_factory(
    engine: Optional[AsyncEngine] = None,
) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to ``engine``, or the one set up by init_db()."""
    if engine is not None:
        return async_sessionmaker(engine, expire_on_commit=False, autoflush=False)
    if _session_factory is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _session_factory


async def init_db(database_url: Optional[str] = None, create_tables: bool = True) -> None:
    """Open the process-wide ledger engine, creating tables unless told not to."""
    global _engine, _session_factory

    _engine = create_async_engine(database_url)
    _session_factory = get_async_session_factory(_engine)
    if create_tables:
        async with _engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    logger.info(f"Ledger database ready at {_engine.url.render_as_string(hide_password=True)}")


async def close_db() -> None:
    global _engine, _session_factory

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None
        logger.info("Ledger database closed")


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: one session per request, committed on success."""
    async with get_async_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise

"""
Async engine and sessions for the game database.

The configured URL is written with the plain scheme (postgresql://, sqlite://)
and mapped onto the async driver here:

    postgresql:// | postgres://   → postgresql+asyncpg://
    sqlite://                     → sqlite+aiosqlite://

Lifecycle:
    await init_db()                    # startup, creates missing tables
    async with get_session() as db:    # one transaction, committed on exit
        ...
    await close_db()                   # shutdown
"""
from __future__ import annotations

import structlog
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine,
)

from config.settings import get_settings
from database.models import Base

logger = structlog.get_logger()

_ASYNC_SCHEMES = {
    "postgresql": "postgresql+asyncpg",
    "postgres": "postgresql+asyncpg",
    "sqlite": "sqlite+aiosqlite",
}

_engine: AsyncEngine | None = None
_sessions: async_sessionmaker[AsyncSession] | None = None


def _to_async_url(db_url: str) -> str:
    """Swap a plain scheme for its async driver; driver-qualified URLs pass through."""
    scheme, sep, rest = db_url.partition("://")
    if not sep or scheme not in _ASYNC_SCHEMES:
        return db_url
    return f"{_ASYNC_SCHEMES[scheme]}://{rest}"


def _safe_url(db_url: str) -> str:
    return make_url(db_url).render_as_string(hide_password=True)


def _engine_options(db_url: str, debug: bool) -> dict[str, Any]:
    if db_url.startswith("sqlite"):
        # Webhooks and background judging write concurrently; wait for the lock
        return {"echo": debug, "connect_args": {"timeout": 30}}
    return {
        "echo": debug,
        "pool_size": 10,
        "max_overflow": 20,
        "pool_recycle": 1800,
        "pool_pre_ping": True,
    }


def _enable_sqlite_foreign_keys(engine: AsyncEngine) -> None:
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, _record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        settings = get_settings()
        db_url = _to_async_url(settings.database.url)
        _engine = create_async_engine(db_url, **_engine_options(db_url, settings.debug))
        if _engine.dialect.name == "sqlite":
            _enable_sqlite_foreign_keys(_engine)
        logger.info("database_engine_created", dialect=_engine.dialect.name, url=_safe_url(db_url))
    return _engine


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """One unit of work: commit on success, roll back and re-raise on error."""
    global _sessions
    if _sessions is None:
        _sessions = async_sessionmaker(get_engine(), expire_on_commit=False)
    async with _sessions() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db() -> None:
    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("database_initialized", tables=sorted(Base.metadata.tables))


async def close_db() -> None:
    global _engine, _sessions
    if _engine is None:
        return
    await _engine.dispose()
    _engine = None
    _sessions = None
    logger.info("database_closed")

# tunesnow/db/session.py
from __future__ import annotations

"""
TunesNow — Database Engine & Session Helpers

- One async engine + `async_sessionmaker` for the API and the ingestion pipeline.
- Repositories take the session *factory* (not a request-scoped session):
  reconciliation opens its own short transactions and retries them, and
  ingestion may outlive the HTTP request that started it.
- SQLite (aiosqlite) is supported for development and tests; pool sizing is
  only applied to server databases.
"""

from typing import Any, AsyncGenerator, Dict
import logging
from contextlib import asynccontextmanager

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from tunesnow.core.config import settings

logger = logging.getLogger(__name__)

# Pool knobs
_POOL_PRE_PING = True
_POOL_RECYCLE = 1800
_POOL_TIMEOUT = 30


# ──────────────────────────────────────────────────────────────────────────────
# ⚡ Engine / session factory builders
# ──────────────────────────────────────────────────────────────────────────────

def build_engine(url: str, **overrides: Any) -> AsyncEngine:
    """Create an async engine with dialect-appropriate options."""
    kwargs: Dict[str, Any] = {"echo": False, "pool_pre_ping": _POOL_PRE_PING}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"timeout": 30}
    else:
        kwargs.update(
            pool_recycle=_POOL_RECYCLE,
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_timeout=_POOL_TIMEOUT,
        )
    kwargs.update(overrides)
    engine = create_async_engine(url, **kwargs)
    if url.startswith("sqlite"):
        # SQLite ignores FOREIGN KEY clauses unless asked per connection.
        @event.listens_for(engine.sync_engine, "connect")
        def _enable_sqlite_fks(dbapi_conn, _record):  # pragma: no cover - driver hook
            cur = dbapi_conn.cursor()
            cur.execute("PRAGMA foreign_keys=ON")
            cur.close()
    return engine


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


async_engine: AsyncEngine = build_engine(settings.ASYNC_DATABASE_URL)
async_session_maker = build_session_factory(async_engine)


async def get_async_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency that yields an async SQLAlchemy session."""
    async with async_session_maker() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """FastAPI dependency for repositories that manage their own transactions."""
    return async_session_maker


@asynccontextmanager
async def transactional_async_session(
    factory: async_sessionmaker[AsyncSession] | None = None,
) -> AsyncGenerator[AsyncSession, None]:
    """Open a session and a transaction; commit on exit, roll back on error."""
    async with (factory or async_session_maker)() as session:
        async with session.begin():
            yield session


async def db_healthcheck(engine: AsyncEngine | None = None) -> bool:
    """Quick SELECT 1 to verify DB connectivity (used by /readyz)."""
    try:
        async with (engine or async_engine).connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception:
        logger.exception("DB healthcheck failed")
        return False


__all__ = [
    "async_engine",
    "async_session_maker",
    "build_engine",
    "build_session_factory",
    "get_async_db",
    "get_session_factory",
    "transactional_async_session",
    "db_healthcheck",
]

# tests/fixtures/db.py
"""
DB fixtures for tests (async, SQLite via aiosqlite):
- One fresh database file per test (tmp_path), tables from `Base.metadata`
- Session *factory* fixture, matching how the SQL repositories are built
"""

from typing import AsyncGenerator

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tunesnow.db import base
from tunesnow.db.session import build_engine, build_session_factory

__all__ = ["session_factory"]


@pytest.fixture()
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """
    🧪 Isolated SQLite database with the full schema.
    """
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'tunesnow-test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(base.Base.metadata.create_all)
    try:
        yield build_session_factory(engine)
    finally:
        await engine.dispose()

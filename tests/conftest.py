# tests/conftest.py
"""
Global test bootstrap
- Points settings at throwaway SQLite + the in-memory object store
  BEFORE any `tunesnow` module is imported
- Runs every async test on asyncio (anyio plugin)
- Pulls in the fixture modules (store/repos/services, db, app, auth)
"""

from __future__ import annotations

import os
import tempfile
import warnings

import pytest
from sqlalchemy.exc import SAWarning

# ──────────────────────────────────────────────────────────────────────────────
# 🌱 Test env (must be set before `tunesnow.core.config` is imported)
# ──────────────────────────────────────────────────────────────────────────────
os.environ.setdefault("ENV", "test")
os.environ.setdefault("STORAGE_BACKEND", "memory")
os.environ.setdefault(
    "DATABASE_URL",
    f"sqlite+aiosqlite:///{os.path.join(tempfile.gettempdir(), 'tunesnow-pytest.db')}",
)
os.environ.setdefault("PUBLIC_BASE_URL", "http://test")
os.environ.setdefault("JWT_SECRET_KEY", "pytest-jwt-secret")
os.environ.setdefault("UPLOAD_SIGNING_SECRET", "pytest-upload-secret")
os.environ.setdefault("LOG_LEVEL", "WARNING")

warnings.filterwarnings("ignore", category=SAWarning)


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


# ──────────────────────────────────────────────────────────────────────────────
# 📦 Fixtures
# ──────────────────────────────────────────────────────────────────────────────
from tests.fixtures.pipeline import *  # noqa: F401,F403,E402
from tests.fixtures.db import *        # noqa: F401,F403,E402
from tests.fixtures.auth import *      # noqa: F401,F403,E402
from tests.fixtures.app import *       # noqa: F401,F403,E402

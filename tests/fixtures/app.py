# tests/fixtures/app.py
"""
🧩 App Fixture:
- Builds the real app via `create_app()` (middleware, handlers, routers)
- Swaps the store and repositories for the in-memory ones from
  `tests.fixtures.pipeline`, so HTTP tests and service assertions share state
- Returns an httpx client over ASGITransport
"""

from typing import AsyncGenerator

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from tunesnow.core.storage import get_object_store
from tunesnow.dependencies.pipeline import (
    get_catalog_repository,
    get_extractor,
    get_media_repository,
)
from tunesnow.main import create_app
from tunesnow.services.ingestion_service import drain_inflight

__all__ = ["app", "async_client"]


@pytest.fixture()
def app(store, media_repo, catalog, extractor) -> FastAPI:
    """
    🧪 Creates an instance of the FastAPI app wired to in-memory collaborators.
    """
    app = create_app()
    app.dependency_overrides[get_object_store] = lambda: store
    app.dependency_overrides[get_media_repository] = lambda: media_repo
    app.dependency_overrides[get_catalog_repository] = lambda: catalog
    app.dependency_overrides[get_extractor] = lambda: extractor
    return app


@pytest.fixture()
async def async_client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """
    🌐 Provides an HTTP client for sending requests to the test app.
    """
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    await drain_inflight()

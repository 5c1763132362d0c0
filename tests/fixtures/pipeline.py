# tests/fixtures/pipeline.py
"""
🧩 Pipeline fixtures:
- In-memory object store + repositories (linked like the SQL ones)
- Fake extractor with canned metadata
- Fully wired ingestion / coordinator / streaming services
- `upload` helper: request a slot and put the bytes where the grant points
"""

from __future__ import annotations

from typing import AsyncGenerator, Optional
from uuid import UUID

import pytest

from tunesnow.core.security import Principal
from tunesnow.repositories.catalog import MemoryCatalogRepository
from tunesnow.repositories.media import MediaRecord, MemoryMediaRepository
from tunesnow.schemas.enums import MediaKind
from tunesnow.services.batch_coordinator import BatchCoordinator
from tunesnow.services.entitlement_service import DefaultEntitlementPolicy
from tunesnow.services.ingestion_service import IngestionService, drain_inflight
from tunesnow.services.postprocessing import PostProcessor
from tunesnow.services.streaming_service import StreamingService
from tunesnow.utils.memory_store import MemoryObjectStore
from tests.utils.media import FakeExtractor, sha256_hex

__all__ = [
    "store",
    "media_repo",
    "catalog",
    "extractor",
    "ingestion",
    "coordinator",
    "streaming",
    "uploader",
    "other_user",
    "admin",
    "upload",
]


@pytest.fixture()
def store() -> MemoryObjectStore:
    return MemoryObjectStore(secret="pytest-upload-secret")


@pytest.fixture()
def media_repo() -> MemoryMediaRepository:
    return MemoryMediaRepository()


@pytest.fixture()
def catalog(media_repo: MemoryMediaRepository) -> MemoryCatalogRepository:
    return MemoryCatalogRepository(media_repo)


@pytest.fixture()
def extractor() -> FakeExtractor:
    return FakeExtractor()


@pytest.fixture()
async def ingestion(media_repo, catalog, store, extractor) -> AsyncGenerator[IngestionService, None]:
    """Wired service; background post-processing is drained on teardown."""
    yield IngestionService(
        media_repo=media_repo,
        catalog=catalog,
        store=store,
        extractor=extractor,
        postprocessor=PostProcessor(store),
    )
    await drain_inflight()


@pytest.fixture()
def coordinator(media_repo, store, ingestion) -> BatchCoordinator:
    return BatchCoordinator(media_repo=media_repo, store=store, ingestion=ingestion)


@pytest.fixture()
def streaming(media_repo, catalog, store) -> StreamingService:
    return StreamingService(
        media_repo=media_repo,
        catalog=catalog,
        store=store,
        entitlement=DefaultEntitlementPolicy(catalog),
        chunk_size=1024,
    )


@pytest.fixture()
def uploader() -> Principal:
    return Principal(id="user-uploader")


@pytest.fixture()
def other_user() -> Principal:
    return Principal(id="user-other")


@pytest.fixture()
def admin() -> Principal:
    return Principal(id="user-admin", roles=frozenset({"admin"}))


@pytest.fixture()
def upload(coordinator: BatchCoordinator, store: MemoryObjectStore, uploader: Principal):
    """
    ✅ Request a slot and place `data` at its key.

    `stored` overrides what actually lands in the store (to simulate a
    client that uploaded something other than it declared).
    """

    async def _upload(
        batch_id: UUID,
        data: bytes,
        *,
        kind: MediaKind = MediaKind.AUDIO,
        mime: str = "audio/flac",
        stored: Optional[bytes] = None,
        principal: Optional[Principal] = None,
    ) -> MediaRecord:
        slot = await coordinator.request_media_slot(
            principal or uploader,
            batch_id,
            kind=kind,
            declared_size=len(data),
            declared_sha256=sha256_hex(data),
            mime=mime,
        )
        await store.put_bytes(slot.media.storage_key, data if stored is None else stored, content_type=mime)
        return slot.media

    return _upload

from __future__ import annotations

"""
Service wiring for the ingestion and streaming routes.

Every collaborator is a FastAPI dependency, so tests (or a different
deployment) swap implementations with `app.dependency_overrides`, e.g. the
in-memory store and repositories:

    app.dependency_overrides[get_object_store] = lambda: store
    app.dependency_overrides[get_media_repository] = lambda: media_repo
    app.dependency_overrides[get_catalog_repository] = lambda: catalog
"""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tunesnow.core.storage import ObjectStore, get_object_store
from tunesnow.db.session import get_session_factory
from tunesnow.repositories.catalog import CatalogRepositoryProtocol, SqlCatalogRepository
from tunesnow.repositories.media import MediaRepositoryProtocol, SqlMediaRepository
from tunesnow.services.batch_coordinator import BatchCoordinator
from tunesnow.services.entitlement_service import EntitlementPolicy, build_entitlement_policy
from tunesnow.services.ingestion_service import IngestionService
from tunesnow.services.metadata_extractor import MutagenExtractor
from tunesnow.services.postprocessing import PostProcessor
from tunesnow.services.streaming_service import StreamingService


def get_media_repository(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> MediaRepositoryProtocol:
    return SqlMediaRepository(session_factory)


def get_catalog_repository(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> CatalogRepositoryProtocol:
    return SqlCatalogRepository(session_factory)


def get_extractor() -> MutagenExtractor:
    return MutagenExtractor()


def get_postprocessor(store: ObjectStore = Depends(get_object_store)) -> PostProcessor:
    return PostProcessor(store)


def get_ingestion_service(
    media_repo: MediaRepositoryProtocol = Depends(get_media_repository),
    catalog: CatalogRepositoryProtocol = Depends(get_catalog_repository),
    store: ObjectStore = Depends(get_object_store),
    extractor: MutagenExtractor = Depends(get_extractor),
    postprocessor: PostProcessor = Depends(get_postprocessor),
) -> IngestionService:
    return IngestionService(
        media_repo=media_repo,
        catalog=catalog,
        store=store,
        extractor=extractor,
        postprocessor=postprocessor,
    )


def get_batch_coordinator(
    media_repo: MediaRepositoryProtocol = Depends(get_media_repository),
    store: ObjectStore = Depends(get_object_store),
    ingestion: IngestionService = Depends(get_ingestion_service),
) -> BatchCoordinator:
    return BatchCoordinator(media_repo=media_repo, store=store, ingestion=ingestion)


def get_entitlement_policy(
    catalog: CatalogRepositoryProtocol = Depends(get_catalog_repository),
) -> EntitlementPolicy:
    return build_entitlement_policy(catalog)


def get_streaming_service(
    media_repo: MediaRepositoryProtocol = Depends(get_media_repository),
    catalog: CatalogRepositoryProtocol = Depends(get_catalog_repository),
    store: ObjectStore = Depends(get_object_store),
    entitlement: EntitlementPolicy = Depends(get_entitlement_policy),
) -> StreamingService:
    return StreamingService(
        media_repo=media_repo,
        catalog=catalog,
        store=store,
        entitlement=entitlement,
    )


__all__ = [
    "get_media_repository",
    "get_catalog_repository",
    "get_extractor",
    "get_postprocessor",
    "get_ingestion_service",
    "get_batch_coordinator",
    "get_entitlement_policy",
    "get_streaming_service",
]

from __future__ import annotations

"""
📦 TunesNow — Upload batch coordinator
======================================

The client-facing side of ingestion:

- `create_batch(principal)` opens a batch owned by the caller.
- `request_media_slot(...)` validates the declaration, signs an upload grant
  for a server-generated key and records the media object as UPLOADING.
- `signal_uploaded` / `trigger_ingest` hand over to the state machine.
- `get_media_status` / `get_batch_status` report state; the batch aggregate
  is computed from its members on every read.

Only the batch creator (or an admin) may add slots or drive its objects.
"""

import logging
import re
import uuid
from dataclasses import dataclass
from typing import List, Optional

from fastapi import HTTPException, status

from tunesnow.core import metrics
from tunesnow.core.config import settings
from tunesnow.core.exceptions import (
    BatchAccessDenied,
    BatchNotFound,
    MediaObjectNotFound,
    ObjectStoreError,
    TransientStoreFailure,
)
from tunesnow.core.security import Principal
from tunesnow.core.storage import ObjectStore, UploadGrant, build_upload_key
from tunesnow.repositories.media import BatchRecord, MediaRecord, MediaRepositoryProtocol
from tunesnow.schemas.enums import BatchStatus, MediaKind
from tunesnow.services.ingestion_service import IngestionService, run_shielded
from tunesnow.services.media_types import extension_for, normalize_mime
from tunesnow.services.transitions import aggregate_batch_status

logger = logging.getLogger(__name__)

_SHA256_RE = re.compile(r"^[0-9a-fA-F]{64}$")


@dataclass
class MediaSlot:
    media: MediaRecord
    grant: UploadGrant


@dataclass
class BatchStatusView:
    batch: BatchRecord
    status: BatchStatus
    members: List[MediaRecord]


class BatchCoordinator:
    def __init__(
        self,
        *,
        media_repo: MediaRepositoryProtocol,
        store: ObjectStore,
        ingestion: IngestionService,
    ) -> None:
        self._media = media_repo
        self._store = store
        self._ingestion = ingestion

    # ── Batches ──────────────────────────────────────────────
    async def create_batch(self, principal: Principal, *, private: bool = False) -> BatchRecord:
        batch = await self._media.create_batch(created_by=principal.id, is_private=private)
        logger.info("Upload batch created", extra={"batch_id": str(batch.id), "principal_id": principal.id})
        return batch

    async def get_batch_status(self, principal: Principal, batch_id: uuid.UUID) -> BatchStatusView:
        batch = await self._owned_batch(principal, batch_id)
        members = await self._media.list_batch_media(batch_id)
        return BatchStatusView(
            batch=batch,
            status=aggregate_batch_status(m.state for m in members),
            members=members,
        )

    # ── Slots ────────────────────────────────────────────────
    async def request_media_slot(
        self,
        principal: Principal,
        batch_id: uuid.UUID,
        *,
        kind: MediaKind,
        declared_size: int,
        declared_sha256: str,
        mime: str,
    ) -> MediaSlot:
        """
        Validate the declaration, sign a single-key upload grant, record the object.

        Steps
        -----
        1) Batch must exist and belong to the caller.
        2) Size in (0, MAX_UPLOAD_BYTES]; digest is 64 hex chars; mime allowed for kind.
        3) Generate `uploads/{batch}/{media}.{ext}` and sign it.
        4) Persist the media object (UPLOADING) only once the grant exists.
        """
        await self._owned_batch(principal, batch_id)

        if declared_size <= 0 or declared_size > settings.MAX_UPLOAD_BYTES:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=f"declared_size must be between 1 and {settings.MAX_UPLOAD_BYTES} bytes",
            )
        if not _SHA256_RE.match(declared_sha256 or ""):
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail="declared_sha256 must be 64 hexadecimal characters",
            )
        content_type = normalize_mime(mime)
        ext = extension_for(kind, content_type)
        if ext is None:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=f"mime type {content_type or '<empty>'} is not accepted for {kind.value}",
            )

        media_id = uuid.uuid4()
        key = build_upload_key(batch_id, media_id, ext)
        digest = declared_sha256.lower()
        try:
            grant = await self._store.grant_upload(
                key,
                content_type=content_type,
                content_length=declared_size,
                sha256_hex=digest,
                expires_in=settings.UPLOAD_GRANT_TTL_SECONDS,
            )
        except ObjectStoreError as e:
            logger.warning("Upload grant failed: %s", e)
            raise TransientStoreFailure() from e

        media = await self._media.create_media(
            media_id=media_id,
            batch_id=batch_id,
            kind=kind,
            storage_key=key,
            declared_size=declared_size,
            declared_sha256=digest,
            declared_mime=content_type,
        )
        metrics.inc_upload_grant(kind.value)
        logger.info(
            "Upload slot granted",
            extra={"batch_id": str(batch_id), "media_object_id": str(media_id), "kind": kind.value},
        )
        return MediaSlot(media=media, grant=grant)

    # ── Hand-off to the state machine ────────────────────────
    async def signal_uploaded(self, principal: Principal, media_id: uuid.UUID) -> MediaRecord:
        await self._owned_media(principal, media_id)
        return await self._ingestion.signal_uploaded(media_id)

    async def trigger_ingest(self, principal: Principal, media_id: uuid.UUID) -> MediaRecord:
        await self._owned_media(principal, media_id)
        return await run_shielded(self._ingestion.ingest(media_id))

    async def get_media_status(self, principal: Principal, media_id: uuid.UUID) -> MediaRecord:
        return await self._owned_media(principal, media_id)

    # ── Ownership ────────────────────────────────────────────
    async def _owned_batch(self, principal: Principal, batch_id: uuid.UUID) -> BatchRecord:
        batch = await self._media.get_batch(batch_id)
        if batch is None:
            raise BatchNotFound(batch_id=str(batch_id))
        if batch.created_by != principal.id and not principal.is_admin:
            raise BatchAccessDenied(batch_id=str(batch_id))
        return batch

    async def _owned_media(self, principal: Principal, media_id: uuid.UUID) -> MediaRecord:
        media: Optional[MediaRecord] = await self._media.get_media(media_id)
        if media is None:
            raise MediaObjectNotFound(media_object_id=str(media_id))
        await self._owned_batch(principal, media.batch_id)
        return media


__all__ = ["BatchCoordinator", "MediaSlot", "BatchStatusView"]

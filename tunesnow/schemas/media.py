from __future__ import annotations

"""
TunesNow • Ingestion API Schemas
================================

Purpose
-------
- Request/response models for the batch, media and upload routes.
- Status views are built from repository records, never from ORM rows.

Security / Failure Modes
------------------------
- Declared sizes/digests are validated again by the coordinator (the models
  only enforce shape); the declared mime is checked per kind there too.
- `UploadGrantOut.headers` must be echoed verbatim by the client or the
  store rejects the PUT.
"""

from datetime import datetime
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from tunesnow.repositories.media import BatchRecord, MediaRecord
from tunesnow.schemas.enums import BatchStatus, ErrorKind, MediaKind, MediaState


# === Requests ==============================================================

class BatchCreateIn(BaseModel):
    """Create an upload batch; `private` makes newly created tracks private to the caller."""
    model_config = ConfigDict(extra="forbid")

    private: bool = False


class MediaSlotIn(BaseModel):
    """Declare one object to upload into a batch."""
    model_config = ConfigDict(extra="forbid")

    kind: MediaKind
    size_bytes: int = Field(..., gt=0, description="Exact byte size of the upload")
    sha256: str = Field(..., min_length=64, max_length=64, description="Hex SHA-256 of the upload")
    content_type: str = Field(..., min_length=3, max_length=127)


# === Responses =============================================================

class UploadGrantOut(BaseModel):
    url: str
    method: str = "PUT"
    headers: Dict[str, str] = {}
    expires_at: datetime


class MediaStatusOut(BaseModel):
    id: UUID
    batch_id: UUID
    kind: MediaKind
    state: MediaState
    storage_key: str
    declared_size: int
    declared_mime: str
    sniffed_mime: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    error_detail: Optional[str] = None
    track_id: Optional[UUID] = None
    album_id: Optional[UUID] = None
    artist_id: Optional[UUID] = None
    created_at: Optional[datetime] = None
    transitioned_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, m: MediaRecord) -> "MediaStatusOut":
        return cls(
            id=m.id,
            batch_id=m.batch_id,
            kind=m.kind,
            state=m.state,
            storage_key=m.storage_key,
            declared_size=m.declared_size,
            declared_mime=m.declared_mime,
            sniffed_mime=m.sniffed_mime,
            error_kind=m.error_kind,
            error_detail=m.error_detail,
            track_id=m.track_id,
            album_id=m.album_id,
            artist_id=m.artist_id,
            created_at=m.created_at,
            transitioned_at=m.transitioned_at,
        )


class MediaSlotOut(BaseModel):
    media_object_id: UUID
    state: MediaState
    upload: UploadGrantOut


class BatchOut(BaseModel):
    id: UUID
    created_by: str
    private: bool
    status: BatchStatus
    created_at: Optional[datetime] = None
    members: List[MediaStatusOut] = []

    @classmethod
    def from_records(
        cls, batch: BatchRecord, status: BatchStatus, members: List[MediaRecord]
    ) -> "BatchOut":
        return cls(
            id=batch.id,
            created_by=batch.created_by,
            private=batch.is_private,
            status=status,
            created_at=batch.created_at,
            members=[MediaStatusOut.from_record(m) for m in members],
        )


__all__ = [
    "BatchCreateIn",
    "MediaSlotIn",
    "UploadGrantOut",
    "MediaStatusOut",
    "MediaSlotOut",
    "BatchOut",
]

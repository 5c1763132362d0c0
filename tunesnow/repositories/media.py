from __future__ import annotations

"""Upload batch & media object repository.

Interface plus two implementations:

- `SqlMediaRepository`: async SQLAlchemy; every state change is a
  compare-and-swap `UPDATE … WHERE id = :id AND state = :expected`.
- `MemoryMediaRepository`: dict-backed, for development and tests. Check and
  write happen without an intervening `await`, which gives the same
  single-winner semantics under asyncio.

Both consult `tunesnow.services.transitions.TRANSITIONS` before writing;
an edge that is not in the table is refused without touching storage.
"""

import asyncio
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tunesnow.db.models.media_object import MediaObject
from tunesnow.db.models.upload_batch import UploadBatch
from tunesnow.db.session import transactional_async_session
from tunesnow.schemas.enums import ErrorKind, MediaKind, MediaState
from tunesnow.services.transitions import is_allowed

# Columns a transition may set alongside the new state.
TRANSITION_FIELDS = frozenset(
    {
        "sniffed_mime",
        "observed_sha256",
        "error_kind",
        "error_detail",
        "track_id",
        "album_id",
        "artist_id",
    }
)


@dataclass
class BatchRecord:
    id: uuid.UUID
    created_by: str
    is_private: bool = False
    created_at: Optional[datetime] = None


@dataclass
class MediaRecord:
    id: uuid.UUID
    batch_id: uuid.UUID
    kind: MediaKind
    storage_key: str
    declared_size: int
    declared_sha256: str
    declared_mime: str
    state: MediaState = MediaState.UPLOADING
    sniffed_mime: Optional[str] = None
    observed_sha256: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    error_detail: Optional[str] = None
    track_id: Optional[uuid.UUID] = None
    album_id: Optional[uuid.UUID] = None
    artist_id: Optional[uuid.UUID] = None
    created_at: Optional[datetime] = None
    transitioned_at: Optional[datetime] = None

    @property
    def artwork_linked(self) -> bool:
        return self.album_id is not None or self.artist_id is not None


def _check_fields(target: MediaState, fields: Dict[str, Any]) -> None:
    unknown = set(fields) - TRANSITION_FIELDS
    if unknown:
        raise ValueError(f"Unsupported transition fields: {sorted(unknown)}")
    if target == MediaState.FAILED and not fields.get("error_kind"):
        raise ValueError("FAILED requires an error_kind")


class MediaRepositoryProtocol:
    async def create_batch(self, *, created_by: str, is_private: bool = False) -> BatchRecord:
        raise NotImplementedError

    async def get_batch(self, batch_id: uuid.UUID) -> Optional[BatchRecord]:
        raise NotImplementedError

    async def create_media(
        self,
        *,
        media_id: uuid.UUID,
        batch_id: uuid.UUID,
        kind: MediaKind,
        storage_key: str,
        declared_size: int,
        declared_sha256: str,
        declared_mime: str,
    ) -> MediaRecord:
        raise NotImplementedError

    async def get_media(self, media_id: uuid.UUID) -> Optional[MediaRecord]:
        raise NotImplementedError

    async def list_batch_media(self, batch_id: uuid.UUID) -> List[MediaRecord]:
        raise NotImplementedError

    async def transition(
        self,
        media_id: uuid.UUID,
        *,
        expected: MediaState,
        target: MediaState,
        **fields: Any,
    ) -> bool:
        """Move `media_id` from `expected` to `target`; False if another writer got there first."""
        raise NotImplementedError

    async def link_artwork(
        self,
        media_id: uuid.UUID,
        *,
        album_id: Optional[uuid.UUID] = None,
        artist_id: Optional[uuid.UUID] = None,
    ) -> bool:
        """Record where a pending artwork object was attached; False if it was already linked."""
        raise NotImplementedError

    async def find_ready_audio(self, track_id: uuid.UUID) -> Optional[MediaRecord]:
        raise NotImplementedError


# ─────────────────────────────────────────────────────────────────────────────
# 🗄️ SQL
# ─────────────────────────────────────────────────────────────────────────────

def _batch_from_row(row: UploadBatch) -> BatchRecord:
    return BatchRecord(
        id=row.id,
        created_by=row.created_by,
        is_private=bool(row.is_private),
        created_at=row.created_at,
    )


def _media_from_row(row: MediaObject) -> MediaRecord:
    return MediaRecord(
        id=row.id,
        batch_id=row.batch_id,
        kind=MediaKind(row.kind),
        storage_key=row.storage_key,
        declared_size=int(row.declared_size),
        declared_sha256=row.declared_sha256,
        declared_mime=row.declared_mime,
        state=MediaState(row.state),
        sniffed_mime=row.sniffed_mime,
        observed_sha256=row.observed_sha256,
        error_kind=ErrorKind(row.error_kind) if row.error_kind else None,
        error_detail=row.error_detail,
        track_id=row.track_id,
        album_id=row.album_id,
        artist_id=row.artist_id,
        created_at=row.created_at,
        transitioned_at=row.transitioned_at,
    )


class SqlMediaRepository(MediaRepositoryProtocol):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._sf = session_factory

    async def create_batch(self, *, created_by: str, is_private: bool = False) -> BatchRecord:
        async with transactional_async_session(self._sf) as s:
            row = UploadBatch(created_by=created_by, is_private=is_private)
            s.add(row)
            await s.flush()
            return _batch_from_row(row)

    async def get_batch(self, batch_id: uuid.UUID) -> Optional[BatchRecord]:
        async with self._sf() as s:
            row = await s.get(UploadBatch, batch_id)
            return _batch_from_row(row) if row else None

    async def create_media(
        self,
        *,
        media_id: uuid.UUID,
        batch_id: uuid.UUID,
        kind: MediaKind,
        storage_key: str,
        declared_size: int,
        declared_sha256: str,
        declared_mime: str,
    ) -> MediaRecord:
        async with transactional_async_session(self._sf) as s:
            row = MediaObject(
                id=media_id,
                batch_id=batch_id,
                kind=kind,
                storage_key=storage_key,
                declared_size=declared_size,
                declared_sha256=declared_sha256,
                declared_mime=declared_mime,
                state=MediaState.UPLOADING,
            )
            s.add(row)
            await s.flush()
            return _media_from_row(row)

    async def get_media(self, media_id: uuid.UUID) -> Optional[MediaRecord]:
        async with self._sf() as s:
            row = await s.get(MediaObject, media_id)
            return _media_from_row(row) if row else None

    async def list_batch_media(self, batch_id: uuid.UUID) -> List[MediaRecord]:
        async with self._sf() as s:
            rows = (
                await s.execute(
                    select(MediaObject)
                    .where(MediaObject.batch_id == batch_id)
                    .order_by(MediaObject.created_at, MediaObject.id)
                )
            ).scalars().all()
            return [_media_from_row(r) for r in rows]

    async def transition(
        self,
        media_id: uuid.UUID,
        *,
        expected: MediaState,
        target: MediaState,
        **fields: Any,
    ) -> bool:
        if not is_allowed(expected, target):
            return False
        _check_fields(target, fields)
        stmt = (
            update(MediaObject)
            .where(MediaObject.id == media_id, MediaObject.state == expected)
            .values(state=target, transitioned_at=func.now(), **fields)
            .execution_options(synchronize_session=False)
        )
        async with transactional_async_session(self._sf) as s:
            result = await s.execute(stmt)
        return result.rowcount == 1

    async def link_artwork(
        self,
        media_id: uuid.UUID,
        *,
        album_id: Optional[uuid.UUID] = None,
        artist_id: Optional[uuid.UUID] = None,
    ) -> bool:
        if album_id is None and artist_id is None:
            return False
        stmt = (
            update(MediaObject)
            .where(
                MediaObject.id == media_id,
                MediaObject.kind == MediaKind.ARTWORK,
                MediaObject.album_id.is_(None),
                MediaObject.artist_id.is_(None),
            )
            .values(album_id=album_id, artist_id=artist_id)
            .execution_options(synchronize_session=False)
        )
        async with transactional_async_session(self._sf) as s:
            result = await s.execute(stmt)
        return result.rowcount == 1

    async def find_ready_audio(self, track_id: uuid.UUID) -> Optional[MediaRecord]:
        async with self._sf() as s:
            row = (
                await s.execute(
                    select(MediaObject)
                    .where(
                        MediaObject.track_id == track_id,
                        MediaObject.kind == MediaKind.AUDIO,
                        MediaObject.state == MediaState.READY,
                    )
                    .order_by(MediaObject.transitioned_at, MediaObject.id)
                    .limit(1)
                )
            ).scalar_one_or_none()
            return _media_from_row(row) if row else None


# ─────────────────────────────────────────────────────────────────────────────
# 🧪 In-memory
# ─────────────────────────────────────────────────────────────────────────────

class MemoryMediaRepository(MediaRepositoryProtocol):
    """Dict-backed repository; records are copied in and out so callers never alias state."""

    def __init__(self) -> None:
        self._batches: Dict[uuid.UUID, BatchRecord] = {}
        self._media: Dict[uuid.UUID, MediaRecord] = {}

    @staticmethod
    def _now() -> datetime:
        return datetime.now(timezone.utc)

    async def create_batch(self, *, created_by: str, is_private: bool = False) -> BatchRecord:
        rec = BatchRecord(id=uuid.uuid4(), created_by=created_by, is_private=is_private, created_at=self._now())
        self._batches[rec.id] = rec
        return replace(rec)

    async def get_batch(self, batch_id: uuid.UUID) -> Optional[BatchRecord]:
        rec = self._batches.get(batch_id)
        return replace(rec) if rec else None

    async def create_media(
        self,
        *,
        media_id: uuid.UUID,
        batch_id: uuid.UUID,
        kind: MediaKind,
        storage_key: str,
        declared_size: int,
        declared_sha256: str,
        declared_mime: str,
    ) -> MediaRecord:
        if batch_id not in self._batches:
            raise ValueError(f"unknown batch {batch_id}")
        if media_id in self._media or any(m.storage_key == storage_key for m in self._media.values()):
            raise ValueError("duplicate media object")
        now = self._now()
        rec = MediaRecord(
            id=media_id,
            batch_id=batch_id,
            kind=kind,
            storage_key=storage_key,
            declared_size=declared_size,
            declared_sha256=declared_sha256,
            declared_mime=declared_mime,
            created_at=now,
            transitioned_at=now,
        )
        self._media[media_id] = rec
        return replace(rec)

    async def get_media(self, media_id: uuid.UUID) -> Optional[MediaRecord]:
        rec = self._media.get(media_id)
        return replace(rec) if rec else None

    async def list_batch_media(self, batch_id: uuid.UUID) -> List[MediaRecord]:
        return [replace(m) for m in self._media.values() if m.batch_id == batch_id]

    async def transition(
        self,
        media_id: uuid.UUID,
        *,
        expected: MediaState,
        target: MediaState,
        **fields: Any,
    ) -> bool:
        if not is_allowed(expected, target):
            return False
        _check_fields(target, fields)
        await asyncio.sleep(0)
        rec = self._media.get(media_id)
        if rec is None or rec.state != expected:
            return False
        for k, v in fields.items():
            setattr(rec, k, v)
        rec.state = target
        rec.transitioned_at = self._now()
        return True

    async def link_artwork(
        self,
        media_id: uuid.UUID,
        *,
        album_id: Optional[uuid.UUID] = None,
        artist_id: Optional[uuid.UUID] = None,
    ) -> bool:
        if album_id is None and artist_id is None:
            return False
        await asyncio.sleep(0)
        rec = self._media.get(media_id)
        if rec is None or rec.kind != MediaKind.ARTWORK or rec.artwork_linked:
            return False
        rec.album_id = album_id
        rec.artist_id = artist_id
        return True

    async def find_ready_audio(self, track_id: uuid.UUID) -> Optional[MediaRecord]:
        for m in self._media.values():
            if m.track_id == track_id and m.kind == MediaKind.AUDIO and m.state == MediaState.READY:
                return replace(m)
        return None

    # Used by the in-memory catalog to link inside its own "transaction".
    def set_track_link(self, media_id: uuid.UUID, track_id: uuid.UUID) -> None:
        rec = self._media.get(media_id)
        if rec is not None:
            rec.track_id = track_id


__all__ = [
    "BatchRecord",
    "MediaRecord",
    "MediaRepositoryProtocol",
    "SqlMediaRepository",
    "MemoryMediaRepository",
    "TRANSITION_FIELDS",
]

from __future__ import annotations

"""Catalog repository: artists, albums, tracks, genres.

`reconcile` is the only writer of tracks. It runs as a bounded sequence of
short transactions: each attempt reads by natural key, creates whatever is
missing (artist → album → track → genres) and links the media object, all in
one commit. A unique-constraint collision means a concurrent writer won; the
attempt is discarded and the next one re-reads and links to the winner.

No application-level locks are taken; the database's unique constraints are
the only serialization point.
"""

import asyncio
import logging
import random
import time
import uuid
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Set, Tuple

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tunesnow.core import metrics
from tunesnow.core.config import settings
from tunesnow.core.exceptions import ReconciliationConflict
from tunesnow.db.models.album import Album
from tunesnow.db.models.artist import Artist
from tunesnow.db.models.genre import Genre
from tunesnow.db.models.media_object import MediaObject
from tunesnow.db.models.track import Track
from tunesnow.db.models.track_genres import TrackGenre
from tunesnow.db.session import transactional_async_session
from tunesnow.repositories.media import MemoryMediaRepository
from tunesnow.schemas.catalog import (
    AudioMetadata,
    TrackRecord,
    clean_display,
    normalize_text,
)

logger = logging.getLogger(__name__)


def _backoff(attempt: int) -> float:
    return min(0.25, 0.01 * (2 ** (attempt - 1))) * random.uniform(0.5, 1.0)


def _distinct_genres(names: List[str]) -> List[Tuple[str, str]]:
    seen: Dict[str, str] = {}
    for raw in names or []:
        display = clean_display(raw)
        if not display:
            continue
        seen.setdefault(normalize_text(display), display[:80])
    return [(norm, display) for norm, display in seen.items()]


class CatalogRepositoryProtocol:
    async def reconcile(
        self,
        metadata: AudioMetadata,
        media_object_id: uuid.UUID,
        *,
        uploaded_by: Optional[str] = None,
        is_private: bool = False,
    ) -> uuid.UUID:
        """Find or create the track for `metadata`, link the media object, return the track id."""
        raise NotImplementedError

    async def get_track(self, track_id: uuid.UUID) -> Optional[TrackRecord]:
        raise NotImplementedError

    async def album_for_track(self, track_id: uuid.UUID) -> Optional[uuid.UUID]:
        raise NotImplementedError

    async def attach_artwork(self, album_id: uuid.UUID, artwork_key: str) -> bool:
        """Set the album's artwork; a newer upload replaces an older one."""
        raise NotImplementedError

    async def attach_artist_artwork(self, artist_id: uuid.UUID, artwork_key: str) -> bool:
        """Fallback target for artwork whose tracks have no album."""
        raise NotImplementedError


# ─────────────────────────────────────────────────────────────────────────────
# 🗄️ SQL
# ─────────────────────────────────────────────────────────────────────────────

class SqlCatalogRepository(CatalogRepositoryProtocol):
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        max_attempts: Optional[int] = None,
    ):
        self._sf = session_factory
        self._max_attempts = max_attempts or settings.RECONCILE_MAX_ATTEMPTS

    async def reconcile(
        self,
        metadata: AudioMetadata,
        media_object_id: uuid.UUID,
        *,
        uploaded_by: Optional[str] = None,
        is_private: bool = False,
    ) -> uuid.UUID:
        natural_key = metadata.natural_key()
        started = time.perf_counter()
        for attempt in range(1, self._max_attempts + 1):
            try:
                async with transactional_async_session(self._sf) as s:
                    track_id = await self._reconcile_once(
                        s, metadata, natural_key, media_object_id, uploaded_by, is_private
                    )
            except IntegrityError:
                metrics.inc_reconcile_conflict()
                logger.info(
                    "Reconcile collision; retrying",
                    extra={"natural_key": natural_key, "attempt": attempt},
                )
                await asyncio.sleep(_backoff(attempt))
                continue
            metrics.observe_reconcile_seconds("ok", time.perf_counter() - started)
            return track_id

        metrics.observe_reconcile_seconds("conflict", time.perf_counter() - started)
        raise ReconciliationConflict(natural_key, self._max_attempts)

    async def _reconcile_once(
        self,
        s: AsyncSession,
        metadata: AudioMetadata,
        natural_key: str,
        media_object_id: uuid.UUID,
        uploaded_by: Optional[str],
        is_private: bool,
    ) -> uuid.UUID:
        track_id = (
            await s.execute(select(Track.id).where(Track.natural_key == natural_key))
        ).scalar_one_or_none()

        if track_id is None:
            artist_id = await self._artist_id(s, metadata.artist)
            album_id = await self._album_id(s, artist_id, metadata.album)
            track = Track(
                natural_key=natural_key,
                external_id=metadata.external_id,
                artist_id=artist_id,
                album_id=album_id,
                title=clean_display(metadata.title),
                track_number=metadata.track_number,
                disc_number=metadata.disc_number,
                duration_ms=metadata.duration_ms,
                bitrate=metadata.bitrate,
                is_private=is_private,
                uploaded_by=uploaded_by,
            )
            s.add(track)
            await s.flush()
            track_id = track.id
            await self._link_genres(s, track_id, metadata.genres)

        await s.execute(
            update(MediaObject)
            .where(MediaObject.id == media_object_id)
            .values(track_id=track_id)
            .execution_options(synchronize_session=False)
        )
        return track_id

    async def _artist_id(self, s: AsyncSession, name: str) -> uuid.UUID:
        norm = normalize_text(name)
        found = (
            await s.execute(select(Artist.id).where(Artist.name_normalized == norm))
        ).scalar_one_or_none()
        if found is not None:
            return found
        artist = Artist(name=clean_display(name), name_normalized=norm)
        s.add(artist)
        await s.flush()
        return artist.id

    async def _album_id(self, s: AsyncSession, artist_id: uuid.UUID, title: Optional[str]) -> Optional[uuid.UUID]:
        norm = normalize_text(title)
        if not norm:
            return None
        found = (
            await s.execute(
                select(Album.id).where(Album.artist_id == artist_id, Album.title_normalized == norm)
            )
        ).scalar_one_or_none()
        if found is not None:
            return found
        album = Album(artist_id=artist_id, title=clean_display(title), title_normalized=norm)
        s.add(album)
        await s.flush()
        return album.id

    async def _link_genres(self, s: AsyncSession, track_id: uuid.UUID, names: List[str]) -> None:
        for norm, display in _distinct_genres(names):
            genre_id = (
                await s.execute(select(Genre.id).where(Genre.name_normalized == norm))
            ).scalar_one_or_none()
            if genre_id is None:
                genre = Genre(name=display, name_normalized=norm)
                s.add(genre)
                await s.flush()
                genre_id = genre.id
            s.add(TrackGenre(track_id=track_id, genre_id=genre_id))
        await s.flush()

    async def get_track(self, track_id: uuid.UUID) -> Optional[TrackRecord]:
        async with self._sf() as s:
            row = await s.get(Track, track_id)
            if row is None:
                return None
            genres = (
                await s.execute(
                    select(Genre.name)
                    .join(TrackGenre, TrackGenre.genre_id == Genre.id)
                    .where(TrackGenre.track_id == track_id)
                    .order_by(Genre.name_normalized)
                )
            ).scalars().all()
            return TrackRecord(
                id=row.id,
                natural_key=row.natural_key,
                title=row.title,
                artist_id=row.artist_id,
                album_id=row.album_id,
                external_id=row.external_id,
                track_number=row.track_number,
                disc_number=row.disc_number,
                duration_ms=row.duration_ms,
                bitrate=row.bitrate,
                is_private=bool(row.is_private),
                uploaded_by=row.uploaded_by,
                genres=list(genres),
            )

    async def album_for_track(self, track_id: uuid.UUID) -> Optional[uuid.UUID]:
        async with self._sf() as s:
            return (
                await s.execute(select(Track.album_id).where(Track.id == track_id))
            ).scalar_one_or_none()

    async def attach_artwork(self, album_id: uuid.UUID, artwork_key: str) -> bool:
        async with transactional_async_session(self._sf) as s:
            result = await s.execute(
                update(Album)
                .where(Album.id == album_id)
                .values(artwork_key=artwork_key)
                .execution_options(synchronize_session=False)
            )
        return result.rowcount == 1

    async def attach_artist_artwork(self, artist_id: uuid.UUID, artwork_key: str) -> bool:
        async with transactional_async_session(self._sf) as s:
            result = await s.execute(
                update(Artist)
                .where(Artist.id == artist_id)
                .values(artwork_key=artwork_key)
                .execution_options(synchronize_session=False)
            )
        return result.rowcount == 1


# ─────────────────────────────────────────────────────────────────────────────
# 🧪 In-memory
# ─────────────────────────────────────────────────────────────────────────────

class _UniqueViolation(Exception):
    pass


@dataclass
class _MemArtist:
    id: uuid.UUID
    name: str
    artwork_key: Optional[str] = None


@dataclass
class _MemAlbum:
    id: uuid.UUID
    artist_id: uuid.UUID
    title: str
    artwork_key: Optional[str] = None


@dataclass
class _Stage:
    track_id: Optional[uuid.UUID] = None
    new_artist: Optional[Tuple[str, _MemArtist]] = None
    new_album: Optional[Tuple[Tuple[uuid.UUID, str], _MemAlbum]] = None
    new_track: Optional[TrackRecord] = None
    new_genres: List[Tuple[str, str]] = field(default_factory=list)


class MemoryCatalogRepository(CatalogRepositoryProtocol):
    """
    In-memory catalog with the same optimistic protocol as the SQL one.

    Each attempt reads (yielding to the loop between lookups, as real I/O
    would), stages new rows, then commits without awaiting. Commit re-checks
    every unique index and raises a collision when a concurrent attempt
    committed first.
    """

    def __init__(
        self,
        media_repo: Optional[MemoryMediaRepository] = None,
        *,
        max_attempts: Optional[int] = None,
    ) -> None:
        self._media_repo = media_repo
        self._max_attempts = max_attempts or settings.RECONCILE_MAX_ATTEMPTS
        self.artists: Dict[str, _MemArtist] = {}
        self.albums: Dict[Tuple[uuid.UUID, str], _MemAlbum] = {}
        self.tracks: Dict[uuid.UUID, TrackRecord] = {}
        self._by_key: Dict[str, uuid.UUID] = {}
        self.genres: Dict[str, str] = {}
        self.track_genres: Set[Tuple[uuid.UUID, str]] = set()

    async def reconcile(
        self,
        metadata: AudioMetadata,
        media_object_id: uuid.UUID,
        *,
        uploaded_by: Optional[str] = None,
        is_private: bool = False,
    ) -> uuid.UUID:
        natural_key = metadata.natural_key()
        started = time.perf_counter()
        for attempt in range(1, self._max_attempts + 1):
            stage = await self._read_and_stage(metadata, natural_key, uploaded_by, is_private)
            try:
                track_id = self._commit(stage, natural_key, media_object_id)
            except _UniqueViolation:
                metrics.inc_reconcile_conflict()
                logger.info(
                    "Reconcile collision; retrying",
                    extra={"natural_key": natural_key, "attempt": attempt},
                )
                await asyncio.sleep(0)
                continue
            metrics.observe_reconcile_seconds("ok", time.perf_counter() - started)
            return track_id

        metrics.observe_reconcile_seconds("conflict", time.perf_counter() - started)
        raise ReconciliationConflict(natural_key, self._max_attempts)

    async def _read_and_stage(
        self,
        metadata: AudioMetadata,
        natural_key: str,
        uploaded_by: Optional[str],
        is_private: bool,
    ) -> _Stage:
        stage = _Stage()
        stage.track_id = self._by_key.get(natural_key)
        await asyncio.sleep(0)
        if stage.track_id is not None:
            return stage

        artist_norm = normalize_text(metadata.artist)
        artist = self.artists.get(artist_norm)
        await asyncio.sleep(0)
        if artist is None:
            artist = _MemArtist(id=uuid.uuid4(), name=clean_display(metadata.artist) or "")
            stage.new_artist = (artist_norm, artist)

        album_id: Optional[uuid.UUID] = None
        album_norm = normalize_text(metadata.album)
        if album_norm:
            album = self.albums.get((artist.id, album_norm))
            await asyncio.sleep(0)
            if album is None:
                album = _MemAlbum(id=uuid.uuid4(), artist_id=artist.id, title=clean_display(metadata.album) or "")
                stage.new_album = ((artist.id, album_norm), album)
            album_id = album.id

        genres = _distinct_genres(metadata.genres)
        stage.new_genres = [(n, d) for n, d in genres if n not in self.genres]
        stage.new_track = TrackRecord(
            id=uuid.uuid4(),
            natural_key=natural_key,
            title=clean_display(metadata.title) or "",
            artist_id=artist.id,
            album_id=album_id,
            external_id=metadata.external_id,
            track_number=metadata.track_number,
            disc_number=metadata.disc_number,
            duration_ms=metadata.duration_ms,
            bitrate=metadata.bitrate,
            is_private=is_private,
            uploaded_by=uploaded_by,
            genres=[d for _, d in genres],
        )
        return stage

    def _commit(self, stage: _Stage, natural_key: str, media_object_id: uuid.UUID) -> uuid.UUID:
        # No awaits below: the whole method is one atomic step on the loop.
        if stage.new_track is not None:
            if natural_key in self._by_key:
                raise _UniqueViolation(natural_key)
            if stage.new_artist and stage.new_artist[0] in self.artists:
                raise _UniqueViolation(stage.new_artist[0])
            if stage.new_album and stage.new_album[0] in self.albums:
                raise _UniqueViolation(str(stage.new_album[0]))
            if any(n in self.genres for n, _ in stage.new_genres):
                raise _UniqueViolation("genre")

            if stage.new_artist:
                self.artists[stage.new_artist[0]] = stage.new_artist[1]
            if stage.new_album:
                self.albums[stage.new_album[0]] = stage.new_album[1]
            for norm, display in stage.new_genres:
                self.genres[norm] = display
            track = stage.new_track
            self.tracks[track.id] = track
            self._by_key[natural_key] = track.id
            for g in track.genres:
                self.track_genres.add((track.id, normalize_text(g)))
            stage.track_id = track.id

        if self._media_repo is not None:
            self._media_repo.set_track_link(media_object_id, stage.track_id)
        return stage.track_id

    async def get_track(self, track_id: uuid.UUID) -> Optional[TrackRecord]:
        rec = self.tracks.get(track_id)
        return replace(rec, genres=list(rec.genres)) if rec else None

    async def album_for_track(self, track_id: uuid.UUID) -> Optional[uuid.UUID]:
        track = self.tracks.get(track_id)
        return track.album_id if track else None

    async def attach_artwork(self, album_id: uuid.UUID, artwork_key: str) -> bool:
        for album in self.albums.values():
            if album.id == album_id:
                album.artwork_key = artwork_key
                return True
        return False

    async def attach_artist_artwork(self, artist_id: uuid.UUID, artwork_key: str) -> bool:
        for artist in self.artists.values():
            if artist.id == artist_id:
                artist.artwork_key = artwork_key
                return True
        return False

    # Convenience lookups for tests and dev tooling.
    def album_artwork(self, album_id: uuid.UUID) -> Optional[str]:
        for album in self.albums.values():
            if album.id == album_id:
                return album.artwork_key
        return None

    def artist_artwork(self, artist_id: uuid.UUID) -> Optional[str]:
        for artist in self.artists.values():
            if artist.id == artist_id:
                return artist.artwork_key
        return None


__all__ = [
    "CatalogRepositoryProtocol",
    "SqlCatalogRepository",
    "MemoryCatalogRepository",
]

import uuid

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from tunesnow.core.exceptions import ReconciliationConflict
from tunesnow.db.models.album import Album
from tunesnow.db.models.artist import Artist
from tunesnow.db.models.genre import Genre
from tunesnow.db.models.track import Track
from tunesnow.repositories.catalog import SqlCatalogRepository
from tunesnow.repositories.media import SqlMediaRepository
from tunesnow.schemas.enums import ErrorKind, MediaKind, MediaState
from tests.utils.media import song

S = MediaState


@pytest.fixture()
def media_sql(session_factory) -> SqlMediaRepository:
    return SqlMediaRepository(session_factory)


@pytest.fixture()
def catalog_sql(session_factory) -> SqlCatalogRepository:
    return SqlCatalogRepository(session_factory)


@pytest.fixture(autouse=True)
def _no_backoff(monkeypatch):
    monkeypatch.setattr("tunesnow.repositories.catalog._backoff", lambda attempt: 0)


async def _media(repo, batch_id, kind=MediaKind.AUDIO):
    media_id = uuid.uuid4()
    ext = "flac" if kind == MediaKind.AUDIO else "png"
    return await repo.create_media(
        media_id=media_id,
        batch_id=batch_id,
        kind=kind,
        storage_key=f"uploads/{batch_id}/{media_id}.{ext}",
        declared_size=1234,
        declared_sha256="0" * 64,
        declared_mime="audio/flac" if kind == MediaKind.AUDIO else "image/png",
    )


# ─────────────────────────────────────────────────────────────────────────────
# 📦 Media objects
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.anyio
async def test_batch_and_media_roundtrip(media_sql):
    batch = await media_sql.create_batch(created_by="user-1", is_private=True)
    media = await _media(media_sql, batch.id)

    assert batch.created_at is not None
    assert (await media_sql.get_batch(batch.id)).is_private is True
    assert media.state == S.UPLOADING
    assert media.created_at is not None
    assert [m.id for m in await media_sql.list_batch_media(batch.id)] == [media.id]
    assert await media_sql.get_media(uuid.uuid4()) is None


@pytest.mark.anyio
async def test_transition_is_compare_and_swap(media_sql):
    batch = await media_sql.create_batch(created_by="user-1")
    media = await _media(media_sql, batch.id)

    assert await media_sql.transition(media.id, expected=S.UPLOADING, target=S.UPLOADED)
    assert not await media_sql.transition(media.id, expected=S.UPLOADING, target=S.UPLOADED)
    assert not await media_sql.transition(media.id, expected=S.UPLOADED, target=S.READY)
    assert await media_sql.transition(
        media.id, expected=S.UPLOADED, target=S.VALIDATED, sniffed_mime="audio/flac", observed_sha256="0" * 64
    )

    got = await media_sql.get_media(media.id)
    assert got.state == S.VALIDATED
    assert got.sniffed_mime == "audio/flac"


@pytest.mark.anyio
async def test_failed_needs_an_error_kind(media_sql):
    batch = await media_sql.create_batch(created_by="user-1")
    media = await _media(media_sql, batch.id)

    with pytest.raises(ValueError):
        await media_sql.transition(media.id, expected=S.UPLOADING, target=S.FAILED)
    assert await media_sql.transition(
        media.id,
        expected=S.UPLOADING,
        target=S.FAILED,
        error_kind=ErrorKind.INTEGRITY_MISMATCH,
        error_detail="size mismatch",
    )

    got = await media_sql.get_media(media.id)
    assert got.state == S.FAILED
    assert got.error_kind == ErrorKind.INTEGRITY_MISMATCH
    assert not await media_sql.transition(media.id, expected=S.FAILED, target=S.UPLOADING)


@pytest.mark.anyio
async def test_artwork_links_once(media_sql):
    batch = await media_sql.create_batch(created_by="user-1")
    art = await _media(media_sql, batch.id, MediaKind.ARTWORK)
    audio = await _media(media_sql, batch.id)

    assert await media_sql.link_artwork(art.id, album_id=uuid.uuid4())
    assert not await media_sql.link_artwork(art.id, artist_id=uuid.uuid4())
    assert not await media_sql.link_artwork(audio.id, album_id=uuid.uuid4())
    assert (await media_sql.get_media(art.id)).artist_id is None


# ─────────────────────────────────────────────────────────────────────────────
# 🎼 Catalog
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.anyio
async def test_reconcile_creates_once_and_links_every_object(media_sql, catalog_sql):
    batch = await media_sql.create_batch(created_by="user-1")
    a = await _media(media_sql, batch.id)
    b = await _media(media_sql, batch.id)

    first = await catalog_sql.reconcile(song(genres=["Jazz", "JAZZ"]), a.id, uploaded_by="user-1")
    second = await catalog_sql.reconcile(song(title="  blue train", duration_ms=642_700), b.id)

    assert first == second
    assert (await media_sql.get_media(a.id)).track_id == first
    assert (await media_sql.get_media(b.id)).track_id == first
    track = await catalog_sql.get_track(first)
    assert track.title == "Blue Train"
    assert track.uploaded_by == "user-1"
    assert track.genres == ["Jazz"]


@pytest.mark.anyio
async def test_ready_audio_lookup(media_sql, catalog_sql):
    batch = await media_sql.create_batch(created_by="user-1")
    media = await _media(media_sql, batch.id)
    track_id = await catalog_sql.reconcile(song(), media.id)
    assert await media_sql.find_ready_audio(track_id) is None

    for src, dst in [(S.UPLOADING, S.UPLOADED), (S.UPLOADED, S.VALIDATED), (S.VALIDATED, S.INGESTED), (S.INGESTED, S.READY)]:
        assert await media_sql.transition(media.id, expected=src, target=dst)

    found = await media_sql.find_ready_audio(track_id)
    assert found.id == media.id


@pytest.mark.anyio
async def test_album_artwork_is_overwritten(session_factory, media_sql, catalog_sql):
    batch = await media_sql.create_batch(created_by="user-1")
    media = await _media(media_sql, batch.id)
    track_id = await catalog_sql.reconcile(song(), media.id)
    album_id = await catalog_sql.album_for_track(track_id)

    assert await catalog_sql.attach_artwork(album_id, "uploads/a/old.png")
    assert await catalog_sql.attach_artwork(album_id, "uploads/a/new.png")
    assert not await catalog_sql.attach_artwork(uuid.uuid4(), "uploads/a/none.png")

    async with session_factory() as s:
        album = await s.get(Album, album_id)
        assert album.artwork_key == "uploads/a/new.png"


@pytest.mark.anyio
async def test_single_without_album_has_artist_fallback(session_factory, media_sql, catalog_sql):
    batch = await media_sql.create_batch(created_by="user-1")
    media = await _media(media_sql, batch.id)
    track_id = await catalog_sql.reconcile(song(album=None), media.id)
    track = await catalog_sql.get_track(track_id)

    assert await catalog_sql.album_for_track(track_id) is None
    assert await catalog_sql.attach_artist_artwork(track.artist_id, "uploads/a/artist.png")
    async with session_factory() as s:
        artists = (await s.execute(select(Artist))).scalars().all()
        assert [a.artwork_key for a in artists] == ["uploads/a/artist.png"]


@pytest.mark.anyio
async def test_unique_collision_is_retried(media_sql, catalog_sql, monkeypatch):
    batch = await media_sql.create_batch(created_by="user-1")
    media = await _media(media_sql, batch.id)
    original = SqlCatalogRepository._reconcile_once
    calls = {"n": 0}

    async def _collide_once(self, *args):
        calls["n"] += 1
        if calls["n"] == 1:
            raise IntegrityError("INSERT INTO tracks", {}, Exception("UNIQUE constraint failed: tracks.natural_key"))
        return await original(self, *args)

    monkeypatch.setattr(SqlCatalogRepository, "_reconcile_once", _collide_once)

    track_id = await catalog_sql.reconcile(song(), media.id)

    assert calls["n"] == 2
    assert (await media_sql.get_media(media.id)).track_id == track_id


@pytest.mark.anyio
async def test_persistent_collision_gives_up(session_factory, media_sql, monkeypatch):
    batch = await media_sql.create_batch(created_by="user-1")
    media = await _media(media_sql, batch.id)

    async def _always(self, *args):
        raise IntegrityError("INSERT INTO tracks", {}, Exception("UNIQUE constraint failed"))

    monkeypatch.setattr(SqlCatalogRepository, "_reconcile_once", _always)
    repo = SqlCatalogRepository(session_factory, max_attempts=2)

    with pytest.raises(ReconciliationConflict) as exc:
        await repo.reconcile(song(), media.id)
    assert exc.value.attempts == 2
    assert exc.value.natural_key.startswith("nk:")
    assert (await media_sql.get_media(media.id)).track_id is None


@pytest.mark.anyio
async def test_aborted_reconcile_leaves_no_orphans(session_factory, media_sql, monkeypatch):
    batch = await media_sql.create_batch(created_by="user-1")
    media = await _media(media_sql, batch.id)
    flushed = {"artist": None, "album": None}
    original_artist = SqlCatalogRepository._artist_id
    original_album = SqlCatalogRepository._album_id

    async def _artist(self, s, name):
        flushed["artist"] = await original_artist(self, s, name)
        return flushed["artist"]

    async def _album(self, s, artist_id, title):
        flushed["album"] = await original_album(self, s, artist_id, title)
        return flushed["album"]

    async def _collide(self, s, track_id, names):
        raise IntegrityError("INSERT INTO track_genres", {}, Exception("UNIQUE constraint failed"))

    monkeypatch.setattr(SqlCatalogRepository, "_artist_id", _artist)
    monkeypatch.setattr(SqlCatalogRepository, "_album_id", _album)
    monkeypatch.setattr(SqlCatalogRepository, "_link_genres", _collide)
    repo = SqlCatalogRepository(session_factory, max_attempts=1)

    with pytest.raises(ReconciliationConflict):
        await repo.reconcile(song(genres=["Jazz"]), media.id)

    assert flushed["artist"] is not None and flushed["album"] is not None
    async with session_factory() as s:
        for model in (Artist, Album, Track, Genre):
            assert (await s.execute(select(model))).scalars().all() == []
    assert (await media_sql.get_media(media.id)).track_id is None

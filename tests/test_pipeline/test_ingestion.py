import asyncio
import json

import pytest

from tunesnow.core.exceptions import (
    ObjectNotYetPresent,
    ReconciliationConflict,
    TransientStoreError,
    TransientStoreFailure,
)
from tunesnow.schemas.enums import ErrorKind, MediaKind, MediaState
from tunesnow.services.ingestion_service import drain_inflight
from tunesnow.services.postprocessing import PostProcessor
from tests.utils.media import audio_bytes, broken_png_bytes, png_bytes, song, wav_bytes


@pytest.fixture()
async def batch(coordinator, uploader):
    return await coordinator.create_batch(uploader)


# ─────────────────────────────────────────────────────────────────────────────
# ✅ Happy path & idempotence
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.anyio
async def test_audio_reaches_ready_and_links_a_track(batch, upload, ingestion, extractor, catalog):
    data = audio_bytes("blue-train")
    extractor.register(data, song(genres=["Jazz", "jazz ", "Hard Bop"]))
    media = await upload(batch.id, data)

    result = await ingestion.ingest(media.id)

    assert result.state == MediaState.READY
    assert result.sniffed_mime == "audio/flac"
    assert result.observed_sha256 == media.declared_sha256
    assert result.error_kind is None
    track = await catalog.get_track(result.track_id)
    assert track.title == "Blue Train"
    assert track.uploaded_by == "user-uploader"
    assert sorted(track.genres) == ["Hard Bop", "Jazz"]
    assert len(catalog.genres) == 2


@pytest.mark.anyio
async def test_ingest_is_idempotent(batch, upload, ingestion, extractor, catalog):
    data = audio_bytes("again")
    extractor.register(data, song())
    media = await upload(batch.id, data)

    first = await ingestion.ingest(media.id)
    second = await ingestion.ingest(media.id)

    assert first.state == second.state == MediaState.READY
    assert first.track_id == second.track_id
    assert first.transitioned_at == second.transitioned_at
    assert extractor.calls == 1
    assert len(catalog.tracks) == 1


@pytest.mark.anyio
async def test_parked_ingested_object_only_gets_the_ready_check(
    batch, upload, ingestion, media_repo, extractor, catalog
):
    data = audio_bytes("parked")
    media = await upload(batch.id, data)
    track_id = await catalog.reconcile(song(), media.id)
    for src, dst, fields in [
        (MediaState.UPLOADING, MediaState.UPLOADED, {}),
        (MediaState.UPLOADED, MediaState.VALIDATED, {"sniffed_mime": "audio/flac"}),
        (MediaState.VALIDATED, MediaState.INGESTED, {"track_id": track_id}),
    ]:
        assert await media_repo.transition(media.id, expected=src, target=dst, **fields)

    result = await ingestion.ingest(media.id)

    assert result.state == MediaState.READY
    assert result.track_id == track_id
    assert extractor.calls == 0
    assert len(catalog.tracks) == 1


@pytest.mark.anyio
async def test_crash_before_ready_is_finished_by_the_next_ingest(
    batch, upload, ingestion, media_repo, extractor, catalog, monkeypatch
):
    data = audio_bytes("crash-at-ready")
    extractor.register(data, song())
    media = await upload(batch.id, data)
    original = media_repo.transition

    async def _db_drops_ready(media_id, *, expected, target, **fields):
        if target == MediaState.READY:
            raise ConnectionError("connection reset")
        return await original(media_id, expected=expected, target=target, **fields)

    monkeypatch.setattr(media_repo, "transition", _db_drops_ready)
    with pytest.raises(ConnectionError):
        await ingestion.ingest(media.id)
    assert (await ingestion.get(media.id)).state == MediaState.INGESTED

    monkeypatch.undo()
    result = await ingestion.ingest(media.id)

    assert result.state == MediaState.READY
    assert extractor.calls == 1
    assert len(catalog.tracks) == 1


@pytest.mark.anyio
async def test_artwork_sweep_outage_does_not_strand_audio(
    batch, upload, ingestion, media_repo, extractor, monkeypatch
):
    data = audio_bytes("sweep-outage")
    extractor.register(data, song())
    media = await upload(batch.id, data)
    original = media_repo.list_batch_media
    calls = {"n": 0}

    async def _flaky(batch_id):
        calls["n"] += 1
        if calls["n"] == 1:
            raise ConnectionError("connection reset")
        return await original(batch_id)

    monkeypatch.setattr(media_repo, "list_batch_media", _flaky)

    result = await ingestion.ingest(media.id)

    assert calls["n"] == 1
    assert result.state == MediaState.READY
    assert (await ingestion.ingest(media.id)).state == MediaState.READY


# ─────────────────────────────────────────────────────────────────────────────
# 📭 Upload confirmation
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.anyio
async def test_signal_before_upload_is_retryable_and_changes_nothing(batch, coordinator, ingestion, uploader):
    data = audio_bytes("not-yet")
    slot = await coordinator.request_media_slot(
        uploader,
        batch.id,
        kind=MediaKind.AUDIO,
        declared_size=len(data),
        declared_sha256="a" * 64,
        mime="audio/flac",
    )

    with pytest.raises(ObjectNotYetPresent) as exc:
        await ingestion.signal_uploaded(slot.media.id)
    assert exc.value.status_code == 409
    assert exc.value.headers["Retry-After"]

    with pytest.raises(ObjectNotYetPresent):
        await ingestion.ingest(slot.media.id)
    assert (await ingestion.get(slot.media.id)).state == MediaState.UPLOADING


@pytest.mark.anyio
async def test_zero_byte_object_counts_as_not_present(batch, upload, ingestion):
    data = audio_bytes("empty")
    media = await upload(batch.id, data, stored=b"")

    with pytest.raises(ObjectNotYetPresent):
        await ingestion.signal_uploaded(media.id)
    assert (await ingestion.get(media.id)).state == MediaState.UPLOADING


@pytest.mark.anyio
async def test_signal_uploaded_twice_is_harmless(batch, upload, ingestion):
    media = await upload(batch.id, audio_bytes("twice"))

    first = await ingestion.signal_uploaded(media.id)
    second = await ingestion.signal_uploaded(media.id)

    assert first.state == second.state == MediaState.UPLOADED


@pytest.mark.anyio
async def test_store_outage_is_retryable(batch, upload, ingestion, store, monkeypatch):
    media = await upload(batch.id, audio_bytes("outage"))

    async def _down(key):
        raise TransientStoreError("connect timeout")

    monkeypatch.setattr(store, "stat", _down)
    with pytest.raises(TransientStoreFailure) as exc:
        await ingestion.ingest(media.id)
    assert exc.value.status_code == 503
    assert exc.value.retryable
    assert (await ingestion.get(media.id)).state == MediaState.UPLOADING


# ─────────────────────────────────────────────────────────────────────────────
# 🧪 Validation failures (terminal)
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.anyio
async def test_size_mismatch_fails_before_extraction(batch, upload, ingestion, extractor):
    data = audio_bytes("short", size=2048)
    extractor.register(data, song())
    media = await upload(batch.id, data, stored=data + b"extra")

    result = await ingestion.ingest(media.id)

    assert result.state == MediaState.FAILED
    assert result.error_kind == ErrorKind.INTEGRITY_MISMATCH
    assert "size mismatch" in result.error_detail
    assert extractor.calls == 0


@pytest.mark.anyio
@pytest.mark.parametrize("report_checksums", [True, False])
async def test_digest_mismatch_fails(batch, upload, ingestion, store, report_checksums):
    store.report_checksums = report_checksums
    data = audio_bytes("digest")
    tampered = data[:-1] + bytes([data[-1] ^ 0xFF])
    media = await upload(batch.id, data, stored=tampered)

    result = await ingestion.ingest(media.id)

    assert result.state == MediaState.FAILED
    assert result.error_kind == ErrorKind.INTEGRITY_MISMATCH
    assert "sha256 mismatch" in result.error_detail


@pytest.mark.anyio
async def test_streamed_digest_accepts_a_matching_object(batch, upload, ingestion, store, extractor):
    store.report_checksums = False
    data = audio_bytes("streamed", size=20_000)
    extractor.register(data, song(title="Moment's Notice"))
    media = await upload(batch.id, data)

    result = await ingestion.ingest(media.id)

    assert result.state == MediaState.READY
    assert result.observed_sha256 == media.declared_sha256


@pytest.mark.anyio
async def test_content_that_sniffs_as_the_wrong_family_fails(batch, upload, ingestion):
    data = png_bytes(32, 32)
    media = await upload(batch.id, data, kind=MediaKind.AUDIO, mime="audio/flac")

    result = await ingestion.ingest(media.id)

    assert result.state == MediaState.FAILED
    assert result.error_kind == ErrorKind.INTEGRITY_MISMATCH
    assert "image/png" in result.error_detail


@pytest.mark.anyio
async def test_unparseable_audio_fails_with_diagnostic(batch, upload, ingestion, extractor, catalog):
    data = audio_bytes("untagged")
    extractor.register(data, "missing required tag: title")
    media = await upload(batch.id, data)

    result = await ingestion.ingest(media.id)

    assert result.state == MediaState.FAILED
    assert result.error_kind == ErrorKind.EXTRACTION_FAILED
    assert result.error_detail == "missing required tag: title"
    assert result.track_id is None
    assert catalog.tracks == {}


@pytest.mark.anyio
async def test_zero_duration_fails_without_touching_the_catalog(batch, upload, ingestion, extractor, catalog):
    data = audio_bytes("silent")
    extractor.register(data, song(duration_ms=0))
    media = await upload(batch.id, data)

    result = await ingestion.ingest(media.id)

    assert result.state == MediaState.FAILED
    assert result.error_kind == ErrorKind.EXTRACTION_FAILED
    assert result.error_detail == "missing playback fields: duration"
    assert result.track_id is None
    assert catalog.tracks == {}
    assert catalog.artists == {}


@pytest.mark.anyio
async def test_reconcile_exhaustion_is_retryable(batch, upload, ingestion, extractor, catalog, monkeypatch):
    data = audio_bytes("contended")
    extractor.register(data, song())
    media = await upload(batch.id, data)

    async def _busy(*args, **kwargs):
        raise ReconciliationConflict("nk:busy", 5)

    monkeypatch.setattr(catalog, "reconcile", _busy)
    with pytest.raises(TransientStoreFailure) as exc:
        await ingestion.ingest(media.id)
    assert exc.value.headers["Retry-After"] == "1"
    assert (await ingestion.get(media.id)).state == MediaState.VALIDATED

    monkeypatch.undo()
    result = await ingestion.ingest(media.id)
    assert result.state == MediaState.READY


# ─────────────────────────────────────────────────────────────────────────────
# 🏁 Concurrency
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.anyio
async def test_concurrent_uploads_of_one_recording_share_one_track(batch, upload, ingestion, extractor, catalog):
    payloads = [audio_bytes(f"encode-{i}", size=3000 + i) for i in range(8)]
    media = []
    for i, data in enumerate(payloads):
        extractor.register(data, song(title=" blue  TRAIN", duration_ms=643_000 + i * 40, bitrate=128_000 * (i + 1)))
        media.append(await upload(batch.id, data))

    results = await asyncio.gather(*(ingestion.ingest(m.id) for m in media))

    assert {r.state for r in results} == {MediaState.READY}
    assert len({r.track_id for r in results}) == 1
    assert len(catalog.tracks) == 1
    assert len(catalog.artists) == 1
    assert len(catalog.albums) == 1


@pytest.mark.anyio
async def test_concurrent_ingest_of_one_object_applies_each_step_once(batch, upload, ingestion, extractor, catalog):
    data = audio_bytes("racing")
    extractor.register(data, song())
    media = await upload(batch.id, data)

    results = await asyncio.gather(*(ingestion.ingest(media.id) for _ in range(5)))

    assert all(r.state == MediaState.READY for r in results)
    assert len({r.track_id for r in results}) == 1
    assert len(catalog.tracks) == 1


# ─────────────────────────────────────────────────────────────────────────────
# 🖼️ Artwork
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.anyio
async def test_artwork_after_audio_attaches_to_the_album(batch, upload, ingestion, extractor, catalog):
    data = audio_bytes("with-cover")
    extractor.register(data, song())
    audio = await ingestion.ingest((await upload(batch.id, data)).id)
    art = await upload(batch.id, png_bytes(), kind=MediaKind.ARTWORK, mime="image/png")

    result = await ingestion.ingest(art.id)

    track = await catalog.get_track(audio.track_id)
    assert result.state == MediaState.READY
    assert result.album_id == track.album_id
    assert result.artist_id is None
    assert catalog.album_artwork(track.album_id) == art.storage_key


@pytest.mark.anyio
async def test_artwork_before_audio_is_linked_when_audio_lands(batch, upload, ingestion, extractor, catalog):
    art = await upload(batch.id, png_bytes(), kind=MediaKind.ARTWORK, mime="image/png")
    pending = await ingestion.ingest(art.id)
    assert pending.state == MediaState.READY
    assert not pending.artwork_linked

    data = audio_bytes("late-audio")
    extractor.register(data, song())
    audio = await ingestion.ingest((await upload(batch.id, data)).id)

    linked = await ingestion.get(art.id)
    track = await catalog.get_track(audio.track_id)
    assert linked.album_id == track.album_id
    assert catalog.album_artwork(track.album_id) == art.storage_key


@pytest.mark.anyio
async def test_artwork_and_audio_racing_still_link(batch, upload, ingestion, extractor, catalog):
    data = audio_bytes("race-cover")
    extractor.register(data, song())
    audio = await upload(batch.id, data)
    art = await upload(batch.id, png_bytes(), kind=MediaKind.ARTWORK, mime="image/png")

    await asyncio.gather(ingestion.ingest(audio.id), ingestion.ingest(art.id))

    linked = await ingestion.get(art.id)
    assert linked.state == MediaState.READY
    assert linked.album_id is not None
    assert catalog.album_artwork(linked.album_id) == art.storage_key


@pytest.mark.anyio
async def test_failed_artwork_link_is_redone_by_the_next_sweep(
    batch, upload, ingestion, extractor, catalog, monkeypatch
):
    data = audio_bytes("first-side")
    extractor.register(data, song())
    await ingestion.ingest((await upload(batch.id, data)).id)
    art = await upload(batch.id, png_bytes(), kind=MediaKind.ARTWORK, mime="image/png")

    async def _down(track_id):
        raise ConnectionError("catalog unavailable")

    monkeypatch.setattr(catalog, "album_for_track", _down)
    unlinked = await ingestion.ingest(art.id)
    assert unlinked.state == MediaState.READY
    assert not unlinked.artwork_linked

    monkeypatch.undo()
    more = audio_bytes("second-side")
    extractor.register(more, song(title="Moment's Notice", duration_ms=550_000))
    audio = await ingestion.ingest((await upload(batch.id, more)).id)

    linked = await ingestion.get(art.id)
    track = await catalog.get_track(audio.track_id)
    assert linked.album_id == track.album_id
    assert catalog.album_artwork(track.album_id) == art.storage_key


@pytest.mark.anyio
async def test_artwork_for_single_without_album_goes_to_artist(batch, upload, ingestion, extractor, catalog):
    data = audio_bytes("single")
    extractor.register(data, song(title="Naima", album=None))
    audio = await ingestion.ingest((await upload(batch.id, data)).id)
    art = await upload(batch.id, png_bytes(), kind=MediaKind.ARTWORK, mime="image/png")

    result = await ingestion.ingest(art.id)

    track = await catalog.get_track(audio.track_id)
    assert track.album_id is None
    assert result.artist_id == track.artist_id
    assert catalog.artist_artwork(track.artist_id) == art.storage_key


@pytest.mark.anyio
async def test_newer_artwork_replaces_older(coordinator, uploader, upload, ingestion, extractor, catalog):
    keys = []
    for i in range(2):
        b = await coordinator.create_batch(uploader)
        data = audio_bytes(f"reissue-{i}")
        extractor.register(data, song())
        await ingestion.ingest((await upload(b.id, data)).id)
        art = await upload(b.id, png_bytes(color=(i * 100, 0, 0)), kind=MediaKind.ARTWORK, mime="image/png")
        keys.append((await ingestion.ingest(art.id)).album_id)
        latest_key = art.storage_key

    assert keys[0] == keys[1]
    assert catalog.album_artwork(keys[0]) == latest_key


@pytest.mark.anyio
async def test_failed_audio_leaves_artwork_pending(batch, upload, ingestion, extractor):
    data = audio_bytes("broken-audio")
    extractor.register(data, "unreadable container: bad header")
    await ingestion.ingest((await upload(batch.id, data)).id)
    art = await upload(batch.id, png_bytes(), kind=MediaKind.ARTWORK, mime="image/png")

    result = await ingestion.ingest(art.id)

    assert result.state == MediaState.READY
    assert not result.artwork_linked


# ─────────────────────────────────────────────────────────────────────────────
# 🎨 Post-processing
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.anyio
async def test_artwork_gets_a_thumbnail(batch, upload, ingestion, store):
    art = await upload(batch.id, png_bytes(900, 600), kind=MediaKind.ARTWORK, mime="image/png")

    await ingestion.ingest(art.id)
    await drain_inflight()

    thumb = store.get(f"derived/{art.id}/thumb.webp")
    assert thumb is not None
    assert thumb[:4] == b"RIFF" and thumb[8:12] == b"WEBP"


@pytest.mark.anyio
async def test_undecodable_artwork_stays_ready(batch, upload, ingestion, store):
    art = await upload(batch.id, broken_png_bytes(), kind=MediaKind.ARTWORK, mime="image/png")

    result = await ingestion.ingest(art.id)
    await drain_inflight()

    assert result.state == MediaState.READY
    assert result.error_kind is None
    assert store.get(f"derived/{art.id}/thumb.webp") is None


@pytest.mark.anyio
async def test_wav_gets_a_waveform(batch, upload, ingestion, extractor, store):
    data = wav_bytes(4000)
    extractor.register(data, song(title="Alabama", duration_ms=500))
    media = await upload(batch.id, data, mime="audio/wav")

    result = await ingestion.ingest(media.id)
    await drain_inflight()

    assert result.state == MediaState.READY
    assert result.sniffed_mime == "audio/wav"
    waveform = json.loads(store.get(f"derived/{media.id}/waveform.json"))
    assert waveform["points"] == 200
    assert len(waveform["peaks"]) == 200
    assert all(0.0 <= p <= 1.0 for p in waveform["peaks"])
    assert max(waveform["peaks"]) > 0


@pytest.mark.anyio
async def test_postprocessing_does_not_hold_up_ingest(batch, upload, ingestion, store, monkeypatch):
    art = await upload(batch.id, png_bytes(), kind=MediaKind.ARTWORK, mime="image/png")
    release = asyncio.Event()
    original_run = PostProcessor.run

    async def _slow_run(self, media):
        await release.wait()
        return await original_run(self, media)

    monkeypatch.setattr(PostProcessor, "run", _slow_run)

    result = await ingestion.ingest(art.id)

    assert result.state == MediaState.READY
    assert store.get(f"derived/{art.id}/thumb.webp") is None

    release.set()
    await drain_inflight()
    assert store.get(f"derived/{art.id}/thumb.webp") is not None

import uuid

import pytest

from tunesnow.core.exceptions import AssetNotReady, NotEntitled, RangeNotSatisfiable
from tunesnow.schemas.enums import MediaState
from tests.utils.media import audio_bytes, song

TRACK_SIZE = 5000


@pytest.fixture()
def payload() -> bytes:
    return audio_bytes("stream-me", size=TRACK_SIZE)


async def _ready_track(coordinator, upload, ingestion, extractor, uploader, payload, *, private=False):
    batch = await coordinator.create_batch(uploader, private=private)
    extractor.register(payload, song())
    media = await ingestion.ingest((await upload(batch.id, payload)).id)
    assert media.state == MediaState.READY
    return media.track_id


@pytest.fixture()
def reads(store, monkeypatch):
    """Count object-store reads made while streaming."""
    calls = []
    original = store.fetch_range

    async def _spy(key, offset, length):
        calls.append((offset, length))
        return await original(key, offset, length)

    monkeypatch.setattr(store, "fetch_range", _spy)
    return calls


async def _body(plan) -> bytes:
    return b"".join([chunk async for chunk in plan.iter_body()])


@pytest.mark.anyio
async def test_full_body(streaming, coordinator, upload, ingestion, extractor, uploader, other_user, payload):
    track_id = await _ready_track(coordinator, upload, ingestion, extractor, uploader, payload)

    plan = await streaming.serve(track_id, other_user)

    assert plan.status_code == 200
    assert plan.headers["Accept-Ranges"] == "bytes"
    assert plan.headers["Content-Length"] == str(TRACK_SIZE)
    assert "Content-Range" not in plan.headers
    assert plan.media_type == "audio/flac"
    assert await _body(plan) == payload


@pytest.mark.anyio
async def test_partial_body_is_read_in_bounded_chunks(
    streaming, coordinator, upload, ingestion, extractor, uploader, payload, reads
):
    track_id = await _ready_track(coordinator, upload, ingestion, extractor, uploader, payload)
    reads.clear()

    plan = await streaming.serve(track_id, uploader, "bytes=1000-3499")

    assert plan.status_code == 206
    assert plan.headers["Content-Range"] == f"bytes 1000-3499/{TRACK_SIZE}"
    assert plan.headers["Content-Length"] == "2500"
    assert reads == []
    assert await _body(plan) == payload[1000:3500]
    assert reads == [(1000, 1024), (2024, 1024), (3048, 452)]


@pytest.mark.anyio
async def test_range_end_is_clamped(streaming, coordinator, upload, ingestion, extractor, uploader, payload):
    track_id = await _ready_track(coordinator, upload, ingestion, extractor, uploader, payload)

    plan = await streaming.serve(track_id, uploader, "bytes=4990-9999")

    assert plan.headers["Content-Range"] == f"bytes 4990-4999/{TRACK_SIZE}"
    assert await _body(plan) == payload[4990:]


@pytest.mark.anyio
async def test_out_of_bounds_range(streaming, coordinator, upload, ingestion, extractor, uploader, payload):
    track_id = await _ready_track(coordinator, upload, ingestion, extractor, uploader, payload)

    with pytest.raises(RangeNotSatisfiable) as exc:
        await streaming.serve(track_id, uploader, f"bytes={TRACK_SIZE}-")
    assert exc.value.headers["Content-Range"] == f"bytes */{TRACK_SIZE}"


@pytest.mark.anyio
async def test_private_track_denied_without_touching_the_store(
    streaming, coordinator, upload, ingestion, extractor, uploader, other_user, admin, payload, reads
):
    track_id = await _ready_track(coordinator, upload, ingestion, extractor, uploader, payload, private=True)
    reads.clear()

    with pytest.raises(NotEntitled) as exc:
        await streaming.serve(track_id, other_user, "bytes=0-99")
    assert exc.value.status_code == 403
    assert exc.value.headers["Accept-Ranges"] == "bytes"
    assert reads == []

    assert (await streaming.serve(track_id, uploader)).status_code == 200
    assert (await streaming.serve(track_id, admin)).status_code == 200


@pytest.mark.anyio
async def test_unknown_track_is_not_ready(streaming, uploader):
    with pytest.raises(AssetNotReady) as exc:
        await streaming.serve(uuid.uuid4(), uploader)
    assert exc.value.status_code == 404
    assert exc.value.headers["Accept-Ranges"] == "bytes"


@pytest.mark.anyio
async def test_track_without_ready_audio_is_not_ready(streaming, coordinator, upload, catalog, uploader, payload):
    batch = await coordinator.create_batch(uploader)
    media = await upload(batch.id, payload)
    # Catalogued, but its only audio object is still UPLOADING.
    track_id = await catalog.reconcile(song(), media.id)

    with pytest.raises(AssetNotReady):
        await streaming.serve(track_id, uploader)


@pytest.mark.anyio
async def test_ingested_but_not_ready_is_not_found(
    streaming, coordinator, upload, catalog, media_repo, uploader, payload, reads
):
    batch = await coordinator.create_batch(uploader)
    media = await upload(batch.id, payload)
    track_id = await catalog.reconcile(song(), media.id)
    for src, dst in [
        (MediaState.UPLOADING, MediaState.UPLOADED),
        (MediaState.UPLOADED, MediaState.VALIDATED),
        (MediaState.VALIDATED, MediaState.INGESTED),
    ]:
        assert await media_repo.transition(media.id, expected=src, target=dst)

    with pytest.raises(AssetNotReady) as exc:
        await streaming.serve(track_id, uploader, "bytes=0-99")

    assert exc.value.status_code == 404
    assert reads == []

from __future__ import annotations

"""
🎚️ TunesNow — Ingestion state machine
=====================================

Drives one `MediaObject` through

    UPLOADING → UPLOADED → VALIDATED → INGESTED → READY     (or → FAILED)

Every step is a compare-and-swap through the media repository, so two
drivers racing on the same object cannot both apply a step; the loser
re-reads and carries on from whatever state it finds.

Error policy
------------
- Retryable conditions (object not visible yet, store outage, catalog
  contention) raise `AppException`s and leave the state untouched.
- Terminal conditions (integrity mismatch, unparseable container) move the
  object to FAILED with an error kind and a human-readable cause.
- Artwork linking is best effort: a failed link is logged and redone by the
  next pending-artwork sweep.
- Post-processing after READY is best effort and runs as a background task:
  failures are logged and counted, never persisted.

An object left in INGESTED (the READY step crashed) is finished by the next
`ingest` call, which only re-checks playback fields; extraction and
reconciliation are never repeated.

Ingestion started from an HTTP request is run as a shielded task
(`run_shielded`): a client disconnect does not abort it half-way; the client
re-polls the status endpoint.
"""

import asyncio
import logging
import tempfile
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from tunesnow.core import metrics
from tunesnow.core.config import settings
from tunesnow.core.exceptions import (
    ExtractionError,
    MediaObjectNotFound,
    ObjectNotYetPresent,
    ObjectStoreError,
    ReconciliationConflict,
    TransientStoreFailure,
)
from tunesnow.core.storage import ObjectStat, ObjectStore, iter_range, sha256_of
from tunesnow.repositories.catalog import CatalogRepositoryProtocol
from tunesnow.repositories.media import MediaRecord, MediaRepositoryProtocol
from tunesnow.schemas.catalog import AudioMetadata
from tunesnow.schemas.enums import ErrorKind, MediaKind, MediaState
from tunesnow.services.media_types import expected_family, family, sniff
from tunesnow.services.metadata_extractor import MutagenExtractor
from tunesnow.services.postprocessing import PostProcessor
from tunesnow.services.transitions import INGEST_NOOP_STATES, TRANSITIONS

logger = logging.getLogger(__name__)

_SPOOL_MAX_MEMORY = 8 * 1024 * 1024
_MAX_DETAIL = 2000

# Ingestion and post-processing tasks that may outlive their request.
_INFLIGHT: Set["asyncio.Task[Any]"] = set()


def _on_task_done(task: "asyncio.Task[Any]") -> None:
    _INFLIGHT.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.warning("Background ingestion task ended with %s: %s", type(exc).__name__, exc)


def spawn_background(coro: Awaitable[Any]) -> "asyncio.Task[Any]":
    """Start `coro` as a tracked task; `drain_inflight` waits for it."""
    task = asyncio.ensure_future(coro)
    _INFLIGHT.add(task)
    task.add_done_callback(_on_task_done)
    return task


async def run_shielded(coro: Awaitable[Any]) -> Any:
    """Await `coro` in a task that survives cancellation of the caller."""
    return await asyncio.shield(spawn_background(coro))


async def drain_inflight(timeout: float = 10.0) -> None:
    """Wait (bounded) for shielded ingestions and post-processing."""
    if not _INFLIGHT:
        return
    done, pending = await asyncio.wait(set(_INFLIGHT), timeout=timeout)
    if pending:
        logger.warning("Shutdown with %d ingestion task(s) still running", len(pending))


class IngestionService:
    """
    Parameters
    ----------
    media_repo : MediaRepositoryProtocol
        Batches + media objects; the only place state is written.
    catalog : CatalogRepositoryProtocol
        Reconciliation target.
    store : ObjectStore
        Where the uploaded bytes live.
    extractor : MutagenExtractor | None
        Anything with `extract(fileobj) -> AudioMetadata`.
    postprocessor : PostProcessor | None
        Best-effort work after READY; None disables it.
    """

    def __init__(
        self,
        *,
        media_repo: MediaRepositoryProtocol,
        catalog: CatalogRepositoryProtocol,
        store: ObjectStore,
        extractor: Optional[MutagenExtractor] = None,
        postprocessor: Optional[PostProcessor] = None,
    ) -> None:
        self._media = media_repo
        self._catalog = catalog
        self._store = store
        self._extractor = extractor or MutagenExtractor()
        self._postprocessor = postprocessor
        self._steps: Dict[MediaState, Callable[[MediaRecord], Awaitable[bool]]] = {
            MediaState.UPLOADING: self._step_confirm_upload,
            MediaState.UPLOADED: self._step_validate,
            MediaState.VALIDATED: self._step_ingest_content,
            MediaState.INGESTED: self._step_finalize,
        }

    # ─────────────────────────────────────────────────────────────
    # 🔁 Public operations
    # ─────────────────────────────────────────────────────────────
    async def signal_uploaded(self, media_id: uuid.UUID) -> MediaRecord:
        """
        Confirm the client's upload landed (`UPLOADING → UPLOADED`).

        Steps
        -----
        1) Load the object (404 when unknown).
        2) Anything past UPLOADING: return as-is (repeat signals are harmless).
        3) `stat` the key; absent or zero bytes → 409 OBJECT_NOT_YET_PRESENT.
        4) CAS to UPLOADED.
        """
        media = await self._load(media_id)
        if media.state != MediaState.UPLOADING:
            return media
        await self._step_confirm_upload(media)
        return await self._load(media_id)

    async def ingest(self, media_id: uuid.UUID) -> MediaRecord:
        """
        Drive the object as far as it can go in this call.

        READY and FAILED objects are returned unchanged. INGESTED objects only
        get the READY check. UPLOADING objects are first confirmed (so the
        explicit `uploaded` signal is optional); UPLOADED / VALIDATED objects
        resume where they stopped.
        """
        media = await self._load(media_id)
        if media.state in INGEST_NOOP_STATES:
            return media

        became_ready = False
        for _ in range(len(TRANSITIONS)):
            step = self._steps.get(media.state)
            if step is None:
                break
            before = media.state
            moved = await step(media)
            media = await self._load(media_id)
            if moved and media.state == MediaState.READY and before == MediaState.INGESTED:
                became_ready = True
            if not moved and media.state == before:
                break

        if became_ready and self._postprocessor is not None and settings.POSTPROCESS_ENABLED:
            spawn_background(self._postprocess(media))
        return media

    async def get(self, media_id: uuid.UUID) -> MediaRecord:
        return await self._load(media_id)

    # ─────────────────────────────────────────────────────────────
    # 🧱 Steps (each returns True iff this call applied a transition)
    # ─────────────────────────────────────────────────────────────
    async def _step_confirm_upload(self, media: MediaRecord) -> bool:
        st = await self._stat(media.storage_key)
        if not st.exists or st.size == 0:
            logger.info(
                "Upload not yet visible",
                extra={"media_object_id": str(media.id), "exists": st.exists},
            )
            raise ObjectNotYetPresent(media_object_id=str(media.id))
        return await self._advance(media, MediaState.UPLOADED)

    async def _step_validate(self, media: MediaRecord) -> bool:
        st = await self._stat(media.storage_key)
        if not st.exists:
            return await self._fail(media, ErrorKind.INTEGRITY_MISMATCH, "object no longer present in storage")
        if st.size != media.declared_size:
            return await self._fail(
                media,
                ErrorKind.INTEGRITY_MISMATCH,
                f"size mismatch: declared {media.declared_size} bytes, stored {st.size}",
            )

        digest = st.sha256 or await self._digest(media, st)
        if digest != media.declared_sha256:
            return await self._fail(
                media,
                ErrorKind.INTEGRITY_MISMATCH,
                f"sha256 mismatch: declared {media.declared_sha256}, stored {digest}",
            )

        head = await self._read_head(media)
        sniffed = sniff(head)
        want = expected_family(media.kind)
        if sniffed is None or family(sniffed) != want:
            return await self._fail(
                media,
                ErrorKind.INTEGRITY_MISMATCH,
                f"content sniffed as {sniffed or 'unknown'}; {media.kind.value} requires {want}/*",
            )
        return await self._advance(
            media, MediaState.VALIDATED, sniffed_mime=sniffed, observed_sha256=digest
        )

    async def _step_ingest_content(self, media: MediaRecord) -> bool:
        if media.kind == MediaKind.AUDIO:
            return await self._ingest_audio(media)
        return await self._ingest_artwork(media)

    async def _step_finalize(self, media: MediaRecord) -> bool:
        missing = await self._missing_playback_fields(media)
        if missing:
            return await self._fail(
                media, ErrorKind.EXTRACTION_FAILED, "missing playback fields: " + ", ".join(missing)
            )
        return await self._advance(media, MediaState.READY)

    # ─────────────────────────────────────────────────────────────
    # 🎵 Audio
    # ─────────────────────────────────────────────────────────────
    async def _ingest_audio(self, media: MediaRecord) -> bool:
        batch = await self._media.get_batch(media.batch_id)
        try:
            metadata = await self._extract(media)
        except ExtractionError as e:
            return await self._fail(media, ErrorKind.EXTRACTION_FAILED, str(e))
        if not metadata.duration_ms:
            # Checked before reconcile so the object never reaches the catalog.
            return await self._fail(media, ErrorKind.EXTRACTION_FAILED, "missing playback fields: duration")

        try:
            track_id = await self._catalog.reconcile(
                metadata,
                media.id,
                uploaded_by=batch.created_by if batch else None,
                is_private=bool(batch and batch.is_private),
            )
        except ReconciliationConflict as e:
            logger.warning(
                "Reconciliation gave up after %d attempts",
                e.attempts,
                extra={"media_object_id": str(media.id), "natural_key": e.natural_key},
            )
            raise TransientStoreFailure(message="Catalog busy; retry ingestion", retry_after=1) from e

        moved = await self._advance(media, MediaState.INGESTED, track_id=track_id)
        try:
            await self._sweep_pending_artwork(media.batch_id, track_id)
        except Exception as e:
            self._log_link_failure(media, e)
        return moved

    async def _extract(self, media: MediaRecord) -> AudioMetadata:
        size = min(media.declared_size, settings.EXTRACT_MAX_BYTES)
        spool = tempfile.SpooledTemporaryFile(max_size=_SPOOL_MAX_MEMORY)
        try:
            try:
                async for chunk in iter_range(
                    self._store,
                    media.storage_key,
                    start=0,
                    end=size - 1,
                    chunk_size=settings.DIGEST_CHUNK_BYTES,
                ):
                    spool.write(chunk)
            except ObjectStoreError as e:
                raise TransientStoreFailure() from e
            return await asyncio.to_thread(self._extractor.extract, spool)
        finally:
            spool.close()

    # ─────────────────────────────────────────────────────────────
    # 🖼️ Artwork
    # ─────────────────────────────────────────────────────────────
    async def _ingest_artwork(self, media: MediaRecord) -> bool:
        # Become INGESTED first, then look for a sibling; the audio side does
        # the reverse (link track, then sweep), so one of the two always sees
        # the other.
        moved = await self._advance(media, MediaState.INGESTED)
        if moved:
            try:
                await self._link_to_sibling(media)
            except Exception as e:
                self._log_link_failure(media, e)
        return moved

    async def _link_to_sibling(self, artwork: MediaRecord) -> None:
        for sibling in await self._media.list_batch_media(artwork.batch_id):
            if sibling.kind == MediaKind.AUDIO and sibling.track_id and sibling.state != MediaState.FAILED:
                await self._link_artwork(artwork, sibling.track_id)
                return
        logger.info("Artwork pending a reconciled sibling", extra={"media_object_id": str(artwork.id)})

    @staticmethod
    def _log_link_failure(media: MediaRecord, exc: Exception) -> None:
        logger.warning(
            "Artwork linking failed (%s): %s",
            type(exc).__name__,
            exc,
            extra={"media_object_id": str(media.id), "batch_id": str(media.batch_id)},
        )

    async def _sweep_pending_artwork(self, batch_id: uuid.UUID, track_id: uuid.UUID) -> None:
        for m in await self._media.list_batch_media(batch_id):
            if (
                m.kind == MediaKind.ARTWORK
                and m.state in (MediaState.INGESTED, MediaState.READY)
                and not m.artwork_linked
            ):
                await self._link_artwork(m, track_id)

    async def _link_artwork(self, artwork: MediaRecord, track_id: uuid.UUID) -> None:
        album_id = await self._catalog.album_for_track(track_id)
        if album_id is not None:
            if await self._media.link_artwork(artwork.id, album_id=album_id):
                await self._catalog.attach_artwork(album_id, artwork.storage_key)
                logger.info(
                    "Artwork attached to album",
                    extra={"media_object_id": str(artwork.id), "album_id": str(album_id)},
                )
            return
        track = await self._catalog.get_track(track_id)
        if track is None:
            return
        if await self._media.link_artwork(artwork.id, artist_id=track.artist_id):
            await self._catalog.attach_artist_artwork(track.artist_id, artwork.storage_key)
            logger.info(
                "Artwork attached to artist",
                extra={"media_object_id": str(artwork.id), "artist_id": str(track.artist_id)},
            )

    # ─────────────────────────────────────────────────────────────
    # 🧰 Helpers
    # ─────────────────────────────────────────────────────────────
    async def _load(self, media_id: uuid.UUID) -> MediaRecord:
        media = await self._media.get_media(media_id)
        if media is None:
            raise MediaObjectNotFound(media_object_id=str(media_id))
        return media

    async def _stat(self, key: str) -> ObjectStat:
        try:
            return await self._store.stat(key)
        except ObjectStoreError as e:
            logger.warning("Object store stat failed: %s", e)
            raise TransientStoreFailure() from e

    async def _digest(self, media: MediaRecord, st: ObjectStat) -> str:
        try:
            return await sha256_of(self._store, media.storage_key, st.size)
        except ObjectStoreError as e:
            raise TransientStoreFailure() from e

    async def _read_head(self, media: MediaRecord) -> bytes:
        try:
            rng = await self._store.fetch_range(
                media.storage_key, 0, min(settings.SNIFF_BYTES, media.declared_size)
            )
        except ObjectStoreError as e:
            raise TransientStoreFailure() from e
        return rng.data

    async def _missing_playback_fields(self, media: MediaRecord) -> List[str]:
        missing: List[str] = []
        if not media.sniffed_mime:
            missing.append("mime")
        if media.kind == MediaKind.AUDIO:
            track = await self._catalog.get_track(media.track_id) if media.track_id else None
            if track is None:
                missing.append("track")
        return missing

    async def _advance(self, media: MediaRecord, target: MediaState, **fields: Any) -> bool:
        ok = await self._media.transition(media.id, expected=media.state, target=target, **fields)
        extra = {
            "media_object_id": str(media.id),
            "batch_id": str(media.batch_id),
            "from_state": media.state.value,
            "to_state": target.value,
        }
        if ok:
            metrics.inc_transition(target.value)
            logger.info("Media transition applied", extra=extra)
        else:
            metrics.inc_transition_miss(target.value)
            logger.info("Media transition skipped (state moved on)", extra=extra)
        return ok

    async def _fail(self, media: MediaRecord, kind: ErrorKind, detail: str) -> bool:
        ok = await self._advance(
            media, MediaState.FAILED, error_kind=kind, error_detail=detail[:_MAX_DETAIL]
        )
        if ok:
            metrics.inc_failure(kind.value)
            logger.warning(
                "Media object failed: %s",
                detail,
                extra={"media_object_id": str(media.id), "error_kind": kind.value},
            )
        return ok

    async def _postprocess(self, media: MediaRecord) -> None:
        try:
            await self._postprocessor.run(media)
        except Exception as e:
            step = "waveform" if media.kind == MediaKind.AUDIO else "thumbnail"
            metrics.inc_postprocess_failure(step)
            logger.warning(
                "Post-processing failed (%s): %s",
                type(e).__name__,
                e,
                extra={"media_object_id": str(media.id), "step": step},
            )


__all__ = ["IngestionService", "run_shielded", "spawn_background", "drain_inflight"]

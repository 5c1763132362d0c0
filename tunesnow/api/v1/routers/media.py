from __future__ import annotations

"""
TunesNow • Media Objects
========================

Route Index
-----------
- POST /media/{media_id}/uploaded  → Confirm the upload landed (UPLOADING → UPLOADED)
- POST /media/{media_id}/ingest    → Drive validation / extraction / reconciliation
- GET  /media/{media_id}           → Current state, last error and catalog links

Retry semantics
---------------
- 409 `OBJECT_NOT_YET_PRESENT` + `Retry-After`: upload not visible yet; state unchanged.
- 503 `TRANSIENT_STORE_ERROR` + `Retry-After`: store/catalog unavailable; state unchanged.
- Terminal problems are not HTTP errors: the object is FAILED and the body
  says why (`error_kind`, `error_detail`).
"""

# ── [Imports] ────────────────────────────────────────────────────────────────
import logging
from uuid import UUID

from fastapi import APIRouter, Depends, status

from tunesnow.api.http_utils import json_no_store
from tunesnow.core.security import Principal, get_current_principal
from tunesnow.dependencies.pipeline import get_batch_coordinator
from tunesnow.schemas.media import MediaStatusOut
from tunesnow.services.batch_coordinator import BatchCoordinator

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Media Objects"])
__all__ = ["router"]


@router.post(
    "/media/{media_id}/uploaded",
    status_code=status.HTTP_202_ACCEPTED,
    summary="Signal that the upload completed",
)
async def signal_uploaded(
    media_id: UUID,
    principal: Principal = Depends(get_current_principal),
    coordinator: BatchCoordinator = Depends(get_batch_coordinator),
):
    """
    Steps
    -----
    1) Ownership check via the owning batch.
    2) `stat` the granted key; nothing there (or zero bytes) → 409, retry later.
    3) Move to UPLOADED. Repeating the call later is a no-op.
    """
    media = await coordinator.signal_uploaded(principal, media_id)
    return json_no_store(MediaStatusOut.from_record(media), status.HTTP_202_ACCEPTED)


@router.post("/media/{media_id}/ingest", summary="Trigger ingestion")
async def trigger_ingest(
    media_id: UUID,
    principal: Principal = Depends(get_current_principal),
    coordinator: BatchCoordinator = Depends(get_batch_coordinator),
):
    """
    Run the state machine as far as it goes and return the resulting state.

    INGESTED / READY / FAILED objects are returned unchanged. The work keeps
    running if the client disconnects; poll `GET /media/{id}` afterwards.
    """
    media = await coordinator.trigger_ingest(principal, media_id)
    return json_no_store(MediaStatusOut.from_record(media))


@router.get("/media/{media_id}", summary="Media object status")
async def get_media(
    media_id: UUID,
    principal: Principal = Depends(get_current_principal),
    coordinator: BatchCoordinator = Depends(get_batch_coordinator),
):
    media = await coordinator.get_media_status(principal, media_id)
    return json_no_store(MediaStatusOut.from_record(media))

from __future__ import annotations

"""
TunesNow • Upload Batches
=========================

Route Index
-----------
- POST /batches                    → Open a batch owned by the caller
- GET  /batches/{batch_id}         → Aggregate status + members
- POST /batches/{batch_id}/media   → Declare one object; returns a signed upload grant

Security
--------
- Bearer JWT required (`get_current_principal`); only the creator (or an
  admin) can read or extend a batch.
- All responses are **no-store** (they carry signed URLs / live state).
"""

# ── [Imports] ────────────────────────────────────────────────────────────────
import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Body, Depends, status

from tunesnow.api.http_utils import json_no_store
from tunesnow.core.security import Principal, get_current_principal
from tunesnow.dependencies.pipeline import get_batch_coordinator
from tunesnow.schemas.enums import BatchStatus
from tunesnow.schemas.media import BatchCreateIn, BatchOut, MediaSlotIn, MediaSlotOut, UploadGrantOut
from tunesnow.services.batch_coordinator import BatchCoordinator

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Upload Batches"])
__all__ = ["router"]


# ─────────────────────────────────────────────────────────────────────────────
# 📦 Create
# ─────────────────────────────────────────────────────────────────────────────
@router.post("/batches", status_code=status.HTTP_201_CREATED, summary="Create an upload batch")
async def create_batch(
    payload: Optional[BatchCreateIn] = Body(default=None),
    principal: Principal = Depends(get_current_principal),
    coordinator: BatchCoordinator = Depends(get_batch_coordinator),
):
    """
    Open an empty batch owned by the caller.

    Steps
    -----
    1) Authenticate (401 otherwise).
    2) Persist the batch; its status starts as IN_PROGRESS.
    """
    batch = await coordinator.create_batch(principal, private=bool(payload and payload.private))
    return json_no_store(
        BatchOut.from_records(batch, BatchStatus.IN_PROGRESS, []),
        status.HTTP_201_CREATED,
    )


# ─────────────────────────────────────────────────────────────────────────────
# 🔎 Status
# ─────────────────────────────────────────────────────────────────────────────
@router.get("/batches/{batch_id}", summary="Batch status and members")
async def get_batch(
    batch_id: UUID,
    principal: Principal = Depends(get_current_principal),
    coordinator: BatchCoordinator = Depends(get_batch_coordinator),
):
    """Aggregate is READY iff all members are READY, FAILED if any failed, else IN_PROGRESS."""
    view = await coordinator.get_batch_status(principal, batch_id)
    return json_no_store(BatchOut.from_records(view.batch, view.status, view.members))


# ─────────────────────────────────────────────────────────────────────────────
# 🎟️ Slots
# ─────────────────────────────────────────────────────────────────────────────
@router.post(
    "/batches/{batch_id}/media",
    status_code=status.HTTP_201_CREATED,
    summary="Request an upload slot (signed PUT)",
)
async def request_media_slot(
    batch_id: UUID,
    payload: MediaSlotIn,
    principal: Principal = Depends(get_current_principal),
    coordinator: BatchCoordinator = Depends(get_batch_coordinator),
):
    """
    Declare one object and receive a grant bound to exactly one key.

    Steps
    -----
    1) Ownership check (404 unknown batch, 403 not the creator).
    2) Validate size / digest / mime for the kind (422).
    3) Sign the grant, then record the media object in UPLOADING.

    The client must PUT the body to `upload.url` with `upload.headers`
    before `upload.expires_at`, then call `POST /media/{id}/uploaded`.
    """
    slot = await coordinator.request_media_slot(
        principal,
        batch_id,
        kind=payload.kind,
        declared_size=payload.size_bytes,
        declared_sha256=payload.sha256,
        mime=payload.content_type,
    )
    body = MediaSlotOut(
        media_object_id=slot.media.id,
        state=slot.media.state,
        upload=UploadGrantOut(
            url=slot.grant.url,
            method=slot.grant.method,
            headers=slot.grant.headers,
            expires_at=slot.grant.expires_at,
        ),
    )
    return json_no_store(body, status.HTTP_201_CREATED)

from __future__ import annotations

"""
TunesNow • Upload Sink (memory backend)
=======================================

Route Index
-----------
- PUT /storage/upload?key&ct&len&sha&exp&sig → store the body under `key`

Only mounted behaviour when `STORAGE_BACKEND=memory` (local development and
tests); with S3 configured clients upload straight to the bucket and this
route answers 404.

The query string is the grant: the HMAC covers key, content type, length,
digest and expiry, so a grant cannot be reused for another key and a body
that differs from the declaration is refused.
"""

# ── [Imports] ────────────────────────────────────────────────────────────────
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from starlette.responses import Response

from tunesnow.core.config import settings
from tunesnow.core.storage import ObjectStore, get_object_store
from tunesnow.utils.memory_store import MemoryObjectStore

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Storage"])
__all__ = ["router"]


@router.put("/storage/upload", status_code=status.HTTP_200_OK, summary="Signed upload sink (memory backend)")
async def upload_object(
    request: Request,
    key: str = Query(..., min_length=1, max_length=1024),
    ct: str = Query(..., min_length=3, max_length=127),
    len_: int = Query(..., alias="len", ge=1),
    sha: str = Query(..., min_length=64, max_length=64),
    exp: int = Query(...),
    sig: str = Query(..., min_length=64, max_length=64),
    store: ObjectStore = Depends(get_object_store),
) -> Response:
    """
    Steps
    -----
    1) Reject unless the active store is the in-memory backend (404).
    2) Read the body (bounded by the signed length + 1).
    3) Verify signature, expiry, length and digest; store on success.
    """
    if not isinstance(store, MemoryObjectStore):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not Found")
    if len_ > settings.MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail="Upload too large")

    body = bytearray()
    async for chunk in request.stream():
        body.extend(chunk)
        if len(body) > len_:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Body length does not match the grant")

    store.accept_upload(
        key=key,
        content_type=ct,
        content_length=len_,
        sha256_hex=sha,
        exp=exp,
        sig=sig,
        body=bytes(body),
    )
    logger.info("Upload stored", extra={"storage_key": key, "size": len(body)})
    return Response(status_code=status.HTTP_200_OK)

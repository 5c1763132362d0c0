from __future__ import annotations

"""
TunesNow • Streaming
====================

Route Index
-----------
- GET  /stream/{track_id}  → 200 full body, 206 single range, 416 out of bounds
- HEAD /stream/{track_id}  → same status and headers, no body

Wire contract
-------------
- Every response (errors included) carries `Accept-Ranges: bytes`.
- 206 carries `Content-Range: bytes s-e/total`; `Content-Length` is the range length.
- 416 carries `Content-Range: bytes */total`.
- 404 `ASSET_NOT_READY` for unknown tracks and tracks without a READY audio object.
- 403 `NOT_ENTITLED` is decided before any object-store read.
"""

# ── [Imports] ────────────────────────────────────────────────────────────────
import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Request
from starlette.responses import Response, StreamingResponse

from tunesnow.core.security import Principal, get_current_principal
from tunesnow.dependencies.pipeline import get_streaming_service
from tunesnow.services.streaming_service import StreamingService

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Streaming"])
__all__ = ["router"]


@router.api_route("/stream/{track_id}", methods=["GET", "HEAD"], summary="Stream a track")
async def stream_track(
    track_id: UUID,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    service: StreamingService = Depends(get_streaming_service),
) -> Response:
    """
    Steps
    -----
    1) Resolve track → READY audio object (404 otherwise).
    2) Entitlement (403 otherwise).
    3) Parse `Range`; malformed or multi-range headers fall back to the full body.
    4) GET streams lazily in bounded chunks; HEAD returns headers only.
    """
    plan = await service.serve(track_id, principal, request.headers.get("range"))
    headers = dict(plan.headers)
    headers["Cache-Control"] = "private, no-store"

    if request.method == "HEAD":
        return Response(status_code=plan.status_code, headers=headers, media_type=plan.media_type)
    return StreamingResponse(
        plan.iter_body(),
        status_code=plan.status_code,
        headers=headers,
        media_type=plan.media_type,
    )

"""
🧭✨ TunesNow • API v1 Router Aggregator
=======================================

Exports both the **combined `router`** (ready to include) and each **individual
sub-router** so callers can mount them as needed.

Quick usage
-----------
    from tunesnow.api.v1.routers import router as v1_router
    app.include_router(v1_router, prefix="/api/v1")

Or with the factory:

    from tunesnow.api.v1.routers import build_v1_router
    app.include_router(build_v1_router(), prefix="/api/v1")

Security notes
--------------
- 🔐 This layer is a pure aggregator; **auth lives in child routers**.
- 🧊 Cache headers set by child routers (no-store) are preserved here.
"""

from fastapi import APIRouter

from .batches import router as batches_router
from .media import router as media_router
from .storage import router as storage_router
from .stream import router as stream_router


# ─────────────────────────────────────────────────────────────────────────────
# 🧩 Factory: build a combined v1 router with stable path layout
# ─────────────────────────────────────────────────────────────────────────────
def build_v1_router() -> APIRouter:
    """
    Compose the API v1 surface into a single `APIRouter`.

    Returns
    -------
    fastapi.APIRouter
        A router that includes:
          • Upload batches (`/batches`)
          • Media objects (`/media`)
          • Streaming (`/stream`)
          • Memory-backend upload sink (`/storage/upload`)
    """
    r = APIRouter()
    r.include_router(batches_router)
    r.include_router(media_router)
    r.include_router(stream_router)
    r.include_router(storage_router)
    return r


router = build_v1_router()


__all__ = [
    # Combined
    "router",
    "build_v1_router",
    # Individuals (for bespoke mounts/testing)
    "batches_router",
    "media_router",
    "stream_router",
    "storage_router",
]

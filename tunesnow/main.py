# tunesnow/main.py
from __future__ import annotations

"""
# TunesNow API — Application Entrypoint (FastAPI)

ASGI application factory and lifecycle for the TunesNow media ingestion +
streaming backend.

## Design Goals
- Deterministic, testable **app factory** (`create_app`) with explicit lifespan.
- Explicit **middleware order**:
  1) request id → 2) CORS → 3) gzip (JSON routes only; never `/stream`).
- Centralized exception handling: `AppException` → problem+json with
  `error_kind` / `retryable`; validation → 422; anything else → generic 500.

## Probes
- `/healthz` — liveness (process up).
- `/readyz` — readiness (DB `SELECT 1` + object store ping).
- `/metrics` — Prometheus exposition.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator
import logging
import os

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import JSONResponse, Response

# -- Logging bootstrap (Loguru + stdlib intercept) ----------------------------
from tunesnow.core import logger as _logsetup  # noqa: F401

from tunesnow.api.v1.routers import router as api_v1_router
from tunesnow.core.config import settings
from tunesnow.core.exception_handlers import (
    app_exception_handler,
    global_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)
from tunesnow.core.exceptions import AppException
from tunesnow.core.storage import get_object_store
from tunesnow.db.session import async_engine, db_healthcheck
from tunesnow.middleware.compression import SelectiveGZipMiddleware
from tunesnow.middleware.request_id import RequestIDMiddleware
from tunesnow.services.ingestion_service import drain_inflight

logger = logging.getLogger("tunesnow")


# ─────────────────────────────────────────────────────────────────────────────
# 🔄 Lifespan: startup & shutdown
# ─────────────────────────────────────────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Application lifecycle manager.

    Startup:
        - Log a startup banner (storage backend, env).

    Shutdown:
        - Give shielded ingestion tasks a bounded window to finish.
        - Dispose the DB async engine.
    """
    logger.info("✅ TunesNow API starting up (env=%s, storage=%s)", settings.ENV, settings.STORAGE_BACKEND)
    try:
        yield
    finally:
        await drain_inflight(timeout=10.0)
        try:
            await async_engine.dispose()
            logger.info("🛑 Database engine disposed")
        except Exception:
            logger.exception("Error disposing DB engine")
        logger.info("🛑 TunesNow API shutting down")


# ─────────────────────────────────────────────────────────────────────────────
# 🏗️ App factory
# ─────────────────────────────────────────────────────────────────────────────
def create_app() -> FastAPI:
    """
    Build and configure the FastAPI app instance.

    Returns:
        FastAPI: fully wired application with middleware, exception handlers,
        routers, and health/readiness endpoints.
    """
    docs_url = "/docs" if settings.ENABLE_DOCS else None
    redoc_url = "/redoc" if settings.ENABLE_DOCS else None
    openapi_url = "/openapi.json" if settings.ENABLE_DOCS else None

    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.VERSION,
        docs_url=docs_url,
        redoc_url=redoc_url,
        openapi_url=openapi_url,
        lifespan=lifespan,
    )

    api_prefix = settings.API_V1_STR.rstrip("/")

    # ── Middlewares (order matters; last added runs first) ──────────────────
    # 3) GZip for JSON; streaming responses are passed through untouched.
    app.add_middleware(
        SelectiveGZipMiddleware,
        minimum_size=1024,
        exclude_prefixes=(f"{api_prefix}/stream/",),
    )

    # 2) CORS (range requests from web players need these headers exposed)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[str(o).rstrip("/") for o in settings.BACKEND_CORS_ORIGINS],
        allow_credentials=True,
        allow_methods=["GET", "HEAD", "POST", "PUT", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "Range", "X-Request-ID"],
        expose_headers=["Accept-Ranges", "Content-Range", "Content-Length", "Retry-After", "X-Request-ID"],
    )

    # 1) Correlation ID (outermost)
    app.add_middleware(RequestIDMiddleware)

    # ── Exception handlers ──────────────────────────────────────────────────
    app.add_exception_handler(AppException, app_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(HTTPException, http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, global_exception_handler)  # type: ignore[arg-type]

    # ── Routers (versioned API) ─────────────────────────────────────────────
    app.include_router(api_v1_router, prefix=api_prefix)

    # ── Meta endpoints ──────────────────────────────────────────────────────
    @app.get("/healthz", tags=["meta"])
    async def healthz() -> dict[str, bool]:
        """
        Liveness probe.

        Returns:
            {"ok": True} when the process is responsive. No external checks.
        """
        return {"ok": True}

    @app.get("/readyz", tags=["meta"])
    async def readyz() -> JSONResponse:
        """
        Readiness probe (DB + object store).

        Returns:
            dict with per-dependency booleans and aggregated `ready` flag;
            503 when not ready.
        """
        db_ok = await db_healthcheck()
        store = app.dependency_overrides.get(get_object_store, get_object_store)()
        store_ok = await store.ping()
        ready = bool(db_ok and store_ok)
        return JSONResponse(
            {"ready": ready, "checks": {"db": db_ok, "storage": store_ok}},
            status_code=200 if ready else 503,
        )

    @app.get("/metrics", include_in_schema=False)
    async def metrics() -> Response:
        """Prometheus text exposition (default registry)."""
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.get("/", include_in_schema=False)
    async def root() -> JSONResponse:
        """Minimal root that points to docs (when enabled)."""
        return JSONResponse(
            {"name": settings.PROJECT_NAME, "docs": app.docs_url or "", "version": settings.VERSION}
        )

    return app


# ─────────────────────────────────────────────────────────────────────────────
# 🚀 Module-level ASGI app for Uvicorn/Gunicorn
# ─────────────────────────────────────────────────────────────────────────────
app = create_app()
__all__ = ["create_app", "app"]


# Local dev runner (prefer: `uvicorn tunesnow.main:app --reload`)
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "tunesnow.main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
        reload=os.getenv("RELOAD", "1") == "1",
        workers=int(os.getenv("WORKERS", "1")),
        log_level=os.getenv("LOG_LEVEL", "info"),
    )

from __future__ import annotations

"""
TunesNow · HTTP Utilities
=========================

Shared helpers for API routers:

- No-store JSON helper (status payloads carry signed URLs and live state)
"""

from typing import Any, Optional

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from starlette.responses import Response

__all__ = ["json_no_store"]


# ─────────────────────────────────────────────────────────────────────────────
# 🧳 No-store JSON helper
# ─────────────────────────────────────────────────────────────────────────────

def json_no_store(
    payload: Any,
    status_code: int = 200,
    *,
    response: Optional[Response] = None,
) -> JSONResponse:
    """
    Return a JSON response with strict `no-store` caching.

    Pydantic models are dumped in JSON mode (UUIDs and datetimes become
    strings). Propagates `Location` from an upstream Response if supplied.
    """
    if hasattr(payload, "model_dump"):
        content = payload.model_dump(mode="json")
    else:
        content = jsonable_encoder(payload)
    resp = JSONResponse(content=content, status_code=status_code)
    resp.headers["Cache-Control"] = "no-store"
    resp.headers["Pragma"] = "no-cache"
    resp.headers["Expires"] = "0"

    if response is not None and "Location" in response.headers:
        resp.headers["Location"] = response.headers["Location"]
    return resp

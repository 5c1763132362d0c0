# tunesnow/middleware/request_id.py
from __future__ import annotations

"""
# TunesNow — Request ID Middleware (pure ASGI)

- Reuses a client-supplied `X-Request-ID` / `X-Correlation-ID` when it is a valid UUIDv4.
- Generates a UUIDv4 otherwise.
- Exposes it as `request.state.request_id` and echoes it on the response.
- Binds `request_id` into the **loguru** context for the whole request, which
  also covers ingestion work started from the request.

Pure ASGI: `/stream` responses flow chunk by chunk through this middleware.

## Env / Config
- `REQUEST_ID_HEADER_NAME` (default: `X-Request-ID`)
- `REQUEST_ID_TRUST_CLIENT_IDS` ("true"/"false"; default: "true")
"""

import os
import uuid

from loguru import logger
from starlette.datastructures import Headers
from starlette.types import ASGIApp, Message, Receive, Scope, Send

HEADER_NAME = os.getenv("REQUEST_ID_HEADER_NAME", "X-Request-ID")
TRUST_CLIENT_IDS = os.getenv("REQUEST_ID_TRUST_CLIENT_IDS", "true").lower() == "true"
_MAX_ID_LENGTH = 64


class RequestIDMiddleware:
    """Attach a per-request correlation id to state, logs and response headers."""

    def __init__(self, app: ASGIApp, header_name: str = HEADER_NAME) -> None:
        self.app = app
        self.header_name = header_name
        self._header_bytes = header_name.lower().encode("latin-1")

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope.get("type") != "http":
            return await self.app(scope, receive, send)

        req_id = self._choose_request_id(Headers(scope=scope))
        scope.setdefault("state", {})["request_id"] = req_id

        async def _send_wrapper(message: Message) -> None:
            if message.get("type") == "http.response.start":
                raw = [(k, v) for (k, v) in message.get("headers", []) if k.lower() != self._header_bytes]
                raw.append((self.header_name.encode("latin-1"), req_id.encode("latin-1")))
                message["headers"] = raw
            await send(message)

        with logger.contextualize(request_id=req_id):
            try:
                await self.app(scope, receive, _send_wrapper)
            except Exception:
                logger.exception("[RequestID] Unhandled exception during request processing")
                raise

    def _choose_request_id(self, headers: Headers) -> str:
        if TRUST_CLIENT_IDS:
            incoming = (headers.get(self.header_name) or headers.get("X-Correlation-ID") or "").strip()
            if 0 < len(incoming) <= _MAX_ID_LENGTH:
                try:
                    val = uuid.UUID(incoming)
                except ValueError:
                    val = None
                if val is not None and val.version == 4:
                    return str(val)
        return str(uuid.uuid4())


def get_request_id(request) -> str:
    """Current request id from `request.state`, or "" when the middleware is absent."""
    return getattr(getattr(request, "state", object()), "request_id", "") or ""


__all__ = ["RequestIDMiddleware", "get_request_id"]

# tunesnow/core/exceptions.py
from __future__ import annotations

"""
TunesNow — Application Exceptions
=================================
A small, consistent layer on top of FastAPI/Starlette's `HTTPException` that
lets us attach structured metadata and integrate cleanly with the JSON error
shape rendered by `tunesnow.core.exception_handlers`.

Key ideas
---------
- One base `AppException` carrying `code`, `error_kind`, `request_id`, `details`, `extra`.
- Pipeline/streaming errors inherit from it and set the status + error kind,
  so a route only has to let them propagate.
- Storage and reconciliation failures below the HTTP layer use plain
  exceptions (`ObjectStoreError`, `ReconciliationConflict`) and are mapped
  by the services that catch them.

Usage
-----
    raise ObjectNotYetPresent(media_object_id=str(mo.id))

    # Or create a typed app error directly
    raise AppException(status_code=409, message="Batch is closed", code=40901)
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status

from tunesnow.schemas.enums import ErrorKind

__all__ = [
    "AppException",
    "ObjectNotYetPresent",
    "TransientStoreFailure",
    "NotEntitled",
    "AssetNotReady",
    "RangeNotSatisfiable",
    "MediaObjectNotFound",
    "BatchNotFound",
    "BatchAccessDenied",
    "InvalidTokenException",
    "ObjectStoreError",
    "TransientStoreError",
    "ObjectNotFoundError",
    "InvalidStorageKey",
    "ExtractionError",
    "ReconciliationConflict",
]


# ──────────────────────────────────────────────────────────────
# 📦 Core: AppException
# ──────────────────────────────────────────────────────────────
class AppException(HTTPException):
    """Base application-level exception with optional metadata.

    Attributes
    -----------
    status_code : int
        HTTP status code (e.g., 400/401/403/404/409/416/503).
    message : str
        Human-readable error message (serialized as `detail` as well).
    code : int
        Optional internal/typed error code. Defaults to `status_code`.
    error_kind : ErrorKind | None
        Stable machine-readable kind shared with persisted media errors.
    retryable : bool
        Whether the caller may repeat the same request later.
    request_id : str | None
        Optional request correlation id.
    details : dict | list | str | None
        Machine-readable details (ids, declared vs observed values).
    extra : dict | None
        Additional non-sensitive metadata to surface to clients.
    headers : dict | None
        Optional headers (e.g., `{"Retry-After": "2"}`).
    """

    def __init__(
        self,
        *,
        status_code: int,
        message: str,
        code: Optional[int] = None,
        error_kind: Optional[ErrorKind] = None,
        retryable: bool = False,
        request_id: Optional[str] = None,
        details: Optional[Any] = None,
        extra: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        super().__init__(status_code=status_code, detail=message, headers=headers)
        self.code: int = int(code or status_code)
        self.message: str = message
        self.error_kind: Optional[ErrorKind] = error_kind
        self.retryable: bool = retryable
        self.request_id: Optional[str] = request_id
        self.details: Optional[Any] = details
        self.extra: Dict[str, Any] = extra or {}

    # ── [Helper] Canonical body used by handlers ───────────────────────────
    def to_problem(self, *, fallback_request_id: Optional[str] = None) -> Dict[str, Any]:
        """Return a dict matching our problem-like JSON shape."""
        body: Dict[str, Any] = {
            "error": True,
            "message": self.message,
            "code": self.code,
            "retryable": self.retryable,
            "request_id": self.request_id or fallback_request_id or "N/A",
        }
        if self.error_kind is not None:
            body["error_kind"] = self.error_kind.value
        if self.details is not None:
            body["details"] = self.details
        extra_sanitized = dict(self.extra) if self.extra else {}
        for k in ("token", "authorization", "signature", "secret"):
            extra_sanitized.pop(k, None)
        body.update(extra_sanitized)
        return body


# ──────────────────────────────────────────────────────────────
# 🎚️ Ingestion (retryable, state unchanged)
# ──────────────────────────────────────────────────────────────
class ObjectNotYetPresent(AppException):
    """The store has no (or only an empty) object at the granted key yet."""

    def __init__(self, *, media_object_id: str, retry_after: int = 2) -> None:
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            message="Uploaded object not yet visible in storage",
            error_kind=ErrorKind.OBJECT_NOT_YET_PRESENT,
            retryable=True,
            details={"media_object_id": media_object_id},
            headers={"Retry-After": str(retry_after)},
        )


class TransientStoreFailure(AppException):
    """The object store (or catalog store) could not be reached; retry later."""

    def __init__(self, *, message: str = "Storage temporarily unavailable", retry_after: int = 5) -> None:
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            message=message,
            error_kind=ErrorKind.TRANSIENT_STORE_ERROR,
            retryable=True,
            headers={"Retry-After": str(retry_after)},
        )


# ──────────────────────────────────────────────────────────────
# 🎧 Streaming
# ──────────────────────────────────────────────────────────────
class NotEntitled(AppException):
    def __init__(self, *, track_id: str, headers: Optional[Dict[str, str]] = None) -> None:
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            message="Not entitled to stream this track",
            error_kind=ErrorKind.NOT_ENTITLED,
            details={"track_id": track_id},
            headers=headers,
        )


class AssetNotReady(AppException):
    """Unknown track, or no READY audio object backs it. Both map to 404."""

    def __init__(self, *, track_id: str, headers: Optional[Dict[str, str]] = None) -> None:
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            message="Track not found or not ready",
            error_kind=ErrorKind.ASSET_NOT_READY,
            details={"track_id": track_id},
            headers=headers,
        )


class RangeNotSatisfiable(AppException):
    """`Range` lies entirely past the end of the object (416)."""

    def __init__(self, *, total_size: int) -> None:
        super().__init__(
            status_code=status.HTTP_416_REQUESTED_RANGE_NOT_SATISFIABLE,
            message="Requested range not satisfiable",
            details={"total_size": total_size},
            headers={"Content-Range": f"bytes */{total_size}", "Accept-Ranges": "bytes"},
        )


# ──────────────────────────────────────────────────────────────
# 🗂️ Lookups / ownership
# ──────────────────────────────────────────────────────────────
class MediaObjectNotFound(AppException):
    def __init__(self, *, media_object_id: str) -> None:
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            message="Media object not found",
            details={"media_object_id": media_object_id},
        )


class BatchNotFound(AppException):
    def __init__(self, *, batch_id: str) -> None:
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            message="Upload batch not found",
            details={"batch_id": batch_id},
        )


class BatchAccessDenied(AppException):
    def __init__(self, *, batch_id: str) -> None:
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            message="Only the batch creator may modify this batch",
            details={"batch_id": batch_id},
        )


# ──────────────────────────────────────────────────────────────
# 🔑 Auth/Token exceptions
# ──────────────────────────────────────────────────────────────
class InvalidTokenException(AppException):
    """Raised for invalid or expired tokens (401 by default)."""

    def __init__(
        self,
        *,
        detail: str = "Invalid or expired token",
        status_code: int = status.HTTP_401_UNAUTHORIZED,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        super().__init__(
            status_code=status_code,
            message=detail,
            code=status_code,
            headers=headers or {"WWW-Authenticate": "Bearer"},
        )


# ──────────────────────────────────────────────────────────────
# 🧊 Storage adapter errors (non-HTTP)
# ──────────────────────────────────────────────────────────────
class ObjectStoreError(RuntimeError):
    """Raised when a storage operation fails (network, auth, policy, etc.)."""


class TransientStoreError(ObjectStoreError):
    """Store unreachable or throttled; the operation may succeed if retried."""


class ObjectNotFoundError(ObjectStoreError):
    """No object exists at the requested key."""


class InvalidStorageKey(ObjectStoreError):
    """Key failed normalization (empty, traversal, forbidden characters)."""


# ──────────────────────────────────────────────────────────────
# 🏷️ Extraction / reconciliation (non-HTTP)
# ──────────────────────────────────────────────────────────────
class ExtractionError(ValueError):
    """The audio container could not be parsed; message carries the diagnostic."""


class ReconciliationConflict(RuntimeError):
    """Unique-key collisions persisted past the bounded retry budget."""

    def __init__(self, natural_key: str, attempts: int) -> None:
        super().__init__(f"reconcile conflict persisted after {attempts} attempts")
        self.natural_key = natural_key
        self.attempts = attempts

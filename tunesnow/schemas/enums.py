from __future__ import annotations

"""
Central enum definitions used across TunesNow.

Design notes
------------
• All enums subclass `str, PyEnum` for JSON-friendly serialization.
• VALUE STRINGS are **stable** once deployed (persisted in `media_object`).
• Grouped by domain; keep `__all__` in sync when adding new enums.
"""

from enum import Enum as PyEnum


# ──────────────────────────────────────────────────────────────
# Ingestion
# ──────────────────────────────────────────────────────────────
class MediaKind(str, PyEnum):
    """What a media object is expected to contain."""
    AUDIO = "audio"
    ARTWORK = "artwork"


class MediaState(str, PyEnum):
    """Lifecycle of a single uploaded object. READY and FAILED are terminal."""
    UPLOADING = "UPLOADING"
    UPLOADED = "UPLOADED"
    VALIDATED = "VALIDATED"
    INGESTED = "INGESTED"
    READY = "READY"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (MediaState.READY, MediaState.FAILED)


class ErrorKind(str, PyEnum):
    """Failure classes; only INTEGRITY_MISMATCH and EXTRACTION_FAILED are persisted."""
    TRANSIENT_STORE_ERROR = "TRANSIENT_STORE_ERROR"
    OBJECT_NOT_YET_PRESENT = "OBJECT_NOT_YET_PRESENT"
    INTEGRITY_MISMATCH = "INTEGRITY_MISMATCH"
    EXTRACTION_FAILED = "EXTRACTION_FAILED"
    RECONCILIATION_CONFLICT = "RECONCILIATION_CONFLICT"
    NOT_ENTITLED = "NOT_ENTITLED"
    ASSET_NOT_READY = "ASSET_NOT_READY"


class BatchStatus(str, PyEnum):
    """Aggregate batch status; derived on read, never stored."""
    IN_PROGRESS = "IN_PROGRESS"
    READY = "READY"
    FAILED = "FAILED"


__all__ = ["MediaKind", "MediaState", "ErrorKind", "BatchStatus"]

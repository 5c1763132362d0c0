from __future__ import annotations

"""
🗂️ TunesNow — MediaObject (one uploaded binary and its ingestion lifecycle)
=========================================================================

Created when an upload grant is issued and mutated only by the ingestion
state machine. Rows are never deleted; retention of FAILED objects is an
operational concern handled outside the service.

Design highlights
-----------------
• **Declared vs observed**: the client's claims (`declared_*`) are kept next to
  what validation actually saw (`sniffed_mime`, `observed_sha256`).
• **Compare-and-swap** transitions: writers update with
  `WHERE id = :id AND state = :expected`, so concurrent drivers of the same
  object cannot both win a step.
• **Unique `storage_key`**: one object per granted key.
• `track_id` (audio) or `album_id` / `artist_id` (artwork) record where
  ingestion linked the object in the catalog.
"""

from uuid import uuid4

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Column,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)

from tunesnow.db.base_class import Base
from tunesnow.schemas.enums import ErrorKind, MediaKind, MediaState


def _str_enum(enum_cls, name: str) -> SAEnum:
    # Non-native: stored as VARCHAR + CHECK on every dialect, using enum *values*.
    return SAEnum(
        enum_cls,
        name=name,
        native_enum=False,
        length=32,
        create_constraint=True,
        values_callable=lambda e: [m.value for m in e],
        validate_strings=True,
    )


class MediaObject(Base):
    """A single uploaded object (audio file or artwork image)."""

    __tablename__ = "media_objects"

    # ── Identity / ownership ─────────────────────────────────
    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    batch_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("upload_batches.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    kind = Column(_str_enum(MediaKind, "media_kind"), nullable=False)

    # ── Storage ──────────────────────────────────────────────
    storage_key = Column(String(1024), nullable=False, doc="Exact object key the upload grant is bound to.")

    # ── Client declarations ──────────────────────────────────
    declared_size = Column(BigInteger, nullable=False)
    declared_sha256 = Column(String(64), nullable=False, doc="Lowercase hex SHA-256.")
    declared_mime = Column(String(127), nullable=False)

    # ── Observed at validation ───────────────────────────────
    sniffed_mime = Column(String(127), nullable=True)
    observed_sha256 = Column(String(64), nullable=True)

    # ── Lifecycle ────────────────────────────────────────────
    state = Column(_str_enum(MediaState, "media_state"), nullable=False, default=MediaState.UPLOADING)
    error_kind = Column(_str_enum(ErrorKind, "media_error_kind"), nullable=True)
    error_detail = Column(Text, nullable=True)

    # ── Catalog links ────────────────────────────────────────
    track_id = Column(Uuid(as_uuid=True), ForeignKey("tracks.id", ondelete="SET NULL"), nullable=True, index=True)
    album_id = Column(Uuid(as_uuid=True), ForeignKey("albums.id", ondelete="SET NULL"), nullable=True, index=True)
    artist_id = Column(Uuid(as_uuid=True), ForeignKey("artists.id", ondelete="SET NULL"), nullable=True, index=True)

    # ── Audit (DB-driven UTC) ────────────────────────────────
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    transitioned_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __mapper_args__ = {"eager_defaults": True}

    __table_args__ = (
        UniqueConstraint("storage_key", name="uq_media_objects_storage_key"),
        CheckConstraint("declared_size > 0", name="declared_size_positive"),
        CheckConstraint("length(declared_sha256) = 64", name="declared_sha256_len"),
        CheckConstraint("length(trim(storage_key)) > 0", name="storage_key_not_blank"),
        CheckConstraint(
            "(state <> 'FAILED') OR (error_kind IS NOT NULL)",
            name="failed_has_error_kind",
        ),
        Index("ix_media_objects_batch_state", "batch_id", "state"),
        Index("ix_media_objects_track_state", "track_id", "state"),
    )

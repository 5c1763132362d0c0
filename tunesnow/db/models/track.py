from __future__ import annotations

"""
🎵 TunesNow — Track
==================

Created at most once per **natural key**:

- `ext:<id>` when the container carries an ISRC / MusicBrainz recording id;
- otherwise `nk:<sha256(normalized artist | album | title | duration_s)>`.

The unique constraint on `natural_key` is the only serialization point for
concurrent ingestion of the same song; the losing writer re-reads and links
to the winner's row.
"""

from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
    func,
    text,
)

from tunesnow.db.base_class import Base


class Track(Base):
    __tablename__ = "tracks"

    # ── Identity ─────────────────────────────────────────────
    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    natural_key = Column(String(128), nullable=False)
    external_id = Column(String(128), nullable=True, doc="ISRC or MusicBrainz recording id, when tagged.")

    # ── Catalog placement ────────────────────────────────────
    artist_id = Column(Uuid(as_uuid=True), ForeignKey("artists.id", ondelete="CASCADE"), nullable=False, index=True)
    album_id = Column(Uuid(as_uuid=True), ForeignKey("albums.id", ondelete="SET NULL"), nullable=True, index=True)
    title = Column(String(255), nullable=False)
    track_number = Column(Integer, nullable=True)
    disc_number = Column(Integer, nullable=True)

    # ── Playback-critical ────────────────────────────────────
    duration_ms = Column(Integer, nullable=True)
    bitrate = Column(Integer, nullable=True, doc="Bits per second as reported by the container.")

    # ── Access ───────────────────────────────────────────────
    is_private = Column(Boolean, nullable=False, default=False, server_default=text("false"))
    uploaded_by = Column(String(128), nullable=True, doc="Principal whose upload created the row.")

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __mapper_args__ = {"eager_defaults": True}

    __table_args__ = (
        UniqueConstraint("natural_key", name="uq_tracks_natural_key"),
        CheckConstraint("length(trim(title)) > 0", name="title_not_blank"),
        CheckConstraint("(duration_ms IS NULL) OR (duration_ms >= 0)", name="duration_nonneg"),
        CheckConstraint("(track_number IS NULL) OR (track_number > 0)", name="track_number_pos"),
        CheckConstraint("(disc_number IS NULL) OR (disc_number > 0)", name="disc_number_pos"),
        Index("ix_tracks_album_order", "album_id", "disc_number", "track_number"),
    )

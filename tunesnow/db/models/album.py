from __future__ import annotations

"""
💿 TunesNow — Album
==================

Unique per (artist, normalized title). `artwork_key` is filled in when an
artwork object from the same upload batch finishes ingestion.
"""

from uuid import uuid4

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, String, UniqueConstraint, Uuid, func

from tunesnow.db.base_class import Base


class Album(Base):
    __tablename__ = "albums"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    artist_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("artists.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    title = Column(String(255), nullable=False)
    title_normalized = Column(String(255), nullable=False)
    artwork_key = Column(String(1024), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __mapper_args__ = {"eager_defaults": True}

    __table_args__ = (
        UniqueConstraint("artist_id", "title_normalized", name="uq_albums_artist_title"),
        CheckConstraint("length(trim(title)) > 0", name="title_not_blank"),
    )

from __future__ import annotations

"""
🎵 TunesNow — Track ⇄ Genre association
=======================================

Composite primary key `(track_id, genre_id)`: linking the same pair twice is
a constraint violation, which reconciliation treats like any other conflict.
"""

from sqlalchemy import Column, ForeignKey, Index, Uuid

from tunesnow.db.base_class import Base


class TrackGenre(Base):
    __tablename__ = "track_genres"

    track_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("tracks.id", ondelete="CASCADE"),
        primary_key=True,
        nullable=False,
    )
    genre_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("genres.id", ondelete="CASCADE"),
        primary_key=True,
        nullable=False,
    )

    __table_args__ = (Index("ix_track_genres_genre", "genre_id"),)

from __future__ import annotations

"""
🎤 TunesNow — Artist
===================

Matched case-insensitively through `name_normalized` (NFKC + casefold +
collapsed whitespace); the unique index on it is what serializes concurrent
"create if missing" attempts during reconciliation.
"""

from uuid import uuid4

from sqlalchemy import CheckConstraint, Column, DateTime, String, UniqueConstraint, Uuid, func

from tunesnow.db.base_class import Base


class Artist(Base):
    __tablename__ = "artists"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String(255), nullable=False, doc="Display name as first seen.")
    name_normalized = Column(String(255), nullable=False)
    artwork_key = Column(String(1024), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __mapper_args__ = {"eager_defaults": True}

    __table_args__ = (
        UniqueConstraint("name_normalized", name="uq_artists_name_normalized"),
        CheckConstraint("length(trim(name)) > 0", name="name_not_blank"),
    )

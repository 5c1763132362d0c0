from __future__ import annotations

"""
🏷️ TunesNow — Genre (normalized taxonomy)
========================================

Upserted from container tags during reconciliation; uniqueness is on the
normalized name so "Hip-Hop", "hip-hop " and "HIP-HOP" share one row.
Linked to tracks through `track_genres`.
"""

from uuid import uuid4

from sqlalchemy import CheckConstraint, Column, DateTime, String, UniqueConstraint, Uuid, func

from tunesnow.db.base_class import Base


class Genre(Base):
    __tablename__ = "genres"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String(80), nullable=False)
    name_normalized = Column(String(80), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __mapper_args__ = {"eager_defaults": True}

    __table_args__ = (
        UniqueConstraint("name_normalized", name="uq_genres_name_normalized"),
        CheckConstraint("length(trim(name)) > 0", name="name_not_blank"),
    )

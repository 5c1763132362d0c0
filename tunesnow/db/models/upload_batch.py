from __future__ import annotations

"""
📦 TunesNow — UploadBatch
========================

A client-visible grouping of media objects uploaded together (e.g. an album
drop: N audio files + cover art). The batch itself stores only who created it
and when; its status is **derived** from its members on every read
(see `tunesnow.services.transitions.aggregate_batch_status`).
"""

from uuid import uuid4

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Index, String, Uuid, func, text

from tunesnow.db.base_class import Base


class UploadBatch(Base):
    __tablename__ = "upload_batches"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    created_by = Column(String(128), nullable=False, doc="Principal id of the creator.")
    is_private = Column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
        doc="Tracks first created from this batch are private to the uploader.",
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __mapper_args__ = {"eager_defaults": True}

    __table_args__ = (
        CheckConstraint("length(trim(created_by)) > 0", name="created_by_not_blank"),
        Index("ix_upload_batches_created_by", "created_by"),
    )

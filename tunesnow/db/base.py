# tunesnow/db/base.py
"""
TunesNow — SQLAlchemy Base registry
===================================

Import all ORM models so their tables are registered on `Base.metadata`
(Alembic autogeneration, `create_all` in tests).

Keep this file import-only; no runtime logic.
"""

from tunesnow.db.base_class import Base

# ───────────────────────────────────────────────────────────────
# Ingestion
# ───────────────────────────────────────────────────────────────
from tunesnow.db.models.upload_batch import UploadBatch
from tunesnow.db.models.media_object import MediaObject

# ───────────────────────────────────────────────────────────────
# Catalog
# ───────────────────────────────────────────────────────────────
from tunesnow.db.models.artist import Artist
from tunesnow.db.models.album import Album
from tunesnow.db.models.genre import Genre
from tunesnow.db.models.track import Track
from tunesnow.db.models.track_genres import TrackGenre

__all__ = [
    "Base",
    "UploadBatch",
    "MediaObject",
    "Artist",
    "Album",
    "Genre",
    "Track",
    "TrackGenre",
]

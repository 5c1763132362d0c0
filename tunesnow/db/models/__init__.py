# tunesnow/db/models/__init__.py
"""
TunesNow — ORM models

Importing this package registers every table on `Base.metadata`.
"""

from .upload_batch import UploadBatch
from .media_object import MediaObject
from .artist import Artist
from .album import Album
from .genre import Genre
from .track import Track
from .track_genres import TrackGenre

__all__ = [
    "UploadBatch",
    "MediaObject",
    "Artist",
    "Album",
    "Genre",
    "Track",
    "TrackGenre",
]

from __future__ import annotations

"""
TunesNow • Catalog value types
==============================

`AudioMetadata` is what the extractor pulls out of a container and what the
catalog repository reconciles. Normalization and the natural key live here so
the SQL and in-memory repositories agree byte-for-byte.

Natural key
-----------
- `ext:<id>` when the container carries an external recording id
  (ISRC preferred, then MusicBrainz recording id);
- otherwise `nk:` + SHA-256 over
  `artist \\x1f album \\x1f title \\x1f duration_seconds`, each normalized with
  NFKC → casefold → trim → collapse internal whitespace.
"""

from dataclasses import dataclass, field
from typing import List, Optional
import hashlib
import re
import unicodedata
import uuid

_WS_RE = re.compile(r"\s+")
_SEP = "\x1f"


def normalize_text(value: Optional[str]) -> str:
    """Case/width/whitespace-insensitive form used for matching."""
    if not value:
        return ""
    s = unicodedata.normalize("NFKC", str(value)).casefold()
    return _WS_RE.sub(" ", s).strip()


def clean_display(value: Optional[str]) -> Optional[str]:
    """Trimmed display form (None when blank)."""
    if value is None:
        return None
    s = _WS_RE.sub(" ", unicodedata.normalize("NFC", str(value))).strip()
    return s or None


def duration_seconds(duration_ms: Optional[int]) -> int:
    """Whole seconds, rounded half up (so 179.5 s and 180.4 s both key as 180)."""
    if not duration_ms or duration_ms < 0:
        return 0
    return (int(duration_ms) + 500) // 1000


@dataclass
class AudioMetadata:
    """Tags extracted from an audio container."""

    title: str
    artist: str
    album: Optional[str] = None
    track_number: Optional[int] = None
    disc_number: Optional[int] = None
    duration_ms: Optional[int] = None
    bitrate: Optional[int] = None
    genres: List[str] = field(default_factory=list)
    isrc: Optional[str] = None
    musicbrainz_recording_id: Optional[str] = None

    @property
    def external_id(self) -> Optional[str]:
        if self.isrc:
            return f"isrc:{self.isrc.strip().upper()}"
        if self.musicbrainz_recording_id:
            return f"mbid:{self.musicbrainz_recording_id.strip().lower()}"
        return None

    def natural_key(self) -> str:
        ext = self.external_id
        if ext:
            return f"ext:{ext}"
        raw = _SEP.join(
            (
                normalize_text(self.artist),
                normalize_text(self.album),
                normalize_text(self.title),
                str(duration_seconds(self.duration_ms)),
            )
        )
        return "nk:" + hashlib.sha256(raw.encode("utf-8")).hexdigest()


# ── Read models ─────────────────────────────────────────────────────────────

@dataclass
class TrackRecord:
    id: uuid.UUID
    natural_key: str
    title: str
    artist_id: uuid.UUID
    album_id: Optional[uuid.UUID] = None
    external_id: Optional[str] = None
    track_number: Optional[int] = None
    disc_number: Optional[int] = None
    duration_ms: Optional[int] = None
    bitrate: Optional[int] = None
    is_private: bool = False
    uploaded_by: Optional[str] = None
    genres: List[str] = field(default_factory=list)


__all__ = [
    "AudioMetadata",
    "TrackRecord",
    "normalize_text",
    "clean_display",
    "duration_seconds",
]

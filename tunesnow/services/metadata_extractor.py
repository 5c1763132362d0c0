from __future__ import annotations

"""
Audio tag extraction (mutagen).

`MutagenExtractor.extract` takes a seekable binary file object and returns
`AudioMetadata`, or raises `ExtractionError` with a human-readable
diagnostic. It is synchronous; the ingestion service runs it in a worker
thread.
"""

import logging
from typing import Any, BinaryIO, List, Optional

import mutagen
from mutagen import MutagenError

from tunesnow.core.exceptions import ExtractionError
from tunesnow.schemas.catalog import AudioMetadata, clean_display

logger = logging.getLogger(__name__)


def _first(tags: Any, *names: str) -> Optional[str]:
    if not tags:
        return None
    for name in names:
        try:
            values = tags.get(name)
        except (KeyError, ValueError):
            values = None
        if not values:
            continue
        if isinstance(values, (list, tuple)):
            values = values[0] if values else None
        s = clean_display(str(values)) if values is not None else None
        if s:
            return s
    return None


def _all(tags: Any, name: str) -> List[str]:
    if not tags:
        return []
    try:
        values = tags.get(name) or []
    except (KeyError, ValueError):
        return []
    if isinstance(values, str):
        values = [values]
    out: List[str] = []
    for v in values:
        # Vorbis/ID3 multi-genre strings are often "Rock; Pop" or "Rock/Pop"
        for part in str(v).replace("/", ";").split(";"):
            s = clean_display(part)
            if s:
                out.append(s)
    return out


def parse_position(value: Optional[str]) -> Optional[int]:
    """`"3"`, `"3/12"`, `"03"` → 3; anything else → None."""
    if not value:
        return None
    head = str(value).split("/", 1)[0].strip()
    try:
        n = int(head)
    except ValueError:
        return None
    return n if n > 0 else None


class MutagenExtractor:
    """Read the tags ingestion needs from any container mutagen understands."""

    def extract(self, fileobj: BinaryIO) -> AudioMetadata:
        fileobj.seek(0)
        try:
            audio = mutagen.File(fileobj, easy=True)
        except MutagenError as e:
            raise ExtractionError(f"unreadable container: {e}") from e
        except Exception as e:
            # Parser crashes on uploaded bytes map to EXTRACTION_FAILED.
            raise ExtractionError(f"parser error: {type(e).__name__}: {e}") from e
        if audio is None:
            raise ExtractionError("unrecognized audio container")

        tags = audio.tags
        info = getattr(audio, "info", None)

        title = _first(tags, "title")
        artist = _first(tags, "artist", "albumartist")
        if not title:
            raise ExtractionError("missing required tag: title")
        if not artist:
            raise ExtractionError("missing required tag: artist")

        length = getattr(info, "length", None) or 0
        duration_ms = int(round(float(length) * 1000)) if length else 0
        if duration_ms <= 0:
            raise ExtractionError("missing or zero duration")

        bitrate = int(getattr(info, "bitrate", 0) or 0) or None

        return AudioMetadata(
            title=title,
            artist=artist,
            album=_first(tags, "album"),
            track_number=parse_position(_first(tags, "tracknumber")),
            disc_number=parse_position(_first(tags, "discnumber")),
            duration_ms=duration_ms,
            bitrate=bitrate,
            genres=_all(tags, "genre"),
            isrc=_first(tags, "isrc"),
            musicbrainz_recording_id=_first(tags, "musicbrainz_trackid"),
        )


__all__ = ["MutagenExtractor", "parse_position"]

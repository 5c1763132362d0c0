from __future__ import annotations

"""
Best-effort post-processing run after a media object becomes READY.

- Audio: a peak waveform (`derived/{id}/waveform.json`) for 16-bit PCM WAV.
- Artwork: a square-bounded WebP thumbnail (`derived/{id}/thumb.webp`).

Failures here are reported to the caller, which logs and counts them; they
never change the object's state.
"""

import asyncio
import io
import json
import logging
import struct
from typing import List, Optional

from PIL import Image

from tunesnow.core.config import settings
from tunesnow.core.storage import ObjectStore, derived_key, iter_range
from tunesnow.repositories.media import MediaRecord
from tunesnow.schemas.enums import MediaKind

logger = logging.getLogger(__name__)

THUMB_MAX_PX = 300
_MAX_SOURCE_BYTES = 64 * 1024 * 1024


def wav_peaks(data: bytes, points: int) -> Optional[List[float]]:
    """
    Normalized absolute peaks (0..1) over `points` buckets of a PCM WAV.

    Returns None when the container is not 16-bit PCM (other encodings are
    skipped rather than guessed at).
    """
    if len(data) < 12 or data[:4] != b"RIFF" or data[8:12] != b"WAVE":
        return None
    pos = 12
    fmt = None
    while pos + 8 <= len(data):
        cid, size = struct.unpack_from("<4sI", data, pos)
        body = pos + 8
        if cid == b"fmt ":
            fmt = struct.unpack_from("<HHIIHH", data, body)
        elif cid == b"data":
            if fmt is None:
                return None
            audio_format, channels, _rate, _brate, _align, bits = fmt
            if audio_format != 1 or bits != 16 or channels < 1:
                return None
            pcm = data[body : body + size]
            frame_count = len(pcm) // (2 * channels)
            if frame_count == 0:
                return [0.0] * points
            samples = struct.unpack_from(f"<{frame_count * channels}h", pcm)
            per = max(1, frame_count // points)
            peaks: List[float] = []
            for i in range(points):
                lo = i * per * channels
                hi = min(len(samples), (i + 1) * per * channels)
                if lo >= hi:
                    peaks.append(0.0)
                    continue
                peak = max(abs(s) for s in samples[lo:hi])
                peaks.append(round(min(1.0, peak / 32768.0), 4))
            return peaks
        pos = body + size + (size & 1)
    return None


def make_thumbnail(data: bytes, max_px: int = THUMB_MAX_PX) -> bytes:
    with Image.open(io.BytesIO(data)) as img:
        img = img.convert("RGBA" if img.mode in ("RGBA", "LA", "P") else "RGB")
        img.thumbnail((max_px, max_px))
        out = io.BytesIO()
        img.save(out, format="WEBP", quality=80)
        return out.getvalue()


class PostProcessor:
    def __init__(self, store: ObjectStore) -> None:
        self._store = store

    async def _read_all(self, media: MediaRecord) -> bytes:
        size = min(media.declared_size, _MAX_SOURCE_BYTES)
        buf = bytearray()
        async for chunk in iter_range(
            self._store, media.storage_key, start=0, end=size - 1, chunk_size=settings.STREAM_CHUNK_BYTES
        ):
            buf.extend(chunk)
        return bytes(buf)

    async def run(self, media: MediaRecord) -> List[str]:
        """Run the steps for `media.kind`; returns the derived keys written."""
        written: List[str] = []
        if media.kind == MediaKind.AUDIO:
            if media.sniffed_mime != "audio/wav":
                return written
            data = await self._read_all(media)
            peaks = await asyncio.to_thread(wav_peaks, data, settings.WAVEFORM_POINTS)
            if peaks is None:
                return written
            key = derived_key(media.id, "waveform.json")
            payload = json.dumps({"points": len(peaks), "peaks": peaks}).encode("utf-8")
            await self._store.put_bytes(key, payload, content_type="application/json")
            written.append(key)
        else:
            data = await self._read_all(media)
            thumb = await asyncio.to_thread(make_thumbnail, data)
            key = derived_key(media.id, "thumb.webp")
            await self._store.put_bytes(key, thumb, content_type="image/webp")
            written.append(key)
        logger.info("Post-processing wrote %s", written, extra={"media_object_id": str(media.id)})
        return written


__all__ = ["PostProcessor", "wav_peaks", "make_thumbnail"]

from __future__ import annotations

"""
Content-type policy and magic-byte sniffing.

Validation never trusts the declared MIME type: it reads the first
`SNIFF_BYTES` of the stored object and classifies it here. A declared audio
type whose bytes sniff as an image (or vice versa) is an integrity mismatch.
"""

from typing import Dict, Optional

from tunesnow.schemas.enums import MediaKind

# Declared MIME → key extension, per kind.
AUDIO_TYPES: Dict[str, str] = {
    "audio/mpeg": "mp3",
    "audio/mp3": "mp3",
    "audio/flac": "flac",
    "audio/x-flac": "flac",
    "audio/ogg": "ogg",
    "audio/opus": "opus",
    "audio/wav": "wav",
    "audio/x-wav": "wav",
    "audio/wave": "wav",
    "audio/aac": "aac",
    "audio/mp4": "m4a",
    "audio/x-m4a": "m4a",
    "audio/aiff": "aiff",
    "audio/x-aiff": "aiff",
}
IMAGE_TYPES: Dict[str, str] = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
}

_ALLOWED = {MediaKind.AUDIO: AUDIO_TYPES, MediaKind.ARTWORK: IMAGE_TYPES}


def normalize_mime(value: Optional[str]) -> str:
    """Lowercase and drop parameters (`audio/mpeg; foo=bar` → `audio/mpeg`)."""
    return (value or "").split(";", 1)[0].strip().lower()


def extension_for(kind: MediaKind, mime: str) -> Optional[str]:
    """Key extension for an allowed (kind, declared mime) pair, else None."""
    return _ALLOWED[kind].get(normalize_mime(mime))


def family(mime: Optional[str]) -> Optional[str]:
    """`audio` / `image` / None."""
    m = normalize_mime(mime)
    if m.startswith("audio/"):
        return "audio"
    if m.startswith("image/"):
        return "image"
    return None


def expected_family(kind: MediaKind) -> str:
    return "audio" if kind == MediaKind.AUDIO else "image"


def sniff(head: bytes) -> Optional[str]:
    """Best-effort MIME from leading bytes; None when nothing matches."""
    if len(head) < 4:
        return None

    # Images (JPEG first: its marker would also pass the MPEG sync check)
    if head.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if head.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if head[:6] in (b"GIF87a", b"GIF89a"):
        return "image/gif"
    if head[:4] == b"RIFF" and head[8:12] == b"WEBP":
        return "image/webp"

    # Audio
    if head.startswith(b"ID3"):
        return "audio/mpeg"
    if head.startswith(b"fLaC"):
        return "audio/flac"
    if head.startswith(b"OggS"):
        return "audio/ogg"
    if head[:4] == b"RIFF" and head[8:12] == b"WAVE":
        return "audio/wav"
    if head[:4] == b"FORM" and head[8:12] in (b"AIFF", b"AIFC"):
        return "audio/aiff"
    if head[4:8] == b"ftyp":
        return "audio/mp4"
    if head[0] == 0xFF and (head[1] & 0xE0) == 0xE0:
        # ADTS has layer bits 00; MPEG audio layers are non-zero.
        if (head[1] & 0x06) == 0:
            return "audio/aac"
        return "audio/mpeg"
    return None


__all__ = [
    "AUDIO_TYPES",
    "IMAGE_TYPES",
    "normalize_mime",
    "extension_for",
    "family",
    "expected_family",
    "sniff",
]

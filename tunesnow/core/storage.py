from __future__ import annotations

"""
TunesNow • Object store contract & key layout
=============================================

Key layout (single private bucket)::

    s3://{bucket}/
      uploads/{batch_id}/{media_object_id}.{ext}     client uploads (one key per grant)
      derived/{media_object_id}/{name}                post-processing outputs

Contract
--------
- `grant_upload` returns a signed PUT bound to exactly one key (never a prefix).
- `stat` distinguishes *absent* (`exists=False`) from *present but empty*
  (`exists=True, size=0`); store outages raise `TransientStoreError`.
- `fetch_range` accepts arbitrary, non-aligned offsets and always reports the
  authoritative total size; an offset at/after EOF yields an empty range.

Backends: `tunesnow.utils.aws.S3ObjectStore` (boto3) and
`tunesnow.utils.memory_store.MemoryObjectStore` (dev/tests), selected by
`STORAGE_BACKEND`.
"""

from dataclasses import dataclass
from datetime import datetime
from functools import lru_cache
from typing import AsyncIterator, Dict, Optional
import hashlib
import re
import uuid

from pydantic import BaseModel

from tunesnow.core.config import settings
from tunesnow.core.exceptions import InvalidStorageKey

S3_PREFIX_DERIVED = "derived/{media_object_id}/"


# ─────────────────────────────────────────────────────────────────────────────
# 🧾 Value types
# ─────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ObjectStat:
    exists: bool
    size: int = 0
    sha256: Optional[str] = None  # lowercase hex, when the store reports one

    @property
    def is_empty(self) -> bool:
        return self.exists and self.size == 0


@dataclass(frozen=True)
class ByteRange:
    data: bytes
    length: int
    total_size: int


class UploadGrant(BaseModel):
    """A signed, single-key upload permission handed to the client.

    - url: where to send the body.
    - method: HTTP method the signature is valid for.
    - headers: headers the client **must** send unchanged.
    - expires_at: UTC instant after which the store rejects the upload.
    """

    key: str
    url: str
    method: str = "PUT"
    headers: Dict[str, str] = {}
    expires_at: datetime


# ─────────────────────────────────────────────────────────────────────────────
# 🔌 Store interface
# ─────────────────────────────────────────────────────────────────────────────

class ObjectStore:
    async def grant_upload(
        self,
        key: str,
        *,
        content_type: str,
        content_length: int,
        sha256_hex: str,
        expires_in: int,
    ) -> UploadGrant:
        raise NotImplementedError

    async def stat(self, key: str) -> ObjectStat:
        raise NotImplementedError

    async def fetch_range(self, key: str, offset: int, length: int) -> ByteRange:
        raise NotImplementedError

    async def put_bytes(self, key: str, data: bytes, *, content_type: str) -> None:
        raise NotImplementedError

    async def ping(self) -> bool:
        raise NotImplementedError


# ─────────────────────────────────────────────────────────────────────────────
# 🧰 Keys
# ─────────────────────────────────────────────────────────────────────────────

_KEY_ALLOWED_RE = re.compile(r"[A-Za-z0-9._\-/+=@()]+")


def normalize_key(key: str) -> str:
    """
    Normalize and validate object keys.

    Steps
    -----
    1) Coerce to str, strip whitespace
    2) Remove leading '/'
    3) Collapse '//' runs
    4) Reject path traversal ('..') and disallowed characters

    Raises
    ------
    InvalidStorageKey
        If key is empty or contains unsafe characters.
    """
    k = str(key or "").strip().lstrip("/")
    k = re.sub(r"/{2,}", "/", k)
    if not k:
        raise InvalidStorageKey("Invalid storage key: empty")
    if ".." in k:
        raise InvalidStorageKey("Invalid storage key: path traversal detected")
    if not _KEY_ALLOWED_RE.fullmatch(k):
        raise InvalidStorageKey("Invalid storage key: contains forbidden characters")
    return k


def build_upload_key(batch_id: uuid.UUID, media_object_id: uuid.UUID, ext: str) -> str:
    return normalize_key(f"{settings.UPLOAD_KEY_PREFIX}/{batch_id}/{media_object_id}.{ext}")


def derived_key(media_object_id: uuid.UUID, name: str) -> str:
    return normalize_key(S3_PREFIX_DERIVED.format(media_object_id=media_object_id) + name)


# ─────────────────────────────────────────────────────────────────────────────
# 🔁 Chunked reads (shared by validation, extraction and streaming)
# ─────────────────────────────────────────────────────────────────────────────

async def iter_range(
    store: ObjectStore,
    key: str,
    *,
    start: int,
    end: int,
    chunk_size: int,
) -> AsyncIterator[bytes]:
    """Yield `[start, end]` (inclusive) in bounded chunks; stops early at EOF."""
    pos = start
    while pos <= end:
        want = min(chunk_size, end - pos + 1)
        rng = await store.fetch_range(key, pos, want)
        if rng.length <= 0:
            return
        yield rng.data
        pos += rng.length


async def sha256_of(store: ObjectStore, key: str, size: int, *, chunk_size: Optional[int] = None) -> str:
    """Hex SHA-256 of an object computed by streaming it."""
    h = hashlib.sha256()
    if size > 0:
        async for chunk in iter_range(
            store, key, start=0, end=size - 1, chunk_size=chunk_size or settings.DIGEST_CHUNK_BYTES
        ):
            h.update(chunk)
    return h.hexdigest()


# ─────────────────────────────────────────────────────────────────────────────
# 🏭 Factory
# ─────────────────────────────────────────────────────────────────────────────

@lru_cache(maxsize=1)
def get_object_store() -> ObjectStore:
    """Process-wide store selected by `STORAGE_BACKEND` (FastAPI dependency)."""
    if settings.STORAGE_BACKEND == "s3":
        from tunesnow.utils.aws import S3ObjectStore

        return S3ObjectStore()
    from tunesnow.utils.memory_store import MemoryObjectStore

    return MemoryObjectStore()


__all__ = [
    "ObjectStat",
    "ByteRange",
    "UploadGrant",
    "ObjectStore",
    "normalize_key",
    "build_upload_key",
    "derived_key",
    "iter_range",
    "sha256_of",
    "get_object_store",
]

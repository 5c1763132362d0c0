from __future__ import annotations

"""
In-process object store for development and tests.

Upload grants are HMAC-signed URLs pointing at this API's own
`PUT {API_V1_STR}/storage/upload` sink. The signature covers
`key|content_type|content_length|sha256|exp`, so (like S3 with a bound
checksum) the sink refuses a body whose length or digest differs from the
declaration, and a grant can never be replayed against another key.

`put_bytes` bypasses that check; tests use it to plant objects that
validation must reject.
"""

import asyncio
import hashlib
import hmac
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Optional
from urllib.parse import urlencode

from tunesnow.core.config import settings
from tunesnow.core.exceptions import AppException, ObjectNotFoundError
from tunesnow.core.storage import ByteRange, ObjectStat, ObjectStore, UploadGrant, normalize_key


@dataclass
class _Blob:
    data: bytes
    content_type: str
    sha256: str


def _sign(secret: bytes, key: str, content_type: str, length: int, sha256_hex: str, exp: int) -> str:
    to_sign = f"{key}|{content_type}|{length}|{sha256_hex}|{exp}".encode("utf-8")
    return hmac.new(secret, to_sign, hashlib.sha256).hexdigest()


class MemoryObjectStore(ObjectStore):
    """
    Parameters
    ----------
    report_checksums : bool
        When False, `stat` omits the SHA-256 (like an S3 object uploaded
        without a checksum) and validation has to stream the object.
    """

    def __init__(self, *, report_checksums: bool = True, secret: Optional[str] = None) -> None:
        self._blobs: Dict[str, _Blob] = {}
        self.report_checksums = report_checksums
        self._secret = (secret or settings.UPLOAD_SIGNING_SECRET.get_secret_value()).encode("utf-8")

    # ── Grants ────────────────────────────────────────────────
    async def grant_upload(
        self,
        key: str,
        *,
        content_type: str,
        content_length: int,
        sha256_hex: str,
        expires_in: int,
    ) -> UploadGrant:
        k = normalize_key(key)
        exp = int(time.time()) + int(expires_in)
        sig = _sign(self._secret, k, content_type, int(content_length), sha256_hex, exp)
        query = urlencode(
            {"key": k, "ct": content_type, "len": int(content_length), "sha": sha256_hex, "exp": exp, "sig": sig}
        )
        return UploadGrant(
            key=k,
            url=f"{settings.public_base_url_str}{settings.API_V1_STR}/storage/upload?{query}",
            method="PUT",
            headers={"Content-Type": content_type},
            expires_at=datetime.fromtimestamp(exp, tz=timezone.utc),
        )

    def accept_upload(
        self,
        *,
        key: str,
        content_type: str,
        content_length: int,
        sha256_hex: str,
        exp: int,
        sig: str,
        body: bytes,
    ) -> None:
        """Verify a signed upload and store the body; raises `AppException` on rejection."""
        expected = _sign(self._secret, key, content_type, int(content_length), sha256_hex, int(exp))
        if not hmac.compare_digest(expected, sig or ""):
            raise AppException(status_code=403, message="Invalid upload signature")
        if int(exp) < int(time.time()):
            raise AppException(status_code=403, message="Upload grant expired")
        if len(body) != int(content_length):
            raise AppException(status_code=400, message="Body length does not match the grant")
        digest = hashlib.sha256(body).hexdigest()
        if digest != sha256_hex:
            raise AppException(status_code=400, message="Body checksum does not match the grant")
        self._blobs[normalize_key(key)] = _Blob(data=bytes(body), content_type=content_type, sha256=digest)

    # ── ObjectStore ───────────────────────────────────────────
    async def stat(self, key: str) -> ObjectStat:
        await asyncio.sleep(0)
        blob = self._blobs.get(normalize_key(key))
        if blob is None:
            return ObjectStat(exists=False)
        return ObjectStat(
            exists=True,
            size=len(blob.data),
            sha256=blob.sha256 if self.report_checksums else None,
        )

    async def fetch_range(self, key: str, offset: int, length: int) -> ByteRange:
        if offset < 0 or length <= 0:
            raise ValueError("offset must be >= 0 and length > 0")
        await asyncio.sleep(0)
        blob = self._blobs.get(normalize_key(key))
        if blob is None:
            raise ObjectNotFoundError(f"no object at {key}")
        data = blob.data[offset : offset + length]
        return ByteRange(data=data, length=len(data), total_size=len(blob.data))

    async def put_bytes(self, key: str, data: bytes, *, content_type: str) -> None:
        await asyncio.sleep(0)
        self._blobs[normalize_key(key)] = _Blob(
            data=bytes(data), content_type=content_type, sha256=hashlib.sha256(data).hexdigest()
        )

    async def ping(self) -> bool:
        return True

    # ── Introspection ─────────────────────────────────────────
    def get(self, key: str) -> Optional[bytes]:
        blob = self._blobs.get(normalize_key(key))
        return blob.data if blob else None

    def keys(self):
        return sorted(self._blobs)


__all__ = ["MemoryObjectStore"]

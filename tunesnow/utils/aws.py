# tunesnow/utils/aws.py
from __future__ import annotations

"""
🧊 TunesNow • S3 Object Store
=============================

Thin boto3 wrapper implementing `tunesnow.core.storage.ObjectStore` for a
single private bucket.

🎯 Goals
--------
- Presigned PUT bound to one key, content type, length and SHA-256 checksum
- Explicit timeouts + bounded retries
- HEAD with checksum mode so validation can skip re-reading the object
- Ranged GET with the authoritative total size from `Content-Range`
- Connectivity / throttling failures surface as `TransientStoreError`
- Zero secret leakage in logs

Implementation notes
--------------------
boto3 is synchronous; `S3ObjectStore` runs every call in a worker thread via
`asyncio.to_thread` so the event loop never blocks on the network.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
import asyncio
import base64
import binascii
import logging
import re

import boto3
import botocore
from botocore.config import Config as BotoConfig
from pydantic import SecretStr

from tunesnow.core.config import settings
from tunesnow.core.exceptions import ObjectNotFoundError, ObjectStoreError, TransientStoreError
from tunesnow.core.storage import ByteRange, ObjectStat, ObjectStore, UploadGrant, normalize_key

logger = logging.getLogger(__name__)

# Error codes S3 (and S3-compatible stores) use for retryable conditions.
_TRANSIENT_CODES = {
    "500",
    "502",
    "503",
    "504",
    "InternalError",
    "ServiceUnavailable",
    "SlowDown",
    "RequestTimeout",
    "Throttling",
    "ThrottlingException",
}
_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}
_CONTENT_RANGE_RE = re.compile(r"bytes\s+(\d+)-(\d+)/(\d+|\*)")


def _secret_value(v: Optional[SecretStr | str]) -> Optional[str]:
    if v is None:
        return None
    return v.get_secret_value() if isinstance(v, SecretStr) else str(v)


def hex_to_b64(sha256_hex: str) -> str:
    """S3 wants `x-amz-checksum-sha256` as base64 of the raw digest."""
    return base64.b64encode(bytes.fromhex(sha256_hex)).decode("ascii")


def b64_to_hex(value: Optional[str]) -> Optional[str]:
    """Inverse of `hex_to_b64`; None for composite (multipart) or malformed checksums."""
    if not value or "-" in value:
        return None
    try:
        raw = base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        return None
    return raw.hex() if len(raw) == 32 else None


def _classify(e: Exception, action: str) -> ObjectStoreError:
    """Map botocore failures onto the store's exception hierarchy."""
    if isinstance(
        e,
        (
            botocore.exceptions.EndpointConnectionError,
            botocore.exceptions.ConnectTimeoutError,
            botocore.exceptions.ReadTimeoutError,
            botocore.exceptions.ConnectionClosedError,
        ),
    ):
        return TransientStoreError(f"{action}: store unreachable")
    if isinstance(e, botocore.exceptions.ClientError):
        code = str(e.response.get("Error", {}).get("Code", ""))
        if code in _NOT_FOUND_CODES:
            return ObjectNotFoundError(f"{action}: no such key")
        if code in _TRANSIENT_CODES:
            return TransientStoreError(f"{action}: {code}")
        return ObjectStoreError(f"{action}: {code or 'client error'}")
    return ObjectStoreError(f"{action}: {type(e).__name__}")


# ─────────────────────────────────────────────────────────────────────────────
# 📦 S3 Client (sync)
# ─────────────────────────────────────────────────────────────────────────────

class S3Client:
    """
    High-level S3 wrapper with safe defaults.

    Parameters
    ----------
    bucket : str | None
        Destination bucket. Defaults to `settings.AWS_BUCKET_NAME`.
    region_name : str | None
        Defaults to `settings.AWS_REGION`.
    endpoint_url : str | None
        Custom S3-compatible endpoint (e.g., LocalStack/MinIO). Defaults
        to `settings.AWS_S3_ENDPOINT_URL`.
    sse_mode : str | None
        "AES256" or "aws:kms". Defaults from `settings.AWS_SSE_MODE`.
    kms_key_id : str | None
        KMS key id/arn when `sse_mode="aws:kms"`. Defaults from settings.

    Notes
    -----
    * Credentials: explicit settings when both key id and secret are set,
      otherwise the standard AWS credential chain (env, profile, role, IRSA).
    * Retries/Timeouts: bounded retry policy and short connect timeout.
    """

    def __init__(
        self,
        bucket: Optional[str] = None,
        *,
        region_name: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        sse_mode: Optional[str] = None,
        kms_key_id: Optional[str] = None,
        client: Any = None,
    ) -> None:
        self.bucket = bucket or settings.AWS_BUCKET_NAME
        if not self.bucket:
            raise ObjectStoreError("AWS_BUCKET_NAME not configured")

        region_cfg = region_name or settings.AWS_REGION
        endpoint_cfg = endpoint_url or settings.AWS_S3_ENDPOINT_URL
        self._sse_mode = sse_mode or settings.AWS_SSE_MODE
        self._kms_key_id = kms_key_id or settings.AWS_KMS_KEY_ID

        if client is not None:
            self.client = client
        else:
            cfg = BotoConfig(
                signature_version="s3v4",
                retries={"max_attempts": 5, "mode": "standard"},
                connect_timeout=3,
                read_timeout=10,
                s3={"addressing_style": "path" if endpoint_cfg else "virtual"},
            )
            client_kwargs: Dict[str, Any] = {"config": cfg, "region_name": region_cfg}
            if endpoint_cfg:
                client_kwargs["endpoint_url"] = endpoint_cfg
            ak = settings.AWS_ACCESS_KEY_ID
            sk = _secret_value(settings.AWS_SECRET_ACCESS_KEY)
            st = _secret_value(settings.AWS_SESSION_TOKEN)
            if ak and sk:
                client_kwargs["aws_access_key_id"] = ak
                client_kwargs["aws_secret_access_key"] = sk
                if st:
                    client_kwargs["aws_session_token"] = st
            try:
                self.client = boto3.client("s3", **client_kwargs)
            except Exception as e:  # pragma: no cover
                raise ObjectStoreError(f"Failed to create S3 client: {type(e).__name__}") from e

        self._repr = f"S3Client(bucket={self.bucket}, region={region_cfg}, endpoint={'yes' if endpoint_cfg else 'no'})"

    def _sse_params(self) -> Dict[str, str]:
        params: Dict[str, str] = {}
        if self._sse_mode:
            params["ServerSideEncryption"] = self._sse_mode
            if self._sse_mode == "aws:kms" and self._kms_key_id:
                params["SSEKMSKeyId"] = self._kms_key_id
        return params

    # ────────────────────────────────────────────────────────────────────────
    # 🔐 Signed upload
    # ────────────────────────────────────────────────────────────────────────

    def presigned_put(
        self,
        key: str,
        *,
        content_type: str,
        content_length: int,
        sha256_hex: str,
        expires_in: int = 900,
    ) -> Dict[str, Any]:
        """
        Generate a **presigned PUT** for exactly one key.

        The signature covers the content type, length and SHA-256 checksum,
        so S3 rejects a body that does not match the declaration.

        Returns
        -------
        dict
            `{"url": str, "headers": dict}`; the client must send `headers` verbatim.
        """
        k = normalize_key(key)
        checksum = hex_to_b64(sha256_hex)
        params: Dict[str, Any] = {
            "Bucket": self.bucket,
            "Key": k,
            "ContentType": content_type,
            "ContentLength": int(content_length),
            "ChecksumSHA256": checksum,
            **self._sse_params(),
        }
        try:
            url = self.client.generate_presigned_url(
                ClientMethod="put_object",
                Params=params,
                ExpiresIn=int(expires_in),
                HttpMethod="PUT",
            )
        except Exception as e:
            raise ObjectStoreError(f"Failed to create presigned PUT: {type(e).__name__}") from e

        headers = {
            "Content-Type": content_type,
            "Content-Length": str(int(content_length)),
            "x-amz-checksum-sha256": checksum,
        }
        if self._sse_mode:
            headers["x-amz-server-side-encryption"] = self._sse_mode
            if self._sse_mode == "aws:kms" and self._kms_key_id:
                headers["x-amz-server-side-encryption-aws-kms-key-id"] = self._kms_key_id
        return {"url": url, "headers": headers}

    # ────────────────────────────────────────────────────────────────────────
    # 🔎 Metadata / reads
    # ────────────────────────────────────────────────────────────────────────

    def head(self, key: str) -> Optional[Dict[str, Any]]:
        """HEAD with checksum mode; None when the key does not exist."""
        k = normalize_key(key)
        try:
            resp = self.client.head_object(Bucket=self.bucket, Key=k, ChecksumMode="ENABLED")
            return dict(resp or {})
        except Exception as e:
            err = _classify(e, "head_object")
            if isinstance(err, ObjectNotFoundError):
                return None
            logger.warning("head_object failed: %s", err)
            raise err from e

    def get_range(self, key: str, start: int, end: int) -> Dict[str, Any]:
        """Ranged GET of `[start, end]` inclusive; returns `{"data", "total"}`."""
        k = normalize_key(key)
        try:
            resp = self.client.get_object(Bucket=self.bucket, Key=k, Range=f"bytes={start}-{end}")
            body = resp["Body"]
            try:
                data = body.read()
            finally:
                body.close()
        except botocore.exceptions.ClientError as e:
            code = str(e.response.get("Error", {}).get("Code", ""))
            if code == "InvalidRange":
                size = e.response.get("Error", {}).get("ActualObjectSize")
                return {"data": b"", "total": int(size) if size is not None else None}
            raise _classify(e, "get_object") from e
        except Exception as e:
            raise _classify(e, "get_object") from e

        total: Optional[int] = None
        m = _CONTENT_RANGE_RE.match(str(resp.get("ContentRange") or ""))
        if m and m.group(3) != "*":
            total = int(m.group(3))
        return {"data": data, "total": total}

    def put_bytes(self, key: str, data: bytes, *, content_type: str) -> None:
        """Server-side write for small derived artifacts (waveforms, thumbnails)."""
        k = normalize_key(key)
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=k,
                Body=data,
                ContentType=content_type,
                **self._sse_params(),
            )
        except Exception as e:
            raise _classify(e, "put_object") from e

    def head_bucket(self) -> None:
        try:
            self.client.head_bucket(Bucket=self.bucket)
        except Exception as e:
            raise _classify(e, "head_bucket") from e

    def __repr__(self) -> str:  # pragma: no cover
        return self._repr


# ─────────────────────────────────────────────────────────────────────────────
# 🔌 Async ObjectStore adapter
# ─────────────────────────────────────────────────────────────────────────────

class S3ObjectStore(ObjectStore):
    def __init__(self, client: Optional[S3Client] = None) -> None:
        self._s3 = client or S3Client()

    async def grant_upload(
        self,
        key: str,
        *,
        content_type: str,
        content_length: int,
        sha256_hex: str,
        expires_in: int,
    ) -> UploadGrant:
        signed = await asyncio.to_thread(
            self._s3.presigned_put,
            key,
            content_type=content_type,
            content_length=content_length,
            sha256_hex=sha256_hex,
            expires_in=expires_in,
        )
        return UploadGrant(
            key=normalize_key(key),
            url=signed["url"],
            method="PUT",
            headers=signed["headers"],
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=int(expires_in)),
        )

    async def stat(self, key: str) -> ObjectStat:
        meta = await asyncio.to_thread(self._s3.head, key)
        if meta is None:
            return ObjectStat(exists=False)
        return ObjectStat(
            exists=True,
            size=int(meta.get("ContentLength") or 0),
            sha256=b64_to_hex(meta.get("ChecksumSHA256")),
        )

    async def fetch_range(self, key: str, offset: int, length: int) -> ByteRange:
        if offset < 0 or length <= 0:
            raise ValueError("offset must be >= 0 and length > 0")
        got = await asyncio.to_thread(self._s3.get_range, key, offset, offset + length - 1)
        total = got["total"]
        if total is None:
            st = await self.stat(key)
            if not st.exists:
                raise ObjectNotFoundError("get_object: no such key")
            total = st.size
        data = got["data"]
        return ByteRange(data=data, length=len(data), total_size=int(total))

    async def put_bytes(self, key: str, data: bytes, *, content_type: str) -> None:
        await asyncio.to_thread(self._s3.put_bytes, key, data, content_type=content_type)

    async def ping(self) -> bool:
        try:
            await asyncio.to_thread(self._s3.head_bucket)
            return True
        except ObjectStoreError:
            logger.exception("Object store ping failed")
            return False


__all__ = ["S3Client", "S3ObjectStore", "hex_to_b64", "b64_to_hex"]

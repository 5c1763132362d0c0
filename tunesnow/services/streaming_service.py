from __future__ import annotations

"""
🎧 TunesNow — Range-aware streaming
===================================

`serve(track_id, principal, range_header)` answers a playback request:

1) resolve the track to a READY audio object (else 404 ASSET_NOT_READY);
2) check entitlement (else 403 NOT_ENTITLED) before any object-store call;
3) parse `Range` and build a plan: 200 full body, 206 exact range, or 416.

Range forms: `bytes=a-b`, `bytes=a-`, `bytes=-n`. An end past EOF is clamped;
a start at/after EOF (or a zero-length suffix) is unsatisfiable. Malformed,
non-`bytes` and multi-range headers are ignored (full body), as RFC 9110
allows.

The body is produced lazily in `STREAM_CHUNK_BYTES` ranged reads, so a client
that disconnects stops further reads. Streaming never writes anything.
"""

import logging
import re
import uuid
from dataclasses import dataclass, field
from typing import AsyncIterator, Dict, Optional

from tunesnow.core import metrics
from tunesnow.core.config import settings
from tunesnow.core.exceptions import AssetNotReady, NotEntitled, RangeNotSatisfiable
from tunesnow.core.security import Principal
from tunesnow.core.storage import ObjectStore, iter_range
from tunesnow.repositories.catalog import CatalogRepositoryProtocol
from tunesnow.repositories.media import MediaRepositoryProtocol
from tunesnow.services.entitlement_service import EntitlementPolicy

logger = logging.getLogger(__name__)

ACCEPT_RANGES = {"Accept-Ranges": "bytes"}
_SPAN_RE = re.compile(r"^\s*(\d*)\s*-\s*(\d*)\s*$")


@dataclass(frozen=True)
class ByteSpan:
    start: int
    end: int  # inclusive

    @property
    def length(self) -> int:
        return self.end - self.start + 1


def parse_range(header: Optional[str], total: int) -> Optional[ByteSpan]:
    """
    Parse a single-range `Range` header against an object of `total` bytes.

    Returns
    -------
    ByteSpan | None
        The satisfiable span, or None when the header is absent or should be
        ignored (malformed, other unit, multiple ranges).

    Raises
    ------
    RangeNotSatisfiable
        When the range lies wholly outside `[0, total)`.
    """
    if not header:
        return None
    unit, sep, span_text = header.strip().partition("=")
    if not sep or unit.strip().lower() != "bytes" or "," in span_text:
        return None
    m = _SPAN_RE.match(span_text)
    if not m:
        return None
    first, last = m.group(1), m.group(2)

    if first == "" and last == "":
        return None
    if first == "":
        suffix = int(last)
        if suffix == 0 or total == 0:
            raise RangeNotSatisfiable(total_size=total)
        return ByteSpan(start=max(0, total - suffix), end=total - 1)

    start = int(first)
    if last != "" and int(last) < start:
        return None
    if start >= total:
        raise RangeNotSatisfiable(total_size=total)
    end = total - 1 if last == "" else min(int(last), total - 1)
    return ByteSpan(start=start, end=end)


@dataclass
class StreamableAsset:
    track_id: uuid.UUID
    media_object_id: uuid.UUID
    storage_key: str
    size: int
    mime: str
    duration_ms: Optional[int] = None


@dataclass
class StreamPlan:
    """Everything the route needs to write the response."""

    asset: StreamableAsset
    status_code: int
    span: ByteSpan
    headers: Dict[str, str] = field(default_factory=dict)
    _store: Optional[ObjectStore] = None
    _chunk_size: int = 0

    @property
    def media_type(self) -> str:
        return self.asset.mime

    async def iter_body(self) -> AsyncIterator[bytes]:
        sent = 0
        try:
            async for chunk in iter_range(
                self._store,
                self.asset.storage_key,
                start=self.span.start,
                end=self.span.end,
                chunk_size=self._chunk_size,
            ):
                sent += len(chunk)
                yield chunk
        finally:
            metrics.add_stream_bytes(sent)
            if sent < self.span.length:
                logger.info(
                    "Stream ended early (%d of %d bytes)",
                    sent,
                    self.span.length,
                    extra={"track_id": str(self.asset.track_id)},
                )


class StreamingService:
    def __init__(
        self,
        *,
        media_repo: MediaRepositoryProtocol,
        catalog: CatalogRepositoryProtocol,
        store: ObjectStore,
        entitlement: EntitlementPolicy,
        chunk_size: Optional[int] = None,
    ) -> None:
        self._media = media_repo
        self._catalog = catalog
        self._store = store
        self._entitlement = entitlement
        self._chunk_size = chunk_size or settings.STREAM_CHUNK_BYTES

    async def resolve(self, track_id: uuid.UUID) -> Optional[StreamableAsset]:
        """Track → READY audio object, or None."""
        media = await self._media.find_ready_audio(track_id)
        if media is None or not media.sniffed_mime:
            return None
        track = await self._catalog.get_track(track_id)
        if track is None:
            return None
        return StreamableAsset(
            track_id=track_id,
            media_object_id=media.id,
            storage_key=media.storage_key,
            size=media.declared_size,
            mime=media.sniffed_mime,
            duration_ms=track.duration_ms,
        )

    async def serve(
        self,
        track_id: uuid.UUID,
        principal: Principal,
        range_header: Optional[str] = None,
    ) -> StreamPlan:
        """
        Build the response plan for one playback request.

        Steps
        -----
        1) Resolve; unknown or not READY → 404 (with `Accept-Ranges`).
        2) Entitlement; denied → 403, no store call made.
        3) Range → 200 / 206 / 416.
        """
        try:
            plan = await self._plan(track_id, principal, range_header)
        except (AssetNotReady, NotEntitled, RangeNotSatisfiable) as e:
            metrics.inc_stream_response(e.status_code)
            raise
        metrics.inc_stream_response(plan.status_code)
        return plan

    async def _plan(self, track_id: uuid.UUID, principal: Principal, range_header: Optional[str]) -> StreamPlan:
        asset = await self.resolve(track_id)
        if asset is None:
            raise AssetNotReady(track_id=str(track_id), headers=dict(ACCEPT_RANGES))

        if not await self._entitlement.is_entitled(principal, track_id):
            logger.info(
                "Stream denied",
                extra={"track_id": str(track_id), "principal_id": principal.id},
            )
            raise NotEntitled(track_id=str(track_id), headers=dict(ACCEPT_RANGES))

        total = asset.size
        span = parse_range(range_header, total)
        headers = dict(ACCEPT_RANGES)
        if span is None:
            span = ByteSpan(start=0, end=total - 1)
            status_code = 200
        else:
            status_code = 206
            headers["Content-Range"] = f"bytes {span.start}-{span.end}/{total}"
        headers["Content-Length"] = str(span.length)

        return StreamPlan(
            asset=asset,
            status_code=status_code,
            span=span,
            headers=headers,
            _store=self._store,
            _chunk_size=self._chunk_size,
        )


__all__ = [
    "ByteSpan",
    "parse_range",
    "StreamableAsset",
    "StreamPlan",
    "StreamingService",
    "ACCEPT_RANGES",
]

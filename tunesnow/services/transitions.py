from __future__ import annotations

"""
Media object state machine: the transition table and batch aggregation.

Kept as plain data + pure functions so every writer (SQL and in-memory
repositories, the ingestion service) checks the same table at runtime.

    UPLOADING → UPLOADED → VALIDATED → INGESTED → READY
        └──────────┴───────────┴───────────┴──→ FAILED

READY and FAILED are terminal.
"""

from typing import Dict, FrozenSet, Iterable

from tunesnow.schemas.enums import BatchStatus, MediaState

TRANSITIONS: Dict[MediaState, FrozenSet[MediaState]] = {
    MediaState.UPLOADING: frozenset({MediaState.UPLOADED, MediaState.FAILED}),
    MediaState.UPLOADED: frozenset({MediaState.VALIDATED, MediaState.FAILED}),
    MediaState.VALIDATED: frozenset({MediaState.INGESTED, MediaState.FAILED}),
    MediaState.INGESTED: frozenset({MediaState.READY, MediaState.FAILED}),
    MediaState.READY: frozenset(),
    MediaState.FAILED: frozenset(),
}

# `trigger_ingest` on these returns the current state without doing anything.
# INGESTED is not listed: it only gets the READY check, never earlier steps.
INGEST_NOOP_STATES: FrozenSet[MediaState] = frozenset({MediaState.READY, MediaState.FAILED})


def is_allowed(source: MediaState, target: MediaState) -> bool:
    return target in TRANSITIONS.get(source, frozenset())


def aggregate_batch_status(states: Iterable[MediaState]) -> BatchStatus:
    """READY iff every member is READY; FAILED if any member failed; else IN_PROGRESS.

    An empty batch is IN_PROGRESS (nothing has been uploaded yet).
    """
    seen = list(states)
    if any(s == MediaState.FAILED for s in seen):
        return BatchStatus.FAILED
    if seen and all(s == MediaState.READY for s in seen):
        return BatchStatus.READY
    return BatchStatus.IN_PROGRESS


__all__ = ["TRANSITIONS", "INGEST_NOOP_STATES", "is_allowed", "aggregate_batch_status"]

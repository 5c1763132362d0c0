from __future__ import annotations

"""Prometheus metrics for the ingestion pipeline and streaming service.

Thin helper functions keep label handling in one place so call sites read
`inc_transition("READY")` rather than poking collectors directly.
"""

from prometheus_client import Counter, Histogram

media_transitions_total = Counter(
    "ingest_media_transitions_total",
    "Applied media object state transitions",
    labelnames=("target",),
)
media_transition_misses_total = Counter(
    "ingest_media_transition_misses_total",
    "Transitions rejected by compare-and-swap or the transition table",
    labelnames=("target",),
)
media_failures_total = Counter(
    "ingest_media_failures_total",
    "Media objects moved to FAILED",
    labelnames=("error_kind",),
)
reconcile_conflicts_total = Counter(
    "catalog_reconcile_conflicts_total",
    "Unique-key collisions resolved by re-reading the winner",
)
reconcile_latency = Histogram(
    "catalog_reconcile_seconds",
    "Latency of catalog reconciliation",
    labelnames=("result",),
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)
upload_grants_total = Counter(
    "ingest_upload_grants_total",
    "Number of signed upload grants issued",
    labelnames=("kind",),
)
postprocess_failures_total = Counter(
    "ingest_postprocess_failures_total",
    "Best-effort post-processing failures",
    labelnames=("step",),
)
stream_responses_total = Counter(
    "stream_responses_total",
    "Streaming responses by status code",
    labelnames=("status",),
)
stream_bytes_total = Counter(
    "stream_bytes_total",
    "Bytes sent by the streaming service",
)


def inc_transition(target: str) -> None:
    media_transitions_total.labels(target=target).inc()


def inc_transition_miss(target: str) -> None:
    media_transition_misses_total.labels(target=target).inc()


def inc_failure(error_kind: str) -> None:
    media_failures_total.labels(error_kind=error_kind).inc()


def inc_reconcile_conflict() -> None:
    reconcile_conflicts_total.inc()


def observe_reconcile_seconds(result: str, seconds: float) -> None:
    reconcile_latency.labels(result=result).observe(seconds)


def inc_upload_grant(kind: str) -> None:
    upload_grants_total.labels(kind=kind).inc()


def inc_postprocess_failure(step: str) -> None:
    postprocess_failures_total.labels(step=step).inc()


def inc_stream_response(status: int) -> None:
    stream_responses_total.labels(status=str(status)).inc()


def add_stream_bytes(n: int) -> None:
    if n > 0:
        stream_bytes_total.inc(n)


__all__ = [
    "inc_transition",
    "inc_transition_miss",
    "inc_failure",
    "inc_reconcile_conflict",
    "observe_reconcile_seconds",
    "inc_upload_grant",
    "inc_postprocess_failure",
    "inc_stream_response",
    "add_stream_bytes",
]

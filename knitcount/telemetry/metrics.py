"""Prometheus metrics for counter engine activity."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

COUNTER_MUTATIONS = Counter(
    "knitcount_counter_mutations_total",
    "Committed counter value mutations",
    labelnames=("action",),
)
CASCADE_STEPS = Counter(
    "knitcount_cascade_steps_total",
    "Cascade actions applied to linked counters",
)
CASCADE_SKIPS = Counter(
    "knitcount_cascade_skips_total",
    "Cascade edges skipped while applying a root update",
    labelnames=("reason",),
)
BOUNDS_REJECTIONS = Counter(
    "knitcount_bounds_rejections_total",
    "Root updates rejected because they would leave the counter's bounds",
)
SYNC_EVENTS_DROPPED = Counter(
    "knitcount_sync_events_dropped_total",
    "Counter events dropped because a subscriber queue was full",
)

HTTP_REQUESTS = Counter(
    "knitcount_http_requests_total",
    "HTTP requests served, labelled by route template",
    labelnames=("method", "route", "status"),
)
HTTP_LATENCY = Histogram(
    "knitcount_http_request_duration_seconds",
    "Time spent serving HTTP requests",
    labelnames=("method", "route"),
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5),
)

"""Prometheus counters shared by the engine, the adapter and the server."""

from prometheus_client import Counter, Histogram

REDACTIONS = Counter(
    "logmask_redactions_total",
    "Total spans replaced",
    ["rule_id"],
)
MASKING_FAILURES = Counter(
    "logmask_masking_failures_total",
    "Masking failures recovered by the adapter",
    ["mode"],
)
DROPPED_EVENTS = Counter(
    "logmask_dropped_events_total",
    "Log events suppressed after a masking failure",
)
REQUEST_COUNT = Counter(
    "logmask_requests_total",
    "Total requests",
    ["endpoint", "status"],
)
REQUEST_DURATION = Histogram(
    "logmask_request_duration_seconds",
    "Request duration in seconds",
    ["endpoint"],
)

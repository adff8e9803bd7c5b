"""Prometheus metric definitions shared across services."""

from prometheus_client import Counter, Gauge, Histogram, generate_latest
from starlette.responses import Response


entries_received_total = Counter("entries_received_total", "Entries accepted by the gateway", ["service"])
entries_committed_total = Counter(
    "entries_committed_total",
    "Entries upserted into the ledger",
    ["service", "outcome"],
)
rate_limit_rejections_total = Counter(
    "rate_limit_rejections_total",
    "Requests rejected by the fixed-window rate limiter",
    ["service", "action"],
)
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["service", "route", "method", "status_code"],
)
http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration seconds",
    ["service", "route", "method"],
)
event_queue_delay_seconds = Histogram(
    "event_queue_delay_seconds",
    "Event queue delay seconds between occurred_at and consume time",
    ["service", "topic"],
)
outbox_pending_total = Gauge(
    "outbox_pending_total",
    "Current count of outbox events not yet sent",
    ["service"],
)
outbox_oldest_pending_age_seconds = Gauge(
    "outbox_oldest_pending_age_seconds",
    "Age in seconds of the oldest pending outbox event",
    ["service"],
)
transaction_conflicts_total = Counter(
    "transaction_conflicts_total",
    "Optimistic transaction conflicts that triggered a retry",
    ["service", "operation"],
)
transaction_exhausted_total = Counter(
    "transaction_exhausted_total",
    "Optimistic transactions that ran out of attempts",
    ["service", "operation"],
)
duplicate_events_skipped_total = Counter(
    "duplicate_events_skipped_total",
    "Duplicate inbox events skipped",
    ["service", "topic"],
)
side_effect_failures_total = Counter(
    "side_effect_failures_total",
    "Best-effort side effects that failed and were logged",
    ["service", "side_effect"],
)
notifications_processed_total = Counter(
    "notifications_processed_total",
    "Notification tasks moved to a terminal state",
    ["service", "status"],
)
notification_tick_seconds = Histogram(
    "notification_tick_seconds",
    "Duration of one notification dispatch tick",
    ["service"],
)


def metrics_response() -> Response:
    """Expose all registered Prometheus metrics in text format."""

    return Response(content=generate_latest(), media_type="text/plain")

"""Prometheus metric definitions shared across services."""

from prometheus_client import Counter, Gauge, Histogram, generate_latest
from starlette.responses import Response


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
audience_preview_seconds = Histogram(
    "audience_preview_seconds",
    "Audience preview evaluation duration seconds",
    ["service"],
)
segment_recount_failures_total = Counter(
    "segment_recount_failures_total",
    "Segment user-count recalculations that failed and were skipped",
    ["service"],
)
campaign_transitions_total = Counter(
    "campaign_transitions_total",
    "Campaign lifecycle transitions applied",
    ["service", "from_state", "to_state"],
)
campaign_progress_updates_total = Counter(
    "campaign_progress_updates_total",
    "Delivery progress writes applied to campaigns",
    ["service", "source"],
)
payment_rechecks_total = Counter(
    "payment_rechecks_total",
    "Donation payment rechecks by outcome",
    ["service", "result"],
)
gateway_request_seconds = Histogram(
    "gateway_request_seconds",
    "Payment gateway request latency seconds",
    ["service", "outcome"],
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
duplicate_events_skipped_total = Counter(
    "duplicate_events_skipped_total",
    "Duplicate inbox events skipped",
    ["service", "topic"],
)


def metrics_response() -> Response:
    """Expose all registered Prometheus metrics in text format."""

    return Response(content=generate_latest(), media_type="text/plain")

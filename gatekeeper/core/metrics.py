"""Prometheus collectors"""

from prometheus_client import Counter, Gauge, Histogram

REQUEST_COUNT = Counter(
    "gatekeeper_http_requests_total",
    "HTTP requests by method, route template and status",
    ["method", "path", "status"],
)
REQUEST_LATENCY = Histogram(
    "gatekeeper_http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)
ACCESS_DECISIONS = Counter(
    "gatekeeper_access_decisions_total",
    "Access decisions by outcome",
    ["result"],
)
EVENT_SUBSCRIBERS = Gauge(
    "gatekeeper_event_subscribers",
    "Live event stream subscriptions in this process",
)
MAINTENANCE_WORKER_UP = Gauge(
    "gatekeeper_maintenance_worker_up",
    "Maintenance worker liveness (1 running, 0 stopped)",
)

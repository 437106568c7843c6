"""Prometheus metrics for matching and notification dispatch."""

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest

# Separate registry to avoid default Python process metrics
REGISTRY = CollectorRegistry()

# --- Gauges ---

ridematch_drivers_available = Gauge(
    "ridematch_drivers_available",
    "Number of drivers currently held in the spatial index",
    registry=REGISTRY,
)

ridematch_dispatch_queue_depth = Gauge(
    "ridematch_dispatch_queue_depth",
    "Notification items waiting in the dispatch queue",
    registry=REGISTRY,
)

# --- Counters ---

ridematch_notifications_total = Counter(
    "ridematch_notifications_total",
    "Notification jobs by outcome",
    ["outcome"],
    registry=REGISTRY,
)

ridematch_cache_requests_total = Counter(
    "ridematch_cache_requests_total",
    "Availability cache lookups by kind and result",
    ["kind", "result"],
    registry=REGISTRY,
)

ridematch_errors_total = Counter(
    "ridematch_errors_total",
    "Errors by component and type",
    ["component", "error_type"],
    registry=REGISTRY,
)

# --- Histograms ---

QUERY_LATENCY_BUCKETS = (0.0001, 0.0005, 0.001, 0.005, 0.01, 0.025, 0.05, 0.1, float("inf"))
DELIVERY_LATENCY_BUCKETS = (0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, float("inf"))

ridematch_index_query_seconds = Histogram(
    "ridematch_index_query_seconds",
    "Spatial index radius query latency in seconds",
    buckets=QUERY_LATENCY_BUCKETS,
    registry=REGISTRY,
)

ridematch_delivery_seconds = Histogram(
    "ridematch_delivery_seconds",
    "Delivery provider call latency in seconds",
    buckets=DELIVERY_LATENCY_BUCKETS,
    registry=REGISTRY,
)


def record_notification(outcome: str, count: int = 1) -> None:
    """outcome is one of: enqueued, delivered, failed, dead."""
    ridematch_notifications_total.labels(outcome=outcome).inc(count)


def record_cache_lookup(kind: str, hit: bool) -> None:
    ridematch_cache_requests_total.labels(kind=kind, result="hit" if hit else "miss").inc()


def record_error(component: str, error_type: str) -> None:
    ridematch_errors_total.labels(component=component, error_type=error_type).inc()


def generate_metrics() -> bytes:
    """Prometheus text exposition of all ridematch metrics."""
    return generate_latest(REGISTRY)

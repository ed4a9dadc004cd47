"""
Prometheus-based metrics for production monitoring.
Provides /metrics endpoint for scraping.
"""
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import APIRouter, Response


# Counters
payments_created_total = Counter(
    "payments_created_total",
    "Total payments created, by outcome of the gateway call",
    ["method", "outcome"],  # outcome: created / gateway_error
)

payment_webhooks_total = Counter(
    "payment_webhooks_total",
    "Total VIP webhook deliveries",
    ["webhook_status", "transitioned"],
)

vip_upgrades_total = Counter(
    "vip_upgrades_total",
    "Total VIP grants",
    ["source"],  # webhook / manual
)

payments_cancelled_total = Counter(
    "payments_cancelled_total",
    "Total user-cancelled payments",
)

oxapay_requests_total = Counter(
    "oxapay_requests_total",
    "Total OxaPay API requests",
    ["endpoint", "status"],
)

chat_messages_sent_total = Counter(
    "chat_messages_sent_total",
    "Total chat messages stored",
)

chat_requests_total = Counter(
    "chat_requests_total",
    "Chat request transitions",
    ["status"],  # PENDING (created) / ACCEPTED / REJECTED
)

scheduled_posts_published_total = Counter(
    "scheduled_posts_published_total",
    "Total scheduled posts published by the cron job",
)

feed_cache_requests_total = Counter(
    "feed_cache_requests_total",
    "Feed listing cache lookups",
    ["result"],  # hit / miss
)

circuit_breaker_state = Gauge(
    "circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=open)",
    ["name"],
)

# Histograms
oxapay_request_duration_seconds = Histogram(
    "oxapay_request_duration_seconds",
    "OxaPay API request duration",
    ["endpoint"],
    buckets=[0.1, 0.5, 1, 2, 5, 10, 30],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration",
    ["method", "status_code"],
    buckets=[0.01, 0.05, 0.1, 0.5, 1, 2, 5],
)


# Metrics endpoint router
router = APIRouter()


@router.get("/metrics")
def metrics_endpoint() -> Response:
    """Prometheus metrics endpoint for scraping."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )

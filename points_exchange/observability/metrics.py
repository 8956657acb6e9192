"""
Prometheus metrics for the points-exchange client.

Provides RED metrics for backend calls plus exchange-flow business counters.
"""

from prometheus_client import REGISTRY, Counter, Histogram, generate_latest

metrics_registry = REGISTRY

# Backend API calls (RED - Rate, Errors, Duration)
api_requests_total = Counter(
    "points_api_requests_total",
    "Total backend API requests",
    ["method", "endpoint", "outcome"],
    registry=metrics_registry,
)

api_request_duration_seconds = Histogram(
    "points_api_request_duration_seconds",
    "Backend API request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
    registry=metrics_registry,
)

# Exchange flow
verification_codes_sent_total = Counter(
    "points_verification_codes_sent_total",
    "Verification code dispatch attempts",
    ["outcome"],
    registry=metrics_registry,
)

exchange_submissions_total = Counter(
    "points_exchange_submissions_total",
    "Exchange submissions by outcome and error kind",
    ["outcome", "kind"],
    registry=metrics_registry,
)

exchange_validation_failures_total = Counter(
    "points_exchange_validation_failures_total",
    "Exchange requests rejected by local eligibility checks",
    ["check"],
    registry=metrics_registry,
)

# Session
session_invalidations_total = Counter(
    "points_session_invalidations_total",
    "Credentials cleared because the backend reported an auth failure",
    registry=metrics_registry,
)


def render_metrics() -> bytes:
    """Prometheus text exposition of every client metric."""
    return generate_latest(metrics_registry)

"""
Observability for the points-exchange client: redacting structured logs with
correlation IDs, and Prometheus counters for backend calls and the exchange flow.
"""

from .logging import build_handler, correlation_id_context, get_correlation_id, get_logger, setup_logging
from .metrics import (
    api_request_duration_seconds,
    api_requests_total,
    exchange_submissions_total,
    exchange_validation_failures_total,
    metrics_registry,
    render_metrics,
    session_invalidations_total,
    verification_codes_sent_total,
)

__all__ = [
    "build_handler",
    "correlation_id_context",
    "get_correlation_id",
    "get_logger",
    "setup_logging",
    "api_request_duration_seconds",
    "api_requests_total",
    "exchange_submissions_total",
    "exchange_validation_failures_total",
    "metrics_registry",
    "render_metrics",
    "session_invalidations_total",
    "verification_codes_sent_total",
]

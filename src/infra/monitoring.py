"""
Prometheus Monitoring for the Viseu letter guard.

Provides Prometheus metrics for:
- Pipeline decisions per stage (rate limit, input, abuse, output)
- Abuse risk score distribution
- Letters generated, by source (model or fallback template)
- Model call latency
- Currently blocked identifiers
- HTTP request latency and status

Used by the ``/metrics`` endpoint for Prometheus scraping.
"""

from __future__ import annotations

import time
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest

# =============================================================================
# Metrics Definitions
# =============================================================================

guard_decisions_total = Counter(
    "viseu_guard_decisions_total",
    "Security pipeline decisions",
    ["stage", "outcome"],
)

abuse_risk_score = Histogram(
    "viseu_abuse_risk_score",
    "Abuse risk score of analyzed requests",
    buckets=(0, 10, 20, 30, 40, 50, 60, 70, 80, 90, 100),
)

letters_generated_total = Counter(
    "viseu_letters_generated_total",
    "Letters returned to citizens",
    ["source"],
)

model_call_duration_seconds = Histogram(
    "viseu_model_call_duration_seconds",
    "Letter model call latency in seconds",
    ["outcome"],
    buckets=(0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 15.0, 30.0),
)

blocked_identifiers_gauge = Gauge(
    "viseu_blocked_identifiers",
    "Identifiers currently on the abuse blocklist",
)

http_requests_total = Counter(
    "viseu_http_requests_total",
    "Total HTTP requests received",
    ["method", "endpoint", "status"],
)

http_request_duration_seconds = Histogram(
    "viseu_http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "endpoint"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)


# =============================================================================
# Metrics Recording Functions
# =============================================================================


def record_decision(stage: str, outcome: str) -> None:
    """
    Record one pipeline decision.

    Args:
        stage: rate_limit, input, abuse or output
        outcome: allowed, denied, rejected, sanitized, fallback, ...
    """
    guard_decisions_total.labels(stage=stage, outcome=outcome).inc()


def record_risk_score(score: int) -> None:
    abuse_risk_score.observe(score)


def record_letter(source: str) -> None:
    letters_generated_total.labels(source=source).inc()


def update_blocked_identifiers(count: int) -> None:
    blocked_identifiers_gauge.set(count)


def record_request(method: str, endpoint: str, status: int, duration_seconds: float) -> None:
    http_requests_total.labels(method=method, endpoint=endpoint, status=str(status)).inc()
    http_request_duration_seconds.labels(method=method, endpoint=endpoint).observe(duration_seconds)


# =============================================================================
# Context Managers for Automatic Timing
# =============================================================================


@contextmanager
def track_model_call() -> Iterator[dict[str, Any]]:
    """
    Time a model call.

    Usage:
        >>> with track_model_call() as ctx:
        ...     text = await generator.generate(prompt)
        ...     ctx["outcome"] = "success"
    """
    start_time = time.perf_counter()
    ctx: dict[str, Any] = {"outcome": "error"}
    try:
        yield ctx
    finally:
        model_call_duration_seconds.labels(outcome=ctx["outcome"]).observe(
            time.perf_counter() - start_time
        )


# =============================================================================
# Prometheus Metrics Export
# =============================================================================


def metrics_response() -> tuple[bytes, str]:
    """Return the exposition payload and its content type."""
    return generate_latest(), CONTENT_TYPE_LATEST


__all__ = [
    "metrics_response",
    "record_decision",
    "record_letter",
    "record_request",
    "record_risk_score",
    "track_model_call",
    "update_blocked_identifiers",
]

"""
Infrastructure module for the Viseu letter guard.

Provides:
- Prometheus metrics for pipeline decisions, letters and HTTP requests
- HTTP middleware (security headers, correlation IDs)
"""

from src.infra.middleware import CorrelationIDMiddleware, SecurityHeadersMiddleware
from src.infra.monitoring import (
    metrics_response,
    record_decision,
    record_letter,
    record_request,
    record_risk_score,
    track_model_call,
    update_blocked_identifiers,
)

__all__ = [
    # Monitoring
    "metrics_response",
    "record_decision",
    "record_letter",
    "record_request",
    "record_risk_score",
    "track_model_call",
    "update_blocked_identifiers",
    # Middleware
    "CorrelationIDMiddleware",
    "SecurityHeadersMiddleware",
]

"""
Tests for Prometheus monitoring.

Test coverage:
- Metric recording functions
- Model call timing context manager
- Metrics export
"""

from __future__ import annotations

import pytest
from prometheus_client import REGISTRY

from src.infra.monitoring import (
    metrics_response,
    record_decision,
    record_letter,
    record_request,
    record_risk_score,
    track_model_call,
    update_blocked_identifiers,
)


def _sample(name: str, **labels: str) -> float:
    return REGISTRY.get_sample_value(name, labels) or 0.0


# =============================================================================
# Recording Functions
# =============================================================================


def test_record_decision() -> None:
    before = _sample("viseu_guard_decisions_total", stage="abuse", outcome="denied")
    record_decision("abuse", "denied")
    assert _sample("viseu_guard_decisions_total", stage="abuse", outcome="denied") == before + 1


def test_record_letter() -> None:
    before = _sample("viseu_letters_generated_total", source="fallback")
    record_letter("fallback")
    assert _sample("viseu_letters_generated_total", source="fallback") == before + 1


def test_record_risk_score() -> None:
    before = _sample("viseu_abuse_risk_score_count")
    record_risk_score(60)
    assert _sample("viseu_abuse_risk_score_count") == before + 1


def test_update_blocked_identifiers() -> None:
    update_blocked_identifiers(3)
    assert _sample("viseu_blocked_identifiers") == 3
    update_blocked_identifiers(0)
    assert _sample("viseu_blocked_identifiers") == 0


def test_record_request() -> None:
    labels = {"method": "POST", "endpoint": "/api/v1/letters", "status": "200"}
    before = _sample("viseu_http_requests_total", **labels)
    record_request("POST", "/api/v1/letters", 200, 0.05)
    assert _sample("viseu_http_requests_total", **labels) == before + 1


# =============================================================================
# Context Managers
# =============================================================================


def test_track_model_call_success() -> None:
    before = _sample("viseu_model_call_duration_seconds_count", outcome="success")
    with track_model_call() as ctx:
        ctx["outcome"] = "success"
    assert _sample("viseu_model_call_duration_seconds_count", outcome="success") == before + 1


def test_track_model_call_error_by_default() -> None:
    before = _sample("viseu_model_call_duration_seconds_count", outcome="error")
    with pytest.raises(RuntimeError), track_model_call():
        raise RuntimeError("provider down")
    assert _sample("viseu_model_call_duration_seconds_count", outcome="error") == before + 1


# =============================================================================
# Export
# =============================================================================


def test_metrics_response() -> None:
    record_decision("rate_limit", "allowed")
    payload, content_type = metrics_response()
    assert b"viseu_guard_decisions_total" in payload
    assert content_type.startswith("text/plain")

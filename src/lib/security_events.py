"""
Security event log for the AI-request pipeline.

Keeps the most recent security events (denials, rejections, auto-blocks) in a
bounded in-memory buffer that the admin dashboard can query, and mirrors
every event to structlog so operators can audit false positives from the
regular log stream.

The buffer is observability only: it is not persisted and a process restart
empties it.

Usage:
    security_log = SecurityLogger()
    security_log.log(
        SecurityEventType.RATE_LIMIT_EXCEEDED,
        identifier="1.2.3.4",
        details={"reason": "too many requests per minute"},
        severity=Severity.MEDIUM,
    )
    security_log.get_events(severity=Severity.HIGH)
    security_log.get_stats()
"""

from __future__ import annotations

import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

import structlog

from src.lib.logging import hash_identifier

logger = structlog.get_logger(__name__)


class SecurityEventType(StrEnum):
    """Kinds of security decisions recorded by the pipeline."""

    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    INPUT_SANITIZED = "input_sanitized"
    INPUT_REJECTED = "input_rejected"
    OUTPUT_SANITIZED = "output_sanitized"
    OUTPUT_REJECTED = "output_rejected"
    ABUSE_DETECTED = "abuse_detected"
    IP_BLOCKED = "ip_blocked"
    PROMPT_INJECTION_ATTEMPT = "prompt_injection_attempt"
    MALICIOUS_CONTENT = "malicious_content"
    TOKEN_LIMIT_EXCEEDED = "token_limit_exceeded"
    COST_LIMIT_EXCEEDED = "cost_limit_exceeded"


class Severity(StrEnum):
    """Event severity levels."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# structlog method per severity
_LOG_METHODS: dict[Severity, str] = {
    Severity.LOW: "info",
    Severity.MEDIUM: "warning",
    Severity.HIGH: "warning",
    Severity.CRITICAL: "error",
}

# Keys the log call sets itself; details may not shadow them
_RESERVED_LOG_KEYS = frozenset({"event", "event_type", "severity", "client"})


@dataclass(frozen=True)
class SecurityEvent:
    """A single recorded security event.

    Attributes:
        type: What happened.
        timestamp: Unix time in seconds when the event was logged.
        identifier: Client identifier (IP address in practice).
        details: Free-form context (reasons, scores, patterns).
        severity: Operator-facing severity.
    """

    type: SecurityEventType
    timestamp: float
    identifier: str
    details: dict[str, Any] = field(default_factory=dict)
    severity: Severity = Severity.LOW

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "timestamp": self.timestamp,
            "identifier": self.identifier,
            "details": self.details,
            "severity": self.severity.value,
        }


class SecurityLogger:
    """
    Bounded, thread-safe buffer of security events.

    Once ``max_events`` is reached the oldest event is evicted for every new
    one (FIFO).
    """

    DEFAULT_MAX_EVENTS = 1000

    def __init__(
        self,
        max_events: int = DEFAULT_MAX_EVENTS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._events: deque[SecurityEvent] = deque(maxlen=max_events)
        self._lock = threading.Lock()
        self._clock = clock

    @property
    def max_events(self) -> int:
        return self._events.maxlen or 0

    def log(
        self,
        event_type: SecurityEventType,
        identifier: str,
        details: dict[str, Any] | None = None,
        severity: Severity = Severity.LOW,
    ) -> SecurityEvent:
        """
        Timestamp and append an event, evicting the oldest when full.

        Returns:
            The stored SecurityEvent
        """
        event = SecurityEvent(
            type=event_type,
            timestamp=self._clock(),
            identifier=identifier,
            details=dict(details or {}),
            severity=severity,
        )
        with self._lock:
            self._events.append(event)

        log_method = getattr(logger, _LOG_METHODS[severity])
        log_method(
            "security_event",
            event_type=event_type.value,
            severity=severity.value,
            client=hash_identifier(identifier),
            **{k: v for k, v in event.details.items() if k not in _RESERVED_LOG_KEYS},
        )
        return event

    def get_events(
        self,
        event_type: SecurityEventType | None = None,
        severity: Severity | None = None,
        since: float | None = None,
    ) -> list[SecurityEvent]:
        """
        Return events (oldest first) matching every given filter.

        Args:
            event_type: Only events of this type
            severity: Only events of this severity
            since: Only events with timestamp >= since
        """
        with self._lock:
            events = list(self._events)

        if event_type is not None:
            events = [e for e in events if e.type == event_type]
        if severity is not None:
            events = [e for e in events if e.severity == severity]
        if since is not None:
            events = [e for e in events if e.timestamp >= since]
        return events

    def get_stats(self) -> dict[str, Any]:
        """Return total count plus counts grouped by type and by severity."""
        with self._lock:
            events = list(self._events)

        by_type: dict[str, int] = {}
        by_severity: dict[str, int] = {}
        for event in events:
            by_type[event.type.value] = by_type.get(event.type.value, 0) + 1
            by_severity[event.severity.value] = by_severity.get(event.severity.value, 0) + 1

        return {
            "total_events": len(events),
            "events_by_type": by_type,
            "events_by_severity": by_severity,
        }

    def clear(self) -> None:
        with self._lock:
            self._events.clear()


__all__ = [
    "SecurityEvent",
    "SecurityEventType",
    "SecurityLogger",
    "Severity",
]

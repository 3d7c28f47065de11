"""
Rate limiting for calls to the letter-generation model.

Admits or denies a model call before it happens, per client identifier
(client IP in practice) and system-wide:

- Request caps per minute, hour and day
- Token ceiling per request and token budget per hour
- Global hourly cap across all identifiers
- Estimated cost cap per hour (in cents)

State lives in process memory only; a restart resets every counter.

Usage:
    limiter = RateLimiter(RateLimitConfig())
    decision = limiter.check_limit("1.2.3.4", estimated_tokens=120)
    if not decision.allowed:
        return 429, {"Retry-After": str(decision.retry_after_seconds)}
    ...
    limiter.record_usage("1.2.3.4", actual_tokens=480)
"""

from __future__ import annotations

import math
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

import structlog

from src.config.security import RateLimitConfig
from src.lib.logging import hash_identifier

logger = structlog.get_logger(__name__)

MINUTE_SECONDS = 60
HOUR_SECONDS = 3600
DAY_SECONDS = 86400


class RateLimitKind(StrEnum):
    """Which limit denied a request."""

    MINUTE = "minute"
    HOUR = "hour"
    DAY = "day"
    REQUEST_TOKENS = "request_tokens"
    HOUR_TOKENS = "hour_tokens"
    GLOBAL = "global"
    COST = "cost"


@dataclass
class RateLimitEntry:
    """Counters for one window of one identifier (or the global window)."""

    reset_at: float
    first_request: float
    count: int = 0
    tokens: int = 0
    cost: float = 0.0

    @classmethod
    def open(cls, now: float, duration: float) -> RateLimitEntry:
        return cls(reset_at=now + duration, first_request=now)

    def is_expired(self, now: float) -> bool:
        return now > self.reset_at

    def add(self, tokens: int, cost: float) -> None:
        self.count += 1
        self.tokens += tokens
        self.cost += cost


@dataclass
class _IdentifierWindows:
    minute: RateLimitEntry | None = None
    hour: RateLimitEntry | None = None
    day: RateLimitEntry | None = None

    def is_empty(self) -> bool:
        return self.minute is None and self.hour is None and self.day is None


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of check_limit.

    ``retry_after_seconds`` is None when retrying cannot help (the request
    itself is too large).
    """

    allowed: bool
    reason: str | None = None
    retry_after_seconds: int | None = None
    kind: RateLimitKind | None = None


@dataclass(frozen=True)
class UsageStats:
    """Current counters of one identifier for dashboards."""

    requests: int
    tokens: int
    cost: float
    reset_in_seconds: float
    requests_last_minute: int = 0
    requests_today: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "requests": self.requests,
            "tokens": self.tokens,
            "cost": round(self.cost, 6),
            "reset_in_seconds": round(self.reset_in_seconds, 3),
            "requests_last_minute": self.requests_last_minute,
            "requests_today": self.requests_today,
        }


@dataclass
class RateLimiter:
    """
    Multi-window rate limiter with token and cost accounting.

    Check-and-increment happens under a single lock so concurrent requests
    from the same identifier can neither slip past a cap nor be counted
    twice.
    """

    config: RateLimitConfig = field(default_factory=RateLimitConfig)
    clock: Callable[[], float] = time.time

    def __post_init__(self) -> None:
        self._windows: dict[str, _IdentifierWindows] = {}
        now = self.clock()
        self._global = RateLimitEntry.open(now, HOUR_SECONDS)
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def estimate_cost(self, tokens: int) -> float:
        """Estimated cost of ``tokens`` in cents."""
        return (tokens / 1_000_000) * self.config.price_per_million_tokens * 100

    def check_limit(self, identifier: str, estimated_tokens: int = 1000) -> RateLimitDecision:
        """
        Decide whether a model call for ``identifier`` is admitted.

        Limits are evaluated in order and the first failure wins: minute,
        hour and day request caps, per-request token ceiling, hourly token
        budget, global hourly cap, hourly cost cap. On success every counter
        is incremented before the lock is released.

        Args:
            identifier: Opaque client identifier (IP address)
            estimated_tokens: Expected token consumption of the call

        Returns:
            RateLimitDecision
        """
        cfg = self.config
        now = self.clock()
        cost = self.estimate_cost(estimated_tokens)

        with self._lock:
            windows = self._windows.setdefault(identifier, _IdentifierWindows())
            minute = windows.minute = self._current(windows.minute, now, MINUTE_SECONDS)
            hour = windows.hour = self._current(windows.hour, now, HOUR_SECONDS)
            day = windows.day = self._current(windows.day, now, DAY_SECONDS)
            if self._global.is_expired(now):
                self._global = RateLimitEntry.open(now, HOUR_SECONDS)

            decision: RateLimitDecision | None = None
            if minute.count >= cfg.max_requests_per_minute:
                decision = self._deny(
                    RateLimitKind.MINUTE,
                    "Rate limit exceeded: too many requests per minute",
                    minute.reset_at - now,
                )
            elif hour.count >= cfg.max_requests_per_hour:
                decision = self._deny(
                    RateLimitKind.HOUR,
                    "Rate limit exceeded: too many requests per hour",
                    hour.reset_at - now,
                )
            elif day.count >= cfg.max_requests_per_day:
                decision = self._deny(
                    RateLimitKind.DAY,
                    "Rate limit exceeded: daily limit reached",
                    day.reset_at - now,
                )
            elif estimated_tokens > cfg.max_tokens_per_request:
                decision = RateLimitDecision(
                    allowed=False,
                    reason="Request too large: exceeds token limit per request",
                    kind=RateLimitKind.REQUEST_TOKENS,
                )
            elif hour.tokens + estimated_tokens > cfg.max_tokens_per_hour:
                decision = self._deny(
                    RateLimitKind.HOUR_TOKENS,
                    "Token limit exceeded for this hour",
                    hour.reset_at - now,
                )
            elif self._global.count >= cfg.max_global_requests_per_hour:
                decision = self._deny(
                    RateLimitKind.GLOBAL,
                    "System capacity reached, please try again later",
                    self._global.reset_at - now,
                )
            elif hour.cost + cost > cfg.max_cost_per_hour_cents:
                decision = self._deny(
                    RateLimitKind.COST,
                    "Cost limit exceeded for this hour",
                    hour.reset_at - now,
                )

            if decision is None:
                minute.add(estimated_tokens, cost)
                hour.add(estimated_tokens, cost)
                day.add(estimated_tokens, cost)
                self._global.add(estimated_tokens, cost)
                return RateLimitDecision(allowed=True)

        logger.warning(
            "rate_limit_exceeded",
            client=hash_identifier(identifier),
            kind=decision.kind.value if decision.kind else None,
            retry_after=decision.retry_after_seconds,
            estimated_tokens=estimated_tokens,
        )
        return decision

    @staticmethod
    def _current(entry: RateLimitEntry | None, now: float, duration: float) -> RateLimitEntry:
        """Return ``entry`` or a fresh window when it is missing or expired."""
        if entry is None or entry.is_expired(now):
            return RateLimitEntry.open(now, duration)
        return entry

    @staticmethod
    def _deny(kind: RateLimitKind, reason: str, seconds_left: float) -> RateLimitDecision:
        return RateLimitDecision(
            allowed=False,
            reason=reason,
            retry_after_seconds=max(1, math.ceil(seconds_left)),
            kind=kind,
        )

    # ------------------------------------------------------------------
    # Usage accounting
    # ------------------------------------------------------------------

    def record_usage(self, identifier: str, actual_tokens: int) -> None:
        """
        True-up the hourly token count after the model answered.

        Keeps the larger of the recorded estimate and the actual usage, so
        recorded usage never shrinks. Unknown identifiers are ignored.
        """
        with self._lock:
            windows = self._windows.get(identifier)
            if windows is None or windows.hour is None:
                return
            hour = windows.hour
            if actual_tokens > hour.tokens:
                extra = actual_tokens - hour.tokens
                hour.cost += self.estimate_cost(extra)
                hour.tokens = actual_tokens

    def get_usage_stats(self, identifier: str) -> UsageStats | None:
        """Current hourly counters of ``identifier``, or None if never seen."""
        now = self.clock()
        with self._lock:
            windows = self._windows.get(identifier)
            if windows is None or windows.hour is None:
                return None
            hour = windows.hour
            minute = windows.minute
            day = windows.day
            reset_at = minute.reset_at if minute is not None else hour.reset_at
            return UsageStats(
                requests=hour.count,
                tokens=hour.tokens,
                cost=hour.cost,
                reset_in_seconds=max(0.0, reset_at - now),
                requests_last_minute=minute.count if minute and not minute.is_expired(now) else 0,
                requests_today=day.count if day and not day.is_expired(now) else 0,
            )

    def get_global_stats(self) -> dict[str, Any]:
        """Aggregate counters of the current global hour."""
        now = self.clock()
        with self._lock:
            return {
                "requests": self._global.count,
                "tokens": self._global.tokens,
                "cost": round(self._global.cost, 6),
                "reset_in_seconds": round(max(0.0, self._global.reset_at - now), 3),
                "tracked_identifiers": len(self._windows),
            }

    def reset(self, identifier: str) -> None:
        """Forget every counter of ``identifier``."""
        with self._lock:
            self._windows.pop(identifier, None)
        logger.info("rate_limit_reset", client=hash_identifier(identifier))

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def sweep(self, now: float | None = None) -> int:
        """
        Evict windows that expired more than ``retention_seconds`` ago.

        Keys are snapshotted first and each identifier is processed under
        its own short lock acquisition, so request handling is never held up
        for the whole sweep. Also rolls the global window once its hour is
        over.

        Returns:
            Number of identifiers removed entirely
        """
        now = self.clock() if now is None else now
        retention = self.config.retention_seconds
        removed = 0

        with self._lock:
            keys = list(self._windows)
            if self._global.is_expired(now):
                self._global = RateLimitEntry.open(now, HOUR_SECONDS)

        for key in keys:
            with self._lock:
                windows = self._windows.get(key)
                if windows is None:
                    continue
                for name in ("minute", "hour", "day"):
                    entry: RateLimitEntry | None = getattr(windows, name)
                    if entry is not None and now > entry.reset_at + retention:
                        setattr(windows, name, None)
                if windows.is_empty():
                    del self._windows[key]
                    removed += 1

        if removed:
            logger.debug("rate_limiter_swept", removed=removed, remaining=len(self._windows))
        return removed


__all__ = [
    "RateLimitDecision",
    "RateLimitEntry",
    "RateLimitKind",
    "RateLimiter",
    "UsageStats",
]

"""
Circuit breaker around the external letter-generation model.

When the model provider keeps failing, calls are short-circuited so requests
go straight to the local letter template instead of waiting on a dead
upstream.

States:
- CLOSED: Normal operation, calls pass through.
- OPEN: Provider is unhealthy, calls are rejected immediately.
- HALF_OPEN: Testing recovery, limited calls allowed.

Usage:
    breaker = ModelCircuitBreaker(name="letter_model")
    async with breaker:
        text = await generator.generate(prompt)
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from enum import StrEnum
from typing import Any

import structlog

from src.lib.exceptions import CircuitOpenError

logger = structlog.get_logger(__name__)


class CircuitState(StrEnum):
    """Possible states for a circuit breaker."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class ModelCircuitBreaker:
    """
    Async circuit breaker, serialized with an asyncio.Lock.

    Args:
        name: Protected service name (used in logs).
        failure_threshold: Consecutive failures before opening.
        recovery_timeout: Seconds in OPEN before a HALF_OPEN trial call.
        half_open_max_calls: Trial calls allowed in HALF_OPEN.
        clock: Monotonic time source in seconds.
    """

    def __init__(
        self,
        name: str = "letter_model",
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        half_open_max_calls: int = 1,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.half_open_max_calls = half_open_max_calls
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._half_open_calls = 0
        self._last_failure_time: float | None = None
        self._lock = asyncio.Lock()

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    def _since_last_failure(self) -> float:
        if self._last_failure_time is None:
            return float("inf")
        return self._clock() - self._last_failure_time

    def _transition_to(self, new_state: CircuitState) -> None:
        old_state = self._state
        if old_state == new_state:
            return
        self._state = new_state
        logger.info(
            "circuit_breaker_transition",
            breaker=self.name,
            from_state=old_state.value,
            to_state=new_state.value,
        )

    async def allow_request(self) -> bool:
        """Return True if a call may go through now."""
        async with self._lock:
            if self._state == CircuitState.CLOSED:
                return True

            if self._state == CircuitState.OPEN:
                if self._since_last_failure() >= self.recovery_timeout:
                    self._transition_to(CircuitState.HALF_OPEN)
                    self._half_open_calls = 1
                    return True
                return False

            if self._half_open_calls < self.half_open_max_calls:
                self._half_open_calls += 1
                return True
            return False

    async def record_success(self) -> None:
        async with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._transition_to(CircuitState.CLOSED)
                self._half_open_calls = 0
            self._failure_count = 0

    async def record_failure(self) -> None:
        async with self._lock:
            self._last_failure_time = self._clock()
            self._failure_count += 1

            if self._state == CircuitState.HALF_OPEN:
                self._transition_to(CircuitState.OPEN)
                self._half_open_calls = 0
            elif self._state == CircuitState.CLOSED and self._failure_count >= self.failure_threshold:
                logger.warning(
                    "circuit_breaker_opened",
                    breaker=self.name,
                    failures=self._failure_count,
                    threshold=self.failure_threshold,
                )
                self._transition_to(CircuitState.OPEN)

    async def release_trial_call(self) -> None:
        """
        Give back a HALF_OPEN trial slot after a call was cancelled.

        The trial proved nothing, so the circuit returns to OPEN and waits a
        full recovery timeout before the next trial. CLOSED is left untouched.
        """
        async with self._lock:
            if self._state != CircuitState.HALF_OPEN:
                return
            self._last_failure_time = self._clock()
            self._half_open_calls = 0
            self._transition_to(CircuitState.OPEN)

    def retry_after_seconds(self) -> float:
        """Seconds until the circuit may attempt recovery (0 unless OPEN)."""
        if self._state != CircuitState.OPEN:
            return 0.0
        return max(0.0, self.recovery_timeout - self._since_last_failure())

    async def __aenter__(self) -> ModelCircuitBreaker:
        if not await self.allow_request():
            raise CircuitOpenError(self.name, self.retry_after_seconds())
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        if exc_type is None:
            await self.record_success()
        elif issubclass(exc_type, Exception):
            await self.record_failure()
        else:
            await self.release_trial_call()

    async def reset(self) -> None:
        """Manually close the circuit."""
        async with self._lock:
            old_state = self._state
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._half_open_calls = 0
            self._last_failure_time = None
        if old_state != CircuitState.CLOSED:
            logger.info("circuit_breaker_reset", breaker=self.name, from_state=old_state.value)

    def snapshot(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "state": self._state.value,
            "failure_count": self._failure_count,
            "retry_after_seconds": round(self.retry_after_seconds(), 3),
        }


__all__ = ["CircuitState", "ModelCircuitBreaker"]

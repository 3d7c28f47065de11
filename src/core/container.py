"""
Component wiring for the letter guard.

Builds the shared rate limiter, abuse detector, security event log, circuit
breaker and letter service from one SecurityConfig, together with the
background sweepers that keep their in-memory state bounded.

The API keeps one container per application; tests build their own with a
fake clock and generator.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date

import structlog

from src.config.security import SecurityConfig
from src.lib.abuse_detector import AbuseDetector
from src.lib.circuit_breaker import ModelCircuitBreaker
from src.lib.rate_limiter import RateLimiter
from src.lib.security_events import SecurityLogger
from src.services.letter_service import DEFAULT_GENERATION_TIMEOUT, LetterService, TextGenerator
from src.services.maintenance import PeriodicSweeper

logger = structlog.get_logger(__name__)


@dataclass
class SecurityContainer:
    """All stateful pipeline components of one application instance."""

    config: SecurityConfig
    rate_limiter: RateLimiter
    abuse_detector: AbuseDetector
    security_log: SecurityLogger
    circuit_breaker: ModelCircuitBreaker
    letter_service: LetterService
    sweepers: list[PeriodicSweeper] = field(default_factory=list)

    async def start(self) -> None:
        for sweeper in self.sweepers:
            await sweeper.start()

    async def stop(self) -> None:
        for sweeper in self.sweepers:
            await sweeper.stop()


def build_container(
    config: SecurityConfig | None = None,
    generator: TextGenerator | None = None,
    clock: Callable[[], float] = time.time,
    today: Callable[[], date] = date.today,
    generation_timeout: float = DEFAULT_GENERATION_TIMEOUT,
) -> SecurityContainer:
    """
    Wire every component from ``config``.

    Args:
        config: Security configuration (defaults to ``SecurityConfig.from_env()``)
        generator: Letter model; None serves fallback letters only
        clock: Wall clock shared by the limiter, detector and event log
        today: Date provider for letter headers
        generation_timeout: Seconds to wait for the letter model

    Returns:
        SecurityContainer with sweepers created but not started
    """
    config = config or SecurityConfig.from_env()

    rate_limiter = RateLimiter(config.rate_limit, clock=clock)
    abuse_detector = AbuseDetector(config.abuse_detection, clock=clock)
    security_log = SecurityLogger(max_events=config.sweep.event_log_capacity, clock=clock)
    circuit_breaker = ModelCircuitBreaker()

    letter_service = LetterService(
        rate_limiter,
        abuse_detector,
        security_log,
        config=config,
        generator=generator,
        circuit_breaker=circuit_breaker,
        generation_timeout=generation_timeout,
        today=today,
    )

    sweepers = [
        PeriodicSweeper("rate_limiter", config.sweep.rate_limiter_interval_seconds, rate_limiter.sweep),
        PeriodicSweeper("abuse_detector", config.sweep.abuse_detector_interval_seconds, abuse_detector.sweep),
    ]

    logger.info(
        "security_container_built",
        model_configured=generator is not None,
        rate_limit=config.features.rate_limit,
        input_validation=config.features.input_validation,
        output_validation=config.features.output_validation,
        abuse_detection=config.features.abuse_detection,
    )

    return SecurityContainer(
        config=config,
        rate_limiter=rate_limiter,
        abuse_detector=abuse_detector,
        security_log=security_log,
        circuit_breaker=circuit_breaker,
        letter_service=letter_service,
        sweepers=sweepers,
    )


__all__ = ["SecurityContainer", "build_container"]

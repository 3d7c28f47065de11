"""
Letter generation service.

Runs a citizen report through the AI-request security pipeline and returns a
formal letter:

    rate limit -> structural validation + sanitization -> abuse analysis
    -> model call (circuit breaker, timeout) -> output validation
    -> letter composition -> letter checks -> usage true-up

Any of the first three stages may deny the request; the denial is returned as
a ``Denial`` value, never raised. Model failures and rejected model output
fall back to the local letter template, so a request that passes the input
stages always yields a letter. Every consequential decision is recorded in
the SecurityLogger with a severity.

Usage:
    service = LetterService(limiter, detector, security_log, config, generator)
    outcome = await service.generate_letter("1.2.3.4", report)
    if outcome.denial:
        return outcome.denial.http_status, outcome.denial.reasons
    return outcome.letter
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from enum import StrEnum
from typing import Any, Protocol

import structlog

from src.config.security import SecurityConfig
from src.infra.monitoring import (
    record_decision,
    record_letter,
    record_risk_score,
    track_model_call,
    update_blocked_identifiers,
)
from src.lib import errors
from src.lib.abuse_detector import BLOCKED_REASON, AbuseDetector
from src.lib.circuit_breaker import ModelCircuitBreaker
from src.lib.exceptions import CircuitOpenError, GenerationError, GenerationTimeout, StateError
from src.lib.input_sanitizer import InputSanitizer
from src.lib.logging import hash_identifier
from src.lib.output_validator import OutputValidator
from src.lib.rate_limiter import RateLimiter, RateLimitKind
from src.lib.security_events import SecurityEventType, SecurityLogger, Severity
from src.services.letter_template import (
    build_secure_prompt,
    category_label,
    compose_fallback_letter,
    compose_letter,
)

logger = structlog.get_logger(__name__)

DEFAULT_GENERATION_TIMEOUT = 15.0


class TextGenerator(Protocol):
    """
    External letter model.

    Implementations raise GenerationError (or a subclass) when the provider
    fails or answers with something unusable.
    """

    async def generate(self, prompt: str) -> str: ...


class LetterSource(StrEnum):
    AI = "ai"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class Denial:
    """Why a request was refused and how the HTTP layer should answer."""

    code: str
    http_status: int
    reasons: list[str] = field(default_factory=list)
    retry_after: int | None = None


@dataclass(frozen=True)
class LetterOutcome:
    """Result of ``generate_letter``: either a letter or a denial."""

    letter: str | None = None
    source: LetterSource | None = None
    generated_at: datetime | None = None
    was_input_sanitized: bool = False
    estimated_tokens: int = 0
    structure_issues: list[str] = field(default_factory=list)
    denial: Denial | None = None

    @property
    def ok(self) -> bool:
        return self.denial is None


# Security event type per rate-limit denial kind
_RATE_LIMIT_EVENTS: dict[RateLimitKind, SecurityEventType] = {
    RateLimitKind.REQUEST_TOKENS: SecurityEventType.TOKEN_LIMIT_EXCEEDED,
    RateLimitKind.HOUR_TOKENS: SecurityEventType.TOKEN_LIMIT_EXCEEDED,
    RateLimitKind.COST: SecurityEventType.COST_LIMIT_EXCEEDED,
}


class LetterService:
    """Orchestrates the security pipeline around the letter model."""

    def __init__(
        self,
        rate_limiter: RateLimiter,
        abuse_detector: AbuseDetector,
        security_log: SecurityLogger,
        config: SecurityConfig | None = None,
        generator: TextGenerator | None = None,
        circuit_breaker: ModelCircuitBreaker | None = None,
        generation_timeout: float = DEFAULT_GENERATION_TIMEOUT,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.rate_limiter = rate_limiter
        self.abuse_detector = abuse_detector
        self.security_log = security_log
        self.config = config or SecurityConfig()
        self.generator = generator
        self.circuit_breaker = circuit_breaker or ModelCircuitBreaker()
        self.generation_timeout = generation_timeout
        self._today = today

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def generate_letter(self, identifier: str, report: Mapping[str, Any]) -> LetterOutcome:
        """
        Run ``report`` from ``identifier`` through the pipeline.

        Args:
            identifier: Client identifier (IP address)
            report: Report payload in the public wire shape

        Returns:
            LetterOutcome with a letter, or with ``denial`` set
        """
        features = self.config.features
        description = report.get("description")
        description_text = description if isinstance(description, str) else ""

        # 1. Rate limit
        if features.rate_limit:
            decision = self.rate_limiter.check_limit(
                identifier, InputSanitizer.estimate_tokens(description_text)
            )
            if not decision.allowed:
                event_type = _RATE_LIMIT_EVENTS.get(decision.kind, SecurityEventType.RATE_LIMIT_EXCEEDED)
                self.security_log.log(
                    event_type,
                    identifier,
                    {
                        "reason": decision.reason,
                        "kind": decision.kind.value if decision.kind else None,
                        "retry_after": decision.retry_after_seconds,
                    },
                    Severity.MEDIUM,
                )
                record_decision("rate_limit", "denied")
                return LetterOutcome(
                    denial=Denial(
                        code=errors.RATE_LIMITED,
                        http_status=429,
                        reasons=[decision.reason] if decision.reason else [],
                        retry_after=decision.retry_after_seconds,
                    )
                )
            record_decision("rate_limit", "allowed")

        # 2. Structure + sanitization
        working = dict(report)
        was_sanitized = False
        if features.input_validation:
            structure = InputSanitizer.validate_report_data(report)
            if not structure.is_valid:
                self.security_log.log(
                    SecurityEventType.INPUT_REJECTED,
                    identifier,
                    {"errors": structure.errors},
                    Severity.LOW,
                )
                record_decision("input", "invalid")
                return LetterOutcome(
                    denial=Denial(code=errors.VALIDATION_ERROR, http_status=400, reasons=structure.errors)
                )

            input_cfg = self.config.input_validation
            sanitization = InputSanitizer.sanitize(
                description,
                max_length=input_cfg.max_length,
                allow_pii=input_cfg.allow_pii,
                strict_mode=input_cfg.strict_mode,
            )
            if not sanitization.is_valid:
                self.security_log.log(
                    _input_event_type(sanitization.errors),
                    identifier,
                    {
                        "errors": sanitization.errors,
                        "removed_patterns": sanitization.metadata.removed_patterns,
                    },
                    Severity.HIGH,
                )
                record_decision("input", "rejected")
                return LetterOutcome(
                    denial=Denial(code=errors.INPUT_REJECTED, http_status=400, reasons=sanitization.errors)
                )

            if sanitization.was_modified:
                was_sanitized = True
                working["description"] = sanitization.sanitized_value
                self.security_log.log(
                    SecurityEventType.INPUT_SANITIZED,
                    identifier,
                    {
                        "warnings": sanitization.warnings,
                        "removed_patterns": sanitization.metadata.removed_patterns,
                    },
                    Severity.MEDIUM,
                )
                record_decision("input", "sanitized")
            else:
                record_decision("input", "clean")

        # 3. Abuse analysis
        if features.abuse_detection:
            analysis = self.abuse_detector.analyze_request(identifier, working)
            record_risk_score(analysis.risk_score)
            if analysis.auto_blocked:
                self.security_log.log(
                    SecurityEventType.IP_BLOCKED,
                    identifier,
                    {"risk_score": analysis.risk_score, "reasons": analysis.reasons},
                    Severity.CRITICAL,
                )
                update_blocked_identifiers(len(self.abuse_detector.blocked_identifiers()))
            if analysis.is_abusive:
                self.security_log.log(
                    SecurityEventType.ABUSE_DETECTED,
                    identifier,
                    {"reasons": analysis.reasons, "risk_score": analysis.risk_score},
                    Severity.CRITICAL if analysis.risk_score >= 80 else Severity.HIGH,
                )
                record_decision("abuse", "denied")
                code = errors.IDENTIFIER_BLOCKED if analysis.reasons == [BLOCKED_REASON] else errors.ABUSE_DETECTED
                return LetterOutcome(denial=Denial(code=code, http_status=429, reasons=analysis.reasons))
            record_decision("abuse", "allowed")

        # 4-6. Model, output validation, composition
        letter, source, issues = await self._produce_letter(identifier, working)

        # 7. Usage true-up
        tokens = InputSanitizer.estimate_tokens(letter)
        if features.rate_limit:
            self.rate_limiter.record_usage(identifier, tokens)

        record_letter(source.value)
        logger.info(
            "letter_generated",
            client=hash_identifier(identifier),
            source=source.value,
            tokens=tokens,
            sanitized=was_sanitized,
        )
        return LetterOutcome(
            letter=letter,
            source=source,
            generated_at=datetime.now(UTC),
            was_input_sanitized=was_sanitized,
            estimated_tokens=tokens,
            structure_issues=issues,
        )

    async def _produce_letter(
        self, identifier: str, report: Mapping[str, Any]
    ) -> tuple[str, LetterSource, list[str]]:
        today = self._today()
        fallback = compose_fallback_letter(report, today)

        if self.generator is None:
            logger.info("letter_model_not_configured")
            return fallback, LetterSource.FALLBACK, []

        body = await self._call_model(identifier, report)
        if body is None:
            return fallback, LetterSource.FALLBACK, []

        letter = compose_letter(report, body, today)
        check = OutputValidator.validate_letter(letter)
        if not check.is_valid:
            self.security_log.log(
                SecurityEventType.OUTPUT_SANITIZED,
                identifier,
                {"structure_issues": check.issues},
                Severity.MEDIUM,
            )
        return letter, LetterSource.AI, check.issues

    async def _call_model(self, identifier: str, report: Mapping[str, Any]) -> str | None:
        """Return the validated formal paragraph, or None to use the fallback."""
        if self.generator is None:
            raise StateError("No letter model configured")
        prompt = build_secure_prompt(str(report.get("description") or ""), category_label(report) or "Geral")

        try:
            with track_model_call() as ctx:
                async with self.circuit_breaker:
                    try:
                        raw = await asyncio.wait_for(self.generator.generate(prompt), self.generation_timeout)
                    except TimeoutError as e:
                        raise GenerationTimeout(f"Model did not answer within {self.generation_timeout}s") from e
                ctx["outcome"] = "success"
        except CircuitOpenError as e:
            logger.warning("letter_model_circuit_open", retry_after=round(e.retry_after, 1))
            record_decision("output", "fallback")
            return None
        except GenerationError as e:
            self.security_log.log(
                SecurityEventType.OUTPUT_REJECTED,
                identifier,
                {"error": type(e).__name__, "message": str(e)},
                Severity.HIGH,
            )
            record_decision("output", "fallback")
            return None

        if not self.config.features.output_validation:
            return raw.strip()

        output_cfg = self.config.output_validation
        validation = OutputValidator.validate(
            raw.strip(),
            max_length=output_cfg.max_length,
            min_length=output_cfg.min_length,
            strict_mode=output_cfg.strict_mode,
            check_structure=output_cfg.check_structure,
            max_toxicity=output_cfg.max_toxicity,
        )
        if not validation.is_valid:
            self.security_log.log(
                SecurityEventType.OUTPUT_REJECTED,
                identifier,
                {
                    "errors": validation.errors,
                    "warnings": validation.warnings,
                    "toxicity_score": validation.metadata.toxicity_score,
                },
                Severity.HIGH,
            )
            record_decision("output", "rejected")
            return None

        if validation.warnings:
            self.security_log.log(
                SecurityEventType.OUTPUT_SANITIZED,
                identifier,
                {"warnings": validation.warnings},
                Severity.LOW,
            )
            record_decision("output", "sanitized")
        else:
            record_decision("output", "accepted")
        return validation.sanitized_output

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def diagnostics(self, identifier: str) -> dict[str, Any]:
        """Read-only snapshot for the admin dashboard."""
        features = self.config.features
        usage = self.rate_limiter.get_usage_stats(identifier)
        return {
            "status": "operational",
            "security": {
                "rate_limit_enabled": features.rate_limit,
                "input_validation_enabled": features.input_validation,
                "output_validation_enabled": features.output_validation,
                "abuse_detection_enabled": features.abuse_detection,
            },
            "usage": usage.to_dict() if usage else None,
            "global_usage": self.rate_limiter.get_global_stats(),
            "system_metrics": {
                "abuse": self.abuse_detector.get_metrics().to_dict(),
                "security": self.security_log.get_stats(),
            },
            "circuit_breaker": self.circuit_breaker.snapshot(),
        }

    def unblock(self, identifier: str) -> bool:
        """Lift an abuse block. Returns True if the identifier was blocked."""
        unblocked = self.abuse_detector.unblock_identifier(identifier)
        update_blocked_identifiers(len(self.abuse_detector.blocked_identifiers()))
        return unblocked


def _input_event_type(input_errors: list[str]) -> SecurityEventType:
    if any(e.startswith("Potential prompt injection") for e in input_errors):
        return SecurityEventType.PROMPT_INJECTION_ATTEMPT
    if any(e.startswith("Malicious content") for e in input_errors):
        return SecurityEventType.MALICIOUS_CONTENT
    return SecurityEventType.INPUT_REJECTED


__all__ = [
    "Denial",
    "LetterOutcome",
    "LetterService",
    "LetterSource",
    "TextGenerator",
]

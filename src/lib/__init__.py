"""
Lib package for the Viseu letter guard.

Contains the security pipeline components:
- rate_limiter.py: Per-identifier request, token and cost windows
- input_sanitizer.py: Report validation and description sanitization
- abuse_detector.py: Heuristic abuse scoring and blocklist
- output_validator.py: Model output and letter checks
- security_events.py: Bounded security event log
- circuit_breaker.py: Circuit breaker around the letter model
- errors.py: Centralized error response builder with i18n

rate_limiter and abuse_detector read their settings from src.config.security,
which itself depends on this package, so they are imported from their
modules directly rather than re-exported here.
"""

from src.lib.circuit_breaker import CircuitState, ModelCircuitBreaker
from src.lib.errors import (
    ABUSE_DETECTED,
    FORBIDDEN,
    IDENTIFIER_BLOCKED,
    INPUT_REJECTED,
    INTERNAL_ERROR,
    NOT_FOUND,
    RATE_LIMITED,
    VALIDATION_ERROR,
    build_error_response,
    get_error_message,
)
from src.lib.input_sanitizer import (
    InputSanitizer,
    SanitizationResult,
    estimate_tokens,
    sanitize_input,
    validate_report_data,
)
from src.lib.output_validator import (
    OutputValidator,
    ValidationResult,
    sanitize_for_display,
    validate_letter,
    validate_output,
)
from src.lib.security_events import SecurityEvent, SecurityEventType, SecurityLogger, Severity

__all__ = [
    # Input
    "InputSanitizer",
    "SanitizationResult",
    "estimate_tokens",
    "sanitize_input",
    "validate_report_data",
    # Output
    "OutputValidator",
    "ValidationResult",
    "sanitize_for_display",
    "validate_letter",
    "validate_output",
    # Events
    "SecurityEvent",
    "SecurityEventType",
    "SecurityLogger",
    "Severity",
    # Circuit Breaker
    "CircuitState",
    "ModelCircuitBreaker",
    # Errors
    "ABUSE_DETECTED",
    "FORBIDDEN",
    "IDENTIFIER_BLOCKED",
    "INPUT_REJECTED",
    "INTERNAL_ERROR",
    "NOT_FOUND",
    "RATE_LIMITED",
    "VALIDATION_ERROR",
    "build_error_response",
    "get_error_message",
]

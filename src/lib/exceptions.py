"""
Custom exception hierarchy for the Viseu letter guard.

Expected-domain outcomes (rate limited, input rejected, abuse detected,
output rejected) are returned as result objects and never raised. The
exceptions below are reserved for configuration mistakes, corrupted internal
state and failures of the external text generator.

All exceptions inherit from ReportGuardError, enabling a catch-all for
project-specific errors while keeping the ability to catch specific types.
"""

from __future__ import annotations


class ReportGuardError(Exception):
    """Base exception for all letter guard errors."""


class ConfigurationError(ReportGuardError):
    """Invalid environment values or inconsistent security configuration."""


class SecurityError(ReportGuardError):
    """Unsafe security setup, such as wildcard CORS in production."""


class StateError(ReportGuardError):
    """A component was used in a state it cannot serve, such as a model call with no model."""


class GenerationError(ReportGuardError):
    """The external text generator failed or returned an unusable response."""


class GenerationTimeout(GenerationError):
    """The external text generator did not answer within the deadline."""


class CircuitOpenError(GenerationError):
    """Raised when a model call is skipped because the circuit is open."""

    def __init__(self, name: str, retry_after: float) -> None:
        self.name = name
        self.retry_after = retry_after
        super().__init__(
            f"Circuit breaker '{name}' is open. Retry after {retry_after:.1f}s."
        )

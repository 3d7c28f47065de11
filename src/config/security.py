"""
Security Configuration for the Viseu letter guard.

Every heuristic threshold used by the AI-request security pipeline lives here
as a named, overridable field. Defaults are the empirically tuned values the
municipal deployment runs with.

Overrides are read from ``VISEU_*`` environment variables, e.g.
``VISEU_RATE_MAX_PER_MINUTE=5`` or ``VISEU_ABUSE_BLOCK_THRESHOLD=90``.

Usage:
    from src.config.security import SecurityConfig

    config = SecurityConfig.from_env()
    limiter = RateLimiter(config.rate_limit)
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields, replace
from typing import Any

from src.lib.exceptions import ConfigurationError

ENV_PREFIX = "VISEU_"


@dataclass(frozen=True)
class RateLimitConfig:
    """Per-identifier, global and cost limits for model calls."""

    max_requests_per_minute: int = 3
    max_requests_per_hour: int = 20
    max_requests_per_day: int = 50
    max_tokens_per_request: int = 2000
    max_tokens_per_hour: int = 30000
    max_cost_per_hour_cents: float = 50.0
    max_global_requests_per_hour: int = 1000
    price_per_million_tokens: float = 0.20  # USD, blended input/output
    retention_seconds: int = 3600  # keep expired windows this long after reset


@dataclass(frozen=True)
class InputValidationConfig:
    """Options passed to the input sanitizer for report descriptions."""

    max_length: int = 2000
    allow_pii: bool = True  # citizens may need to include contact info
    strict_mode: bool = False


@dataclass(frozen=True)
class OutputValidationConfig:
    """Bounds applied to model output before it is composed into a letter."""

    min_length: int = 50
    max_length: int = 2000
    strict_mode: bool = False
    check_structure: bool = False  # the model writes only the body paragraph
    max_toxicity: int = 30


@dataclass(frozen=True)
class AbuseDetectionConfig:
    """Thresholds and score weights for the abuse detector."""

    abusive_threshold: int = 50
    block_threshold: int = 80
    auto_block: bool = True
    block_ttl_seconds: int | None = None  # None keeps blocks until manual unblock

    # Frequency analysis
    max_requests_last_minute: int = 10
    max_requests_last_hour: int = 50
    burst_min_requests: int = 5
    burst_mean_interval_ms: float = 1000.0
    weight_minute_excess: int = 30
    weight_hour_excess: int = 25
    weight_burst: int = 35

    # Duplicate analysis
    duplicate_hour_count: int = 5
    duplicate_minute_count: int = 3
    coordinated_min_sources: int = 4
    coordinated_min_count: int = 10
    weight_duplicate_hour: int = 20
    weight_duplicate_minute: int = 40
    weight_coordinated: int = 50

    # Bot timing analysis
    bot_min_history: int = 3
    bot_window: int = 10
    bot_stddev_ms: float = 100.0
    bot_mean_interval_ms: float = 5000.0
    bot_fast_interval_ms: float = 500.0
    bot_fast_min_count: int = 3
    weight_regular_pattern: int = 30
    weight_superhuman_speed: int = 25

    # Content analysis
    min_description_length: int = 5
    min_vowel_ratio: float = 0.2
    weight_short_description: int = 15
    weight_repeated_chars: int = 20
    weight_gibberish: int = 25
    weight_spam_indicator: int = 10
    weight_outside_region: int = 15
    weight_placeholder_coords: int = 20
    region_lat_min: float = 36.0
    region_lat_max: float = 42.5
    region_lng_min: float = -10.0
    region_lng_max: float = -6.0

    # State retention
    history_retention_seconds: int = 3600


@dataclass(frozen=True)
class SweepConfig:
    """Intervals of the background maintenance sweeps."""

    rate_limiter_interval_seconds: float = 60.0
    abuse_detector_interval_seconds: float = 300.0
    event_log_capacity: int = 1000


@dataclass(frozen=True)
class NetworkConfig:
    """How the API derives the client identifier."""

    # Only enable behind a reverse proxy that overwrites these headers
    trust_proxy_headers: bool = False


@dataclass(frozen=True)
class SecurityFeatures:
    """Pipeline stages that can be switched off for local debugging."""

    rate_limit: bool = True
    input_validation: bool = True
    output_validation: bool = True
    abuse_detection: bool = True


# Env variable prefix per section
_SECTION_PREFIXES: dict[str, str] = {
    "rate_limit": "RATE_",
    "input_validation": "INPUT_",
    "output_validation": "OUTPUT_",
    "abuse_detection": "ABUSE_",
    "sweep": "SWEEP_",
    "network": "NETWORK_",
    "features": "FEATURE_",
}

# Short env names for the most commonly tuned limits
_ENV_ALIASES: dict[str, tuple[str, str]] = {
    "VISEU_RATE_MAX_PER_MINUTE": ("rate_limit", "max_requests_per_minute"),
    "VISEU_RATE_MAX_PER_HOUR": ("rate_limit", "max_requests_per_hour"),
    "VISEU_RATE_MAX_PER_DAY": ("rate_limit", "max_requests_per_day"),
}


@dataclass(frozen=True)
class SecurityConfig:
    """Aggregate configuration for every pipeline component."""

    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    input_validation: InputValidationConfig = field(default_factory=InputValidationConfig)
    output_validation: OutputValidationConfig = field(default_factory=OutputValidationConfig)
    abuse_detection: AbuseDetectionConfig = field(default_factory=AbuseDetectionConfig)
    sweep: SweepConfig = field(default_factory=SweepConfig)
    network: NetworkConfig = field(default_factory=NetworkConfig)
    features: SecurityFeatures = field(default_factory=SecurityFeatures)

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> SecurityConfig:
        """
        Build configuration from defaults plus ``VISEU_*`` environment overrides.

        Field names map to ``VISEU_<SECTION>_<FIELD>`` in upper case, e.g.
        ``VISEU_ABUSE_BLOCK_TTL_SECONDS``.

        Args:
            environ: Mapping to read from (defaults to ``os.environ``)

        Returns:
            SecurityConfig with overrides applied

        Raises:
            ConfigurationError: If a variable cannot be parsed for its field type
        """
        env = os.environ if environ is None else environ
        base = cls()
        sections: dict[str, Any] = {}

        for section_name, prefix in _SECTION_PREFIXES.items():
            section = getattr(base, section_name)
            overrides: dict[str, Any] = {}
            for f in fields(section):
                var = f"{ENV_PREFIX}{prefix}{f.name.upper()}"
                if var in env:
                    overrides[f.name] = _parse_value(var, env[var], getattr(section, f.name))
            for alias, (alias_section, alias_field) in _ENV_ALIASES.items():
                if alias_section == section_name and alias in env:
                    overrides[alias_field] = _parse_value(
                        alias, env[alias], getattr(section, alias_field)
                    )
            sections[section_name] = replace(section, **overrides) if overrides else section

        return cls(**sections)


def _parse_value(name: str, raw: str, current: Any) -> Any:
    """Parse an env string into the type of the field's default value."""
    value = raw.strip()
    try:
        if isinstance(current, bool):
            if value.lower() in ("1", "true", "yes", "on"):
                return True
            if value.lower() in ("0", "false", "no", "off"):
                return False
            raise ValueError(value)
        if isinstance(current, int):
            return int(value)
        if isinstance(current, float):
            return float(value)
        if current is None:
            # Optional integer fields (block TTL)
            if value.lower() in ("", "none", "null"):
                return None
            return int(value)
    except ValueError as e:
        raise ConfigurationError(f"Invalid value for {name}: {raw!r}") from e
    return value


__all__ = [
    "AbuseDetectionConfig",
    "InputValidationConfig",
    "NetworkConfig",
    "OutputValidationConfig",
    "RateLimitConfig",
    "SecurityConfig",
    "SecurityFeatures",
    "SweepConfig",
]

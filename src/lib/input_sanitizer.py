"""
Input Sanitization for citizen report descriptions sent to the letter model.

Protects against:
- Prompt injection (instruction overrides, fake system delimiters, role-play
  hijacks, prompt extraction, jailbreak keywords)
- Malicious markup (iframes, embeds, data/vbscript URIs)
- PII exposure (Portuguese ID card, NIF, card numbers, IBAN, e-mail, phone)
- Excessive length and invisible-character obfuscation

Pattern matching is a best-effort layer, not a security boundary: adversarial
text can always be rephrased past a fixed regex list.

Usage:
    from src.lib.input_sanitizer import InputSanitizer

    result = InputSanitizer.sanitize(description, max_length=2000)
    if not result.is_valid:
        return 400, result.errors
    prompt_text = result.sanitized_value

    structure = InputSanitizer.validate_report_data(payload)
    tokens = InputSanitizer.estimate_tokens(description)
"""

from __future__ import annotations

import math
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import structlog

logger = structlog.get_logger(__name__)

REMOVED_PLACEHOLDER = "[REMOVED]"
REDACTED_PLACEHOLDER = "[REDACTED]"

# Average characters per token for Portuguese text
CHARS_PER_TOKEN = 3.5

VALID_URGENCIES = ("baixa", "media", "alta")
MIN_DESCRIPTION_LENGTH = 10
MAX_DESCRIPTION_LENGTH = 2000


# =============================================================================
# Result Types
# =============================================================================


@dataclass
class SanitizationMetadata:
    original_length: int = 0
    sanitized_length: int = 0
    removed_patterns: list[str] = field(default_factory=list)


@dataclass
class SanitizationResult:
    """Result of sanitizing one free-text value."""

    is_valid: bool
    sanitized_value: str
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    was_modified: bool = False
    metadata: SanitizationMetadata = field(default_factory=SanitizationMetadata)


@dataclass
class ReportValidationResult:
    """Result of structural validation of a report payload."""

    is_valid: bool
    errors: list[str] = field(default_factory=list)


# =============================================================================
# Input Sanitizer
# =============================================================================


class InputSanitizer:
    """
    Pattern-based sanitizer for text that will be embedded in a model prompt.

    All patterns are class-level and compiled once.
    """

    PROMPT_INJECTION_PATTERNS: list[re.Pattern[str]] = [
        # Instruction overrides
        re.compile(r"ignore\s+(previous|all|above|prior)\s+(instructions?|prompts?|commands?)", re.IGNORECASE),
        re.compile(r"disregard\s+(previous|all|above|prior)\s+(instructions?|prompts?)", re.IGNORECASE),
        re.compile(r"forget\s+(previous|all|above|prior)\s+(instructions?|prompts?)", re.IGNORECASE),
        # Fake system delimiters
        re.compile(r"\[?\s*system\s*\]?:", re.IGNORECASE),
        re.compile(r"<\s*system\s*>", re.IGNORECASE),
        re.compile(r"\{\s*system\s*\}", re.IGNORECASE),
        # Role-play hijacks
        re.compile(r"you\s+are\s+now", re.IGNORECASE),
        re.compile(r"pretend\s+(you\s+are|to\s+be)", re.IGNORECASE),
        re.compile(r"act\s+as\s+(if|a|an)", re.IGNORECASE),
        re.compile(r"roleplay\s+as", re.IGNORECASE),
        # Prompt boundary markers
        re.compile(r"---\s*end\s+(of\s+)?(prompt|instruction)", re.IGNORECASE),
        re.compile(r"###\s*(system|instruction|prompt)", re.IGNORECASE),
        # Script and code injection
        re.compile(r"<\s*script\s*>", re.IGNORECASE),
        re.compile(r"javascript:", re.IGNORECASE),
        re.compile(r"on\w+\s*=", re.IGNORECASE),
        re.compile(r"eval\s*\(", re.IGNORECASE),
        # Prompt extraction
        re.compile(r"show\s+me\s+(your|the)\s+(prompt|instructions?|system\s+message)", re.IGNORECASE),
        re.compile(r"what\s+(are|is)\s+(your|the)\s+(instructions?|prompt|rules)", re.IGNORECASE),
        re.compile(r"reveal\s+(your|the)\s+prompt", re.IGNORECASE),
        # Jailbreak keywords
        re.compile(r"DAN\s+mode", re.IGNORECASE),
        re.compile(r"developer\s+mode", re.IGNORECASE),
        re.compile(r"bypass\s+(safety|filters?|restrictions?)", re.IGNORECASE),
    ]

    MALICIOUS_PATTERNS: list[re.Pattern[str]] = [
        re.compile(r"<\s*iframe\s*>", re.IGNORECASE),
        re.compile(r"<\s*object\s*>", re.IGNORECASE),
        re.compile(r"<\s*embed\s*>", re.IGNORECASE),
        re.compile(r"data:text/html", re.IGNORECASE),
        re.compile(r"vbscript:", re.IGNORECASE),
    ]

    # (pattern, label) -- case-sensitive on purpose (ID letters are upper case)
    PII_PATTERNS: list[tuple[re.Pattern[str], str]] = [
        (re.compile(r"\b\d{8}\s?\d{1}\s?[A-Z]{2}\d{1}\b"), "Portuguese ID Card"),
        (re.compile(r"\b[1-9]\d{8}\b"), "Portuguese NIF"),
        (re.compile(r"\b\d{4}[\s-]?\d{4}[\s-]?\d{4}[\s-]?\d{4}\b"), "Credit Card Number"),
        (re.compile(r"\b[A-Z]{2}\d{2}[A-Z0-9]{4}\d{7}([A-Z0-9]?){0,16}\b"), "IBAN"),
        (re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"), "Email"),
        (re.compile(r"\b(9[1236]\d{7}|2\d{8})\b"), "Phone Number"),
    ]

    WHITESPACE_RUN = re.compile(r"\s+")
    REPEATED_PUNCTUATION = re.compile(r"([!?.,])\1{2,}")
    CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F-\x9F]")
    # zero-width, word joiner, bidi embeddings/overrides and isolates
    ZERO_WIDTH_CHARS = re.compile(r"[\u200B-\u200D\u2060\u202A-\u202E\u2066-\u2069\uFEFF]")

    EMAIL_FORMAT = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
    PHONE_FORMAT = re.compile(r"^[+]?[0-9\s\-()]{9,20}$")

    @classmethod
    def sanitize(
        cls,
        value: Any,
        max_length: int = 2000,
        allow_pii: bool = True,
        strict_mode: bool = False,
    ) -> SanitizationResult:
        """
        Scan and clean a free-text value for use inside a model prompt.

        Steps, in order: reject non-string/blank input, truncate to
        ``max_length``, replace prompt-injection matches, replace malicious
        markup, detect (and in strict mode redact) PII when ``allow_pii`` is
        false, collapse whitespace and clamp repeated punctuation. Control and
        zero-width characters are removed before any pattern scan so they
        cannot split a pattern.

        Args:
            value: Raw user input
            max_length: Maximum accepted length; longer input is truncated and
                flagged as an error
            allow_pii: When False, PII patterns produce warnings
            strict_mode: Reject outright on the first injection match and
                redact PII instead of only warning

        Returns:
            SanitizationResult; ``is_valid`` is True iff no errors were recorded
        """
        if not isinstance(value, str) or not value:
            return SanitizationResult(
                is_valid=False,
                sanitized_value="",
                errors=["Input must be a non-empty string"],
            )

        original_length = len(value)
        if not value.strip():
            return SanitizationResult(
                is_valid=False,
                sanitized_value="",
                errors=["Input cannot be empty or whitespace only"],
                metadata=SanitizationMetadata(original_length=original_length),
            )

        errors: list[str] = []
        warnings: list[str] = []
        removed: list[str] = []
        sanitized = value

        if len(sanitized) > max_length:
            errors.append(f"Input exceeds maximum length of {max_length} characters")
            sanitized = sanitized[:max_length]
            warnings.append(f"Input was truncated to {max_length} characters")

        sanitized = cls.CONTROL_CHARS.sub("", sanitized)
        sanitized = cls.ZERO_WIDTH_CHARS.sub("", sanitized)

        for pattern in cls.PROMPT_INJECTION_PATTERNS:
            match = pattern.search(sanitized)
            if not match:
                continue
            errors.append(f"Potential prompt injection detected: {match.group(0)}")
            removed.append(pattern.pattern)
            logger.warning("input_injection_detected", pattern=pattern.pattern, strict=strict_mode)

            if strict_mode:
                return SanitizationResult(
                    is_valid=False,
                    sanitized_value="",
                    errors=errors,
                    warnings=warnings,
                    was_modified=True,
                    metadata=SanitizationMetadata(
                        original_length=original_length,
                        sanitized_length=0,
                        removed_patterns=removed,
                    ),
                )
            sanitized = pattern.sub(REMOVED_PLACEHOLDER, sanitized)

        for pattern in cls.MALICIOUS_PATTERNS:
            if pattern.search(sanitized):
                errors.append("Malicious content pattern detected")
                sanitized = pattern.sub(REMOVED_PLACEHOLDER, sanitized)
                removed.append(pattern.pattern)

        if not allow_pii:
            for pattern, label in cls.PII_PATTERNS:
                if pattern.search(sanitized):
                    warnings.append(f"Potential {label} detected")
                    if strict_mode:
                        sanitized = pattern.sub(REDACTED_PLACEHOLDER, sanitized)
                        removed.append(label)

        sanitized = cls.WHITESPACE_RUN.sub(" ", sanitized).strip()
        sanitized = cls.REPEATED_PUNCTUATION.sub(r"\1\1", sanitized)

        result = SanitizationResult(
            is_valid=not errors,
            sanitized_value=sanitized,
            errors=errors,
            warnings=warnings,
            was_modified=sanitized != value,
            metadata=SanitizationMetadata(
                original_length=original_length,
                sanitized_length=len(sanitized),
                removed_patterns=removed,
            ),
        )

        if result.was_modified:
            logger.debug(
                "input_sanitized",
                original_length=original_length,
                sanitized_length=len(sanitized),
                error_count=len(errors),
                warning_count=len(warnings),
            )
        return result

    @classmethod
    def validate_report_data(cls, data: Mapping[str, Any]) -> ReportValidationResult:
        """
        Structural validation of a report payload.

        Independent of the text sanitizer: checks presence of category and
        location, description length, urgency level, coordinate ranges and,
        for non-anonymous reports, e-mail and phone formats.
        """
        errors: list[str] = []

        if not data.get("category"):
            errors.append("Category is required")

        location = data.get("location")
        if not location:
            errors.append("Location is required")

        description = data.get("description")
        if not description or not isinstance(description, str):
            errors.append("Description must be a string")
        elif len(description) < MIN_DESCRIPTION_LENGTH:
            errors.append(f"Description must be at least {MIN_DESCRIPTION_LENGTH} characters")
        elif len(description) > MAX_DESCRIPTION_LENGTH:
            errors.append(f"Description must not exceed {MAX_DESCRIPTION_LENGTH} characters")

        urgency = data.get("urgency")
        if urgency and urgency not in VALID_URGENCIES:
            errors.append("Invalid urgency level")

        if location:
            lat = location.get("lat") if isinstance(location, Mapping) else None
            lng = location.get("lng") if isinstance(location, Mapping) else None
            if not _is_number(lat) or not -90 <= lat <= 90:
                errors.append("Invalid latitude")
            if not _is_number(lng) or not -180 <= lng <= 180:
                errors.append("Invalid longitude")

        if not data.get("isAnonymous"):
            email = data.get("email")
            if email and isinstance(email, str) and not cls.EMAIL_FORMAT.match(email):
                errors.append("Invalid email format")

            phone = data.get("phone")
            if phone and isinstance(phone, str) and not cls.PHONE_FORMAT.match(phone):
                errors.append("Invalid phone format")

        return ReportValidationResult(is_valid=not errors, errors=errors)

    @staticmethod
    def estimate_tokens(text: str) -> int:
        """Rough token count used to size rate-limit checks (not billing)."""
        return math.ceil(len(text) / CHARS_PER_TOKEN)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


sanitize_input = InputSanitizer.sanitize
validate_report_data = InputSanitizer.validate_report_data
estimate_tokens = InputSanitizer.estimate_tokens


__all__ = [
    "InputSanitizer",
    "REDACTED_PLACEHOLDER",
    "REMOVED_PLACEHOLDER",
    "ReportValidationResult",
    "SanitizationMetadata",
    "SanitizationResult",
    "estimate_tokens",
    "sanitize_input",
    "validate_report_data",
]

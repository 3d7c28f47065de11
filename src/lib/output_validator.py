"""
Output validation for model-generated letter text.

Validates model responses before they are composed into a letter:
1. Length bounds
2. Inappropriate content (profanity, discriminatory language, threats,
   spam bait, script vectors, bidi overrides), scored as toxicity
3. Letter structure and AI-disclosure phrases (optional)
4. Repetition pathology, language sanity and truncation heuristics
5. Script/iframe/event-handler stripping and whitespace normalization

``validate_letter`` is the stricter, letter-specific post-check and
``sanitize_for_display`` escapes text for HTML rendering.

Usage:
    from src.lib.output_validator import OutputValidator

    result = OutputValidator.validate(model_text, min_length=50, check_structure=False)
    if not result.is_valid:
        use_fallback_template()
    issues = OutputValidator.validate_letter(letter).issues
"""

from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Any

import structlog

logger = structlog.get_logger(__name__)

REMOVED_PLACEHOLDER = "[REMOVIDO]"


# =============================================================================
# Result Types
# =============================================================================


@dataclass
class OutputMetadata:
    original_length: int = 0
    sanitized_length: int = 0
    toxicity_score: int = 0
    flagged_patterns: list[str] = field(default_factory=list)


@dataclass
class ValidationResult:
    """Result of validating one model response."""

    is_valid: bool
    sanitized_output: str
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    metadata: OutputMetadata = field(default_factory=OutputMetadata)


@dataclass
class LetterValidationResult:
    is_valid: bool
    issues: list[str] = field(default_factory=list)


# =============================================================================
# Output Validator
# =============================================================================


class OutputValidator:
    """Pattern and heuristic checks for generated Portuguese letter text."""

    INAPPROPRIATE_PATTERNS: list[re.Pattern[str]] = [
        # Profanity
        re.compile(r"\b(merda|caralho|puta|foda|cu|porra|idiota|estúpido)\b", re.IGNORECASE),
        # Discriminatory co-occurrence
        re.compile(r"\b(preto|negro|cigano|gay|bicha|paneleiro)\b.*\b(sujo|inferior|mau)\b", re.IGNORECASE),
        # Threats or violence
        re.compile(r"\b(matar|destruir|atacar|violência|ameaça|bomba)\b", re.IGNORECASE),
        # Spam bait
        re.compile(r"click\s+here|clique\s+aqui", re.IGNORECASE),
        re.compile(r"viagra|casino|lottery|lotaria", re.IGNORECASE),
        # Code injection
        re.compile(r"<script\b", re.IGNORECASE),
        re.compile(r"javascript:", re.IGNORECASE),
        re.compile(r"on\w+\s*=", re.IGNORECASE),
        # Bidi overrides
        re.compile(r"[\u202E\u202D]"),
    ]

    REQUIRED_ELEMENTS = ("Viseu", "Exmo.", "Presidente", "Câmara Municipal")

    AI_DISCLOSURE_PHRASES = (
        "AI",
        "GPT",
        "Gemini",
        "modelo de linguagem",
        "inteligência artificial",
        "como modelo",
        "desculpe",
        "não posso",
    )

    # Whole-word matchers for the disclosure phrases ("AI" must not hit "mais")
    _DISCLOSURE_MATCHERS: list[tuple[str, re.Pattern[str]]] = [
        (phrase, re.compile(rf"(?<!\w){re.escape(phrase)}(?!\w)", re.IGNORECASE))
        for phrase in AI_DISCLOSURE_PHRASES
    ]

    INCOMPLETE_ENDINGS: list[re.Pattern[str]] = [
        re.compile(r"\bcom\s+os\s+melhores$", re.IGNORECASE),
        re.compile(r"\bsolicito$", re.IGNORECASE),
        re.compile(r"\bvenho\s+por$", re.IGNORECASE),
        re.compile(r"\batenciosamente$", re.IGNORECASE),
    ]

    XSS_VECTORS: list[re.Pattern[str]] = [
        re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE),
        re.compile(r"<iframe\b[^<]*(?:(?!</iframe>)<[^<]*)*</iframe>", re.IGNORECASE),
        re.compile(r"javascript:", re.IGNORECASE),
        re.compile(r"on\w+\s*=", re.IGNORECASE),
    ]

    _PT_VOWELS = re.compile(r"[aeiouáéíóúâêôãõ]", re.IGNORECASE)
    _CONSONANTS = re.compile(r"[bcdfghjklmnpqrstvwxyz]", re.IGNORECASE)

    LETTER_DATE = re.compile(r"Viseu,\s+\d{1,2}\s+de\s+\w+\s+de\s+\d{4}", re.IGNORECASE)
    LETTER_COORDINATES = re.compile(r"Coordenadas:?\s*-?\d+\.\d+,\s*-?\d+\.\d+", re.IGNORECASE)

    # Heuristic bounds
    MAX_REPETITION_RATIO = 0.3
    MIN_VOWEL_RATIO = 0.3
    MAX_VOWEL_RATIO = 0.6
    MIN_SANITIZED_LENGTH = 50

    @classmethod
    def validate(
        cls,
        text: Any,
        max_length: int = 5000,
        min_length: int = 100,
        strict_mode: bool = False,
        check_structure: bool = True,
        max_toxicity: int = 30,
    ) -> ValidationResult:
        """
        Validate and sanitize a model response.

        Args:
            text: Model output
            max_length: Above this a warning is recorded (truncated in strict mode)
            min_length: Below this an error is recorded
            strict_mode: Reject outright on inappropriate content and strip
                AI-disclosure phrases
            check_structure: Require the formal letter elements
            max_toxicity: Toxicity score at which output becomes invalid

        Returns:
            ValidationResult; valid iff no errors and toxicity < max_toxicity
        """
        if not isinstance(text, str) or not text:
            return ValidationResult(
                is_valid=False,
                sanitized_output="",
                errors=["Output must be a non-empty string"],
            )

        errors: list[str] = []
        warnings: list[str] = []
        flagged: list[str] = []
        toxicity = 0
        original_length = len(text)
        sanitized = text

        if len(text) < min_length:
            errors.append(f"Output too short (minimum {min_length} characters)")
        if len(text) > max_length:
            warnings.append(f"Output exceeds recommended length of {max_length} characters")
            if strict_mode:
                sanitized = sanitized[:max_length]

        for pattern in cls.INAPPROPRIATE_PATTERNS:
            occurrences = sum(1 for _ in pattern.finditer(sanitized))
            if not occurrences:
                continue
            toxicity += occurrences * 10
            flagged.append(pattern.pattern)
            errors.append("Inappropriate content detected in output")

            if strict_mode:
                logger.warning("output_rejected_inappropriate", pattern=pattern.pattern, toxicity=toxicity)
                return ValidationResult(
                    is_valid=False,
                    sanitized_output="",
                    errors=errors,
                    warnings=warnings,
                    metadata=OutputMetadata(
                        original_length=original_length,
                        sanitized_length=0,
                        toxicity_score=toxicity,
                        flagged_patterns=flagged,
                    ),
                )
            sanitized = pattern.sub(REMOVED_PLACEHOLDER, sanitized)

        if check_structure:
            for required in cls.REQUIRED_ELEMENTS:
                if required not in sanitized:
                    errors.append(f"Missing required element: {required}")

            for phrase, matcher in cls._DISCLOSURE_MATCHERS:
                if matcher.search(sanitized):
                    warnings.append(f"Output contains unexpected element: {phrase}")
                    flagged.append(phrase)
                    toxicity += 5
                    if strict_mode:
                        sanitized = matcher.sub("", sanitized)

        if cls.repetition_ratio(sanitized) > cls.MAX_REPETITION_RATIO:
            errors.append("Output contains excessive repetition")
            toxicity += 20

        if not cls.looks_portuguese(sanitized):
            warnings.append("Output may contain language errors")
            toxicity += 5

        if cls.is_truncated(sanitized):
            errors.append("Output appears to be truncated or incomplete")
            toxicity += 15

        for pattern in cls.XSS_VECTORS:
            sanitized = pattern.sub("", sanitized)

        sanitized = re.sub(r"\n{4,}", "\n\n\n", sanitized)
        sanitized = re.sub(r"[ \t]+$", "", sanitized, flags=re.MULTILINE)
        sanitized = sanitized.strip()

        if len(sanitized) < cls.MIN_SANITIZED_LENGTH:
            errors.append("Sanitized output too short to be valid")

        is_valid = not errors and toxicity < max_toxicity
        if not is_valid:
            logger.info(
                "output_validation_failed",
                error_count=len(errors),
                warning_count=len(warnings),
                toxicity=toxicity,
            )

        return ValidationResult(
            is_valid=is_valid,
            sanitized_output=sanitized,
            errors=errors,
            warnings=warnings,
            metadata=OutputMetadata(
                original_length=original_length,
                sanitized_length=len(sanitized),
                toxicity_score=toxicity,
                flagged_patterns=flagged,
            ),
        )

    # ------------------------------------------------------------------
    # Heuristics
    # ------------------------------------------------------------------

    @staticmethod
    def repetition_ratio(text: str) -> float:
        """Count of the most frequent word (3+ chars) over the total word count."""
        words = text.lower().split()
        if len(words) < 10:
            return 0.0
        counts = Counter(word for word in words if len(word) >= 3)
        if not counts:
            return 0.0
        return counts.most_common(1)[0][1] / len(words)

    @classmethod
    def looks_portuguese(cls, text: str) -> bool:
        vowels = len(cls._PT_VOWELS.findall(text))
        consonants = len(cls._CONSONANTS.findall(text))
        if vowels == 0 or consonants == 0:
            return False
        ratio = vowels / (vowels + consonants)
        return cls.MIN_VOWEL_RATIO <= ratio <= cls.MAX_VOWEL_RATIO

    @classmethod
    def is_truncated(cls, text: str) -> bool:
        """
        Heuristic for responses cut off mid-sentence.

        Truncated when the text ends in a known incomplete phrase ("com os
        melhores", "solicito", ...), or when it lacks terminal punctuation and
        is not a long text ending on a complete word.
        """
        tail = text.rstrip(" \t\r\n.!?")
        if any(pattern.search(tail) for pattern in cls.INCOMPLETE_ENDINGS):
            return True

        last_chars = text[-10:].strip()
        if re.search(r"[.!?]$", last_chars):
            return False
        return not (len(text) > 200 and re.search(r"\b\w+\s*$", last_chars))

    # ------------------------------------------------------------------
    # Letter checks & display
    # ------------------------------------------------------------------

    @classmethod
    def validate_letter(cls, letter: str) -> LetterValidationResult:
        """Letter-specific formatting checks on the composed letter."""
        issues: list[str] = []

        if not cls.LETTER_DATE.search(letter):
            issues.append("Invalid or missing date format")
        if "Exmo." not in letter or "Presidente" not in letter:
            issues.append("Invalid or missing recipient")
        if "Assunto:" not in letter:
            issues.append("Missing subject line")
        if "cumprimentos" not in letter:
            issues.append("Missing proper closing")
        if not cls.LETTER_COORDINATES.search(letter):
            issues.append("Missing or invalid coordinates")
        if len(letter.split("\n\n")) < 3:
            issues.append("Letter structure appears incomplete")

        return LetterValidationResult(is_valid=not issues, issues=issues)

    @staticmethod
    def sanitize_for_display(text: str) -> str:
        """HTML-escape the five reserved characters."""
        return (
            text.replace("&", "&amp;")
            .replace("<", "&lt;")
            .replace(">", "&gt;")
            .replace('"', "&quot;")
            .replace("'", "&#039;")
        )


validate_output = OutputValidator.validate
validate_letter = OutputValidator.validate_letter
sanitize_for_display = OutputValidator.sanitize_for_display


__all__ = [
    "LetterValidationResult",
    "OutputMetadata",
    "OutputValidator",
    "REMOVED_PLACEHOLDER",
    "ValidationResult",
    "sanitize_for_display",
    "validate_letter",
    "validate_output",
]

"""
Services for the Viseu letter guard.

Services:
    - LetterService: Runs a report through the security pipeline and the
      letter model
    - letter_template: Prompt hardening and formal letter composition
    - PeriodicSweeper: Background eviction of limiter and detector state
"""

from .letter_service import Denial, LetterOutcome, LetterService, LetterSource, TextGenerator
from .maintenance import PeriodicSweeper

__all__ = [
    "Denial",
    "LetterOutcome",
    "LetterService",
    "LetterSource",
    "PeriodicSweeper",
    "TextGenerator",
]

"""
Shared test fixtures for the Viseu letter guard.

This module provides common fixtures used across all test modules:
- Environment setup (dev mode, no admin token)
- A controllable clock for time-window logic
- A well-formed citizen report and a scripted letter model

Usage:
    All fixtures are automatically available to any test in the tests/ directory.
"""

from __future__ import annotations

import os
from datetime import date
from typing import Any

import pytest

os.environ.setdefault("VISEU_DEV_MODE", "1")


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable wall clock that only moves when told to."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def letter_date() -> date:
    return date(2024, 3, 5)


# ---------------------------------------------------------------------------
# Reports and model
# ---------------------------------------------------------------------------

REPORT_DESCRIPTION = (
    "Há um buraco enorme na Rua Direita perto do nº 10, está lá há duas semanas "
    "e é perigoso para carros."
)

FORMAL_PARAGRAPH = (
    "Encontra-se na Rua Direita, junto ao número 10, uma cavidade de grandes "
    "dimensões no pavimento, presente há cerca de duas semanas. A situação "
    "representa um risco sério para a segurança dos condutores e prejudica a "
    "circulação automóvel na zona. Solicita-se a reparação do pavimento com a "
    "maior brevidade possível."
)


@pytest.fixture
def report() -> dict[str, Any]:
    """A valid anonymous report from the centre of Viseu."""
    return {
        "location": {
            "lat": 40.66,
            "lng": -7.91,
            "address": "Rua Direita, 10",
            "freguesia": "Viseu",
        },
        "category": {"id": "buraco", "label": "Buraco na via"},
        "description": REPORT_DESCRIPTION,
        "urgency": "alta",
        "isAnonymous": True,
    }


class ScriptedGenerator:
    """Letter model double returning canned text or raising canned errors."""

    def __init__(self, responses: list[Any] | None = None) -> None:
        self.responses = list(responses or [FORMAL_PARAGRAPH])
        self.prompts: list[str] = []

    async def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        response = self.responses[0] if len(self.responses) == 1 else self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        return response


@pytest.fixture
def generator() -> ScriptedGenerator:
    return ScriptedGenerator()


@pytest.fixture
def make_generator():
    """Factory for generators with a custom response script."""
    return ScriptedGenerator

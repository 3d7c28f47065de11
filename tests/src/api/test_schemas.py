"""
Tests for API schemas (src/api/schemas.py).

Tests cover the report request shape (aliases, category variants, unknown
fields), its conversion to the pipeline mapping, and the response aliases.
"""

from __future__ import annotations

from datetime import UTC, datetime

import pytest
from pydantic import ValidationError

from src.api.schemas import (
    CategoryModel,
    LetterMetadata,
    LetterResponse,
    ReportRequest,
    UnblockRequest,
)


class TestReportRequest:
    def test_round_trips_wire_shape(self, report) -> None:
        parsed = ReportRequest.model_validate(report)
        assert parsed.is_anonymous is True
        assert isinstance(parsed.category, CategoryModel)
        assert parsed.to_report() == report

    def test_string_category(self, report) -> None:
        report["category"] = "lixo"
        assert ReportRequest.model_validate(report).to_report()["category"] == "lixo"

    def test_anonymous_by_default(self) -> None:
        assert ReportRequest.model_validate({}).to_report() == {"isAnonymous": True}

    def test_unknown_fields_ignored(self, report) -> None:
        report["photo"] = "data:image/png;base64,AAAA"
        assert "photo" not in ReportRequest.model_validate(report).to_report()

    def test_populate_by_field_name(self) -> None:
        assert ReportRequest(is_anonymous=False).to_report() == {"isAnonymous": False}

    def test_location_must_be_an_object(self) -> None:
        with pytest.raises(ValidationError):
            ReportRequest.model_validate({"location": "Rua Direita"})

    def test_field_length_limits(self) -> None:
        with pytest.raises(ValidationError):
            ReportRequest.model_validate({"urgency": "u" * 21})


class TestResponses:
    def test_letter_response_aliases(self) -> None:
        response = LetterResponse(
            letter="Carta",
            source="ai",
            generated_at=datetime(2024, 3, 5, 12, 0, tzinfo=UTC),
            metadata=LetterMetadata(was_input_sanitized=True, estimated_tokens=12),
        )
        dumped = response.model_dump(mode="json", by_alias=True)
        assert dumped["success"] is True
        assert dumped["generatedAt"].startswith("2024-03-05T12:00:00")
        assert dumped["metadata"] == {
            "wasInputSanitized": True,
            "estimatedTokens": 12,
            "structureIssues": [],
        }

    def test_unblock_requires_identifier(self) -> None:
        with pytest.raises(ValidationError):
            UnblockRequest(identifier="")

"""
Pydantic Schemas for the Viseu letter guard API.

Request fields are deliberately permissive: required-field, length and
format checks belong to the security pipeline so that rejections are
recorded in the security event log. Pydantic only guards the JSON shape.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# =============================================================================
# Report Schemas
# =============================================================================


class LocationModel(BaseModel):
    """Where the problem is."""

    model_config = ConfigDict(extra="ignore")

    lat: float | None = None
    lng: float | None = None
    address: str | None = Field(default=None, max_length=500)
    freguesia: str | None = Field(default=None, max_length=200)


class CategoryModel(BaseModel):
    """Report category as sent by the map frontend."""

    model_config = ConfigDict(extra="ignore")

    id: str | None = Field(default=None, max_length=100)
    label: str | None = Field(default=None, max_length=200)


class ReportRequest(BaseModel):
    """Citizen report submitted for letter generation."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    location: LocationModel | None = None
    category: CategoryModel | str | None = None
    description: str | None = None
    urgency: str | None = Field(default=None, max_length=20)
    is_anonymous: bool = Field(default=True, alias="isAnonymous")
    name: str | None = Field(default=None, max_length=200)
    email: str | None = Field(default=None, max_length=320)
    phone: str | None = Field(default=None, max_length=50)

    def to_report(self) -> dict[str, Any]:
        """Dump to the wire-shaped mapping the pipeline works on."""
        return self.model_dump(by_alias=True, exclude_none=True)


# =============================================================================
# Response Schemas
# =============================================================================


class LetterMetadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    was_input_sanitized: bool = Field(alias="wasInputSanitized")
    estimated_tokens: int = Field(alias="estimatedTokens")
    structure_issues: list[str] = Field(default_factory=list, alias="structureIssues")


class LetterResponse(BaseModel):
    """Successful letter generation."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    letter: str
    source: str
    generated_at: datetime = Field(alias="generatedAt")
    metadata: LetterMetadata


class UnblockRequest(BaseModel):
    identifier: str = Field(..., min_length=1, max_length=200)


__all__ = [
    "CategoryModel",
    "LetterMetadata",
    "LetterResponse",
    "LocationModel",
    "ReportRequest",
    "UnblockRequest",
]

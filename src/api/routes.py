"""
REST API Routes for the Viseu letter guard.

Endpoints (under /api/v1):
- POST /letters - Generate a formal letter from a citizen report
- GET /security/stats - Security diagnostics (admin)
- POST /security/unblock - Lift an abuse block (admin)

Denials use the structured error body from ``src.lib.errors``:
    {"success": false, "error": {"code": "...", "message": "...", "details": {...}}}
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from src.api.dependencies import AdminDep, ContainerDep, client_identifier
from src.api.schemas import LetterMetadata, LetterResponse, ReportRequest, UnblockRequest
from src.core.container import SecurityContainer
from src.lib.errors import NOT_FOUND, build_error_response
from src.lib.logging import hash_identifier
from src.services.letter_service import Denial

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1")

# Recent events returned by the stats endpoint
_RECENT_EVENTS = 20


def denial_response(denial: Denial) -> JSONResponse:
    """Render a pipeline denial as an HTTP error response."""
    headers: dict[str, str] = {}
    if denial.retry_after is not None:
        headers["Retry-After"] = str(denial.retry_after)
    details: dict[str, Any] = {"reasons": denial.reasons}
    if denial.retry_after is not None:
        details["retryAfter"] = denial.retry_after
    return JSONResponse(
        status_code=denial.http_status,
        content={"success": False, "error": build_error_response(denial.code, details=details)},
        headers=headers,
    )


# =============================================================================
# Letters
# =============================================================================


@router.post("/letters")
async def create_letter(
    report: ReportRequest,
    request: Request,
    container: SecurityContainer = ContainerDep,
) -> JSONResponse:
    identifier = client_identifier(request, container.config.network.trust_proxy_headers)
    outcome = await container.letter_service.generate_letter(identifier, report.to_report())

    if outcome.denial is not None:
        return denial_response(outcome.denial)

    body = LetterResponse(
        letter=outcome.letter,
        source=outcome.source.value,
        generated_at=outcome.generated_at,
        metadata=LetterMetadata(
            was_input_sanitized=outcome.was_input_sanitized,
            estimated_tokens=outcome.estimated_tokens,
            structure_issues=outcome.structure_issues,
        ),
    )
    return JSONResponse(content=body.model_dump(mode="json", by_alias=True))


# =============================================================================
# Security administration
# =============================================================================


@router.get("/security/stats", dependencies=[AdminDep])
async def security_stats(
    request: Request,
    container: SecurityContainer = ContainerDep,
) -> dict[str, Any]:
    identifier = client_identifier(request, container.config.network.trust_proxy_headers)
    stats = container.letter_service.diagnostics(identifier)
    stats["blocked_identifiers"] = container.abuse_detector.blocked_identifiers()
    stats["recent_events"] = [e.to_dict() for e in container.security_log.get_events()[-_RECENT_EVENTS:]]
    return stats


@router.post("/security/unblock", dependencies=[AdminDep])
async def unblock_identifier(
    data: UnblockRequest,
    container: SecurityContainer = ContainerDep,
) -> JSONResponse:
    if not container.letter_service.unblock(data.identifier):
        return JSONResponse(
            status_code=404,
            content={"success": False, "error": build_error_response(NOT_FOUND)},
        )
    logger.info("identifier_unblocked_by_admin", client=hash_identifier(data.identifier))
    return JSONResponse(content={"success": True, "identifier": data.identifier})


__all__ = ["denial_response", "router"]

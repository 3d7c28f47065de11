"""
REST API Layer for the Viseu letter guard.

Provides:
- FastAPI application with CORS, security headers and correlation IDs
- Letter generation and security administration endpoints under /api/v1
- Root-level health check and Prometheus metrics
- Lifespan management of the background sweepers
"""

from __future__ import annotations

import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import Response

from src.api.routes import router
from src.core.container import SecurityContainer, build_container
from src.infra.middleware import CorrelationIDMiddleware, SecurityHeadersMiddleware
from src.infra.monitoring import metrics_response
from src.lib.errors import FORBIDDEN, INTERNAL_ERROR, NOT_FOUND, VALIDATION_ERROR, build_error_response
from src.lib.exceptions import SecurityError

logger = structlog.get_logger(__name__)

_ALLOWED_HEADERS: list[str] = [
    "Content-Type",
    "Accept",
    "Accept-Language",
    "X-Correlation-ID",
]

# HTTP status -> error code for framework-raised HTTP errors
_HTTP_ERROR_CODES: dict[int, str] = {
    403: FORBIDDEN,
    404: NOT_FOUND,
}


def _cors_origins() -> list[str]:
    raw = os.getenv("VISEU_CORS_ORIGINS", "")
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


def create_app(container: SecurityContainer | None = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        container: Pre-built components (tests inject one with a fake clock
            and generator); built from the environment when omitted

    Returns:
        Configured FastAPI application instance.

    Raises:
        SecurityError: '*' among the CORS origins when VISEU_ENVIRONMENT is
            production
    """
    container = container or build_container()
    is_production = os.getenv("VISEU_ENVIRONMENT", "development") == "production"

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await container.start()
        try:
            yield
        finally:
            await container.stop()

    app = FastAPI(
        title="Viseu Report Guard",
        description="Security gate for AI-generated citizen report letters",
        version="0.1.0",
        docs_url=None if is_production else "/docs",
        redoc_url=None if is_production else "/redoc",
        lifespan=lifespan,
    )
    app.state.container = container

    # -------------------------------------------------------------------------
    # Exception handlers
    # -------------------------------------------------------------------------
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("unhandled_exception", method=request.method, path=request.url.path)
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": build_error_response(INTERNAL_ERROR)},
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        fields = [".".join(str(part) for part in err.get("loc", ())) for err in exc.errors()]
        logger.info("request_validation_failed", path=request.url.path, fields=fields)
        return JSONResponse(
            status_code=400,
            content={
                "success": False,
                "error": build_error_response(VALIDATION_ERROR, details={"fields": fields}),
            },
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        code = _HTTP_ERROR_CODES.get(exc.status_code)
        error = build_error_response(code, message=str(exc.detail)) if code else {
            "code": str(exc.status_code),
            "message": str(exc.detail),
        }
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": error},
            headers=getattr(exc, "headers", None),
        )

    # -------------------------------------------------------------------------
    # Middleware (last registered runs first)
    # -------------------------------------------------------------------------
    cors_origins = _cors_origins()
    if is_production and "*" in cors_origins:
        raise SecurityError("VISEU_CORS_ORIGINS must not contain '*' in production")

    app.middleware("http")(SecurityHeadersMiddleware())
    app.middleware("http")(CorrelationIDMiddleware())
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=False,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=_ALLOWED_HEADERS,
    )
    logger.info("cors_configured", origins=cors_origins)

    # -------------------------------------------------------------------------
    # Routes
    # -------------------------------------------------------------------------
    app.include_router(router)

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        """Liveness check for load balancers and orchestrators."""
        return {"status": "ok"}

    @app.get("/metrics", include_in_schema=False)
    async def metrics() -> Response:
        payload, content_type = metrics_response()
        return Response(content=payload, media_type=content_type)

    return app


__all__ = ["create_app", "router"]

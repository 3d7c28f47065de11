"""
HTTP middleware for the Viseu letter guard API.

Provides:
- Security headers on every response
- Correlation ID per request, bound into the structlog context and echoed in
  the ``X-Correlation-ID`` response header
- Request metrics (count, latency) for Prometheus

Both middlewares are plain ``(request, call_next)`` callables registered with
``app.middleware("http")``.
"""

from __future__ import annotations

import time
import uuid
from collections.abc import Awaitable, Callable

import structlog
from starlette.requests import Request
from starlette.responses import Response

from src.infra.monitoring import record_request

logger = structlog.get_logger(__name__)

CallNext = Callable[[Request], Awaitable[Response]]

CORRELATION_HEADER = "X-Correlation-ID"

# Correlation IDs supplied by clients are accepted only in this shape
_MAX_CORRELATION_ID_LENGTH = 64


class SecurityHeadersMiddleware:
    """
    Adds security headers to all HTTP responses.

    The API only serves JSON and metrics, so the CSP forbids everything.
    """

    def __init__(self, hsts_max_age: int = 31536000) -> None:
        self.hsts_max_age = hsts_max_age

    def get_headers(self) -> dict[str, str]:
        return {
            "X-Content-Type-Options": "nosniff",
            "X-Frame-Options": "DENY",
            "Referrer-Policy": "strict-origin-when-cross-origin",
            "Strict-Transport-Security": f"max-age={self.hsts_max_age}; includeSubDomains",
            "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
            "Permissions-Policy": "geolocation=(), microphone=(), camera=()",
        }

    async def __call__(self, request: Request, call_next: CallNext) -> Response:
        response = await call_next(request)
        for name, value in self.get_headers().items():
            response.headers.setdefault(name, value)
        return response


class CorrelationIDMiddleware:
    """
    Tags each request with a correlation ID and records request metrics.

    The ID is taken from the incoming header when it is a sane token,
    otherwise a new UUID4 is generated.
    """

    def __init__(self, header_name: str = CORRELATION_HEADER) -> None:
        self.header_name = header_name

    def _correlation_id(self, request: Request) -> str:
        supplied = request.headers.get(self.header_name, "")
        if supplied and len(supplied) <= _MAX_CORRELATION_ID_LENGTH and supplied.replace("-", "").isalnum():
            return supplied
        return str(uuid.uuid4())

    async def __call__(self, request: Request, call_next: CallNext) -> Response:
        correlation_id = self._correlation_id(request)
        request.state.correlation_id = correlation_id

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(correlation_id=correlation_id)

        start = time.perf_counter()
        status = 500
        try:
            response = await call_next(request)
            status = response.status_code
        finally:
            route = request.scope.get("route")
            endpoint = getattr(route, "path", request.url.path)
            record_request(request.method, endpoint, status, time.perf_counter() - start)

        response.headers[self.header_name] = correlation_id
        logger.debug("request_completed", method=request.method, path=request.url.path, status=status)
        return response


__all__ = [
    "CORRELATION_HEADER",
    "CorrelationIDMiddleware",
    "SecurityHeadersMiddleware",
]

"""
FastAPI Dependencies for client identification, container access and
admin authorization.
"""

from __future__ import annotations

import hmac
import os

import structlog
from fastapi import Depends, Header, HTTPException, Request, status

from src.core.container import SecurityContainer
from src.lib.logging import hash_identifier

logger = structlog.get_logger(__name__)

ADMIN_TOKEN_ENV = "VISEU_ADMIN_TOKEN"

UNKNOWN_CLIENT = "unknown"


def client_identifier(request: Request, trust_proxy_headers: bool = False) -> str:
    """
    Identify the client by IP address.

    With ``trust_proxy_headers`` the proxy headers are checked in order:
    first ``X-Forwarded-For`` entry, ``X-Real-IP``, ``CF-Connecting-IP``.
    Otherwise, and when none is present, the socket peer is used.
    """
    if trust_proxy_headers:
        return _proxied_client(request) or _peer(request)
    return _peer(request)


def _proxied_client(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    for header in ("x-real-ip", "cf-connecting-ip"):
        value = request.headers.get(header, "").strip()
        if value:
            return value
    return None


def _peer(request: Request) -> str:
    if request.client and request.client.host:
        return request.client.host
    return UNKNOWN_CLIENT


def get_container(request: Request) -> SecurityContainer:
    return request.app.state.container


async def require_admin(
    request: Request,
    x_admin_token: str | None = Header(default=None),
) -> None:
    """
    Require ``X-Admin-Token`` to match ``VISEU_ADMIN_TOKEN``.

    With no token configured the admin endpoints are disabled.

    Raises:
        HTTPException: 403 when disabled, missing or mismatched
    """
    expected = os.environ.get(ADMIN_TOKEN_ENV, "")
    if not expected:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin endpoints are disabled")
    if not x_admin_token or not hmac.compare_digest(x_admin_token.encode(), expected.encode()):
        logger.warning("admin_auth_failed", client=hash_identifier(client_identifier(request)))
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")


ContainerDep = Depends(get_container)
AdminDep = Depends(require_admin)


__all__ = [
    "ADMIN_TOKEN_ENV",
    "AdminDep",
    "ContainerDep",
    "client_identifier",
    "get_container",
    "require_admin",
]

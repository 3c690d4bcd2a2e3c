"""Service token authentication for the reminder admin API.

The scheduler service and the Discord bot share a single
``SERVICE_AUTH_TOKEN``.  Calls to the admin API must carry
``Authorization: Bearer <token>``.  An empty token disables the check,
which is only meant for local development.
"""

from __future__ import annotations

import hmac

import structlog
from fastapi import HTTPException, Request

from shared.config import get_settings

logger = structlog.get_logger()


def get_service_auth_headers() -> dict[str, str]:
    """Return HTTP headers for calls into the admin API.

    Returns an empty dict when no token is configured (dev mode).
    """
    token = get_settings().service_auth_token
    if not token:
        return {}
    return {"Authorization": f"Bearer {token}"}


async def require_service_auth(request: Request) -> None:
    """FastAPI dependency that validates the service auth token."""
    expected = get_settings().service_auth_token
    if not expected:
        logger.warning("service_auth_disabled", path=request.url.path)
        return

    auth_header = request.headers.get("authorization", "")
    if not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing service auth token")

    if not hmac.compare_digest(auth_header[7:], expected):
        logger.warning(
            "service_auth_failed",
            path=request.url.path,
            remote=request.client.host if request.client else "unknown",
        )
        raise HTTPException(status_code=401, detail="Invalid service auth token")

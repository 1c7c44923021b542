"""Caller identification and admin API key authentication.

``get_actor`` turns the ``X-Actor-Role`` / ``X-Actor-Id`` headers into the
:class:`Actor` every gated read is evaluated for.  A request without a
role header acts as ``settings.default_actor_role``.

``require_admin_api_key`` validates the ``X-Admin-API-Key`` header against
the configured ``CAMPUS_ADMIN_API_KEY`` environment variable for the
mutating policy and settings endpoints.  Uses constant-time comparison to
prevent timing attacks.
"""

from __future__ import annotations

import hmac

import structlog
from fastapi import Header, HTTPException, Request, Security
from fastapi.security import APIKeyHeader

from config.settings import settings
from src.models.enums import UserRole
from src.models.user import Actor

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

_api_key_header = APIKeyHeader(name="X-Admin-API-Key", auto_error=False)


async def get_actor(
    x_actor_role: str | None = Header(default=None),
    x_actor_id: str | None = Header(default=None),
) -> Actor:
    """FastAPI dependency resolving the acting role and id from headers.

    Raises 400 when the role header names an unknown role.
    """
    raw_role = (x_actor_role or settings.default_actor_role).strip().lower()
    try:
        role = UserRole(raw_role)
    except ValueError:
        logger.warning("auth.unknown_actor_role", role=raw_role)
        raise HTTPException(status_code=400, detail=f"Unknown actor role: {raw_role!r}")

    actor_id = x_actor_id.strip() if x_actor_id else None
    return Actor(role=role, actor_id=actor_id or None)


async def require_admin_api_key(
    request: Request,
    api_key: str | None = Security(_api_key_header),
) -> str:
    """FastAPI dependency that enforces admin API key authentication.

    Returns the validated key on success; raises 401/403 on failure.

    Usage::

        @router.put("/policies/{policy_id}", dependencies=[Depends(require_admin_api_key)])
        async def set_policy_active(...): ...
    """
    configured_key = settings.admin_api_key

    if not configured_key:
        # In development without a configured key, log a warning but allow access
        if not settings.is_production:
            logger.warning(
                "auth.admin_key_not_configured",
                note="Admin API key not set; allowing request in development mode",
            )
            return ""
        logger.error("auth.admin_key_not_configured_production")
        raise HTTPException(
            status_code=503,
            detail="Admin authentication is not configured.",
        )

    if not api_key:
        logger.warning(
            "auth.missing_api_key",
            path=request.url.path,
            client_ip=request.client.host if request.client else "unknown",
        )
        raise HTTPException(
            status_code=401,
            detail="Missing X-Admin-API-Key header.",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    if not hmac.compare_digest(api_key.encode(), configured_key.encode()):
        logger.warning(
            "auth.invalid_api_key",
            path=request.url.path,
            client_ip=request.client.host if request.client else "unknown",
        )
        raise HTTPException(
            status_code=403,
            detail="Invalid API key.",
        )

    return api_key

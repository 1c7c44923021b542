"""Permission interface for the settings/admin UI.

Capability checks, collection policies, consent records, the audit log,
and campus-wide privacy settings.  Policy and settings changes require
the admin API key; consent changes require ``modify_privacy`` over the
target user.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field

from src.middleware.auth import get_actor, require_admin_api_key
from src.models.enums import Capability, UserRole
from src.models.errors import (
    ConsentNotWithdrawableError,
    PermissionDeniedError,
    PolicyImmutableError,
)
from src.models.privacy import (
    AuditLogEntry,
    ConsentRecord,
    PrivacyPolicy,
    PrivacySettings,
    PrivacySettingsUpdate,
)
from src.models.user import Actor

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

router = APIRouter(tags=["permissions"])


# ---------------------------------------------------------------------------
# Request / Response schemas
# ---------------------------------------------------------------------------


class PermissionCheckRequest(BaseModel):
    capability: Capability
    actor_role: UserRole
    target_user_id: str | None = None
    actor_id: str | None = None


class PermissionCheckResponse(BaseModel):
    capability: Capability
    allowed: bool


class PolicyToggleRequest(BaseModel):
    is_active: bool


class ConsentUpdateRequest(BaseModel):
    consent_given: bool
    data_types: list[str] | None = Field(default=None, description="Data types covered; defaults to location")


class ConsentResponse(BaseModel):
    user_id: str
    consent: ConsentRecord | None = None


class AuditLogResponse(BaseModel):
    count: int
    entries: list[AuditLogEntry]


# ---------------------------------------------------------------------------
# Capabilities
# ---------------------------------------------------------------------------


@router.post("/permissions/check", response_model=PermissionCheckResponse)
async def check_permission(body: PermissionCheckRequest, request: Request) -> PermissionCheckResponse:
    gate = request.app.state.services.gate
    allowed = gate.check_permission(
        body.capability,
        body.actor_role,
        body.target_user_id,
        actor_id=body.actor_id,
    )
    return PermissionCheckResponse(capability=body.capability, allowed=allowed)


# ---------------------------------------------------------------------------
# Policies
# ---------------------------------------------------------------------------


@router.get("/policies", response_model=list[PrivacyPolicy])
async def list_policies(request: Request) -> list[PrivacyPolicy]:
    return request.app.state.services.gate.list_policies()


@router.put(
    "/policies/{policy_id}",
    response_model=PrivacyPolicy,
    dependencies=[Depends(require_admin_api_key)],
)
async def set_policy_active(
    policy_id: str,
    body: PolicyToggleRequest,
    request: Request,
    actor: Actor = Depends(get_actor),
) -> PrivacyPolicy:
    """Activate or deactivate a collection policy.

    Required policies cannot be deactivated (409).
    """
    gate = request.app.state.services.gate
    try:
        policy = gate.toggle_policy(policy_id, body.is_active, actor=actor.label)
    except PolicyImmutableError as exc:
        raise HTTPException(status_code=409, detail=str(exc))

    if policy is None:
        raise HTTPException(status_code=404, detail=f"Policy '{policy_id}' not found")
    return policy


# ---------------------------------------------------------------------------
# Consent
# ---------------------------------------------------------------------------


@router.get("/consent/{user_id}", response_model=ConsentResponse)
async def get_consent(
    user_id: str,
    request: Request,
    actor: Actor = Depends(get_actor),
) -> ConsentResponse:
    """Explicit consent record for the user; 403 without ``modify_privacy`` over them."""
    gate = request.app.state.services.gate
    try:
        record = gate.read_consent(user_id, actor=actor)
    except PermissionDeniedError as exc:
        raise HTTPException(status_code=403, detail=str(exc))
    return ConsentResponse(user_id=user_id, consent=record)


@router.put("/consent/{user_id}", response_model=ConsentResponse)
async def set_consent(
    user_id: str,
    body: ConsentUpdateRequest,
    request: Request,
    actor: Actor = Depends(get_actor),
) -> ConsentResponse:
    """Grant or withdraw consent.

    403 when the actor may not modify the user's privacy, 409 when the
    existing consent was granted as non-withdrawable.
    """
    gate = request.app.state.services.gate
    try:
        record = gate.set_consent(user_id, body.consent_given, actor=actor, data_types=body.data_types)
    except PermissionDeniedError as exc:
        raise HTTPException(status_code=403, detail=str(exc))
    except ConsentNotWithdrawableError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return ConsentResponse(user_id=user_id, consent=record)


# ---------------------------------------------------------------------------
# Audit log
# ---------------------------------------------------------------------------


@router.get("/audit", response_model=AuditLogResponse)
async def list_audit_log(
    request: Request,
    limit: int = Query(default=100, ge=1, le=1000),
) -> AuditLogResponse:
    """Most recent audit entries, newest first."""
    entries = request.app.state.services.gate.list_audit_log(limit)
    return AuditLogResponse(count=len(entries), entries=entries)


# ---------------------------------------------------------------------------
# Privacy settings
# ---------------------------------------------------------------------------


@router.get("/privacy/settings", response_model=PrivacySettings)
async def get_privacy_settings(request: Request) -> PrivacySettings:
    return request.app.state.services.gate.settings


@router.put(
    "/privacy/settings",
    response_model=PrivacySettings,
    dependencies=[Depends(require_admin_api_key)],
)
async def update_privacy_settings(
    body: PrivacySettingsUpdate,
    request: Request,
    actor: Actor = Depends(get_actor),
) -> PrivacySettings:
    return request.app.state.services.gate.update_settings(body, actor=actor.label)

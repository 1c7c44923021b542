"""Health check endpoints for the Campus Sentinel API v1.

Provides liveness and readiness probes.  The readiness check verifies
that the service graph is built and the ingestion scheduler is ticking.
"""

from __future__ import annotations

import time

import structlog
from fastapi import APIRouter, Request
from pydantic import BaseModel

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

router = APIRouter(prefix="/health", tags=["health"])


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class HealthResponse(BaseModel):
    """Basic health check response."""

    status: str
    version: str
    uptime_seconds: float


class ReadinessResponse(BaseModel):
    """Readiness check response with individual component statuses."""

    status: str
    checks: dict[str, str]


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    """Liveness probe.

    Returns 200 if the application process is running and able to
    handle requests.  Does *not* check the location core.
    """
    start_time: float = getattr(request.app.state, "start_time", time.time())
    uptime = time.time() - start_time

    return HealthResponse(
        status="healthy",
        version=request.app.version,
        uptime_seconds=round(uptime, 2),
    )


@router.get("/ready", response_model=ReadinessResponse)
async def readiness_check(request: Request) -> ReadinessResponse:
    """Readiness probe.

    Reports the event store fill level, directory size, audit ledger
    size, policy catalogue, and scheduler state.  A ledger past its soft
    limit is flagged ``large`` but does not degrade readiness.
    """
    checks: dict[str, str] = {}
    all_ok = True

    services = getattr(request.app.state, "services", None)
    if services is None:
        return ReadinessResponse(status="not_ready", checks={"services": "not_initialised"})

    # -- Event store -------------------------------------------------------
    store = services.store
    checks["event_store"] = f"ok ({store.size}/{store.capacity} events)"

    # -- Directory ---------------------------------------------------------
    if len(services.directory) > 0:
        checks["directory"] = f"ok ({len(services.directory)} users)"
    else:
        checks["directory"] = "empty"

    # -- Audit ledger ------------------------------------------------------
    ledger = services.gate.ledger
    if ledger.over_soft_limit:
        checks["audit_ledger"] = f"large ({len(ledger)}/{ledger.soft_limit} entries)"
    else:
        checks["audit_ledger"] = f"ok ({len(ledger)} entries)"

    # -- Policies ----------------------------------------------------------
    policies = services.gate.list_policies()
    if policies:
        checks["policies"] = f"ok ({len(policies)} policies)"
    else:
        checks["policies"] = "no_policies"
        all_ok = False

    # -- Ingestion scheduler -----------------------------------------------
    scheduler = services.scheduler
    if scheduler.is_running:
        checks["scheduler"] = f"ok ({scheduler.ticks} ticks)"
    elif services.settings.enable_auto_ingestion:
        checks["scheduler"] = "stopped"
        all_ok = False
    else:
        checks["scheduler"] = "disabled"

    status = "ready" if all_ok else "degraded"

    logger.info("health.readiness_check", status=status, checks=checks)

    return ReadinessResponse(status=status, checks=checks)

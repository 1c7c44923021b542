"""Analytics endpoints for the Campus Sentinel API v1.

Visits, popular locations, hourly movement, alerts, the campus overview,
inactive users, and the privacy-level distribution.
"""

from __future__ import annotations

from datetime import timedelta

import structlog
from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel

from src.middleware.auth import get_actor
from src.models.analytics import (
    Alert,
    CampusOverview,
    InactiveUser,
    LocationStat,
    MovementHistogram,
    PrivacyMetric,
    Visit,
)
from src.models.user import Actor

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

router = APIRouter(prefix="/analytics", tags=["analytics"])


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class VisitsResponse(BaseModel):
    user_id: str
    visits: list[Visit]


class PopularLocationsResponse(BaseModel):
    hours: int
    locations: list[LocationStat]


class AlertsResponse(BaseModel):
    count: int
    alerts: list[Alert]


class InactiveUsersResponse(BaseModel):
    threshold_minutes: int
    users: list[InactiveUser]


class PrivacyMetricsResponse(BaseModel):
    total_users: int
    levels: list[PrivacyMetric]


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("/visits/{user_id}", response_model=VisitsResponse)
async def user_visits(
    user_id: str,
    request: Request,
    hours: int = Query(default=24, ge=1, le=24 * 365),
    actor: Actor = Depends(get_actor),
) -> VisitsResponse:
    engine = request.app.state.services.engine
    return VisitsResponse(user_id=user_id, visits=engine.visits(actor, user_id, timedelta(hours=hours)))


@router.get("/popular", response_model=PopularLocationsResponse)
async def popular_locations(
    request: Request,
    hours: int = Query(default=24, ge=1, le=24 * 365),
    limit: int = Query(default=5, ge=1, le=100),
) -> PopularLocationsResponse:
    """``(building, room)`` pairs ranked by visits, then total dwell time."""
    engine = request.app.state.services.engine
    return PopularLocationsResponse(
        hours=hours,
        locations=engine.popular_locations(timedelta(hours=hours), limit),
    )


@router.get("/movement", response_model=MovementHistogram)
async def movement_histogram(
    request: Request,
    hours: int = Query(default=24, ge=1, le=24 * 365),
) -> MovementHistogram:
    return request.app.state.services.engine.movement_histogram(timedelta(hours=hours))


@router.get("/alerts", response_model=AlertsResponse)
async def alerts(
    request: Request,
    minutes: int = Query(default=60, ge=1, le=7 * 24 * 60),
    actor: Actor = Depends(get_actor),
) -> AlertsResponse:
    """Evaluate every alert rule over the trailing window."""
    found = request.app.state.services.engine.alerts(actor, timedelta(minutes=minutes))
    return AlertsResponse(count=len(found), alerts=found)


@router.get("/overview", response_model=CampusOverview)
async def campus_overview(
    request: Request,
    actor: Actor = Depends(get_actor),
) -> CampusOverview:
    return request.app.state.services.engine.overview(actor)


@router.get("/inactive", response_model=InactiveUsersResponse)
async def inactive_users(
    request: Request,
    minutes: int = Query(default=120, ge=1, le=30 * 24 * 60),
    actor: Actor = Depends(get_actor),
) -> InactiveUsersResponse:
    users = request.app.state.services.engine.inactive_users(actor, timedelta(minutes=minutes))
    return InactiveUsersResponse(threshold_minutes=minutes, users=users)


@router.get("/privacy", response_model=PrivacyMetricsResponse)
async def privacy_metrics(request: Request) -> PrivacyMetricsResponse:
    metrics = request.app.state.services.engine.privacy_metrics()
    return PrivacyMetricsResponse(total_users=sum(m.count for m in metrics), levels=metrics)

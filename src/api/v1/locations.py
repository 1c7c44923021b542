"""Location endpoints for the Campus Sentinel API v1.

Covers the ingestion interface (position reports), per-user location
reads and data-subject exports/erasure, and building presence.  Every
read goes through the gated :class:`CampusQueryEngine`; a denied read
answers exactly like a read for a user with no data.
"""

from __future__ import annotations

from datetime import timedelta

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel

from src.middleware.auth import get_actor
from src.models.analytics import OccupancyReport
from src.models.errors import PermissionDeniedError
from src.models.location import LocationEvent
from src.models.request import LocationReport
from src.models.user import Actor

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

router = APIRouter(tags=["locations"])


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class ReportAccepted(BaseModel):
    accepted: bool
    pending: int


class CurrentLocationResponse(BaseModel):
    user_id: str
    location: LocationEvent | None = None


class LocationHistoryResponse(BaseModel):
    user_id: str
    hours: int
    events: list[LocationEvent]


class ExportResponse(BaseModel):
    user_id: str
    count: int
    events: list[LocationEvent]


class EraseResponse(BaseModel):
    user_id: str
    removed: int


class OccupantsResponse(BaseModel):
    building: str
    count: int
    occupants: list[LocationEvent]


class BuildingOccupancyResponse(BaseModel):
    buildings: list[OccupancyReport]


# ---------------------------------------------------------------------------
# Ingestion
# ---------------------------------------------------------------------------


@router.post("/locations/report", response_model=ReportAccepted, status_code=202)
async def report_location(body: LocationReport, request: Request) -> ReportAccepted:
    """Queue a position report for the next ingestion tick.

    Reports for users whose location collection is not covered by an
    active, required-or-opted-in policy are dropped (``accepted=false``).
    """
    pipeline = request.app.state.services.pipeline
    accepted = pipeline.submit(body)
    return ReportAccepted(accepted=accepted, pending=pipeline.pending)


# ---------------------------------------------------------------------------
# Per-user reads
# ---------------------------------------------------------------------------


@router.get("/locations/{user_id}/current", response_model=CurrentLocationResponse)
async def current_location(
    user_id: str,
    request: Request,
    actor: Actor = Depends(get_actor),
) -> CurrentLocationResponse:
    engine = request.app.state.services.engine
    return CurrentLocationResponse(user_id=user_id, location=engine.current_location(actor, user_id))


@router.get("/locations/{user_id}/history", response_model=LocationHistoryResponse)
async def location_history(
    user_id: str,
    request: Request,
    hours: int | None = Query(default=None, ge=1, le=24 * 365),
    actor: Actor = Depends(get_actor),
) -> LocationHistoryResponse:
    """Events for the user in the last *hours* (default from settings), newest first."""
    services = request.app.state.services
    window_hours = hours or services.settings.history_default_hours
    events = services.engine.location_history(actor, user_id, timedelta(hours=window_hours))
    return LocationHistoryResponse(user_id=user_id, hours=window_hours, events=events)


@router.get("/locations/{user_id}/export", response_model=ExportResponse)
async def export_locations(
    user_id: str,
    request: Request,
    actor: Actor = Depends(get_actor),
) -> ExportResponse:
    """Every retained event for the user, oldest first (``export_data``)."""
    events = request.app.state.services.engine.export_history(actor, user_id)
    return ExportResponse(user_id=user_id, count=len(events), events=events)


@router.delete("/locations/{user_id}", response_model=EraseResponse)
async def erase_locations(
    user_id: str,
    request: Request,
    actor: Actor = Depends(get_actor),
) -> EraseResponse:
    """Erase every retained and queued event for the user (``delete_data``)."""
    pipeline = request.app.state.services.pipeline
    try:
        removed = pipeline.erase_user(user_id, actor)
    except PermissionDeniedError as exc:
        raise HTTPException(status_code=403, detail=str(exc))
    return EraseResponse(user_id=user_id, removed=removed)


# ---------------------------------------------------------------------------
# Buildings
# ---------------------------------------------------------------------------


@router.get("/buildings/occupancy", response_model=BuildingOccupancyResponse)
async def building_occupancy(request: Request) -> BuildingOccupancyResponse:
    return BuildingOccupancyResponse(buildings=request.app.state.services.engine.building_occupancy())


@router.get("/buildings/{building}/occupants", response_model=OccupantsResponse)
async def building_occupants(
    building: str,
    request: Request,
    minutes: int | None = Query(default=None, ge=1, le=24 * 60),
    actor: Actor = Depends(get_actor),
) -> OccupantsResponse:
    """Visible users currently in the building, newest first."""
    engine = request.app.state.services.engine
    window = timedelta(minutes=minutes) if minutes else None
    occupants = engine.occupants(actor, building, window)
    return OccupantsResponse(building=building, count=len(occupants), occupants=occupants)

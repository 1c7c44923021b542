"""Main API router combining all v1 route modules.

Aggregates all routers under the ``/api/v1`` prefix so the
FastAPI application only needs to include a single router.

Includes:
    * Query: free-text campus questions
    * Locations: position reports, per-user reads, export/erasure, buildings
    * Analytics: visits, popular locations, movement, alerts, overview
    * Permissions: capability checks, policies, consent, audit, privacy settings
    * Health: liveness and readiness probes
"""

from __future__ import annotations

from fastapi import APIRouter

from src.api.v1 import analytics, health, locations, permissions, query

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(query.router)
api_router.include_router(locations.router)
api_router.include_router(analytics.router)
api_router.include_router(permissions.router)
api_router.include_router(health.router)

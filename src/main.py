"""Campus Sentinel FastAPI application entry point.

Creates the FastAPI app, configures logging and middleware, includes the
v1 routers, and manages the lifecycle of the location core (event store,
policy gate, query engine, intent resolver, ingestion scheduler).
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse

from config.settings import settings
from src.api.router import api_router
from src.middleware.privacy import LocationPrivacyMiddleware
from src.services.container import CampusServices

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Structured logging configuration
# ---------------------------------------------------------------------------


def _configure_logging() -> None:
    """Set up structlog with JSON or console rendering based on settings."""
    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if settings.log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelNamesMapping().get(settings.log_level.upper(), logging.INFO),
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# Application lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage startup and shutdown of the location core.

    On startup:
      1. Build the service graph (unless one was injected on ``app.state``)
      2. Start the periodic ingestion scheduler

    On shutdown:
      - Stop the scheduler, committing any still-queued reports.
    """
    _configure_logging()
    logger.info("app.startup", env=settings.env)

    app.state.start_time = time.time()

    services: CampusServices | None = getattr(app.state, "services", None)
    if services is None:
        services = CampusServices.build(settings)
        app.state.services = services
    logger.info("app.services_initialised", store_capacity=services.store.capacity)

    services.scheduler.start()
    logger.info("app.startup_complete")

    yield

    # -- Shutdown -----------------------------------------------------------
    logger.info("app.shutdown_start")
    await services.scheduler.stop()
    logger.info("app.shutdown_complete")


# ---------------------------------------------------------------------------
# FastAPI application
# ---------------------------------------------------------------------------


def create_app(services: CampusServices | None = None) -> FastAPI:
    """Build the FastAPI application, optionally around a prepared service graph."""
    application = FastAPI(
        title="Campus Sentinel API",
        description=(
            "Campus location intelligence: occupancy, movement analytics, "
            "alerting, and natural-language questions, gated by a privacy "
            "policy layer with an audit trail."
        ),
        version="0.1.0",
        lifespan=lifespan,
        default_response_class=ORJSONResponse,
        docs_url="/docs" if not settings.is_production else None,
        redoc_url="/redoc" if not settings.is_production else None,
    )
    if services is not None:
        application.state.services = services

    # -- CORS middleware ----------------------------------------------------
    application.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "http://localhost:8000", "http://127.0.0.1:8000"],
        allow_credentials=False,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Accept", "X-Actor-Role", "X-Actor-Id", "X-Admin-API-Key"],
    )

    # -- Custom middleware --------------------------------------------------
    application.add_middleware(LocationPrivacyMiddleware)

    # -- Include routers ----------------------------------------------------
    application.include_router(api_router)

    @application.get("/api", response_class=ORJSONResponse)
    async def api_info() -> dict:
        """API information endpoint."""
        return {
            "name": "Campus Sentinel API",
            "version": application.version,
            "docs": "/docs",
            "health": "/api/v1/health",
            "endpoints": {
                "query": "/api/v1/query",
                "locations": "/api/v1/locations",
                "buildings": "/api/v1/buildings",
                "analytics": "/api/v1/analytics",
                "permissions": "/api/v1/permissions/check",
                "policies": "/api/v1/policies",
                "consent": "/api/v1/consent",
                "audit": "/api/v1/audit",
                "privacy_settings": "/api/v1/privacy/settings",
            },
        }

    return application


app = create_app()


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    uvicorn.run(
        "src.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=not settings.is_production,
        log_level=settings.log_level.lower(),
    )

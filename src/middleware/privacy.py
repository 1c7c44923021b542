"""Location privacy middleware.

Redacts coordinates and e-mail addresses from request logs, adds
privacy-related headers to all responses, and disables caching of
location-bearing API responses.
"""

from __future__ import annotations

import re
from typing import Final

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

# ---------------------------------------------------------------------------
# Sanitisation patterns
# ---------------------------------------------------------------------------

# Coordinate query parameters: x=12.5, y=-3, lat=..., lon=..., lng=...
_COORDINATE_PARAM_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"\b(x|y|lat|lon|lng|latitude|longitude)=(-?\d+(?:\.\d+)?)",
    re.IGNORECASE,
)

# Free-standing coordinate pairs such as "(12.3456, -45.6789)".
_COORDINATE_PAIR_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"-?\d{1,3}\.\d+\s*,\s*-?\d{1,3}\.\d+"
)

# Email addresses (basic pattern).
_EMAIL_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Z|a-z]{2,}\b"
)


def sanitize_coordinates(text: str) -> str:
    """Mask coordinates in *text*.

    ``x=12.5&y=40`` becomes ``x=[REDACTED]&y=[REDACTED]`` and
    ``12.3456, -45.6789`` becomes ``[COORDINATES_REDACTED]``.
    """
    text = _COORDINATE_PARAM_PATTERN.sub(lambda m: f"{m.group(1)}=[REDACTED]", text)
    return _COORDINATE_PAIR_PATTERN.sub("[COORDINATES_REDACTED]", text)


def sanitize_email(text: str) -> str:
    """Mask email addresses in *text*."""
    return _EMAIL_PATTERN.sub("[EMAIL_REDACTED]", text)


def sanitize_location_pii(text: str) -> str:
    """Apply every sanitisation routine to *text*."""
    text = sanitize_coordinates(text)
    text = sanitize_email(text)
    return text


# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------


class LocationPrivacyMiddleware(BaseHTTPMiddleware):
    """Logs sanitised request lines and adds privacy headers."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path
        query = request.url.query

        logger.info(
            "request.incoming",
            method=request.method,
            path=sanitize_email(path),
            query=sanitize_location_pii(query) if query else None,
            actor_role=request.headers.get("X-Actor-Role", "default"),
        )

        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "no-referrer"
        response.headers["Permissions-Policy"] = "geolocation=(), camera=(), microphone=()"
        response.headers["X-Data-Processing-Purpose"] = "campus-safety-and-occupancy"
        response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate, private"
        response.headers["Pragma"] = "no-cache"

        return response

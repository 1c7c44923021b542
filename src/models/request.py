from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, Field


class QueryRequest(BaseModel):
    """Free-text question from the natural-language front end."""

    text: str = Field(..., max_length=2000)


class LocationReport(BaseModel):
    """Position report pushed by the location-reporting collaborator."""

    user_id: str = Field(..., min_length=1)
    x: float
    y: float
    building: str = Field(..., min_length=1)
    room: str = Field(..., min_length=1)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

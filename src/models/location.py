"""Location event model.

A ``LocationEvent`` is a single position report for one tracked person.
Events are immutable once created and ordered by ``timestamp``.
"""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, Field, field_validator


class LocationEvent(BaseModel):
    """One position report: who, where (coordinates and building/room), when."""

    model_config = {"frozen": True}

    user_id: str = Field(..., min_length=1)
    x: float
    y: float
    timestamp: datetime
    building: str
    room: str

    @field_validator("timestamp")
    @classmethod
    def _ensure_aware(cls, v: datetime) -> datetime:
        # Naive timestamps are treated as UTC so comparisons never mix kinds.
        if v.tzinfo is None:
            return v.replace(tzinfo=UTC)
        return v

    @property
    def place(self) -> tuple[str, str]:
        """``(building, room)`` pair used as the visit key."""
        return (self.building, self.room)

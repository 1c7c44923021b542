"""Result models produced by the query/aggregation engine."""

from __future__ import annotations

from datetime import datetime, timedelta

from pydantic import BaseModel, Field, computed_field

from src.models.enums import AlertSeverity, AlertType


class OccupancyReport(BaseModel):
    building: str
    count: int
    capacity: int

    @computed_field  # type: ignore[prop-decorator]
    @property
    def ratio(self) -> float:
        """Occupancy as a percentage of capacity; unclamped, may exceed 100."""
        return self.count / self.capacity * 100

    @computed_field  # type: ignore[prop-decorator]
    @property
    def display_percentage(self) -> float:
        """``ratio`` clamped to ``[0, 100]`` for percentage bars."""
        return min(max(self.ratio, 0.0), 100.0)


class Visit(BaseModel):
    """A maximal contiguous run of one user's events at one ``(building, room)``."""

    user_id: str
    building: str
    room: str
    started_at: datetime
    ended_at: datetime
    event_count: int

    @computed_field  # type: ignore[prop-decorator]
    @property
    def duration_seconds(self) -> float:
        return (self.ended_at - self.started_at).total_seconds()

    @property
    def duration(self) -> timedelta:
        return self.ended_at - self.started_at


class LocationStat(BaseModel):
    building: str
    room: str
    visits: int
    total_duration_seconds: float

    @computed_field  # type: ignore[prop-decorator]
    @property
    def average_duration_seconds(self) -> float:
        if self.visits == 0:
            return 0.0
        return self.total_duration_seconds / self.visits


class MovementHistogram(BaseModel):
    window_seconds: float
    buckets: list[int] = Field(default_factory=lambda: [0] * 24)
    peak_hour: int | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_events(self) -> int:
        return sum(self.buckets)


class Alert(BaseModel):
    alert_type: AlertType
    severity: AlertSeverity
    description: str
    detected_at: datetime
    user_id: str | None = None
    building: str | None = None
    room: str | None = None
    details: dict[str, object] = Field(default_factory=dict)


class PrivacyMetric(BaseModel):
    level: str
    count: int
    percentage: float


class InactiveUser(BaseModel):
    user_id: str
    name: str
    last_seen: datetime | None
    building: str | None = None
    room: str | None = None


class CampusOverview(BaseModel):
    total_users: int
    active_users: int
    buildings: int
    occupancy: list[OccupancyReport] = Field(default_factory=list)
    alerts_by_severity: dict[str, int] = Field(default_factory=dict)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_alerts(self) -> int:
        return sum(self.alerts_by_severity.values())

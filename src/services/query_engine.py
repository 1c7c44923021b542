"""Query and aggregation engine over the location event store.

Answers point and windowed questions (current location, history,
building occupants), computes occupancy, visits, popular locations,
hourly movement histograms, and evaluates alert rules.

Every read consults the :class:`PrivacyPolicyGate`:

* Per-user reads require the matching capability (``view_location`` or
  ``view_history``).  A denied read returns ``None`` / an empty list,
  exactly as if the target had no data, so a response never reveals
  whether the target exists.
* Listings drop users who have not consented and, for actors without
  ``view_location``, users whose privacy level is not ``public``.  The
  filtering happens here, before results reach any caller.
* Aggregate counts include non-consented users only while anonymous
  analytics are allowed by the privacy settings.
"""

from __future__ import annotations

from collections import Counter, defaultdict
from collections.abc import Iterable, Sequence
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Final
from zoneinfo import ZoneInfo

import structlog

from config.campus import BUILDINGS, BuildingConfig
from src.models.analytics import (
    Alert,
    CampusOverview,
    InactiveUser,
    LocationStat,
    MovementHistogram,
    OccupancyReport,
    PrivacyMetric,
    Visit,
)
from src.models.enums import AlertSeverity, AlertType, Capability, PrivacyLevel, UserRole
from src.models.location import LocationEvent
from src.models.user import Actor

if TYPE_CHECKING:
    from src.services.clock import Clock
    from src.services.directory import UserDirectory
    from src.services.event_store import LocationEventStore
    from src.services.policy_gate import PrivacyPolicyGate

logger = structlog.get_logger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

ALERT_SEVERITY: Final[dict[AlertType, AlertSeverity]] = {
    AlertType.AFTER_HOURS_ACCESS: AlertSeverity.MEDIUM,
    AlertType.CAPACITY_EXCEEDED: AlertSeverity.HIGH,
    AlertType.UNUSUAL_MOVEMENT: AlertSeverity.LOW,
    AlertType.PRIVACY_VIOLATION_ATTEMPT: AlertSeverity.HIGH,
}

DEFAULT_RECENCY_WINDOW: Final[timedelta] = timedelta(minutes=30)
DEFAULT_ALERT_WINDOW: Final[timedelta] = timedelta(hours=1)
DEFAULT_INACTIVE_THRESHOLD: Final[timedelta] = timedelta(hours=2)


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def compute_visits(events: Sequence[LocationEvent]) -> list[Visit]:
    """Split one user's events into visits.

    *events* must belong to a single user and be ordered oldest first.  A
    visit is a maximal run of consecutive events at the same
    ``(building, room)``; its duration is last minus first timestamp.
    """
    visits: list[Visit] = []
    run: list[LocationEvent] = []
    for event in events:
        if run and event.place != run[-1].place:
            visits.append(_visit_from_run(run))
            run = []
        run.append(event)
    if run:
        visits.append(_visit_from_run(run))
    return visits


def _visit_from_run(run: list[LocationEvent]) -> Visit:
    first, last = run[0], run[-1]
    return Visit(
        user_id=first.user_id,
        building=first.building,
        room=first.room,
        started_at=first.timestamp,
        ended_at=last.timestamp,
        event_count=len(run),
    )


def rank_locations(visits: Iterable[Visit]) -> list[LocationStat]:
    """Rank ``(building, room)`` pairs by visit count, then total duration, descending."""
    counts: Counter[tuple[str, str]] = Counter()
    durations: defaultdict[tuple[str, str], float] = defaultdict(float)
    for visit in visits:
        key = (visit.building, visit.room)
        counts[key] += 1
        durations[key] += visit.duration_seconds

    ranked = sorted(counts, key=lambda k: (-counts[k], -durations[k], k))
    return [
        LocationStat(
            building=building,
            room=room,
            visits=counts[(building, room)],
            total_duration_seconds=durations[(building, room)],
        )
        for building, room in ranked
    ]


def peak_hour(buckets: Sequence[int]) -> int | None:
    """Hour with the highest count; earliest hour wins ties; ``None`` if all zero."""
    best: int | None = None
    for hour, count in enumerate(buckets):
        if count > 0 and (best is None or count > buckets[best]):
            best = hour
    return best


def _group_by_user(events: Iterable[LocationEvent]) -> dict[str, list[LocationEvent]]:
    grouped: dict[str, list[LocationEvent]] = defaultdict(list)
    for event in events:
        grouped[event.user_id].append(event)
    return grouped


# ---------------------------------------------------------------------------
# CampusQueryEngine
# ---------------------------------------------------------------------------


class CampusQueryEngine:
    """Gated read model over the event store.

    Parameters
    ----------
    store:
        The shared :class:`LocationEventStore`; only read here.
    gate:
        Policy gate consulted by every read.
    directory:
        Read-only identity lookup (roles, names, privacy levels).
    buildings:
        Static building catalogue with capacities and restricted rooms.
    recency_window:
        Trailing interval deciding who is "currently present".
    unusual_movement_multiplier:
        A user's windowed event count must exceed this multiple of their
        historical average for the unusual-movement rule to fire.
    business_hours:
        ``(start, end)`` local hours; restricted-room access outside
        ``[start, end)`` is after-hours.
    timezone:
        IANA zone used for hour-of-day bucketing and business hours.
    clock:
        Current-time source; defaults to the store's clock.
    """

    __slots__ = (
        "_buildings",
        "_business_hours",
        "_clock",
        "_directory",
        "_gate",
        "_multiplier",
        "_recency_window",
        "_store",
        "_tz",
    )

    def __init__(
        self,
        store: LocationEventStore,
        gate: PrivacyPolicyGate,
        directory: UserDirectory,
        *,
        buildings: Iterable[BuildingConfig] = BUILDINGS,
        recency_window: timedelta = DEFAULT_RECENCY_WINDOW,
        unusual_movement_multiplier: float = 3.0,
        business_hours: tuple[int, int] = (6, 18),
        timezone: str = "UTC",
        clock: Clock | None = None,
    ) -> None:
        self._store = store
        self._gate = gate
        self._directory = directory
        self._buildings: dict[str, BuildingConfig] = {b.name: b for b in buildings}
        self._recency_window = recency_window
        self._multiplier = unusual_movement_multiplier
        self._business_hours = business_hours
        self._tz = ZoneInfo(timezone)
        self._clock: Clock = clock or store.now

    @property
    def buildings(self) -> list[BuildingConfig]:
        return list(self._buildings.values())

    @property
    def recency_window(self) -> timedelta:
        return self._recency_window

    def now(self) -> datetime:
        return self._clock()

    # ------------------------------------------------------------------
    # Visibility
    # ------------------------------------------------------------------

    def is_visible(self, user_id: str, *, can_view_location: bool) -> bool:
        """Whether *user_id* may appear in a location-bearing result."""
        if not self._gate.is_consented(user_id):
            return False
        return can_view_location or self._gate.privacy_level(user_id) == PrivacyLevel.PUBLIC

    def _counts_in_aggregates(self, user_id: str) -> bool:
        return self._gate.settings.allow_anonymous_analytics or self._gate.is_consented(user_id)

    def _filter_visible(
        self,
        actor: Actor,
        events: Iterable[LocationEvent],
        *,
        can_view_location: bool,
    ) -> list[LocationEvent]:
        visible: list[LocationEvent] = []
        withheld = 0
        for event in events:
            if self.is_visible(event.user_id, can_view_location=can_view_location):
                visible.append(event)
            else:
                withheld += 1
        if withheld:
            logger.debug("engine.results_withheld", actor=actor.label, withheld=withheld)
        return visible

    # ------------------------------------------------------------------
    # Point queries
    # ------------------------------------------------------------------

    def current_location(self, actor: Actor, user_id: str) -> LocationEvent | None:
        """Latest event for *user_id*, or ``None`` when absent or not visible."""
        allowed = self._gate.evaluate(
            Capability.VIEW_LOCATION, actor.role, user_id, actor_id=actor.actor_id
        )
        if not self.is_visible(user_id, can_view_location=allowed):
            return None
        return self._store.current(user_id)

    def location_history(
        self,
        actor: Actor,
        user_id: str,
        window: timedelta,
    ) -> list[LocationEvent]:
        """Events for *user_id* within *window*, newest first; empty when denied."""
        allowed = self._gate.evaluate(
            Capability.VIEW_HISTORY, actor.role, user_id, actor_id=actor.actor_id
        )
        if not allowed:
            return []
        if not self._gate.is_consented(user_id):
            return []
        return self._store.history(user_id, window, now=self._clock())

    def export_history(self, actor: Actor, user_id: str) -> list[LocationEvent]:
        """Every retained event for *user_id*, oldest first; empty when denied."""
        allowed = self._gate.evaluate(
            Capability.EXPORT_DATA, actor.role, user_id, actor_id=actor.actor_id
        )
        if not allowed:
            return []
        if not self._gate.is_consented(user_id):
            return []
        return self._store.user_events(user_id)

    def visits(self, actor: Actor, user_id: str, window: timedelta) -> list[Visit]:
        """Visits of *user_id* within *window*, oldest first."""
        history = self.location_history(actor, user_id, window)
        return compute_visits(list(reversed(history)))

    # ------------------------------------------------------------------
    # Presence
    # ------------------------------------------------------------------

    def occupants(
        self,
        actor: Actor,
        building: str,
        recency_window: timedelta | None = None,
    ) -> list[LocationEvent]:
        """Visible users currently in *building*, newest first."""
        allowed = self._gate.evaluate(
            Capability.VIEW_LOCATION, actor.role, actor_id=actor.actor_id
        )
        present = self._store.in_building(
            building, recency_window or self._recency_window, now=self._clock()
        )
        return self._filter_visible(actor, present, can_view_location=allowed)

    def present_users(
        self,
        actor: Actor,
        *,
        role: UserRole | None = None,
        recency_window: timedelta | None = None,
    ) -> list[LocationEvent]:
        """Visible users seen anywhere on campus within the recency window.

        Optionally restricted to directory users holding *role*.
        """
        allowed = self._gate.evaluate(
            Capability.VIEW_LOCATION, actor.role, actor_id=actor.actor_id
        )
        cutoff = self._clock() - (recency_window or self._recency_window)
        latest = self._store.latest_events()

        candidates: list[LocationEvent] = []
        for user_id, event in latest.items():
            if event.timestamp < cutoff:
                continue
            if role is not None:
                identity = self._directory.get_user(user_id)
                if identity is None or identity.role != role:
                    continue
            candidates.append(event)

        candidates.sort(key=lambda e: (e.timestamp, e.user_id), reverse=True)
        return self._filter_visible(actor, candidates, can_view_location=allowed)

    def inactive_users(
        self,
        actor: Actor,
        threshold: timedelta = DEFAULT_INACTIVE_THRESHOLD,
    ) -> list[InactiveUser]:
        """Visible directory users not seen within *threshold*."""
        allowed = self._gate.evaluate(
            Capability.VIEW_LOCATION, actor.role, actor_id=actor.actor_id
        )
        cutoff = self._clock() - threshold
        latest = self._store.latest_events()

        inactive: list[InactiveUser] = []
        for identity in self._directory.list_users():
            event = latest.get(identity.id)
            if event is not None and event.timestamp >= cutoff:
                continue
            if not self.is_visible(identity.id, can_view_location=allowed):
                continue
            inactive.append(
                InactiveUser(
                    user_id=identity.id,
                    name=identity.name,
                    last_seen=event.timestamp if event else identity.last_seen,
                    building=event.building if event else None,
                    room=event.room if event else None,
                )
            )
        return inactive

    # ------------------------------------------------------------------
    # Aggregates
    # ------------------------------------------------------------------

    def occupancy(self, building: str) -> OccupancyReport | None:
        """Occupancy of *building* as count over capacity; ``None`` if unknown.

        The ratio is unclamped and may exceed 100%.
        """
        config = self._buildings.get(building)
        if config is None:
            return None
        present = self._store.in_building(building, self._recency_window, now=self._clock())
        count = sum(1 for e in present if self._counts_in_aggregates(e.user_id))
        return OccupancyReport(building=building, count=count, capacity=config.capacity)

    def building_occupancy(self) -> list[OccupancyReport]:
        reports: list[OccupancyReport] = []
        for name in self._buildings:
            report = self.occupancy(name)
            if report is not None:
                reports.append(report)
        return reports

    def _aggregate_events(self, window: timedelta) -> list[LocationEvent]:
        cutoff = self._clock() - window
        return [
            e for e in self._store.events_since(cutoff)
            if self._counts_in_aggregates(e.user_id)
        ]

    def popular_locations(self, window: timedelta, limit: int = 5) -> list[LocationStat]:
        """Top ``(building, room)`` pairs by visit count within *window*."""
        visits: list[Visit] = []
        for events in _group_by_user(self._aggregate_events(window)).values():
            visits.extend(compute_visits(events))
        return rank_locations(visits)[:limit]

    def movement_histogram(self, window: timedelta) -> MovementHistogram:
        """Event counts per local hour of day within *window*."""
        buckets = [0] * 24
        for event in self._aggregate_events(window):
            buckets[self._local_hour(event.timestamp)] += 1
        return MovementHistogram(
            window_seconds=window.total_seconds(),
            buckets=buckets,
            peak_hour=peak_hour(buckets),
        )

    def privacy_metrics(self) -> list[PrivacyMetric]:
        """Distribution of directory users by privacy level."""
        users = self._directory.list_users()
        total = len(users)
        counts = Counter(u.privacy_level for u in users)
        return [
            PrivacyMetric(
                level=level.value,
                count=counts.get(level, 0),
                percentage=round(counts.get(level, 0) / total * 100, 1) if total else 0.0,
            )
            for level in PrivacyLevel
        ]

    def overview(self, actor: Actor, window: timedelta = DEFAULT_ALERT_WINDOW) -> CampusOverview:
        """Tracked/active user counts, occupancy, and alert counts by severity."""
        tracked = [
            uid for uid in self._store.tracked_user_ids()
            if self._counts_in_aggregates(uid)
        ]
        active = {e.user_id for e in self._aggregate_events(window)}
        severity_counts = Counter(a.severity.value for a in self.alerts(actor, window))
        return CampusOverview(
            total_users=len(tracked),
            active_users=len(active),
            buildings=len(self._buildings),
            occupancy=self.building_occupancy(),
            alerts_by_severity={s.value: severity_counts.get(s.value, 0) for s in AlertSeverity},
        )

    # ------------------------------------------------------------------
    # Alerts
    # ------------------------------------------------------------------

    def alerts(self, actor: Actor, window: timedelta = DEFAULT_ALERT_WINDOW) -> list[Alert]:
        """Evaluate every alert rule over *window*; rules fire independently.

        Alerts naming an individual are subject to the same visibility
        filter as any other location-bearing result.
        """
        now = self._clock()
        cutoff = now - window
        allowed = self._gate.evaluate(
            Capability.VIEW_LOCATION, actor.role, actor_id=actor.actor_id
        )
        events = self._store.events_since(cutoff)

        alerts: list[Alert] = []
        alerts.extend(self._after_hours_alerts(events, now, can_view_location=allowed))
        alerts.extend(self._capacity_alerts(now))
        alerts.extend(self._unusual_movement_alerts(events, cutoff, window, now, can_view_location=allowed))
        alerts.extend(self._privacy_violation_alerts(cutoff, now))

        if alerts:
            logger.info("engine.alerts_evaluated", count=len(alerts), window_s=window.total_seconds())
        return alerts

    def after_hours_alerts(self, actor: Actor, window: timedelta = DEFAULT_ALERT_WINDOW) -> list[Alert]:
        now = self._clock()
        allowed = self._gate.evaluate(
            Capability.VIEW_LOCATION, actor.role, actor_id=actor.actor_id
        )
        events = self._store.events_since(now - window)
        return self._after_hours_alerts(events, now, can_view_location=allowed)

    def is_after_hours(self, timestamp: datetime) -> bool:
        start, end = self._business_hours
        return not (start <= self._local_hour(timestamp) < end)

    def restricted_rooms(self) -> list[tuple[str, str]]:
        return sorted(
            (b.name, room) for b in self._buildings.values() for room in b.restricted_rooms
        )

    def _after_hours_alerts(
        self,
        events: Iterable[LocationEvent],
        now: datetime,
        *,
        can_view_location: bool,
    ) -> list[Alert]:
        hits: dict[tuple[str, str, str], list[LocationEvent]] = defaultdict(list)
        for event in events:
            config = self._buildings.get(event.building)
            if config is None or event.room not in config.restricted_rooms:
                continue
            if not self.is_after_hours(event.timestamp):
                continue
            hits[(event.user_id, event.building, event.room)].append(event)

        alerts: list[Alert] = []
        for (user_id, building, room), hit_events in sorted(hits.items()):
            if not self.is_visible(user_id, can_view_location=can_view_location):
                continue
            alerts.append(
                Alert(
                    alert_type=AlertType.AFTER_HOURS_ACCESS,
                    severity=ALERT_SEVERITY[AlertType.AFTER_HOURS_ACCESS],
                    description=f"After-hours access to {building} {room}",
                    detected_at=now,
                    user_id=user_id,
                    building=building,
                    room=room,
                    details={
                        "events": len(hit_events),
                        "last_seen": hit_events[-1].timestamp.isoformat(),
                    },
                )
            )
        return alerts

    def _capacity_alerts(self, now: datetime) -> list[Alert]:
        alerts: list[Alert] = []
        for report in self.building_occupancy():
            if report.ratio <= 100:
                continue
            alerts.append(
                Alert(
                    alert_type=AlertType.CAPACITY_EXCEEDED,
                    severity=ALERT_SEVERITY[AlertType.CAPACITY_EXCEEDED],
                    description=f"{report.building} is over capacity",
                    detected_at=now,
                    building=report.building,
                    details={
                        "count": report.count,
                        "capacity": report.capacity,
                        "ratio": round(report.ratio, 1),
                    },
                )
            )
        return alerts

    def _unusual_movement_alerts(
        self,
        events: Iterable[LocationEvent],
        cutoff: datetime,
        window: timedelta,
        now: datetime,
        *,
        can_view_location: bool,
    ) -> list[Alert]:
        # Baseline: the user's retained events before the window, spread
        # over window-sized periods.  No prior events means no baseline.
        alerts: list[Alert] = []
        for user_id, recent in sorted(_group_by_user(events).items()):
            prior = [e for e in self._store.user_events(user_id) if e.timestamp < cutoff]
            if not prior:
                continue
            periods = max((cutoff - prior[0].timestamp) / window, 1.0)
            average = len(prior) / periods
            if len(recent) <= self._multiplier * average:
                continue
            if not self.is_visible(user_id, can_view_location=can_view_location):
                continue
            alerts.append(
                Alert(
                    alert_type=AlertType.UNUSUAL_MOVEMENT,
                    severity=ALERT_SEVERITY[AlertType.UNUSUAL_MOVEMENT],
                    description=f"Unusual movement volume for user {user_id}",
                    detected_at=now,
                    user_id=user_id,
                    details={
                        "events_in_window": len(recent),
                        "historical_average": round(average, 2),
                        "multiplier": self._multiplier,
                    },
                )
            )
        return alerts

    def _privacy_violation_alerts(self, cutoff: datetime, now: datetime) -> list[Alert]:
        denials = self._gate.denials_since(cutoff)
        if not denials:
            return []
        by_capability = Counter(d.capability.value for d in denials)
        return [
            Alert(
                alert_type=AlertType.PRIVACY_VIOLATION_ATTEMPT,
                severity=ALERT_SEVERITY[AlertType.PRIVACY_VIOLATION_ATTEMPT],
                description=f"{len(denials)} denied attempt(s) to access protected data",
                detected_at=now,
                details={"attempts": len(denials), "capabilities": dict(sorted(by_capability.items()))},
            )
        ]

    def _local_hour(self, timestamp: datetime) -> int:
        return timestamp.astimezone(self._tz).hour

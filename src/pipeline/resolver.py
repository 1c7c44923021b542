"""Intent resolver for free-text campus questions.

Maps a question to a structured :class:`QueryResponse` by matching the
lower-cased text against an ordered table of keyword rules.  The first
matching rule wins; when none matches, the campus-overview fallback
answers with a lower confidence than any matched handler.

Every call is evaluated fresh against the current store and policy
state, and every handler reads through the :class:`CampusQueryEngine`,
so results are filtered by the privacy policy gate before they are
turned into response entries.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING, Final

import structlog

from src.models.enums import QueryIntent, ResultType, UserRole
from src.models.errors import InvalidQueryError
from src.models.response import QueryResponse, QueryResult

if TYPE_CHECKING:
    from src.models.location import LocationEvent
    from src.models.user import Actor
    from src.services.directory import UserDirectory
    from src.services.query_engine import CampusQueryEngine

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

# ---------------------------------------------------------------------------
# Handler confidence
# ---------------------------------------------------------------------------

CONFIDENCE: Final[dict[QueryIntent, float]] = {
    QueryIntent.LIBRARY_OCCUPANTS: 0.95,
    QueryIntent.TEACHERS_ON_CAMPUS: 0.93,
    QueryIntent.MOVEMENT_PATTERN: 0.91,
    QueryIntent.AFTER_HOURS_ALERT: 1.0,
    QueryIntent.CAMPUS_ACTIVITY: 0.89,
    QueryIntent.CAMPUS_OVERVIEW: 0.85,
}


# ---------------------------------------------------------------------------
# Rule table
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class IntentRule:
    """A conjunction of keyword tests.

    The rule matches when every ``all_of`` keyword occurs in the text and,
    if ``any_of`` is non-empty, at least one of its keywords does too.
    """

    intent: QueryIntent
    all_of: tuple[str, ...] = ()
    any_of: tuple[str, ...] = ()

    def matches(self, text: str) -> bool:
        if not all(keyword in text for keyword in self.all_of):
            return False
        return not self.any_of or any(keyword in text for keyword in self.any_of)


INTENT_RULES: Final[tuple[IntentRule, ...]] = (
    IntentRule(QueryIntent.LIBRARY_OCCUPANTS, all_of=("who", "library")),
    IntentRule(QueryIntent.TEACHERS_ON_CAMPUS, all_of=("teacher", "campus")),
    IntentRule(QueryIntent.MOVEMENT_PATTERN, any_of=("movement", "pattern")),
    IntentRule(QueryIntent.AFTER_HOURS_ALERT, any_of=("alert", "lab 205")),
    IntentRule(QueryIntent.CAMPUS_ACTIVITY, any_of=("heat map", "activity")),
)


def classify(text: str) -> QueryIntent:
    """First matching intent for *text*; the overview fallback when none matches."""
    lowered = text.lower()
    for rule in INTENT_RULES:
        if rule.matches(lowered):
            return rule.intent
    return QueryIntent.CAMPUS_OVERVIEW


# ---------------------------------------------------------------------------
# IntentResolver
# ---------------------------------------------------------------------------


class IntentResolver:
    """Dispatches free-text questions to query-engine backed handlers.

    Parameters
    ----------
    engine:
        Gated query engine every handler reads from.
    directory:
        Identity lookup for display names and person mentions.
    latency:
        Seconds :meth:`resolve` waits before dispatching.
    window:
        Look-back interval for movement, alert, and activity questions.
    library_building:
        Building name the library-occupants intent reads.
    """

    __slots__ = (
        "_directory",
        "_engine",
        "_handlers",
        "_latency",
        "_library",
        "_window",
    )

    def __init__(
        self,
        engine: CampusQueryEngine,
        directory: UserDirectory,
        *,
        latency: float = 0.0,
        window: timedelta = timedelta(hours=24),
        library_building: str = "Library",
    ) -> None:
        self._engine = engine
        self._directory = directory
        self._latency = latency
        self._window = window
        self._library = library_building
        self._handlers: dict[QueryIntent, Callable[[str, Actor], QueryResponse]] = {
            QueryIntent.LIBRARY_OCCUPANTS: self._library_occupants,
            QueryIntent.TEACHERS_ON_CAMPUS: self._teachers_on_campus,
            QueryIntent.MOVEMENT_PATTERN: self._movement_pattern,
            QueryIntent.AFTER_HOURS_ALERT: self._after_hours_alerts,
            QueryIntent.CAMPUS_ACTIVITY: self._campus_activity,
            QueryIntent.CAMPUS_OVERVIEW: self._campus_overview,
        }

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def resolve(self, text: str, actor: Actor) -> QueryResponse:
        """Answer *text* after the configured latency.

        Validation happens before the wait and dispatch after it, so a
        call cancelled while waiting has read nothing and audited nothing.

        Raises
        ------
        InvalidQueryError
            If *text* is empty or whitespace-only.
        """
        _validate(text)
        if self._latency > 0:
            await asyncio.sleep(self._latency)
        return self.dispatch(text, actor)

    def dispatch(self, text: str, actor: Actor) -> QueryResponse:
        """Synchronously classify and answer *text*."""
        _validate(text)
        intent = classify(text)
        logger.info("resolver.intent_matched", intent=intent.value, actor=actor.label)
        response = self._handlers[intent](text.lower(), actor)
        logger.debug("resolver.response_built", intent=intent.value, results=len(response.results))
        return response

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def _library_occupants(self, text: str, actor: Actor) -> QueryResponse:
        intent = QueryIntent.LIBRARY_OCCUPANTS
        occupants = self._engine.occupants(actor, self._library)
        results = [self._person_result(intent, i, event) for i, event in enumerate(occupants)]

        message = f"{_count(len(results), 'person', 'people')} currently in the {self._library}."
        report = self._engine.occupancy(self._library)
        if report is not None:
            message += f" Occupancy is {report.display_percentage:.0f}% of {report.capacity}."
        return QueryResponse(message=message, intent=intent, results=results)

    def _teachers_on_campus(self, text: str, actor: Actor) -> QueryResponse:
        intent = QueryIntent.TEACHERS_ON_CAMPUS
        present = self._engine.present_users(actor, role=UserRole.TEACHER)
        results = [self._person_result(intent, i, event) for i, event in enumerate(present)]
        buildings = sorted({event.building for event in present})

        message = f"{_count(len(results), 'teacher', 'teachers')} currently on campus"
        message += f" across {', '.join(buildings)}." if buildings else "."
        return QueryResponse(message=message, intent=intent, results=results)

    def _movement_pattern(self, text: str, actor: Actor) -> QueryResponse:
        intent = QueryIntent.MOVEMENT_PATTERN
        person = self._directory.find_by_name(text)

        if person is not None:
            visits = self._engine.visits(actor, person.id, self._window)
            results = [
                QueryResult(
                    id=_result_id(intent, i),
                    type=ResultType.LOCATION,
                    title=f"{visit.building} / {visit.room}",
                    description=f"{visit.event_count} report(s) over {_minutes(visit.duration_seconds)}",
                    timestamp=visit.started_at,
                    confidence=CONFIDENCE[intent],
                    metadata={
                        "user_id": visit.user_id,
                        "building": visit.building,
                        "room": visit.room,
                        "started_at": visit.started_at.isoformat(),
                        "ended_at": visit.ended_at.isoformat(),
                        "duration_seconds": visit.duration_seconds,
                    },
                )
                for i, visit in enumerate(visits)
            ]
            message = f"{_count(len(results), 'visit', 'visits')} recorded for {person.name}."
            return QueryResponse(message=message, intent=intent, results=results)

        histogram = self._engine.movement_histogram(self._window)
        if histogram.peak_hour is None:
            message = "No movement recorded in the selected period."
        else:
            message = (
                f"{histogram.total_events} movement(s) recorded; "
                f"peak activity at {histogram.peak_hour:02d}:00."
            )
        result = QueryResult(
            id=_result_id(intent, 0),
            type=ResultType.ANALYTICS,
            title="Hourly movement",
            description=message,
            timestamp=self._engine.now(),
            confidence=CONFIDENCE[intent],
            metadata={
                "buckets": histogram.buckets,
                "peak_hour": histogram.peak_hour,
                "total_events": histogram.total_events,
            },
        )
        return QueryResponse(message=message, intent=intent, results=[result])

    def _after_hours_alerts(self, text: str, actor: Actor) -> QueryResponse:
        intent = QueryIntent.AFTER_HOURS_ALERT
        alerts = self._engine.after_hours_alerts(actor, self._window)
        results = [
            QueryResult(
                id=_result_id(intent, i),
                type=ResultType.EVENT,
                title=alert.description,
                description=f"Severity {alert.severity.value}",
                timestamp=alert.detected_at,
                confidence=CONFIDENCE[intent],
                metadata={
                    "alert_type": alert.alert_type.value,
                    "user_id": alert.user_id,
                    "building": alert.building,
                    "room": alert.room,
                    **alert.details,
                },
            )
            for i, alert in enumerate(alerts)
        ]
        rooms = ", ".join(f"{b} {r}" for b, r in self._engine.restricted_rooms())
        message = f"After-hours monitoring is active for {rooms}. {_count(len(results), 'alert', 'alerts')} found."
        return QueryResponse(message=message, intent=intent, results=results)

    def _campus_activity(self, text: str, actor: Actor) -> QueryResponse:
        intent = QueryIntent.CAMPUS_ACTIVITY
        popular = self._engine.popular_locations(self._window)
        histogram = self._engine.movement_histogram(self._window)

        results = [
            QueryResult(
                id=_result_id(intent, i),
                type=ResultType.ANALYTICS,
                title=f"{stat.building} / {stat.room}",
                description=f"{_count(stat.visits, 'visit', 'visits')}, average {_minutes(stat.average_duration_seconds)}",
                confidence=CONFIDENCE[intent],
                metadata={
                    "building": stat.building,
                    "room": stat.room,
                    "visits": stat.visits,
                    "total_duration_seconds": stat.total_duration_seconds,
                },
            )
            for i, stat in enumerate(popular)
        ]

        if popular:
            message = f"Most visited: {popular[0].building} / {popular[0].room}."
        else:
            message = "No campus activity recorded in the selected period."
        if histogram.peak_hour is not None:
            message += f" Peak hour {histogram.peak_hour:02d}:00."
        return QueryResponse(message=message, intent=intent, results=results)

    def _campus_overview(self, text: str, actor: Actor) -> QueryResponse:
        intent = QueryIntent.CAMPUS_OVERVIEW
        overview = self._engine.overview(actor)
        message = (
            f"{overview.total_users} tracked user(s), {overview.active_users} active, "
            f"{overview.buildings} building(s), {overview.total_alerts} alert(s)."
        )
        result = QueryResult(
            id=_result_id(intent, 0),
            type=ResultType.ANALYTICS,
            title="Campus overview",
            description=message,
            timestamp=self._engine.now(),
            confidence=CONFIDENCE[intent],
            metadata={
                "total_users": overview.total_users,
                "active_users": overview.active_users,
                "buildings": overview.buildings,
                "alerts_by_severity": overview.alerts_by_severity,
            },
        )
        return QueryResponse(message=message, intent=intent, results=[result])

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _person_result(self, intent: QueryIntent, index: int, event: LocationEvent) -> QueryResult:
        identity = self._directory.get_user(event.user_id)
        metadata: dict[str, object] = {
            "user_id": event.user_id,
            "building": event.building,
            "room": event.room,
        }
        if identity is not None:
            metadata["role"] = identity.role.value
            if identity.department:
                metadata["department"] = identity.department

        return QueryResult(
            id=_result_id(intent, index),
            type=ResultType.USER,
            title=identity.name if identity else event.user_id,
            description=f"{event.building} / {event.room}",
            timestamp=event.timestamp,
            confidence=CONFIDENCE[intent],
            metadata=metadata,
        )


def _validate(text: str) -> None:
    if not text or not text.strip():
        raise InvalidQueryError("Query text must not be empty")


def _result_id(intent: QueryIntent, index: int) -> str:
    return f"{intent.value}-{index}"


def _count(n: int, singular: str, plural: str) -> str:
    return f"{n} {singular if n == 1 else plural}"


def _minutes(seconds: float) -> str:
    return f"{seconds / 60:.0f} min"

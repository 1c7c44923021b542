"""Bounded, memory-resident timeline of location events.

The store keeps at most ``capacity`` events ordered by timestamp.  When
an insert pushes it over capacity the oldest event is evicted in the same
locked step, so a reader never observes the new event without the
matching eviction (or the reverse).

Three indices are maintained on every insert and eviction:

* per-user event deques (timestamp order) for history reads,
* per-user latest event for ``current``,
* per-building membership of users whose latest event is in that building,
  which makes ``in_building`` proportional to the building's population
  rather than to the whole timeline.

No read raises: absence is ``None`` or an empty list.
"""

from __future__ import annotations

import bisect
import threading
from collections import deque
from collections.abc import Iterable
from datetime import datetime, timedelta

import structlog

from src.models.location import LocationEvent
from src.services.clock import Clock, utc_now

logger = structlog.get_logger(__name__)


def _timestamp(event: LocationEvent) -> datetime:
    return event.timestamp


def _insert_sorted(events: deque[LocationEvent], event: LocationEvent) -> None:
    """Insert keeping timestamp order; ties keep arrival order."""
    if not events or event.timestamp >= events[-1].timestamp:
        events.append(event)
        return
    index = bisect.bisect_right(events, event.timestamp, key=_timestamp)
    events.insert(index, event)


class LocationEventStore:
    """Append-only bounded event timeline with per-user and per-building indices.

    Parameters
    ----------
    capacity:
        Maximum number of retained events.  Overflow evicts oldest first.
    clock:
        Callable returning the current aware ``datetime``; injected so that
        windowed reads are deterministic under test.
    """

    __slots__ = (
        "_by_building",
        "_by_user",
        "_capacity",
        "_clock",
        "_events",
        "_latest",
        "_lock",
    )

    def __init__(self, *, capacity: int = 1000, clock: Clock | None = None) -> None:
        if capacity < 1:
            msg = f"capacity must be positive, got {capacity}"
            raise ValueError(msg)
        self._capacity = capacity
        self._clock: Clock = clock or utc_now
        self._events: deque[LocationEvent] = deque()
        self._by_user: dict[str, deque[LocationEvent]] = {}
        self._latest: dict[str, LocationEvent] = {}
        self._by_building: dict[str, set[str]] = {}
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def size(self) -> int:
        with self._lock:
            return len(self._events)

    def __len__(self) -> int:
        return self.size

    def now(self) -> datetime:
        return self._clock()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def append(self, event: LocationEvent) -> list[LocationEvent]:
        """Insert *event* and evict overflow; returns the evicted events."""
        return self.extend((event,))

    def extend(self, events: Iterable[LocationEvent]) -> list[LocationEvent]:
        """Insert a batch of events as one atomic step.

        Every event of the batch is inserted and all resulting overflow is
        evicted before the lock is released.
        """
        evicted: list[LocationEvent] = []
        with self._lock:
            for event in events:
                _insert_sorted(self._events, event)
                _insert_sorted(self._by_user.setdefault(event.user_id, deque()), event)
                self._refresh_latest(event.user_id)
                while len(self._events) > self._capacity:
                    evicted.append(self._evict_oldest())

        if evicted:
            logger.debug("store.evicted", count=len(evicted), capacity=self._capacity)
        return evicted

    def expire_before(self, cutoff: datetime) -> list[LocationEvent]:
        """Evict every event older than *cutoff* (retention expiry)."""
        expired: list[LocationEvent] = []
        with self._lock:
            while self._events and self._events[0].timestamp < cutoff:
                expired.append(self._evict_oldest())

        if expired:
            logger.info("store.expired", count=len(expired), cutoff=cutoff.isoformat())
        return expired

    def purge_user(self, user_id: str) -> int:
        """Remove every retained event of *user_id*; returns how many."""
        with self._lock:
            user_events = self._by_user.pop(user_id, None)
            if not user_events:
                return 0
            self._events = deque(e for e in self._events if e.user_id != user_id)
            latest = self._latest.pop(user_id, None)
            if latest is not None:
                self._leave_building(latest.building, user_id)
            removed = len(user_events)

        logger.info("store.user_purged", user_id=user_id, removed=removed)
        return removed

    def reset(self) -> None:
        """Drop all events and indices (used between tests)."""
        with self._lock:
            self._events.clear()
            self._by_user.clear()
            self._latest.clear()
            self._by_building.clear()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def current(self, user_id: str) -> LocationEvent | None:
        """Latest retained event for *user_id*, or ``None``."""
        with self._lock:
            return self._latest.get(user_id)

    def history(
        self,
        user_id: str,
        window: timedelta,
        *,
        now: datetime | None = None,
    ) -> list[LocationEvent]:
        """Events for *user_id* with ``timestamp >= now - window``, newest first."""
        cutoff = (now or self._clock()) - window
        with self._lock:
            user_events = self._by_user.get(user_id)
            if not user_events:
                return []
            result: list[LocationEvent] = []
            for event in reversed(user_events):
                if event.timestamp < cutoff:
                    break
                result.append(event)
            return result

    def in_building(
        self,
        building: str,
        recency_window: timedelta,
        *,
        now: datetime | None = None,
    ) -> list[LocationEvent]:
        """One event per user present in *building*, newest first.

        A user counts as present when their most recent event within the
        recency window is in *building*.  That event is necessarily their
        overall latest event, so the building membership index answers it
        directly.
        """
        cutoff = (now or self._clock()) - recency_window
        with self._lock:
            members = self._by_building.get(building)
            if not members:
                return []
            present = [
                self._latest[user_id]
                for user_id in members
                if self._latest[user_id].timestamp >= cutoff
            ]
        present.sort(key=lambda e: (e.timestamp, e.user_id), reverse=True)
        return present

    def events_since(self, cutoff: datetime) -> list[LocationEvent]:
        """All events with ``timestamp >= cutoff``, oldest first."""
        with self._lock:
            result: list[LocationEvent] = []
            for event in reversed(self._events):
                if event.timestamp < cutoff:
                    break
                result.append(event)
        result.reverse()
        return result

    def user_events(self, user_id: str) -> list[LocationEvent]:
        """Every retained event of *user_id*, oldest first."""
        with self._lock:
            return list(self._by_user.get(user_id, ()))

    def latest_events(self) -> dict[str, LocationEvent]:
        """Snapshot of each tracked user's latest event."""
        with self._lock:
            return dict(self._latest)

    def snapshot(self) -> tuple[LocationEvent, ...]:
        """All retained events, oldest first."""
        with self._lock:
            return tuple(self._events)

    def tracked_user_ids(self) -> list[str]:
        with self._lock:
            return sorted(self._by_user)

    # ------------------------------------------------------------------
    # Index maintenance (caller holds the lock)
    # ------------------------------------------------------------------

    def _evict_oldest(self) -> LocationEvent:
        event = self._events.popleft()
        user_events = self._by_user[event.user_id]
        if user_events[0] is event:
            user_events.popleft()
        else:
            user_events.remove(event)

        if user_events:
            self._refresh_latest(event.user_id)
        else:
            del self._by_user[event.user_id]
            latest = self._latest.pop(event.user_id)
            self._leave_building(latest.building, event.user_id)
        return event

    def _refresh_latest(self, user_id: str) -> None:
        newest = self._by_user[user_id][-1]
        previous = self._latest.get(user_id)
        if previous is newest:
            return
        if previous is not None and previous.building != newest.building:
            self._leave_building(previous.building, user_id)
        self._latest[user_id] = newest
        self._by_building.setdefault(newest.building, set()).add(user_id)

    def _leave_building(self, building: str, user_id: str) -> None:
        members = self._by_building.get(building)
        if members is None:
            return
        members.discard(user_id)
        if not members:
            del self._by_building[building]

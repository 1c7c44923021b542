"""Location ingestion pipeline -- the single writer of the event store.

Reports pushed by the location-reporting collaborator are checked against
the collection policies as they arrive and queued.  The periodic tick
(:meth:`IngestionPipeline.flush`) then commits the whole queued batch to
the store in one atomic step and applies retention expiry.

Rejection
---------
A report is dropped (and logged) when no active policy covering the
``location`` data type is required or opted in to by the user.  Rejection
is decided at report time, so a policy toggled afterwards does not retract
reports that were already accepted.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

import structlog

from src.models.enums import Capability, DataType
from src.models.errors import PermissionDeniedError
from src.models.location import LocationEvent

if TYPE_CHECKING:
    from src.models.request import LocationReport
    from src.models.user import Actor
    from src.services.event_store import LocationEventStore
    from src.services.policy_gate import PrivacyPolicyGate

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# TickResult dataclass
# ---------------------------------------------------------------------------


@dataclass
class TickResult:
    """Report produced by one ingestion tick."""

    committed: int = 0
    evicted: int = 0
    expired: int = 0
    duration_seconds: float = 0.0
    timestamp: datetime | None = None

    def to_dict(self) -> dict:
        """Serialise to a JSON-compatible dictionary."""
        return {
            "committed": self.committed,
            "evicted": self.evicted,
            "expired": self.expired,
            "duration_seconds": round(self.duration_seconds, 4),
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


# ---------------------------------------------------------------------------
# IngestionPipeline
# ---------------------------------------------------------------------------


class IngestionPipeline:
    """Accepts location reports and commits them to the store on each tick.

    Parameters
    ----------
    store:
        The :class:`LocationEventStore` written to.
    gate:
        Policy gate deciding whether a report may be collected.
    retention:
        Events older than ``now - retention`` are expired on every tick.
        ``None`` disables retention expiry.
    """

    __slots__ = (
        "_accepted_total",
        "_dropped_total",
        "_gate",
        "_last_tick",
        "_lock",
        "_pending",
        "_retention",
        "_store",
    )

    def __init__(
        self,
        store: LocationEventStore,
        gate: PrivacyPolicyGate,
        *,
        retention: timedelta | None = None,
    ) -> None:
        self._store = store
        self._gate = gate
        self._retention = retention
        self._pending: list[LocationEvent] = []
        self._lock = threading.Lock()
        self._accepted_total = 0
        self._dropped_total = 0
        self._last_tick: TickResult | None = None

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._pending)

    @property
    def accepted_total(self) -> int:
        return self._accepted_total

    @property
    def dropped_total(self) -> int:
        return self._dropped_total

    @property
    def last_tick(self) -> TickResult | None:
        return self._last_tick

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def report_location(
        self,
        user_id: str,
        x: float,
        y: float,
        building: str,
        room: str,
        timestamp: datetime,
    ) -> bool:
        """Queue a position report; returns ``False`` when it was dropped."""
        if not self._gate.accepts_collection(user_id, DataType.LOCATION):
            self._dropped_total += 1
            logger.info("ingestion.dropped", user_id=user_id, building=building, reason="no_collection_policy")
            return False

        event = LocationEvent(
            user_id=user_id,
            x=x,
            y=y,
            timestamp=timestamp,
            building=building,
            room=room,
        )
        with self._lock:
            self._pending.append(event)
        self._accepted_total += 1
        logger.debug("ingestion.queued", user_id=user_id, building=building, room=room)
        return True

    def submit(self, report: LocationReport) -> bool:
        """Convenience wrapper for the HTTP ingestion model."""
        return self.report_location(
            report.user_id,
            report.x,
            report.y,
            report.building,
            report.room,
            report.timestamp,
        )

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    def flush(self) -> TickResult:
        """Commit queued reports to the store and apply retention expiry.

        The store insert for the whole batch, including capacity eviction,
        happens under the store's write lock in a single step.
        """
        start = time.monotonic()
        with self._lock:
            batch, self._pending = self._pending, []

        result = TickResult(timestamp=self._store.now())
        if batch:
            evicted = self._store.extend(batch)
            result.committed = len(batch)
            result.evicted = len(evicted)

        if self._retention is not None:
            expired = self._store.expire_before(self._store.now() - self._retention)
            result.expired = len(expired)

        result.duration_seconds = time.monotonic() - start
        self._last_tick = result

        if result.committed or result.expired:
            logger.info(
                "ingestion.tick_complete",
                committed=result.committed,
                evicted=result.evicted,
                expired=result.expired,
                store_size=self._store.size,
            )
        return result

    # ------------------------------------------------------------------
    # Erasure
    # ------------------------------------------------------------------

    def erase_user(self, user_id: str, actor: Actor) -> int:
        """Remove every retained and queued event of *user_id*.

        Returns the number of events removed.

        Raises
        ------
        PermissionDeniedError
            If *actor* lacks ``delete_data``.  Nothing is removed.
        """
        if not self._gate.evaluate(Capability.DELETE_DATA, actor.role, user_id, actor_id=actor.actor_id):
            raise PermissionDeniedError(Capability.DELETE_DATA.value)

        with self._lock:
            queued = len(self._pending)
            self._pending = [e for e in self._pending if e.user_id != user_id]
            queued -= len(self._pending)
        removed = self._store.purge_user(user_id) + queued
        logger.info("ingestion.user_erased", user_id=user_id, removed=removed, actor=actor.label)
        return removed

    def reset(self) -> None:
        with self._lock:
            self._pending.clear()
        self._accepted_total = 0
        self._dropped_total = 0
        self._last_tick = None

"""Shared fixtures: a controllable clock, a small directory, and a wired service graph."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from config.settings import Settings
from src.models.enums import PrivacyLevel, UserRole
from src.models.location import LocationEvent
from src.models.user import Actor, UserIdentity
from src.services.container import CampusServices

# Tuesday 10:00 UTC, inside business hours.
T0 = datetime(2026, 3, 10, 10, 0, tzinfo=UTC)

ADMIN = Actor(role=UserRole.ADMIN, actor_id="admin-1")
STUDENT = Actor(role=UserRole.STUDENT, actor_id="u1")


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


def make_event(
    user_id: str,
    minutes: float,
    building: str = "Library",
    room: str = "Study Hall A",
    *,
    base: datetime = T0,
) -> LocationEvent:
    """Event for *user_id* at ``base + minutes``."""
    return LocationEvent(
        user_id=user_id,
        x=1.0,
        y=2.0,
        timestamp=base + timedelta(minutes=minutes),
        building=building,
        room=room,
    )


DIRECTORY_USERS = [
    UserIdentity(id="u1", name="Alice Johnson", email="alice@campus.edu", role=UserRole.STUDENT,
                 department="Physics", privacy_level=PrivacyLevel.PUBLIC, consent_given=True),
    UserIdentity(id="u2", name="Bob Smith", email="bob@campus.edu", role=UserRole.TEACHER,
                 department="Chemistry", privacy_level=PrivacyLevel.PUBLIC, consent_given=True),
    UserIdentity(id="u3", name="Carol White", email="carol@campus.edu", role=UserRole.STUDENT,
                 department="History", privacy_level=PrivacyLevel.PUBLIC, consent_given=False),
    UserIdentity(id="u4", name="Dana Lee", email="dana@campus.edu", role=UserRole.STAFF,
                 department="Facilities", privacy_level=PrivacyLevel.PRIVATE, consent_given=True),
]


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        store_capacity=100,
        enable_auto_ingestion=False,
        resolver_latency_seconds=0.0,
        directory_file=None,
        admin_api_key="",
    )


@pytest.fixture
def services(test_settings: Settings, clock: FixedClock) -> CampusServices:
    return CampusServices.build(test_settings, clock=clock, users=list(DIRECTORY_USERS), consents=[])


@pytest.fixture
def seed(services: CampusServices):
    """Insert events straight into the store, bypassing ingestion."""

    def _seed(*events: LocationEvent) -> None:
        services.store.extend(events)

    return _seed

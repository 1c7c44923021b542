"""Tests for the gated query and aggregation engine."""

from __future__ import annotations

from datetime import timedelta

import pytest

from src.models.enums import AlertSeverity, AlertType, Capability, PrivacyLevel, UserRole
from src.models.privacy import PrivacySettingsUpdate
from src.models.user import Actor
from src.services.container import CampusServices
from src.services.query_engine import compute_visits, peak_hour, rank_locations
from tests.conftest import ADMIN, STUDENT, T0, FixedClock, make_event

TEACHER = Actor(role=UserRole.TEACHER, actor_id="u2")


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


class TestComputeVisits:
    def test_contiguous_runs(self) -> None:
        events = [
            make_event("u1", 0, "Library", "StudyHallA"),
            make_event("u1", 10, "Library", "StudyHallA"),
            make_event("u1", 20, "Library", "StudyHallA"),
            make_event("u1", 25, "SciBuilding", "Lab205"),
        ]
        visits = compute_visits(events)
        assert len(visits) == 2, f"expected 2 visits, got {len(visits)}"
        assert visits[0].event_count == 3
        assert visits[0].duration_seconds == 20 * 60
        assert visits[1].event_count == 1
        assert visits[1].duration_seconds == 0

    def test_return_to_same_room_is_new_visit(self) -> None:
        events = [
            make_event("u1", 0, room="A"),
            make_event("u1", 5, room="B"),
            make_event("u1", 10, room="A"),
        ]
        assert [v.room for v in compute_visits(events)] == ["A", "B", "A"]

    def test_empty(self) -> None:
        assert compute_visits([]) == []

    def test_rank_ties_broken_by_duration(self) -> None:
        visits = compute_visits([make_event("u1", 0, room="A"), make_event("u1", 30, room="A")])
        visits += compute_visits([make_event("u2", 0, room="B"), make_event("u2", 5, room="B")])
        ranked = rank_locations(visits)
        assert [s.room for s in ranked] == ["A", "B"], "equal visit counts rank by total duration"

    def test_peak_hour_tie_goes_to_earliest(self) -> None:
        buckets = [0] * 24
        buckets[9] = 4
        buckets[14] = 4
        assert peak_hour(buckets) == 9
        assert peak_hour([0] * 24) is None


# ---------------------------------------------------------------------------
# Per-user reads
# ---------------------------------------------------------------------------


class TestUserReads:
    def test_history_and_visits_scenario(self, services: CampusServices, seed, clock: FixedClock) -> None:
        seed(
            make_event("u1", 0, "Library", "StudyHallA"),
            make_event("u1", 10, "Library", "StudyHallA"),
            make_event("u1", 20, "Library", "StudyHallA"),
            make_event("u1", 25, "SciBuilding", "Lab205"),
        )
        clock.now = T0 + timedelta(minutes=30)

        history = services.engine.location_history(ADMIN, "u1", timedelta(hours=1))
        assert len(history) == 4
        assert history[0].timestamp == T0 + timedelta(minutes=25), "newest first"

        visits = services.engine.visits(ADMIN, "u1", timedelta(hours=1))
        assert [(v.building, v.event_count) for v in visits] == [("Library", 3), ("SciBuilding", 1)]

    def test_denied_history_is_empty_and_recorded(self, services: CampusServices, seed) -> None:
        seed(make_event("u2", 0))
        assert services.engine.location_history(STUDENT, "u2", timedelta(hours=1)) == []
        assert services.engine.location_history(STUDENT, "nobody", timedelta(hours=1)) == [], (
            "denial for an unknown user looks the same as for a known one"
        )
        assert len(services.gate.denials_since(T0 - timedelta(minutes=1))) == 2

    def test_current_location_public_user_visible_to_student(self, services: CampusServices, seed) -> None:
        seed(make_event("u1", 0))
        current = services.engine.current_location(STUDENT, "u1")
        assert current is not None and current.user_id == "u1"

    def test_current_location_private_user_hidden_from_student(self, services: CampusServices, seed) -> None:
        seed(make_event("u4", 0))
        assert services.engine.current_location(STUDENT, "u4") is None
        assert services.engine.current_location(ADMIN, "u4") is not None

    def test_export_requires_capability(self, services: CampusServices, seed) -> None:
        seed(make_event("u1", 0), make_event("u1", 5))
        assert len(services.engine.export_history(ADMIN, "u1")) == 2
        assert services.engine.export_history(STUDENT, "u1") == []


# ---------------------------------------------------------------------------
# Consent filtering
# ---------------------------------------------------------------------------


class TestConsentFiltering:
    @pytest.fixture(autouse=True)
    def _events(self, seed) -> None:
        seed(
            make_event("u1", 0),
            make_event("u3", 1),
            make_event("u3", 2, "Science Building", "Lab 205", base=T0.replace(hour=22) - timedelta(days=1)),
        )

    @pytest.mark.parametrize("actor", [ADMIN, STUDENT, TEACHER])
    def test_non_consented_user_never_surfaces(self, services: CampusServices, actor: Actor) -> None:
        engine = services.engine
        window = timedelta(days=2)
        assert "u3" not in {e.user_id for e in engine.occupants(actor, "Library")}
        assert "u3" not in {e.user_id for e in engine.present_users(actor, recency_window=window)}
        assert engine.current_location(actor, "u3") is None
        assert engine.location_history(actor, "u3", window) == []
        assert engine.export_history(actor, "u3") == []
        assert "u3" not in {u.user_id for u in engine.inactive_users(actor, timedelta(minutes=0))}
        assert "u3" not in {a.user_id for a in engine.alerts(actor, window)}

    def test_consent_withdrawal_hides_user(self, services: CampusServices) -> None:
        assert [e.user_id for e in services.engine.occupants(ADMIN, "Library")] == ["u1"]
        services.gate.record_consent("u1", False)
        assert services.engine.occupants(ADMIN, "Library") == []


# ---------------------------------------------------------------------------
# Presence
# ---------------------------------------------------------------------------


class TestPresence:
    def test_occupants_filter_private_for_non_admin(self, services: CampusServices, seed) -> None:
        seed(make_event("u1", 0), make_event("u4", 1))
        assert {e.user_id for e in services.engine.occupants(ADMIN, "Library")} == {"u1", "u4"}
        assert {e.user_id for e in services.engine.occupants(STUDENT, "Library")} == {"u1"}

    def test_present_users_by_role(self, services: CampusServices, seed) -> None:
        seed(make_event("u1", 0), make_event("u2", 1, "Engineering", "Workshop"))
        teachers = services.engine.present_users(ADMIN, role=UserRole.TEACHER)
        assert [e.user_id for e in teachers] == ["u2"]

    def test_inactive_users(self, services: CampusServices, seed, clock: FixedClock) -> None:
        seed(make_event("u1", 0), make_event("u2", 0))
        clock.now = T0 + timedelta(hours=3)
        seed(make_event("u2", 170))
        inactive = services.engine.inactive_users(ADMIN, timedelta(hours=2))
        assert [u.user_id for u in inactive] == ["u1", "u4"], "u3 is not consented, u2 is recent"
        assert inactive[0].building == "Library"
        assert inactive[1].last_seen is None


# ---------------------------------------------------------------------------
# Aggregates
# ---------------------------------------------------------------------------


class TestAggregates:
    def test_occupancy_exact_ratio(self, services: CampusServices, seed) -> None:
        seed(make_event("u1", 0), make_event("u2", 0), make_event("u3", 0))
        report = services.engine.occupancy("Library")
        assert report is not None
        assert report.ratio == 3 / 150 * 100

    def test_occupancy_unknown_building(self, services: CampusServices) -> None:
        assert services.engine.occupancy("Moon Base") is None

    def test_occupancy_is_unclamped(self, services: CampusServices, seed) -> None:
        seed(*(make_event(f"visitor-{i}", 0, "Admin Building", "Lobby") for i in range(60)))
        report = services.engine.occupancy("Admin Building")
        assert report is not None
        assert report.ratio == 120.0
        assert report.display_percentage == 100.0

    def test_anonymous_analytics_off_counts_only_consented(self, services: CampusServices, seed) -> None:
        seed(make_event("u1", 0), make_event("u3", 0))
        services.gate.update_settings(PrivacySettingsUpdate(allow_anonymous_analytics=False))
        report = services.engine.occupancy("Library")
        assert report is not None and report.count == 1

    def test_movement_histogram_peak(self, services: CampusServices, seed, clock: FixedClock) -> None:
        seed(
            make_event("u1", -60),
            make_event("u2", -55),
            make_event("u1", 60),
            make_event("u2", 65),
        )
        clock.now = T0 + timedelta(hours=2)
        histogram = services.engine.movement_histogram(timedelta(hours=6))
        assert histogram.buckets[9] == 2 and histogram.buckets[11] == 2
        assert histogram.peak_hour == 9, "ties go to the earliest hour"
        assert histogram.total_events == 4

    def test_popular_locations(self, services: CampusServices, seed, clock: FixedClock) -> None:
        seed(
            make_event("u1", 0, room="Reading Room"),
            make_event("u1", 10, room="Stacks"),
            make_event("u2", 0, room="Reading Room"),
            make_event("u2", 20, room="Reading Room"),
        )
        clock.now = T0 + timedelta(minutes=30)
        popular = services.engine.popular_locations(timedelta(hours=1))
        assert [(s.room, s.visits) for s in popular] == [("Reading Room", 2), ("Stacks", 1)]

    def test_privacy_metrics(self, services: CampusServices) -> None:
        metrics = {m.level: m for m in services.engine.privacy_metrics()}
        assert metrics[PrivacyLevel.PUBLIC.value].count == 3
        assert metrics[PrivacyLevel.PRIVATE.value].percentage == 25.0
        assert metrics[PrivacyLevel.FRIENDS.value].count == 0


# ---------------------------------------------------------------------------
# Alerts
# ---------------------------------------------------------------------------


class TestAlerts:
    def test_after_hours_access(self, services: CampusServices, seed, clock: FixedClock) -> None:
        night = T0.replace(hour=22)
        seed(
            make_event("u1", 0, "Science Building", "Lab 205", base=night),
            make_event("u1", 5, "Science Building", "Lab 205", base=night),
            make_event("u2", 0, "Science Building", "Lecture Hall", base=night),
        )
        clock.now = night + timedelta(minutes=10)
        alerts = services.engine.alerts(ADMIN, timedelta(hours=1))
        after_hours = [a for a in alerts if a.alert_type == AlertType.AFTER_HOURS_ACCESS]
        assert len(after_hours) == 1, "one alert per user and restricted room"
        assert after_hours[0].severity == AlertSeverity.MEDIUM
        assert after_hours[0].details["events"] == 2

    def test_restricted_room_in_business_hours(self, services: CampusServices, seed) -> None:
        seed(make_event("u1", 0, "Science Building", "Lab 205"))
        assert services.engine.after_hours_alerts(ADMIN) == []

    def test_capacity_exceeded(self, services: CampusServices, seed) -> None:
        seed(*(make_event(f"visitor-{i}", 0, "Admin Building", "Lobby") for i in range(51)))
        alerts = [a for a in services.engine.alerts(ADMIN) if a.alert_type == AlertType.CAPACITY_EXCEEDED]
        assert [a.building for a in alerts] == ["Admin Building"]
        assert alerts[0].severity == AlertSeverity.HIGH

    def test_unusual_movement(self, services: CampusServices, seed, clock: FixedClock) -> None:
        seed(make_event("u1", 0), make_event("u1", 120))
        seed(*(make_event("u1", 250 + i, room=f"Room {i % 2}") for i in range(5)))
        seed(*(make_event("u2", m) for m in (0, 60, 120, 180, 250)))
        clock.now = T0 + timedelta(hours=5)

        alerts = [a for a in services.engine.alerts(ADMIN) if a.alert_type == AlertType.UNUSUAL_MOVEMENT]
        assert [a.user_id for a in alerts] == ["u1"]
        assert alerts[0].severity == AlertSeverity.LOW

    def test_no_baseline_no_unusual_alert(self, services: CampusServices, seed) -> None:
        seed(*(make_event("u1", i) for i in range(10)))
        alerts = services.engine.alerts(ADMIN)
        assert not [a for a in alerts if a.alert_type == AlertType.UNUSUAL_MOVEMENT]

    def test_privacy_violation_attempt(self, services: CampusServices, seed) -> None:
        seed(make_event("u2", 0))
        services.engine.location_history(STUDENT, "u2", timedelta(hours=1))
        alerts = [a for a in services.engine.alerts(ADMIN) if a.alert_type == AlertType.PRIVACY_VIOLATION_ATTEMPT]
        assert len(alerts) == 1
        assert alerts[0].details["attempts"] == 1
        assert alerts[0].severity == AlertSeverity.HIGH

    def test_denied_listing_counts_even_when_nothing_withheld(self, services: CampusServices, seed) -> None:
        seed(make_event("u1", 0))
        assert services.engine.occupants(STUDENT, "Engineering") == []
        assert [e.user_id for e in services.engine.present_users(STUDENT)] == ["u1"]

        alerts = [a for a in services.engine.alerts(ADMIN) if a.alert_type == AlertType.PRIVACY_VIOLATION_ATTEMPT]
        assert len(alerts) == 1, "every denied view_location evaluation is a violation attempt"
        assert alerts[0].details["attempts"] == 2
        assert alerts[0].details["capabilities"] == {"view_location": 2}

    def test_permission_check_is_not_a_violation(self, services: CampusServices) -> None:
        assert services.gate.check_permission(Capability.VIEW_LOCATION, UserRole.STUDENT, "u2") is False
        kinds = {a.alert_type for a in services.engine.alerts(ADMIN)}
        assert AlertType.PRIVACY_VIOLATION_ATTEMPT not in kinds

    def test_rules_fire_independently(self, services: CampusServices, seed, clock: FixedClock) -> None:
        night = T0.replace(hour=22)
        seed(make_event("u1", 0, "Science Building", "Lab 205", base=night))
        seed(*(make_event(f"visitor-{i}", 0, "Admin Building", "Lobby", base=night) for i in range(51)))
        clock.now = night + timedelta(minutes=5)
        services.engine.location_history(STUDENT, "u2", timedelta(hours=1))

        kinds = {a.alert_type for a in services.engine.alerts(ADMIN)}
        assert {
            AlertType.AFTER_HOURS_ACCESS,
            AlertType.CAPACITY_EXCEEDED,
            AlertType.PRIVACY_VIOLATION_ATTEMPT,
        } <= kinds


class TestOverview:
    def test_overview_counts(self, services: CampusServices, seed) -> None:
        seed(make_event("u1", 0), make_event("u2", 0, "Engineering", "Workshop"))
        overview = services.engine.overview(ADMIN)
        assert overview.total_users == 2
        assert overview.active_users == 2
        assert overview.buildings == 5
        assert len(overview.occupancy) == 5
        assert overview.total_alerts == sum(overview.alerts_by_severity.values())

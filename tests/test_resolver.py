"""Tests for the free-text intent resolver."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from src.models.enums import QueryIntent, ResultType
from src.models.errors import InvalidQueryError
from src.pipeline.resolver import CONFIDENCE, INTENT_RULES, IntentResolver, classify
from src.services.container import CampusServices
from tests.conftest import ADMIN, STUDENT, T0, FixedClock, make_event


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


class TestClassify:
    @pytest.mark.parametrize(
        ("text", "intent"),
        [
            ("Who is in the library?", QueryIntent.LIBRARY_OCCUPANTS),
            ("Which teachers are on campus right now", QueryIntent.TEACHERS_ON_CAMPUS),
            ("Show movement for Alice Johnson", QueryIntent.MOVEMENT_PATTERN),
            ("any unusual pattern today?", QueryIntent.MOVEMENT_PATTERN),
            ("Set an alert for Lab 205", QueryIntent.AFTER_HOURS_ALERT),
            ("show me the heat map", QueryIntent.CAMPUS_ACTIVITY),
            ("campus activity this morning", QueryIntent.CAMPUS_ACTIVITY),
            ("hello there", QueryIntent.CAMPUS_OVERVIEW),
        ],
    )
    def test_rules(self, text: str, intent: QueryIntent) -> None:
        assert classify(text) == intent

    def test_first_match_wins(self) -> None:
        # Matches both library-occupants and movement-pattern.
        assert classify("who in the library has a movement pattern") == QueryIntent.LIBRARY_OCCUPANTS
        # Matches both teachers-on-campus and heat-map/activity.
        assert classify("teacher activity on campus") == QueryIntent.TEACHERS_ON_CAMPUS

    def test_library_rule_needs_both_keywords(self) -> None:
        assert classify("library opening hours") == QueryIntent.CAMPUS_OVERVIEW

    def test_rule_order(self) -> None:
        assert [r.intent for r in INTENT_RULES] == [
            QueryIntent.LIBRARY_OCCUPANTS,
            QueryIntent.TEACHERS_ON_CAMPUS,
            QueryIntent.MOVEMENT_PATTERN,
            QueryIntent.AFTER_HOURS_ALERT,
            QueryIntent.CAMPUS_ACTIVITY,
        ]

    def test_fallback_confidence_is_lowest(self) -> None:
        fallback = CONFIDENCE[QueryIntent.CAMPUS_OVERVIEW]
        matched = [c for intent, c in CONFIDENCE.items() if intent != QueryIntent.CAMPUS_OVERVIEW]
        assert all(fallback < c for c in matched)
        assert all(0.0 <= c <= 1.0 for c in CONFIDENCE.values())


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


class TestDispatch:
    def test_library_scenario(self, services: CampusServices, seed) -> None:
        seed(make_event("u1", 0), make_event("u3", 1))
        response = services.resolver.dispatch("Who is in the library?", ADMIN)
        assert response.intent == QueryIntent.LIBRARY_OCCUPANTS
        assert [r.metadata["user_id"] for r in response.results] == ["u1"], (
            "only the consented occupant may appear"
        )
        result = response.results[0]
        assert result.type == ResultType.USER
        assert result.title == "Alice Johnson"
        assert 0.0 <= result.confidence <= 1.0

    def test_deterministic(self, services: CampusServices, seed) -> None:
        seed(make_event("u1", 0), make_event("u2", 1), make_event("u2", 5, "Engineering", "Workshop"))
        for text in ("Who is in the library?", "teachers on campus", "heat map", "status"):
            first = services.resolver.dispatch(text, ADMIN)
            second = services.resolver.dispatch(text, ADMIN)
            assert first.to_json() == second.to_json(), f"resolver output changed for {text!r}"

    def test_teachers_on_campus(self, services: CampusServices, seed) -> None:
        seed(make_event("u1", 0), make_event("u2", 1, "Engineering", "Workshop"))
        response = services.resolver.dispatch("Are any teachers on campus?", ADMIN)
        assert [r.metadata["user_id"] for r in response.results] == ["u2"]
        assert "Engineering" in response.message

    def test_movement_for_named_person(self, services: CampusServices, seed, clock: FixedClock) -> None:
        seed(
            make_event("u1", 0, "Library", "StudyHallA"),
            make_event("u1", 10, "Library", "StudyHallA"),
            make_event("u1", 25, "Science Building", "Lab 205"),
        )
        clock.now = T0 + timedelta(minutes=30)
        response = services.resolver.dispatch("movement of alice johnson", ADMIN)
        assert response.intent == QueryIntent.MOVEMENT_PATTERN
        assert [r.type for r in response.results] == [ResultType.LOCATION, ResultType.LOCATION]
        assert response.results[0].metadata["building"] == "Library"

    def test_movement_for_named_person_denied(self, services: CampusServices, seed) -> None:
        seed(make_event("u1", 0))
        response = services.resolver.dispatch("movement of Alice Johnson", STUDENT)
        assert response.results == [], "a denied history read yields no results"

    def test_campus_movement_histogram(self, services: CampusServices, seed) -> None:
        seed(make_event("u1", 0), make_event("u2", 0))
        response = services.resolver.dispatch("overall movement pattern", ADMIN)
        assert len(response.results) == 1
        assert response.results[0].metadata["peak_hour"] == 10

    def test_after_hours_alert_query(self, services: CampusServices, seed, clock: FixedClock) -> None:
        night = T0.replace(hour=23)
        seed(make_event("u2", 0, "Science Building", "Lab 205", base=night))
        clock.now = night + timedelta(minutes=5)
        response = services.resolver.dispatch("alert me about lab 205", ADMIN)
        assert response.intent == QueryIntent.AFTER_HOURS_ALERT
        assert len(response.results) == 1
        assert response.results[0].confidence == 1.0
        assert "Lab 205" in response.message

    def test_activity(self, services: CampusServices, seed, clock: FixedClock) -> None:
        seed(make_event("u1", 0, room="Reading Room"), make_event("u2", 0, room="Reading Room"))
        response = services.resolver.dispatch("Show campus activity", ADMIN)
        assert response.results[0].title == "Library / Reading Room"

    def test_fallback_overview(self, services: CampusServices, seed) -> None:
        seed(make_event("u1", 0))
        response = services.resolver.dispatch("What's going on?", ADMIN)
        assert response.intent == QueryIntent.CAMPUS_OVERVIEW
        assert response.results[0].confidence < CONFIDENCE[QueryIntent.CAMPUS_ACTIVITY]
        assert response.results[0].metadata["total_users"] == 1

    def test_result_ids_are_stable(self, services: CampusServices, seed) -> None:
        seed(make_event("u1", 0), make_event("u2", 1))
        response = services.resolver.dispatch("who is in the library", ADMIN)
        assert [r.id for r in response.results] == ["library_occupants-0", "library_occupants-1"]

    @pytest.mark.parametrize("text", ["", "   ", "\n\t"])
    def test_empty_query_rejected(self, services: CampusServices, text: str) -> None:
        with pytest.raises(InvalidQueryError):
            services.resolver.dispatch(text, ADMIN)


# ---------------------------------------------------------------------------
# Async path
# ---------------------------------------------------------------------------


class TestAsyncResolve:
    async def test_resolve_waits_then_dispatches(self, services: CampusServices, seed) -> None:
        seed(make_event("u1", 0))
        resolver = IntentResolver(services.engine, services.directory, latency=0.01)
        response = await resolver.resolve("who is in the library", ADMIN)
        assert len(response.results) == 1

    async def test_empty_query_rejected_before_wait(self, services: CampusServices) -> None:
        resolver = IntentResolver(services.engine, services.directory, latency=60)
        with pytest.raises(InvalidQueryError):
            await asyncio.wait_for(resolver.resolve("  ", ADMIN), timeout=1)

    async def test_cancellation_has_no_side_effects(self, services: CampusServices, seed) -> None:
        seed(make_event("u1", 0))
        resolver = IntentResolver(services.engine, services.directory, latency=60)
        audit_before = len(services.gate.ledger)

        task = asyncio.create_task(resolver.resolve("who is in the library", ADMIN))
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert len(services.gate.ledger) == audit_before, "a cancelled query must not be audited"
        assert services.store.size == 1

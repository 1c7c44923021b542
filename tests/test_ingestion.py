"""Tests for the ingestion pipeline and the periodic tick scheduler."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from src.models.errors import PermissionDeniedError
from src.models.request import LocationReport
from src.services.container import CampusServices
from src.services.ingestion import IngestionPipeline, IngestionScheduler, TickResult
from tests.conftest import ADMIN, STUDENT, T0, FixedClock, make_event


def report(pipeline: IngestionPipeline, user_id: str, minutes: float = 0, **kwargs: str) -> bool:
    return pipeline.report_location(
        user_id,
        10.0,
        20.0,
        kwargs.get("building", "Library"),
        kwargs.get("room", "Study Hall A"),
        T0 + timedelta(minutes=minutes),
    )


# ---------------------------------------------------------------------------
# TickResult
# ---------------------------------------------------------------------------


class TestTickResult:
    def test_defaults(self) -> None:
        r = TickResult()
        assert r.committed == 0
        assert r.evicted == 0
        assert r.expired == 0
        assert r.timestamp is None

    def test_to_dict(self) -> None:
        r = TickResult(committed=3, evicted=1, duration_seconds=0.123456, timestamp=T0)
        d = r.to_dict()
        assert d["committed"] == 3
        assert d["duration_seconds"] == 0.1235
        assert d["timestamp"] == T0.isoformat()


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


class TestPipeline:
    def test_reports_are_queued_until_tick(self, services: CampusServices) -> None:
        pipeline = services.pipeline
        assert report(pipeline, "u1") is True
        assert pipeline.pending == 1
        assert services.store.size == 0, "nothing reaches the store before the tick"

        result = pipeline.flush()
        assert result.committed == 1
        assert pipeline.pending == 0
        assert services.store.current("u1") is not None

    def test_required_location_policy_accepts_everyone(self, services: CampusServices) -> None:
        assert report(services.pipeline, "u3") is True
        assert report(services.pipeline, "unknown-user") is True

    def test_report_dropped_without_covering_policy(self, services: CampusServices) -> None:
        gate = services.gate
        required = gate.get_policy("location-tracking")
        assert required is not None
        # Model a deployment where location collection is opt-in.
        gate._policies["location-tracking"] = required.model_copy(update={"is_required": False})

        assert report(services.pipeline, "u1") is True, "u1 opted in through the directory"
        assert report(services.pipeline, "u3") is False, "u3 never opted in"

        gate.toggle_policy("location-tracking", False)
        assert report(services.pipeline, "u1") is False, "an inactive policy stops collection"
        assert services.pipeline.dropped_total == 2

    def test_tick_evicts_over_capacity(self, test_settings, clock: FixedClock) -> None:
        services = CampusServices.build(
            test_settings.model_copy(update={"store_capacity": 3}),
            clock=clock,
            users=[],
            consents=[],
        )
        for i in range(5):
            report(services.pipeline, "u1", i)
        result = services.pipeline.flush()
        assert (result.committed, result.evicted) == (5, 2)
        assert services.store.size == 3

    def test_tick_applies_retention(self, services: CampusServices, clock: FixedClock) -> None:
        services.store.append(make_event("u1", 0))
        clock.now = T0 + timedelta(days=services.settings.data_retention_days + 1)
        result = services.pipeline.flush()
        assert result.expired == 1
        assert services.store.size == 0

    def test_submit_http_model(self, services: CampusServices) -> None:
        body = LocationReport(user_id="u1", x=1, y=2, building="Library", room="Stacks", timestamp=T0)
        assert services.pipeline.submit(body) is True
        services.pipeline.flush()
        current = services.store.current("u1")
        assert current is not None and current.room == "Stacks"


# ---------------------------------------------------------------------------
# Erasure
# ---------------------------------------------------------------------------


class TestErasure:
    def test_admin_erases_stored_and_queued(self, services: CampusServices) -> None:
        services.store.append(make_event("u1", 0))
        report(services.pipeline, "u1", 1)
        report(services.pipeline, "u2", 1)
        assert services.pipeline.erase_user("u1", ADMIN) == 2
        services.pipeline.flush()
        assert services.store.current("u1") is None
        assert services.store.current("u2") is not None

    def test_non_admin_cannot_erase(self, services: CampusServices) -> None:
        services.store.append(make_event("u1", 0))
        with pytest.raises(PermissionDeniedError):
            services.pipeline.erase_user("u1", STUDENT)
        assert services.store.size == 1, "nothing is removed on denial"


# ---------------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------------


class TestScheduler:
    def test_rejects_non_positive_interval(self, services: CampusServices) -> None:
        with pytest.raises(ValueError):
            IngestionScheduler(services.pipeline, interval=0)

    def test_manual_tick(self, services: CampusServices) -> None:
        report(services.pipeline, "u1")
        scheduler = IngestionScheduler(services.pipeline, interval=1.0, enabled=False)
        result = scheduler.run_tick()
        assert result is not None and result.committed == 1
        assert scheduler.ticks == 1
        assert scheduler.last_tick_at == T0

    async def test_disabled_scheduler_does_not_start(self, services: CampusServices) -> None:
        scheduler = IngestionScheduler(services.pipeline, interval=0.01, enabled=False)
        scheduler.start()
        assert scheduler.is_running is False

    async def test_background_loop_flushes(self, services: CampusServices) -> None:
        scheduler = IngestionScheduler(services.pipeline, interval=0.01)
        scheduler.start()
        assert scheduler.is_running is True
        report(services.pipeline, "u1")
        for _ in range(100):
            if services.store.size:
                break
            await asyncio.sleep(0.01)
        await scheduler.stop()

        assert services.store.size == 1
        assert scheduler.is_running is False
        assert scheduler.ticks >= 1

    async def test_stop_flushes_pending(self, services: CampusServices) -> None:
        scheduler = IngestionScheduler(services.pipeline, interval=60)
        scheduler.start()
        report(services.pipeline, "u1")
        await scheduler.stop()
        assert services.store.size == 1, "queued reports are committed on shutdown"

    async def test_failing_tick_keeps_loop_alive(self, services: CampusServices) -> None:
        class FlakyPipeline:
            pending = 0

            def __init__(self) -> None:
                self.calls = 0

            def flush(self) -> TickResult:
                self.calls += 1
                if self.calls == 1:
                    raise RuntimeError("boom")
                return TickResult(timestamp=T0)

        flaky = FlakyPipeline()
        scheduler = IngestionScheduler(flaky, interval=0.01)  # type: ignore[arg-type]
        scheduler.start()
        for _ in range(100):
            if flaky.calls >= 2:
                break
            await asyncio.sleep(0.01)
        await scheduler.stop()
        assert flaky.calls >= 2
        assert scheduler.ticks >= 1

"""Owned service graph for the location core.

Every piece of process-wide mutable state (the event store, the policy
gate with its consent records and settings, the audit ledger, the
ingestion queue) lives in one :class:`CampusServices` object built once
at startup and injected into the query engine, the intent resolver, and
the API layer.  There are no module-level singletons besides settings.

Lifecycle: ``build`` constructs the graph, the FastAPI lifespan starts
and stops the scheduler, and ``reset`` rebuilds every stateful object
from the same configuration for test isolation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from config.campus import BUILDINGS
from src.data.seed import default_policies, load_directory
from src.models.privacy import PrivacySettings
from src.pipeline.resolver import IntentResolver
from src.services.clock import Clock, utc_now
from src.services.directory import UserDirectory
from src.services.event_store import LocationEventStore
from src.services.ingestion import IngestionPipeline, IngestionScheduler
from src.services.policy_gate import AuditLedger, PrivacyPolicyGate
from src.services.query_engine import CampusQueryEngine

if TYPE_CHECKING:
    from config.settings import Settings
    from src.models.privacy import ConsentRecord
    from src.models.user import UserIdentity

logger = structlog.get_logger(__name__)


@dataclass
class CampusServices:
    """The wired-up service graph."""

    settings: Settings
    clock: Clock
    store: LocationEventStore
    directory: UserDirectory
    gate: PrivacyPolicyGate
    engine: CampusQueryEngine
    resolver: IntentResolver
    pipeline: IngestionPipeline
    scheduler: IngestionScheduler
    seed_users: list[UserIdentity] = field(default_factory=list, repr=False)
    seed_consents: list[ConsentRecord] = field(default_factory=list, repr=False)

    @classmethod
    def build(
        cls,
        settings: Settings,
        *,
        clock: Clock | None = None,
        users: list[UserIdentity] | None = None,
        consents: list[ConsentRecord] | None = None,
    ) -> CampusServices:
        """Construct a fresh graph from *settings*.

        *users* and *consents* override the directory file; tests pass
        them directly.
        """
        clock = clock or utc_now
        if users is None and consents is None:
            path = Path(settings.directory_file) if settings.directory_file else None
            users, consents = load_directory(path)

        store = LocationEventStore(capacity=settings.store_capacity, clock=clock)
        directory = UserDirectory(users or ())
        gate = PrivacyPolicyGate(
            directory=directory,
            policies=default_policies(),
            consents=consents or (),
            settings=PrivacySettings(),
            ledger=AuditLedger(soft_limit=settings.audit_soft_limit),
            clock=clock,
        )
        engine = CampusQueryEngine(
            store,
            gate,
            directory,
            buildings=BUILDINGS,
            recency_window=timedelta(minutes=settings.recency_window_minutes),
            unusual_movement_multiplier=settings.unusual_movement_multiplier,
            business_hours=(settings.business_hours_start, settings.business_hours_end),
            timezone=settings.campus_timezone,
            clock=clock,
        )
        resolver = IntentResolver(
            engine,
            directory,
            latency=settings.resolver_latency_seconds,
            window=timedelta(hours=settings.history_default_hours),
            library_building=settings.library_building,
        )
        pipeline = IngestionPipeline(
            store,
            gate,
            retention=timedelta(days=settings.data_retention_days),
        )
        scheduler = IngestionScheduler(
            pipeline,
            interval=settings.ingestion_interval_seconds,
            enabled=settings.enable_auto_ingestion,
        )

        logger.info(
            "services.built",
            store_capacity=settings.store_capacity,
            users=len(directory),
            policies=len(gate.list_policies()),
        )
        return cls(
            settings=settings,
            clock=clock,
            store=store,
            directory=directory,
            gate=gate,
            engine=engine,
            resolver=resolver,
            pipeline=pipeline,
            scheduler=scheduler,
            seed_users=list(users or ()),
            seed_consents=list(consents or ()),
        )

    async def reset(self) -> None:
        """Rebuild every stateful object, keeping settings, clock, and seed records.

        A running scheduler is stopped first, flushing into the old store,
        and the fresh scheduler is started in its place.
        """
        was_running = self.scheduler.is_running
        await self.scheduler.stop()

        fresh = CampusServices.build(
            self.settings,
            clock=self.clock,
            users=self.seed_users,
            consents=self.seed_consents,
        )
        self.store = fresh.store
        self.directory = fresh.directory
        self.gate = fresh.gate
        self.engine = fresh.engine
        self.resolver = fresh.resolver
        self.pipeline = fresh.pipeline
        self.scheduler = fresh.scheduler
        if was_running:
            self.scheduler.start()
        logger.info("services.reset", scheduler_restarted=was_running)

"""Location core service layer -- event store, policy gate, query engine, ingestion."""

from __future__ import annotations

from src.services.container import CampusServices
from src.services.directory import UserDirectory
from src.services.event_store import LocationEventStore
from src.services.ingestion import IngestionPipeline, IngestionScheduler, TickResult
from src.services.policy_gate import AuditLedger, DenialRecord, PrivacyPolicyGate, is_allowed
from src.services.query_engine import CampusQueryEngine, compute_visits

__all__ = [
    "AuditLedger",
    "CampusQueryEngine",
    "CampusServices",
    "DenialRecord",
    "IngestionPipeline",
    "IngestionScheduler",
    "LocationEventStore",
    "PrivacyPolicyGate",
    "TickResult",
    "UserDirectory",
    "compute_visits",
    "is_allowed",
]

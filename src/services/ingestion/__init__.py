"""Location ingestion: policy-checked reports committed by a periodic tick.

Public API::

    from src.services.ingestion import (
        IngestionPipeline,
        IngestionScheduler,
        TickResult,
    )
"""

from __future__ import annotations

from src.services.ingestion.pipeline import IngestionPipeline, TickResult
from src.services.ingestion.scheduler import IngestionScheduler

__all__ = [
    "IngestionPipeline",
    "IngestionScheduler",
    "TickResult",
]

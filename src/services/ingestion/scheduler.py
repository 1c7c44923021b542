"""Periodic ingestion tick.

The scheduler is the only path that writes to the event store: every
``interval`` seconds it asks the :class:`IngestionPipeline` to commit the
queued reports and expire events past the retention period.

The loop runs as an ``asyncio`` background task in the same event loop as
the FastAPI application and is started and stopped from the lifespan
handler.  A tick never holds a lock across an ``await``; the store write
happens synchronously inside :meth:`IngestionPipeline.flush`.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from src.services.ingestion.pipeline import IngestionPipeline, TickResult

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# IngestionScheduler
# ---------------------------------------------------------------------------


class IngestionScheduler:
    """Runs the ingestion tick on a fixed period.

    Parameters
    ----------
    pipeline:
        The :class:`IngestionPipeline` to flush.
    interval:
        Seconds between ticks.
    enabled:
        When ``False`` :meth:`start` is a no-op; ticks can still be run
        on demand through :meth:`run_tick`.
    """

    def __init__(
        self,
        pipeline: IngestionPipeline,
        *,
        interval: float = 3.0,
        enabled: bool = True,
    ) -> None:
        if interval <= 0:
            msg = f"interval must be positive, got {interval}"
            raise ValueError(msg)
        self._pipeline = pipeline
        self._interval = interval
        self._enabled = enabled
        self._task: asyncio.Task | None = None  # type: ignore[type-arg]
        self._running = False
        self._ticks = 0
        self._last_tick_at: datetime | None = None

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        """Whether the background loop is currently active."""
        return self._running

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def ticks(self) -> int:
        """Number of ticks completed since construction."""
        return self._ticks

    @property
    def last_tick_at(self) -> datetime | None:
        return self._last_tick_at

    # ------------------------------------------------------------------
    # Background loop
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Create the background task; returns immediately."""
        if not self._enabled:
            logger.info("scheduler.auto_ingestion_disabled")
            return
        if self._task is not None and not self._task.done():
            return
        self._running = True
        self._task = asyncio.get_running_loop().create_task(self._loop())
        logger.info("scheduler.background_started", interval_s=self._interval)

    async def _loop(self) -> None:
        try:
            while self._running:
                await asyncio.sleep(self._interval)
                if not self._running:
                    break
                self._safe_tick()
        except asyncio.CancelledError:
            logger.info("scheduler.background_cancelled")
        finally:
            self._running = False
            logger.info("scheduler.background_stopped")

    def _safe_tick(self) -> TickResult | None:
        """Run one tick; a failing tick is logged and the loop keeps going."""
        try:
            result = self._pipeline.flush()
        except Exception:
            logger.error("scheduler.tick_failed", exc_info=True)
            return None

        self._ticks += 1
        self._last_tick_at = result.timestamp
        return result

    # ------------------------------------------------------------------
    # On-demand execution
    # ------------------------------------------------------------------

    def run_tick(self) -> TickResult | None:
        """Run a tick immediately (admin trigger and tests)."""
        logger.info("scheduler.manual_trigger")
        return self._safe_tick()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def stop(self) -> None:
        """Stop the loop, cancel the task, and flush what is still queued."""
        logger.info("scheduler.stopping")
        self._running = False

        if self._task is not None:
            self._task.cancel()
            try:
                await asyncio.wait_for(self._task, timeout=10.0)
            except (asyncio.CancelledError, asyncio.TimeoutError):
                pass
            self._task = None

        if self._pipeline.pending:
            self._safe_tick()
        logger.info("scheduler.stopped")

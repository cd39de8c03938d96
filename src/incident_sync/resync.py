"""
Resync Scheduler - periodic pull fallback for the incident collection.

Runs a steady cadence of full snapshot pulls, gated by a liveness probe,
and schedules one-shot retries with exponential backoff and jitter when a
pull fails. At most one pull is in flight; starting a new one cancels the
previous request.

Usage:
    scheduler = ResyncScheduler(
        engine=engine,
        pull_query=api.get_incidents,
        filter_provider=lambda: service.filter,
        health=monitor,
    )
    await scheduler.start()
    outcome = await scheduler.resync(force=True)
    await scheduler.stop()
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from src.core.config import settings

from .channel import BackoffStrategy
from .health import ConnectionHealthMonitor
from .models import IncidentFilter, IncidentPage
from .reconciliation import ReconciliationEngine

logger = logging.getLogger(__name__)

PullQuery = Callable[[IncidentFilter], Awaitable[IncidentPage]]
FilterProvider = Callable[[], IncidentFilter]


class ResyncOutcome(str, Enum):
    """Result of one resync attempt."""
    SUCCESS = "SUCCESS"
    SKIPPED = "SKIPPED"
    ABORTED = "ABORTED"
    FAILED = "FAILED"


@dataclass
class SyncState:
    """Resync bookkeeping, owned by the scheduler."""
    last_successful_sync: Optional[datetime] = None
    retry_count: int = 0
    connection_healthy: bool = True
    in_flight: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "last_successful_sync": (
                self.last_successful_sync.isoformat() if self.last_successful_sync else None
            ),
            "retry_count": self.retry_count,
            "connection_healthy": self.connection_healthy,
            "in_flight": self.in_flight,
        }


class ResyncScheduler:
    """
    Periodic pull resynchronization with health gating and backoff.

    Features:
    - Steady interval loop (default 30s).
    - Liveness probe before non-forced attempts; an unhealthy probe skips
      the attempt without consuming a retry.
    - One extra one-shot retry per failure at
      min(base * 2^retry_count, max) + jitter.
    - Superseded requests are aborted and never counted as failures.
    """

    def __init__(
        self,
        engine: ReconciliationEngine,
        pull_query: PullQuery,
        filter_provider: FilterProvider,
        health: Optional[ConnectionHealthMonitor] = None,
        interval: Optional[float] = None,
        base_delay: Optional[float] = None,
        max_delay: Optional[float] = None,
        max_jitter: Optional[float] = None,
    ):
        """
        Initialize the scheduler.

        Args:
            engine: Reconciliation engine receiving snapshots.
            pull_query: Async callable fetching a snapshot for a filter.
            filter_provider: Returns the current filter; read on every attempt.
            health: Monitor probed before non-forced attempts.
            interval: Steady cadence (seconds).
            base_delay: Backoff base (seconds).
            max_delay: Backoff cap (seconds).
            max_jitter: Upper bound of the random jitter (seconds).
        """
        self.engine = engine
        self._pull_query = pull_query
        self._filter_provider = filter_provider
        self._health = health
        self.interval = interval if interval is not None else settings.resync_interval

        self._backoff = BackoffStrategy(
            base_delay=base_delay if base_delay is not None else settings.resync_base_delay,
            max_delay=max_delay if max_delay is not None else settings.resync_max_delay,
            max_jitter=max_jitter if max_jitter is not None else settings.resync_max_jitter,
        )

        self.state = SyncState()
        self.last_retry_delay: Optional[float] = None
        self.retry_history: List[float] = []

        self._running = False
        self._closed = False
        self._drifted = False
        self._steady_task: Optional[asyncio.Task] = None
        self._retry_task: Optional[asyncio.Task] = None
        self._inflight: Optional[asyncio.Task] = None

    def retry_delay(self, retry_count: int) -> float:
        """Backoff delay (seconds) for the given retry count, jitter included."""
        return self._backoff.delay_for(retry_count)

    @property
    def has_pending_retry(self) -> bool:
        return self._retry_task is not None and not self._retry_task.done()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the steady resync loop."""
        if self._running:
            return
        self._running = True
        self._closed = False
        self._steady_task = asyncio.create_task(self._steady_loop())
        logger.info(f"Resync scheduler started (interval {self.interval}s)")

    async def stop(self) -> None:
        """Cancel the steady loop, the pending retry and any in-flight pull."""
        self._running = False
        self._closed = True

        for task in (self._steady_task, self._retry_task, self._inflight):
            if task is not None and not task.done() and task is not asyncio.current_task():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        self._steady_task = None
        self._retry_task = None
        self._inflight = None
        self.state.in_flight = False
        logger.info("Resync scheduler stopped.")

    async def _steady_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.interval)
            try:
                await self.resync()
            except Exception as e:
                logger.error(f"Steady resync tick failed unexpectedly: {e}", exc_info=True)

    # ------------------------------------------------------------------
    # Resync
    # ------------------------------------------------------------------

    async def resync(self, force: bool = False) -> ResyncOutcome:
        """
        Run one resync attempt.

        Args:
            force: Skip the liveness probe and rebuild the collection.

        Returns:
            The attempt's outcome. Failures are logged and retried in the
            background, never raised.
        """
        if not force and self._health is not None:
            healthy = await self._health.probe()
            self.state.connection_healthy = healthy
            if not healthy:
                self._drifted = True
                logger.info("Connection unhealthy, skipping resync until next tick")
                return ResyncOutcome.SKIPPED

        previous = self._inflight
        if previous is not None and not previous.done():
            logger.debug("Superseding in-flight resync request")
            previous.cancel()

        request = asyncio.create_task(self._fetch())
        self._inflight = request
        self.state.in_flight = True

        try:
            await asyncio.wait({request})
        finally:
            if self._inflight is request:
                self._inflight = None
                self.state.in_flight = False

        if request.cancelled():
            logger.debug("Resync request aborted by a newer one")
            return ResyncOutcome.ABORTED

        error = request.exception()
        if error is not None:
            return self._on_failure(error)

        return self._on_success(request.result(), rebuild=force or self._drifted)

    async def _fetch(self) -> IncidentPage:
        return await self._pull_query(self._filter_provider())

    def _on_success(self, page: IncidentPage, rebuild: bool) -> ResyncOutcome:
        changes = self.engine.merge_snapshot(
            page.data,
            self._filter_provider(),
            rebuild=rebuild,
            server_total=page.total,
        )

        self.state.retry_count = 0
        self.state.last_successful_sync = datetime.now(timezone.utc)
        self.state.connection_healthy = True
        self._drifted = False
        self._cancel_retry()

        if changes:
            logger.info(f"Resync applied changes: {changes.to_dict()}")
        else:
            logger.debug("Resync: no data changes")
        return ResyncOutcome.SUCCESS

    def _on_failure(self, error: BaseException) -> ResyncOutcome:
        self.state.retry_count += 1
        self._drifted = True
        delay = self.retry_delay(self.state.retry_count)

        logger.warning(
            f"Resync failed: {error}. Retry #{self.state.retry_count} in {delay:.1f}s"
        )
        self._schedule_retry(delay)
        return ResyncOutcome.FAILED

    def _schedule_retry(self, delay: float) -> None:
        if self._closed:
            return
        self._cancel_retry()
        self.last_retry_delay = delay
        self.retry_history.append(delay)
        self._retry_task = asyncio.create_task(self._retry_after(delay))

    def _cancel_retry(self) -> None:
        task = self._retry_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        self._retry_task = None

    async def _retry_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        await self.resync()


__all__ = [
    "ResyncScheduler",
    "ResyncOutcome",
    "SyncState",
    "PullQuery",
    "FilterProvider",
]

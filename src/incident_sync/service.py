"""
Incident Sync Service - wires the push channel, the resync scheduler, the
reconciliation engine and the alerting layer together.

Control flow:
    push frame -> queue -> normalize -> deduplicate -> engine.apply
        -> priority alert (new incidents) -> notification center
    timer / manual refresh -> health probe -> pull query -> merge_snapshot

Push handlers only enqueue; one consumer task applies events strictly in
arrival order, so no two mutations ever interleave.

Usage:
    service = IncidentSyncService(auth_token=token, user_id="dispatcher-1")
    await service.start()
    ...
    await service.stop()
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from src.alerting import (
    AlertOwnershipRegistry,
    AlertPriorityDispatcher,
    AlertSoundController,
    NotificationCenter,
    SoundPlayer,
    SoundPreferenceStore,
    Toast,
    ToastSeverity,
    ToastSink,
)

from .acknowledgments import AcknowledgmentAggregator
from .api_client import IncidentApiClient
from .channel import BroadcastRequest, PushChannel
from .errors import EventNormalizationError
from .events import KIND_ALIASES, EventDeduplicator, EventKind, EventNormalizer
from .health import ConnectionHealthMonitor
from .models import IncidentFilter
from .reconciliation import ChangeSet, ReconciliationEngine
from .resync import ResyncOutcome, ResyncScheduler

logger = logging.getLogger(__name__)

LOAD_FAILED_TITLE = "Failed to load incidents"


class IncidentSyncService:
    """
    Owns one incident sync session.

    The engine is the only holder of the incident collection; every other
    component reads it through the engine's public API.
    """

    def __init__(
        self,
        auth_token: str = "",
        user_id: str = "default",
        incident_filter: Optional[IncidentFilter] = None,
        api: Optional[IncidentApiClient] = None,
        channel: Optional[PushChannel] = None,
        health: Optional[ConnectionHealthMonitor] = None,
        sound_player: Optional[SoundPlayer] = None,
        sinks: Optional[List[ToastSink]] = None,
        ownership: Optional[AlertOwnershipRegistry] = None,
        preferences: Optional[SoundPreferenceStore] = None,
        resync_interval: Optional[float] = None,
    ):
        """
        Initialize the service.

        Args:
            auth_token: Bearer token for the push channel and the API.
            user_id: Session user, scopes the sound preference.
            incident_filter: Initial view filter (active incidents by default).
            api: Pull/health collaborator.
            channel: Push channel.
            health: Connection health monitor.
            sound_player: Audio backend.
            sinks: Toast destinations.
            ownership: Registry of views that present their own alerts.
            preferences: Sound preference store.
            resync_interval: Steady resync cadence (seconds).
        """
        self._filter = incident_filter or IncidentFilter()

        self.engine = ReconciliationEngine()
        self.api = api or IncidentApiClient(auth_token=auth_token)
        self.channel = channel or PushChannel(auth_token=auth_token)
        self.health = health or ConnectionHealthMonitor(liveness_check=self.api.check_health)
        self.health.attach(self.channel)

        self.preferences = preferences or SoundPreferenceStore.load(user_id)
        self.sound = AlertSoundController(sound_player, sound_enabled=self.preferences.is_enabled)
        self.dispatcher = AlertPriorityDispatcher(self.sound, sinks=sinks, ownership=ownership)
        self.notifications = NotificationCenter(self.dispatcher)
        self.channel.add_transition_listener(self.notifications.on_transition)

        self.normalizer = EventNormalizer()
        self.deduplicator = EventDeduplicator(self.engine)
        self.acknowledgments = AcknowledgmentAggregator(self.engine)
        self.scheduler = ResyncScheduler(
            engine=self.engine,
            pull_query=self.api.get_incidents,
            filter_provider=lambda: self._filter,
            health=self.health,
            interval=resync_interval,
        )

        self.loading = False
        self._running = False
        self._queue: Optional[asyncio.Queue] = None
        self._consumer_task: Optional[asyncio.Task] = None
        self._stats = {
            "events_received": 0,
            "events_applied": 0,
            "events_rejected": 0,
            "alerts_dispatched": 0,
        }

    @property
    def filter(self) -> IncidentFilter:
        return self._filter

    @property
    def is_running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> ResyncOutcome:
        """
        Open the session: initial load, event consumer, resync timer, push.

        Returns:
            Outcome of the initial load. A failed load keeps retrying in the
            background.
        """
        if self._running:
            return ResyncOutcome.SKIPPED

        self._running = True
        self._queue = asyncio.Queue()
        self.notifications.open_session()
        self._subscribe()

        # the scheduler must be open before the first load can schedule a retry
        await self.scheduler.start()
        outcome = await self.refresh()

        self._consumer_task = asyncio.create_task(self._consume())
        await self.channel.start()

        logger.info(f"Incident sync started ({len(self.engine)} incidents loaded)")
        return outcome

    async def stop(self) -> None:
        """Tear down the channel, timers, consumer, sound and session."""
        if not self._running:
            return
        self._running = False

        await self.channel.stop()
        self._unsubscribe()
        await self.scheduler.stop()

        if self._consumer_task is not None:
            self._consumer_task.cancel()
            try:
                await self._consumer_task
            except asyncio.CancelledError:
                pass
            self._consumer_task = None
        self._queue = None

        self.sound.stop()
        self.notifications.close_session()
        await self.api.close()
        logger.info("Incident sync stopped.")

    def _subscribe(self) -> None:
        for kind in EventKind:
            self.channel.subscribe(kind, self._make_handler(kind.value))
        for alias in KIND_ALIASES:
            self.channel.subscribe(alias, self._make_handler(alias))

    def _unsubscribe(self) -> None:
        for kind in EventKind:
            self.channel.unsubscribe(kind)
        for alias in KIND_ALIASES:
            self.channel.unsubscribe(alias)

    def _make_handler(self, kind: str):
        def handler(payload: Any) -> None:
            self.enqueue(kind, payload)
        return handler

    # ------------------------------------------------------------------
    # Push path
    # ------------------------------------------------------------------

    def enqueue(self, kind: str, payload: Any) -> None:
        """Queue one push event for the consumer."""
        if self._queue is None:
            logger.debug(f"Service not running, dropped {kind}")
            return
        self._stats["events_received"] += 1
        self._queue.put_nowait((kind, payload))

    async def drain(self) -> None:
        """Wait until every queued event has been applied."""
        if self._queue is not None:
            await self._queue.join()

    async def _consume(self) -> None:
        queue = self._queue
        while True:
            kind, payload = await queue.get()
            try:
                self.process(kind, payload)
            except Exception as e:
                logger.exception(f"Failed to process {kind}: {e}")
            finally:
                queue.task_done()

    def process(self, kind: Any, payload: Any) -> ChangeSet:
        """
        Apply one push event synchronously.

        Returns:
            The change set the event produced.
        """
        try:
            event = self.normalizer.normalize(kind, payload)
        except EventNormalizationError as e:
            self._stats["events_rejected"] += 1
            logger.warning(f"Rejected push event: {e}")
            return ChangeSet()

        if event.kind == EventKind.INCIDENT_ACKNOWLEDGED:
            changes = self.acknowledgments.apply(event)
        elif event.kind.is_incident_event:
            deduplicated = self.deduplicator.filter(event)
            if deduplicated is None:
                return ChangeSet()
            event = deduplicated
            changes = self.engine.apply(event, self._filter)
        else:
            changes = ChangeSet()

        if changes:
            self._stats["events_applied"] += 1

        if event.kind == EventKind.INCIDENT_CREATED and event.incident_id in changes.inserted:
            record = self.engine.get(event.incident_id)
            if record is not None and self.dispatcher.dispatch_incident(record) is not None:
                self._stats["alerts_dispatched"] += 1

        self.notifications.handle(event)
        return changes

    # ------------------------------------------------------------------
    # Pull path
    # ------------------------------------------------------------------

    async def refresh(self) -> ResyncOutcome:
        """
        Manual, forced reload.

        A failure is shown once as an error toast; ``loading`` is always
        cleared.
        """
        self.loading = True
        try:
            outcome = await self.scheduler.resync(force=True)
            if outcome == ResyncOutcome.FAILED:
                self.dispatcher.show(Toast(
                    severity=ToastSeverity.ERROR,
                    title=LOAD_FAILED_TITLE,
                    description="Showing the last loaded incidents",
                    duration=3.0,
                ))
            return outcome
        finally:
            self.loading = False

    async def set_filter(self, incident_filter: IncidentFilter) -> ResyncOutcome:
        """Switch the view filter: drop non-matching records, then resync."""
        self._filter = incident_filter
        self.engine.refilter(incident_filter)
        return await self.scheduler.resync(force=True)

    # ------------------------------------------------------------------
    # Outbound / preferences
    # ------------------------------------------------------------------

    async def send_broadcast(
        self,
        title: str,
        message: str,
        type: str = "info",
        targets: Optional[List[str]] = None,
    ) -> bool:
        """Broadcast a notification to personnel; True when acknowledged."""
        request = BroadcastRequest(
            title=title,
            message=message,
            type=type,
            targets=list(targets or []),
        )
        return await self.channel.send_broadcast(request)

    def toggle_sound(self) -> bool:
        """Flip the persisted mute preference; muting silences the current sound."""
        enabled = self.preferences.toggle()
        if not enabled:
            self.sound.stop()
        return enabled

    def get_status(self) -> Dict[str, Any]:
        return {
            "running": self._running,
            "loading": self.loading,
            "incidents": self.engine.total,
            "server_total": self.engine.server_total,
            "sync": self.scheduler.state.to_dict(),
            "health": self.health.get_status(),
            "channel_state": self.channel.state.value,
            "unread_notifications": self.notifications.unread_count,
            "dedup": self.deduplicator.get_stats(),
            **self._stats,
        }


__all__ = ["IncidentSyncService", "LOAD_FAILED_TITLE"]

"""
Alert Priority Dispatcher for newly created incidents.
"""

import logging
from typing import Any, Dict, List, Optional

from src.incident_sync.events import EventKind
from src.incident_sync.models import IncidentPriority, IncidentRecord

from .alerts import Toast, ToastAction, ToastSeverity, config_for
from .notifiers import LoggingToastSink, ToastSink
from .ownership import AlertOwnershipRegistry
from .sound import AlertSoundController

logger = logging.getLogger(__name__)

PRIORITY_SEVERITY: Dict[IncidentPriority, ToastSeverity] = {
    IncidentPriority.CRITICAL: ToastSeverity.ERROR,
    IncidentPriority.HIGH: ToastSeverity.WARNING,
    IncidentPriority.MEDIUM: ToastSeverity.INFO,
    IncidentPriority.LOW: ToastSeverity.SUCCESS,
}

PRIORITY_TITLE: Dict[IncidentPriority, str] = {
    IncidentPriority.CRITICAL: "🚨 CRITICAL INCIDENT",
    IncidentPriority.HIGH: "⚠️ High Priority Incident",
}
DEFAULT_TITLE = "New Incident Reported"


def incident_link(incident_id: str) -> str:
    return f"/incidents/{incident_id}"


class AlertPriorityDispatcher:
    """
    Turns an inserted incident into a toast plus sound, by priority.

    The dispatcher stays silent for streams claimed by the active view, and
    routes every sound through the shared AlertSoundController so a new
    alert always stops the previous one.
    """

    def __init__(
        self,
        sound: AlertSoundController,
        sinks: Optional[List[ToastSink]] = None,
        ownership: Optional[AlertOwnershipRegistry] = None,
        max_history: int = 100,
    ):
        """
        Initialize the dispatcher.

        Args:
            sound: Shared sound controller
            sinks: Toast destinations
            ownership: Registry of self-handling views
            max_history: Number of shown toasts to keep
        """
        self.sound = sound
        self.sinks: List[ToastSink] = sinks or [LoggingToastSink()]
        self.ownership = ownership or AlertOwnershipRegistry()
        self.history: List[Toast] = []
        self._max_history = max_history
        self._stats = {
            "dispatched": 0,
            "suppressed": 0,
            "sink_failures": 0,
        }

    def add_sink(self, sink: ToastSink) -> None:
        self.sinks.append(sink)
        logger.debug(f"Added toast sink: {sink.__class__.__name__}")

    def build_toast(self, record: IncidentRecord) -> Toast:
        priority = record.priority
        config = config_for(priority)
        return Toast(
            severity=PRIORITY_SEVERITY.get(priority, ToastSeverity.INFO),
            title=PRIORITY_TITLE.get(priority, DEFAULT_TITLE),
            description=f"{record.type} - {record.address}",
            duration=config.toast_duration,
            actions=[ToastAction(label="View", target=incident_link(record.incident_id))],
        )

    def dispatch_incident(
        self,
        record: IncidentRecord,
        stream: str = EventKind.INCIDENT_CREATED.value,
    ) -> Optional[Toast]:
        """
        Alert the operator about a newly inserted incident.

        Args:
            record: The inserted record
            stream: Event stream the record arrived on

        Returns:
            The shown toast, or None when a view owns the stream
        """
        if self.ownership.is_owned(stream):
            self._stats["suppressed"] += 1
            logger.debug(
                f"Alert for {record.incident_id} left to view {self.ownership.active_view}"
            )
            return None

        toast = self.build_toast(record)
        self.show(toast)
        self.sound.play(config_for(record.priority))

        self._stats["dispatched"] += 1
        logger.info(
            f"Dispatched {record.priority.value} alert for incident {record.incident_id}"
        )
        return toast

    def show(self, toast: Toast) -> None:
        """Send a toast to every sink; sink failures are logged only."""
        self.history.append(toast)
        if len(self.history) > self._max_history:
            self.history.pop(0)

        for sink in self.sinks:
            try:
                sink.show(toast)
            except Exception as e:
                logger.error(f"Toast sink {sink.__class__.__name__} failed: {e}")
                self._stats["sink_failures"] += 1

    def get_recent_toasts(self, limit: int = 10) -> List[Dict[str, Any]]:
        """Recent toasts, newest first."""
        return [t.to_dict() for t in reversed(self.history[-limit:])]

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self._stats,
            "sinks_count": len(self.sinks),
            "sound_state": self.sound.state.value,
        }


__all__ = [
    "AlertPriorityDispatcher",
    "PRIORITY_SEVERITY",
    "PRIORITY_TITLE",
    "incident_link",
]

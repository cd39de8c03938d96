"""
Notification Center - the operator's in-session notification list.

Every push event that is not an incident list mutation becomes a
notification here, usually with a toast and sometimes a sound. Incident
events are recorded too, so the list doubles as an activity feed. The
center is owned by the sync service and lives for one authenticated
session: ``open_session`` / ``close_session`` bracket it.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from src.incident_sync.channel import ChannelTransition
from src.incident_sync.events import EventKind, NotificationEvent

from .alerts import AlertConfig, Toast, ToastSeverity
from .dispatcher import AlertPriorityDispatcher

logger = logging.getLogger(__name__)

LocationListener = Callable[[Dict[str, Any]], Any]

# Generic notification sound: one shot, never looping
NOTIFICATION_SOUND = AlertConfig(play_sound=True, toast_duration=0.0)

NEW_NOTIFICATION_SEVERITY: Dict[str, ToastSeverity] = {
    "error": ToastSeverity.ERROR,
    "warning": ToastSeverity.WARNING,
    "alert": ToastSeverity.WARNING,
    "success": ToastSeverity.SUCCESS,
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            pass
    return _now()


@dataclass
class Notification:
    """
    One entry of the notification list.

    Attributes:
        id: Unique notification id
        type: incident, alert, info, system...
        title: Headline
        message: Body text
        timestamp: When the notification was produced
        read: Whether the operator has seen it
        data: The raw event payload
    """
    id: str
    type: str
    title: str
    message: str
    timestamp: datetime = field(default_factory=_now)
    read: bool = False
    data: Any = None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the notification to a dictionary."""
        return {
            "id": self.id,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
            "read": self.read,
            "data": self.data,
        }


class NotificationCenter:
    """
    Session-scoped notification list fed by push events.

    Toasts and sounds go through the alert dispatcher's sinks and sound
    controller, so generic notification sounds never overlap an incident
    alert, and incident toasts respect view ownership.
    """

    def __init__(
        self,
        dispatcher: AlertPriorityDispatcher,
        max_notifications: int = 200,
    ):
        """
        Args:
            dispatcher: Shared alert dispatcher (sinks, sound, ownership)
            max_notifications: Oldest entries are dropped beyond this
        """
        self.dispatcher = dispatcher
        self._max_notifications = max_notifications
        self._notifications: List[Notification] = []
        self._location_listeners: List[LocationListener] = []
        self._open = False

        self._handlers: Dict[EventKind, Callable[[NotificationEvent], None]] = {
            EventKind.INCIDENT_CREATED: self._on_incident_created,
            EventKind.INCIDENT_UPDATED: self._on_incident_updated,
            EventKind.INCIDENT_STATUS_CHANGED: self._on_incident_updated,
            EventKind.INCIDENT_RESOLVED: self._on_incident_resolved,
            EventKind.INCIDENT_DELETED: self._on_incident_deleted,
            EventKind.INCIDENT_INVALIDATED: self._on_incident_deleted,
            EventKind.INCIDENT_ACKNOWLEDGED: self._on_incident_acknowledged,
            EventKind.ALERT_BROADCAST: self._on_alert_broadcast,
            EventKind.ALERT_RESPONSE: self._on_alert_response,
            EventKind.ALERT_RECEIVED: self._on_alert_received,
            EventKind.ALERT_CRITICAL: self._on_alert_critical,
            EventKind.NOTIFICATION_BROADCAST_RECEIVED: self._on_broadcast_received,
            EventKind.NOTIFICATION_NEW: self._on_notification_new,
            EventKind.PERSONNEL_LOCATION_UPDATED: self._on_location_updated,
        }

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    @property
    def is_open(self) -> bool:
        return self._open

    def open_session(self) -> None:
        """Start a fresh session with an empty list."""
        self._notifications = []
        self._open = True
        logger.info("Notification session opened")

    def close_session(self) -> None:
        """End the session; the list and location listeners are discarded."""
        self._open = False
        self._notifications = []
        self._location_listeners = []
        logger.info("Notification session closed")

    # ------------------------------------------------------------------
    # Store
    # ------------------------------------------------------------------

    @property
    def notifications(self) -> List[Notification]:
        """Newest first."""
        return list(self._notifications)

    @property
    def unread_count(self) -> int:
        return sum(1 for n in self._notifications if not n.read)

    def mark_as_read(self, notification_id: str) -> bool:
        for notification in self._notifications:
            if notification.id == notification_id:
                notification.read = True
                return True
        return False

    def mark_all_as_read(self) -> int:
        """Mark everything read; returns how many were unread."""
        count = self.unread_count
        for notification in self._notifications:
            notification.read = True
        return count

    def clear_notification(self, notification_id: str) -> bool:
        before = len(self._notifications)
        self._notifications = [n for n in self._notifications if n.id != notification_id]
        return len(self._notifications) != before

    def add_location_listener(self, listener: LocationListener) -> None:
        self._location_listeners.append(listener)

    def remove_location_listener(self, listener: LocationListener) -> None:
        if listener in self._location_listeners:
            self._location_listeners.remove(listener)

    def _add(
        self,
        prefix: str,
        type: str,
        title: str,
        message: str,
        data: Any,
        timestamp: Optional[datetime] = None,
    ) -> Notification:
        notification = Notification(
            id=f"{prefix}-{uuid.uuid4().hex[:12]}",
            type=type,
            title=title,
            message=message,
            timestamp=timestamp or _now(),
            data=data,
        )
        self._notifications.insert(0, notification)
        del self._notifications[self._max_notifications:]
        return notification

    # ------------------------------------------------------------------
    # Event handling
    # ------------------------------------------------------------------

    def handle(self, event: NotificationEvent) -> Optional[Notification]:
        """
        Record one push event and present its toast/sound.

        Returns:
            The recorded notification, if any.
        """
        if not self._open:
            logger.debug(f"No open session, ignoring {event.kind.value}")
            return None

        handler = self._handlers.get(event.kind)
        if handler is None:
            return None

        before = self._notifications[0] if self._notifications else None
        handler(event)
        latest = self._notifications[0] if self._notifications else None
        return latest if latest is not before else None

    def on_transition(self, transition: ChannelTransition, error: Optional[Exception] = None) -> None:
        """Connectivity toasts for the push channel."""
        if transition == ChannelTransition.CONNECTED:
            self._toast(ToastSeverity.SUCCESS, "Connected to real-time updates", duration=2.0)
        elif transition == ChannelTransition.ERROR:
            self._toast(
                ToastSeverity.ERROR,
                "Real-time connection failed",
                "Falling back to manual refresh",
                duration=3.0,
            )

    def _toast(
        self,
        severity: ToastSeverity,
        title: str,
        description: str = "",
        duration: float = 3.0,
        stream: Optional[EventKind] = None,
    ) -> None:
        if stream is not None and self.dispatcher.ownership.is_owned(stream.value):
            return
        self.dispatcher.show(Toast(
            severity=severity,
            title=title,
            description=description,
            duration=duration,
        ))

    def _sound(self) -> None:
        self.dispatcher.sound.play(NOTIFICATION_SOUND)

    @staticmethod
    def _payload(event: NotificationEvent) -> Dict[str, Any]:
        return event.payload if isinstance(event.payload, dict) else {}

    def _on_incident_created(self, event: NotificationEvent) -> None:
        # toast and sound come from the priority dispatcher
        data = self._payload(event)
        where = event.fields.get("address") or data.get("location", "")
        self._add(
            f"incident-{event.incident_id}",
            "incident",
            "New Incident Reported",
            f"{event.fields.get('type', 'OTHER')} incident in {where}",
            event.payload,
        )

    def _on_incident_updated(self, event: NotificationEvent) -> None:
        status = event.fields.get("status")
        message = f"Status changed to {getattr(status, 'value', status)}" if status else "Incident details changed"
        notification = self._add(
            f"incident-update-{event.incident_id}", "info", "Incident Updated", message, event.payload,
        )
        self._toast(ToastSeverity.INFO, notification.title, notification.message, stream=event.kind)

    def _on_incident_resolved(self, event: NotificationEvent) -> None:
        notification = self._add(
            f"incident-resolved-{event.incident_id}",
            "info",
            "Incident Resolved",
            f"{event.fields.get('type', 'Incident')} incident has been resolved",
            event.payload,
        )
        self._toast(ToastSeverity.SUCCESS, notification.title, notification.message, stream=event.kind)

    def _on_incident_deleted(self, event: NotificationEvent) -> None:
        notification = self._add(
            f"incident-deleted-{event.incident_id}",
            "info",
            "Incident Deleted",
            "Incident has been removed from the system",
            event.payload,
        )
        self._toast(ToastSeverity.INFO, notification.title, notification.message, stream=event.kind)

    def _on_incident_acknowledged(self, event: NotificationEvent) -> None:
        fields = event.fields
        self._add(
            f"incident-ack-{event.incident_id}",
            "info",
            "Personnel Acknowledged",
            f"{fields.get('acknowledged_count', 0)}/{fields.get('total_notified', 0)} personnel "
            f"have viewed ({fields.get('acknowledgment_percentage', 0)}%)",
            event.payload,
        )

    def _on_alert_broadcast(self, event: NotificationEvent) -> None:
        data = self._payload(event)
        notification = self._add(
            f"alert-{data.get('alertId', '')}",
            "alert",
            "Alert Broadcasted",
            f"Alert sent to {data.get('alertedPersonnelCount', 0)} personnel",
            event.payload,
        )
        self._toast(ToastSeverity.INFO, notification.title, notification.message, duration=3.0)

    def _on_alert_response(self, event: NotificationEvent) -> None:
        data = self._payload(event)
        response = str(data.get("response", ""))
        notification = self._add(
            f"response-{data.get('personnelId', '')}",
            "info",
            "Personnel Response",
            f"{data.get('personnelName', 'Personnel')} {response.lower()} the alert",
            event.payload,
        )
        if response == "ACCEPTED":
            self._toast(ToastSeverity.SUCCESS, notification.message, duration=3.0)

    def _on_alert_received(self, event: NotificationEvent) -> None:
        data = self._payload(event)
        notification = self._add(
            f"alert-received-{data.get('alertId', '')}",
            "alert",
            "Emergency Alert Received",
            f"{data.get('incidentType', '')} incident - {data.get('location', '')}",
            event.payload,
        )
        self._toast(ToastSeverity.ERROR, notification.title, notification.message, duration=8.0)
        self._sound()

    def _on_alert_critical(self, event: NotificationEvent) -> None:
        data = self._payload(event)
        notification = self._add(
            "alert",
            "alert",
            data.get("title") or "Critical Alert",
            str(data.get("message", "")),
            event.payload,
        )
        self._toast(ToastSeverity.ERROR, notification.title, notification.message, duration=10.0)
        self._sound()

    def _on_broadcast_received(self, event: NotificationEvent) -> None:
        data = self._payload(event)
        kind = data.get("type") or "info"
        notification = self._add(
            "broadcast", kind, str(data.get("title", "")), str(data.get("message", "")), event.payload,
        )
        severity = ToastSeverity.WARNING if kind == "alert" else ToastSeverity.INFO
        self._toast(severity, notification.title, notification.message, duration=5.0)
        if kind == "alert":
            self._sound()

    def _on_notification_new(self, event: NotificationEvent) -> None:
        data = self._payload(event)
        kind = data.get("type") or "info"
        notification = self._add(
            "broadcast",
            kind,
            str(data.get("title", "")),
            str(data.get("message", "")),
            event.payload,
            timestamp=_parse_timestamp(data.get("timestamp")),
        )
        severity = NEW_NOTIFICATION_SEVERITY.get(kind, ToastSeverity.INFO)
        self._toast(severity, notification.title, notification.message, duration=6.0)
        self._sound()

    def _on_location_updated(self, event: NotificationEvent) -> None:
        data = self._payload(event)
        for listener in list(self._location_listeners):
            try:
                listener(data)
            except Exception as e:
                logger.error(f"Location listener failed: {e}")


__all__ = ["Notification", "NotificationCenter", "NOTIFICATION_SOUND"]

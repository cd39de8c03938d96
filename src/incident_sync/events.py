"""
Push event normalization and deduplication.

Inbound push payloads name the same thing differently depending on the
emitter (``id`` vs ``incidentId``, ``acknowledgmentCount`` vs
``acknowledgedCount``...). The normalizer maps every event to one canonical
shape; the deduplicator drops events that would not change the record the
reconciliation engine currently holds.
"""

import logging
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Optional

from .errors import EventNormalizationError
from .models import canonical_fields

if TYPE_CHECKING:
    from .reconciliation import ReconciliationEngine

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    """Inbound push event kinds."""
    INCIDENT_CREATED = "incident:created"
    INCIDENT_UPDATED = "incident:updated"
    INCIDENT_STATUS_CHANGED = "incident:status-changed"
    INCIDENT_RESOLVED = "incident:resolved"
    INCIDENT_DELETED = "incident:deleted"
    INCIDENT_INVALIDATED = "incident:invalidated"
    INCIDENT_ACKNOWLEDGED = "incident:acknowledged"
    ALERT_BROADCAST = "alert:broadcast"
    ALERT_RESPONSE = "alert:response"
    ALERT_RECEIVED = "alert:received"
    ALERT_CRITICAL = "alert:critical"
    NOTIFICATION_BROADCAST_RECEIVED = "notification:broadcast:received"
    NOTIFICATION_NEW = "notification:new"
    PERSONNEL_LOCATION_UPDATED = "personnel:location:updated"

    @classmethod
    def parse(cls, name: Any) -> "EventKind":
        """Resolve a wire event name, honouring aliases. Raises ValueError."""
        if isinstance(name, EventKind):
            return name
        return cls(KIND_ALIASES.get(name, name))

    @property
    def is_incident_event(self) -> bool:
        return self in INCIDENT_KINDS

    @property
    def is_removal(self) -> bool:
        return self in (EventKind.INCIDENT_DELETED, EventKind.INCIDENT_INVALIDATED)


KIND_ALIASES: Dict[str, str] = {
    "incident:status": EventKind.INCIDENT_STATUS_CHANGED.value,
}

INCIDENT_KINDS = frozenset({
    EventKind.INCIDENT_CREATED,
    EventKind.INCIDENT_UPDATED,
    EventKind.INCIDENT_STATUS_CHANGED,
    EventKind.INCIDENT_RESOLVED,
    EventKind.INCIDENT_DELETED,
    EventKind.INCIDENT_INVALIDATED,
    EventKind.INCIDENT_ACKNOWLEDGED,
})

# Kinds whose fields are compared against the held record
PATCH_KINDS = frozenset({
    EventKind.INCIDENT_CREATED,
    EventKind.INCIDENT_UPDATED,
    EventKind.INCIDENT_STATUS_CHANGED,
    EventKind.INCIDENT_ACKNOWLEDGED,
})


@dataclass
class NotificationEvent:
    """
    Canonical push event.

    Attributes:
        kind: The event kind.
        incident_id: Target incident, for incident events.
        fields: Canonical field values carried by the event.
        payload: The raw payload as received.
        received_at: Arrival time (epoch seconds).
    """
    kind: EventKind
    incident_id: Optional[str] = None
    fields: Dict[str, Any] = field(default_factory=dict)
    payload: Any = None
    received_at: float = field(default_factory=time.time)

    def with_fields(self, fields: Dict[str, Any]) -> "NotificationEvent":
        return replace(self, fields=fields)


class EventNormalizer:
    """Maps raw (kind, payload) pairs onto NotificationEvent."""

    def normalize(self, kind: Any, payload: Any) -> NotificationEvent:
        """
        Canonicalize one push event.

        Args:
            kind: Wire event name or EventKind.
            payload: Event payload; a bare string is read as an incident id.

        Returns:
            The canonical event.

        Raises:
            EventNormalizationError: unknown kind, unreadable payload, or an
                incident event without an identifier.
        """
        try:
            event_kind = EventKind.parse(kind)
        except ValueError:
            raise EventNormalizationError(f"Unknown event kind: {kind!r}")

        if not event_kind.is_incident_event:
            return NotificationEvent(kind=event_kind, payload=payload)

        if isinstance(payload, (str, int)) and not isinstance(payload, bool):
            return NotificationEvent(
                kind=event_kind,
                incident_id=str(payload),
                payload=payload,
            )

        if not isinstance(payload, dict):
            raise EventNormalizationError(
                f"{event_kind.value} payload must be an object, got {type(payload).__name__}"
            )

        try:
            values = canonical_fields(payload)
        except ValueError as e:
            raise EventNormalizationError(f"{event_kind.value}: {e}")

        incident_id = values.pop("incident_id", None)
        values = {k: v for k, v in values.items() if v is not None}
        if not incident_id:
            raise EventNormalizationError(f"{event_kind.value} event has no incident id")

        return NotificationEvent(
            kind=event_kind,
            incident_id=incident_id,
            fields=values,
            payload=payload,
        )


class EventDeduplicator:
    """
    Drops push events that would not change the held record.

    Comparison is per field: an update carrying one changed field among
    several unchanged ones passes through narrowed to that one field.
    """

    def __init__(self, engine: "ReconciliationEngine"):
        self.engine = engine
        self._stats = {"passed": 0, "dropped": 0}

    def filter(self, event: NotificationEvent) -> Optional[NotificationEvent]:
        """Return the event (possibly narrowed) or None when it is a no-op."""
        if not event.kind.is_incident_event or event.incident_id is None:
            return self._passed(event)

        current = self.engine.get(event.incident_id)

        if event.kind.is_removal:
            if current is None:
                return self._dropped(event, "not held")
            return self._passed(event)

        if event.kind == EventKind.INCIDENT_RESOLVED:
            if current is None:
                return self._dropped(event, "not held")
            return self._passed(event)

        if current is None or event.kind not in PATCH_KINDS:
            return self._passed(event)

        changed = {
            name: value
            for name, value in event.fields.items()
            if current.get_field(name) != value
        }
        if not changed:
            return self._dropped(event, "no field differs")
        return self._passed(event.with_fields(changed))

    def _passed(self, event: NotificationEvent) -> NotificationEvent:
        self._stats["passed"] += 1
        return event

    def _dropped(self, event: NotificationEvent, reason: str) -> None:
        self._stats["dropped"] += 1
        logger.debug(f"Dropped {event.kind.value} for {event.incident_id}: {reason}")
        return None

    def get_stats(self) -> Dict[str, int]:
        return dict(self._stats)


__all__ = [
    "EventKind",
    "KIND_ALIASES",
    "NotificationEvent",
    "EventNormalizer",
    "EventDeduplicator",
]

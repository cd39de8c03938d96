"""
Acknowledgment aggregation.

Personnel acknowledgment traffic only ever patches counters on records the
engine already holds, so it cannot reorder or duplicate list entries.
"""

import logging
from typing import Any, Dict, Union

from .events import EventKind, NotificationEvent
from .models import acknowledgment_percentage, canonical_fields
from .reconciliation import ChangeSet, ReconciliationEngine

logger = logging.getLogger(__name__)


class AcknowledgmentAggregator:
    """Turns acknowledgment payloads into in-place counter patches."""

    def __init__(self, engine: ReconciliationEngine):
        self.engine = engine

    def apply(self, ack: Union[NotificationEvent, Dict[str, Any]]) -> ChangeSet:
        """
        Patch acknowledgment counters for one incident.

        Args:
            ack: A normalized ``incident:acknowledged`` event or the raw
                ``{incidentId, acknowledgedCount, totalPersonnelNotified}``
                payload. Any percentage sent by the server is ignored and
                recomputed.

        Returns:
            The change set from the engine's patch path.
        """
        if isinstance(ack, NotificationEvent):
            if ack.kind != EventKind.INCIDENT_ACKNOWLEDGED:
                raise ValueError(f"Not an acknowledgment event: {ack.kind.value}")
            incident_id = ack.incident_id
            values = ack.fields
        else:
            values = canonical_fields(ack)
            incident_id = values.get("incident_id")

        if not incident_id:
            logger.warning("Acknowledgment without incident id ignored")
            return ChangeSet()

        held = self.engine.get(incident_id)
        acknowledged = int(values.get(
            "acknowledged_count",
            held.acknowledged_count if held else 0,
        ))
        total = int(values.get(
            "total_notified",
            held.total_notified if held else 0,
        ))

        return self.engine.patch_acknowledgment(
            incident_id,
            acknowledged_count=acknowledged,
            total_notified=total,
            acknowledgment_percentage=acknowledgment_percentage(acknowledged, total),
        )


__all__ = ["AcknowledgmentAggregator"]

"""
Tests for push event normalization and deduplication.
"""

import pytest

from src.incident_sync.errors import EventNormalizationError
from src.incident_sync.events import (
    EventDeduplicator,
    EventKind,
    EventNormalizer,
    NotificationEvent,
)
from src.incident_sync.models import IncidentPriority, IncidentStatus


# ====================
# EventKind Tests
# ====================

class TestEventKind:
    """Tests for EventKind."""

    def test_parse_alias(self):
        assert EventKind.parse("incident:status") == EventKind.INCIDENT_STATUS_CHANGED

    def test_parse_unknown_raises(self):
        with pytest.raises(ValueError):
            EventKind.parse("incident:teleported")

    def test_classification(self):
        assert EventKind.INCIDENT_DELETED.is_removal
        assert EventKind.INCIDENT_INVALIDATED.is_removal
        assert not EventKind.INCIDENT_RESOLVED.is_removal
        assert EventKind.INCIDENT_ACKNOWLEDGED.is_incident_event
        assert not EventKind.ALERT_CRITICAL.is_incident_event


# ====================
# Normalizer Tests
# ====================

class TestEventNormalizer:
    """Tests for EventNormalizer."""

    @pytest.fixture
    def normalizer(self):
        return EventNormalizer()

    def test_incident_fields_are_canonical(self, normalizer):
        event = normalizer.normalize("incident:created", {
            "incidentId": "I1",
            "priority": "critical",
            "location": "Harbor",
            "type": "FIRE",
        })
        assert event.kind == EventKind.INCIDENT_CREATED
        assert event.incident_id == "I1"
        assert event.fields == {
            "priority": IncidentPriority.CRITICAL,
            "address": "Harbor",
            "type": "FIRE",
        }

    def test_alias_kind(self, normalizer):
        event = normalizer.normalize("incident:status", {"id": "I1", "status": "dispatched"})
        assert event.kind == EventKind.INCIDENT_STATUS_CHANGED
        assert event.fields == {"status": IncidentStatus.DISPATCHED}

    def test_bare_id_payload(self, normalizer):
        event = normalizer.normalize("incident:deleted", "I1")
        assert event.incident_id == "I1"
        assert event.fields == {}

    def test_null_values_dropped(self, normalizer):
        event = normalizer.normalize("incident:updated", {"id": "I1", "title": None, "description": "x"})
        assert event.fields == {"description": "x"}

    def test_non_incident_kind_keeps_payload(self, normalizer):
        payload = {"title": "Drill", "message": "at noon"}
        event = normalizer.normalize("notification:new", payload)
        assert event.kind == EventKind.NOTIFICATION_NEW
        assert event.incident_id is None
        assert event.payload is payload

    def test_unknown_kind_raises(self, normalizer):
        with pytest.raises(EventNormalizationError):
            normalizer.normalize("incident:teleported", {"id": "I1"})

    def test_missing_id_raises(self, normalizer):
        with pytest.raises(EventNormalizationError):
            normalizer.normalize("incident:updated", {"title": "x"})

    def test_non_object_payload_raises(self, normalizer):
        with pytest.raises(EventNormalizationError):
            normalizer.normalize("incident:updated", ["I1"])

    def test_invalid_status_raises(self, normalizer):
        with pytest.raises(EventNormalizationError):
            normalizer.normalize("incident:updated", {"id": "I1", "status": "ON_FIRE"})


# ====================
# Deduplicator Tests
# ====================

class TestEventDeduplicator:
    """Tests for EventDeduplicator."""

    @pytest.fixture
    def held_engine(self, engine, make_record, active_filter):
        engine.merge_snapshot(
            [make_record("I1", title="Smoke", status=IncidentStatus.REPORTED)],
            active_filter,
        )
        return engine

    def _event(self, kind, incident_id="I1", **fields):
        return NotificationEvent(kind=kind, incident_id=incident_id, fields=fields)

    def test_unchanged_update_dropped(self, held_engine):
        dedup = EventDeduplicator(held_engine)
        assert dedup.filter(self._event(EventKind.INCIDENT_UPDATED, title="Smoke")) is None
        assert dedup.get_stats() == {"passed": 0, "dropped": 1}

    def test_update_narrowed_to_changed_fields(self, held_engine):
        dedup = EventDeduplicator(held_engine)
        event = dedup.filter(self._event(
            EventKind.INCIDENT_UPDATED,
            title="Smoke",
            status=IncidentStatus.DISPATCHED,
        ))
        assert event is not None
        assert event.fields == {"status": IncidentStatus.DISPATCHED}

    def test_removal_of_unheld_dropped(self, held_engine):
        dedup = EventDeduplicator(held_engine)
        assert dedup.filter(self._event(EventKind.INCIDENT_DELETED, incident_id="I9")) is None
        assert dedup.filter(self._event(EventKind.INCIDENT_RESOLVED, incident_id="I9")) is None
        assert dedup.filter(self._event(EventKind.INCIDENT_DELETED)) is not None

    def test_creation_of_unheld_passes(self, held_engine):
        dedup = EventDeduplicator(held_engine)
        event = self._event(EventKind.INCIDENT_CREATED, incident_id="I2", title="New")
        assert dedup.filter(event) is event

    def test_non_incident_events_pass(self, held_engine):
        dedup = EventDeduplicator(held_engine)
        event = NotificationEvent(kind=EventKind.ALERT_CRITICAL, payload={"message": "x"})
        assert dedup.filter(event) is event

"""
Tests for the Alert Priority Dispatcher.
"""

import asyncio
from unittest.mock import MagicMock

import pytest

from src.alerting import AlertPriorityDispatcher, AlertSoundController
from src.alerting.alerts import PRIORITY_CONFIG, ToastAction, ToastSeverity, config_for
from src.alerting.sound import SoundState
from src.incident_sync.models import IncidentPriority


class TestPriorityConfig:
    """Tests for PRIORITY_CONFIG."""

    def test_critical_loops_with_cap(self):
        config = PRIORITY_CONFIG[IncidentPriority.CRITICAL]
        assert config.play_sound and config.loop_sound
        assert config.toast_duration == 10.0
        assert config.max_loop_duration == 30.0

    def test_durations(self):
        assert PRIORITY_CONFIG[IncidentPriority.HIGH].toast_duration == 6.0
        assert PRIORITY_CONFIG[IncidentPriority.MEDIUM].toast_duration == 4.0
        assert PRIORITY_CONFIG[IncidentPriority.LOW].toast_duration == 3.0
        assert not PRIORITY_CONFIG[IncidentPriority.LOW].play_sound

    def test_config_for_unknown_priority(self):
        assert config_for("URGENT") == PRIORITY_CONFIG[IncidentPriority.MEDIUM]
        assert config_for("HIGH") == PRIORITY_CONFIG[IncidentPriority.HIGH]


class TestDispatchIncident:
    """Tests for AlertPriorityDispatcher.dispatch_incident."""

    @pytest.mark.asyncio
    async def test_critical_incident(self, dispatcher, toast_sink, sound_player, make_record):
        record = make_record("I1", priority=IncidentPriority.CRITICAL, type="FIRE", address="12 Main St")

        toast = dispatcher.dispatch_incident(record)

        assert toast is toast_sink.last
        assert toast.severity == ToastSeverity.ERROR
        assert toast.duration == 10.0
        assert toast.title == "🚨 CRITICAL INCIDENT"
        assert toast.description == "FIRE - 12 Main St"
        assert toast.actions == [ToastAction(label="View", target="/incidents/I1")]
        assert dispatcher.sound.state == SoundState.LOOPING

        await asyncio.sleep(0.01)
        assert sound_player.calls == ["play-loop"]
        dispatcher.sound.stop()

    @pytest.mark.parametrize("priority,severity,duration,title", [
        (IncidentPriority.HIGH, ToastSeverity.WARNING, 6.0, "⚠️ High Priority Incident"),
        (IncidentPriority.MEDIUM, ToastSeverity.INFO, 4.0, "New Incident Reported"),
        (IncidentPriority.LOW, ToastSeverity.SUCCESS, 3.0, "New Incident Reported"),
    ])
    @pytest.mark.asyncio
    async def test_severity_mapping(self, dispatcher, make_record, priority, severity, duration, title):
        toast = dispatcher.dispatch_incident(make_record("I2", priority=priority))

        assert toast.severity == severity
        assert toast.duration == duration
        assert toast.title == title
        dispatcher.sound.stop()

    @pytest.mark.asyncio
    async def test_low_priority_has_no_sound(self, dispatcher, make_record):
        dispatcher.dispatch_incident(make_record("I3", priority=IncidentPriority.LOW))
        assert dispatcher.sound.state == SoundState.IDLE

    @pytest.mark.asyncio
    async def test_owned_stream_suppressed(self, dispatcher, ownership, toast_sink, make_record):
        ownership.claim("incidents-page", "incident:created")
        ownership.activate("incidents-page")

        toast = dispatcher.dispatch_incident(make_record("I1", priority=IncidentPriority.CRITICAL))

        assert toast is None
        assert toast_sink.toasts == []
        assert dispatcher.sound.state == SoundState.IDLE
        assert dispatcher.get_stats()["suppressed"] == 1

    @pytest.mark.asyncio
    async def test_inactive_owner_does_not_suppress(self, dispatcher, ownership, make_record):
        ownership.claim("incidents-page", "incident:created")
        ownership.activate("map")

        assert dispatcher.dispatch_incident(make_record("I1")) is not None
        dispatcher.sound.stop()

    @pytest.mark.asyncio
    async def test_mute_keeps_toast(self, sound_player, toast_sink, make_record):
        muted = AlertSoundController(sound_player, sound_enabled=lambda: False)
        dispatcher = AlertPriorityDispatcher(muted, sinks=[toast_sink])

        toast = dispatcher.dispatch_incident(make_record("I1", priority=IncidentPriority.CRITICAL))

        assert toast.severity == ToastSeverity.ERROR
        assert muted.state == SoundState.IDLE
        await asyncio.sleep(0.01)
        assert sound_player.calls == []

    @pytest.mark.asyncio
    async def test_failing_sink_isolated(self, dispatcher, toast_sink, make_record):
        broken = MagicMock()
        broken.show.side_effect = RuntimeError("render failed")
        dispatcher.sinks.insert(0, broken)

        dispatcher.dispatch_incident(make_record("I1"))

        assert len(toast_sink.toasts) == 1
        assert dispatcher.get_stats()["sink_failures"] == 1
        dispatcher.sound.stop()

    @pytest.mark.asyncio
    async def test_recent_toasts_newest_first(self, dispatcher, make_record):
        dispatcher.dispatch_incident(make_record("I1"))
        dispatcher.dispatch_incident(make_record("I2"))
        recent = dispatcher.get_recent_toasts()
        assert [t["actions"][0]["target"] for t in recent] == ["/incidents/I2", "/incidents/I1"]
        dispatcher.sound.stop()

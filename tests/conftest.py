"""Pytest fixtures for incident sync tests."""
import pytest
from typing import Any, Callable, Dict, List
from unittest.mock import AsyncMock, MagicMock

from src.alerting import (
    AlertOwnershipRegistry,
    AlertPriorityDispatcher,
    AlertSoundController,
    MemoryToastSink,
    NotificationCenter,
    SoundPlayer,
    SoundPreferenceStore,
)
from src.incident_sync.channel import PushChannel
from src.incident_sync.models import IncidentFilter, IncidentPage, IncidentRecord
from src.incident_sync.reconciliation import ReconciliationEngine


# --- Sound Fixtures ---

class RecordingSoundPlayer(SoundPlayer):
    """Sound player that records calls and detects overlapping playback."""

    def __init__(self, error: Exception = None):
        self.error = error
        self.calls: List[str] = []
        self.active = 0
        self.max_active = 0

    async def play(self, loop: bool = False) -> None:
        self.calls.append("play-loop" if loop else "play")
        if self.error is not None:
            raise self.error
        self.active += 1
        self.max_active = max(self.max_active, self.active)

    def stop(self) -> None:
        self.calls.append("stop")
        self.active = 0


@pytest.fixture
def make_sound_player() -> Callable[..., RecordingSoundPlayer]:
    """Factory fixture for recording players (optionally failing)."""
    return RecordingSoundPlayer


@pytest.fixture
def sound_player() -> RecordingSoundPlayer:
    """A recording sound player."""
    return RecordingSoundPlayer()


@pytest.fixture
def sound_controller(sound_player) -> AlertSoundController:
    """Sound controller backed by the recording player, sound enabled."""
    return AlertSoundController(sound_player)


# --- Alerting Fixtures ---

@pytest.fixture
def toast_sink() -> MemoryToastSink:
    return MemoryToastSink()


@pytest.fixture
def ownership() -> AlertOwnershipRegistry:
    return AlertOwnershipRegistry()


@pytest.fixture
def dispatcher(sound_controller, toast_sink, ownership) -> AlertPriorityDispatcher:
    """Dispatcher wired to the recording player and memory sink."""
    return AlertPriorityDispatcher(sound_controller, sinks=[toast_sink], ownership=ownership)


@pytest.fixture
def notification_center(dispatcher) -> NotificationCenter:
    """An open notification center."""
    center = NotificationCenter(dispatcher)
    center.open_session()
    return center


@pytest.fixture
def preferences(tmp_path) -> SoundPreferenceStore:
    """Preference store under a temporary directory."""
    return SoundPreferenceStore.load("test-user", directory=tmp_path)


# --- Incident Fixtures ---

@pytest.fixture
def make_record() -> Callable[..., IncidentRecord]:
    """Factory fixture for incident records."""
    def _make(incident_id: str, **values: Any) -> IncidentRecord:
        record = IncidentRecord(incident_id=incident_id)
        record.apply_fields(values)
        return record
    return _make


@pytest.fixture
def make_payload() -> Callable[..., Dict[str, Any]]:
    """Factory fixture for camelCase server payloads."""
    def _make(incident_id: str, **values: Any) -> Dict[str, Any]:
        payload = {
            "id": incident_id,
            "status": "REPORTED",
            "priority": "MEDIUM",
            "type": "FIRE",
            "address": "12 Main St",
            "createdAt": "2026-10-01T10:00:00Z",
        }
        payload.update(values)
        return payload
    return _make


@pytest.fixture
def engine() -> ReconciliationEngine:
    return ReconciliationEngine()


@pytest.fixture
def active_filter() -> IncidentFilter:
    """Default view: active incidents only."""
    return IncidentFilter()


# --- Collaborator Fixtures ---

@pytest.fixture
def mock_api() -> MagicMock:
    """Mock IncidentApiClient returning an empty page."""
    api = MagicMock()
    api.get_incidents = AsyncMock(return_value=IncidentPage())
    api.check_health = AsyncMock(return_value=True)
    api.close = AsyncMock()
    return api


@pytest.fixture
def mock_channel() -> MagicMock:
    """Mock PushChannel; async methods are AsyncMocks."""
    channel = MagicMock(spec=PushChannel)
    channel.send_broadcast = AsyncMock(return_value=True)
    return channel

"""
Alerting Module for incident sync.

This package turns newly inserted incidents and other push events into
operator-facing alerts: priority-mapped toasts, a single serialized sound
channel, per-view alert ownership, a persisted mute preference and the
session notification list.
"""

from .alerts import (
    AlertConfig,
    PRIORITY_CONFIG,
    config_for,
    Toast,
    ToastAction,
    ToastSeverity,
)
from .sound import (
    SoundState,
    PlaybackResult,
    SoundPlayer,
    LoggingSoundPlayer,
    AlertSoundController,
)
from .ownership import AlertOwnershipRegistry
from .preferences import SoundPreferenceStore
from .notifiers import (
    ToastSink,
    LoggingToastSink,
    MemoryToastSink,
)
from .dispatcher import AlertPriorityDispatcher
from .notification_center import Notification, NotificationCenter

__all__ = [
    # Core types
    "AlertConfig",
    "PRIORITY_CONFIG",
    "config_for",
    "Toast",
    "ToastAction",
    "ToastSeverity",
    # Sound
    "SoundState",
    "PlaybackResult",
    "SoundPlayer",
    "LoggingSoundPlayer",
    "AlertSoundController",
    "SoundPreferenceStore",
    # Ownership
    "AlertOwnershipRegistry",
    # Sinks
    "ToastSink",
    "LoggingToastSink",
    "MemoryToastSink",
    # Dispatch
    "AlertPriorityDispatcher",
    "Notification",
    "NotificationCenter",
]

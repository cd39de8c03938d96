"""
Exception hierarchy for the incident sync engine.

None of these are fatal: callers log them and keep serving the last
known-good incident collection.
"""


class IncidentSyncError(Exception):
    """Base exception for the incident sync engine."""
    pass


class ChannelConnectionError(IncidentSyncError):
    """Push channel handshake, authentication or drop failure."""
    pass


class ResyncError(IncidentSyncError):
    """Pull resynchronization failed (network, timeout or server fault)."""

    def __init__(self, message: str, status: int = 0):
        super().__init__(message)
        self.status = status


class EventNormalizationError(IncidentSyncError, ValueError):
    """A push payload could not be mapped to a canonical event."""
    pass


class PlaybackError(IncidentSyncError):
    """Alert sound playback failed."""
    pass


class PlaybackBlockedError(PlaybackError):
    """Playback refused by platform policy (e.g. autoplay restrictions)."""
    pass


__all__ = [
    "IncidentSyncError",
    "ChannelConnectionError",
    "ResyncError",
    "EventNormalizationError",
    "PlaybackError",
    "PlaybackBlockedError",
]

"""Core modules for Incident Sync."""
from .config import Settings, settings

__all__ = [
    "Settings",
    "settings",
]

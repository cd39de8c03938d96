"""
Core alert data structures: per-priority alert configuration and toasts.
"""

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from src.incident_sync.models import IncidentPriority


@dataclass(frozen=True)
class AlertConfig:
    """
    Presentation settings for one incident priority.

    Attributes:
        play_sound: Whether the alert plays a sound.
        toast_duration: How long the toast stays visible (seconds).
        loop_sound: Loop the sound until superseded or capped.
        max_loop_duration: Upper bound for a looping sound (seconds).
    """
    play_sound: bool
    toast_duration: float
    loop_sound: bool = False
    max_loop_duration: Optional[float] = None


PRIORITY_CONFIG: Dict[IncidentPriority, AlertConfig] = {
    IncidentPriority.CRITICAL: AlertConfig(
        play_sound=True,
        toast_duration=10.0,
        loop_sound=True,
        max_loop_duration=30.0,
    ),
    IncidentPriority.HIGH: AlertConfig(play_sound=True, toast_duration=6.0),
    IncidentPriority.MEDIUM: AlertConfig(play_sound=True, toast_duration=4.0),
    IncidentPriority.LOW: AlertConfig(play_sound=False, toast_duration=3.0),
}


def config_for(priority: Any) -> AlertConfig:
    """AlertConfig for a priority, MEDIUM when unknown."""
    try:
        return PRIORITY_CONFIG[IncidentPriority(getattr(priority, "value", priority))]
    except ValueError:
        return PRIORITY_CONFIG[IncidentPriority.MEDIUM]


class ToastSeverity(str, Enum):
    """Visual channel of a toast."""
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"
    SUCCESS = "success"


@dataclass(frozen=True)
class ToastAction:
    """Clickable action attached to a toast."""
    label: str
    target: str


@dataclass
class Toast:
    """
    A transient visual notice.

    Attributes:
        severity: Visual channel.
        title: Headline.
        description: Body text.
        duration: Display time (seconds).
        actions: Optional actions (e.g. navigate to the incident).
        id: Unique toast id.
        created_at: Creation time (epoch seconds).
    """
    severity: ToastSeverity
    title: str
    description: str = ""
    duration: float = 3.0
    actions: List[ToastAction] = field(default_factory=list)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the toast to a dictionary."""
        return {
            "id": self.id,
            "severity": self.severity.value,
            "title": self.title,
            "description": self.description,
            "duration": self.duration,
            "actions": [{"label": a.label, "target": a.target} for a in self.actions],
            "created_at": self.created_at,
        }


__all__ = [
    "AlertConfig",
    "PRIORITY_CONFIG",
    "config_for",
    "ToastSeverity",
    "ToastAction",
    "Toast",
]

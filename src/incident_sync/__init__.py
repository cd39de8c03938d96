"""
Incident Sync Module.

Keeps a local, filtered, newest-first collection of incidents consistent
with the server under push delivery, pull resynchronization and dropped
connections.

Components:
- models: incident record, filter predicate and page
- events: push event normalization and deduplication
- reconciliation: the single owner of the incident collection
- acknowledgments: in-place acknowledgment counter patches
- channel: WebSocket push channel with bounded reconnection
- health: connectivity tracking and liveness probe
- resync: periodic pull with backoff and jitter
- api_client: REST pull query and health check

The wiring lives in ``src.incident_sync.service.IncidentSyncService``,
which also depends on ``src.alerting``.
"""

from .errors import (
    IncidentSyncError,
    ChannelConnectionError,
    ResyncError,
    EventNormalizationError,
    PlaybackError,
    PlaybackBlockedError,
)
from .models import (
    IncidentStatus,
    IncidentPriority,
    ACTIVE_STATUSES,
    IncidentRecord,
    IncidentFilter,
    IncidentPage,
    acknowledgment_percentage,
)
from .events import (
    EventKind,
    NotificationEvent,
    EventNormalizer,
    EventDeduplicator,
)
from .reconciliation import (
    ReconciliationEngine,
    ChangeSet,
)
from .acknowledgments import AcknowledgmentAggregator
from .channel import (
    ChannelState,
    ChannelTransition,
    BroadcastRequest,
    BackoffStrategy,
    PushChannel,
)
from .health import ConnectionHealthMonitor
from .resync import (
    ResyncScheduler,
    ResyncOutcome,
    SyncState,
)
from .api_client import IncidentApiClient

__all__ = [
    # Errors
    "IncidentSyncError",
    "ChannelConnectionError",
    "ResyncError",
    "EventNormalizationError",
    "PlaybackError",
    "PlaybackBlockedError",
    # Models
    "IncidentStatus",
    "IncidentPriority",
    "ACTIVE_STATUSES",
    "IncidentRecord",
    "IncidentFilter",
    "IncidentPage",
    "acknowledgment_percentage",
    # Events
    "EventKind",
    "NotificationEvent",
    "EventNormalizer",
    "EventDeduplicator",
    # Reconciliation
    "ReconciliationEngine",
    "ChangeSet",
    "AcknowledgmentAggregator",
    # Transport
    "ChannelState",
    "ChannelTransition",
    "BroadcastRequest",
    "BackoffStrategy",
    "PushChannel",
    "ConnectionHealthMonitor",
    "IncidentApiClient",
    # Resync
    "ResyncScheduler",
    "ResyncOutcome",
    "SyncState",
]

"""
Incident data model shared by the reconciliation engine, the event
normalizer and the alert dispatcher.

Server payloads use camelCase names and a couple of aliases for the same
attribute; everything is mapped onto IncidentRecord attributes here so the
rest of the engine only ever sees one shape.
"""

import copy
import logging
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Optional

logger = logging.getLogger(__name__)


class IncidentStatus(str, Enum):
    """Incident lifecycle, declared in lifecycle order."""
    PENDING_VERIFICATION = "PENDING_VERIFICATION"
    VERIFIED = "VERIFIED"
    REPORTED = "REPORTED"
    ACKNOWLEDGED = "ACKNOWLEDGED"
    DISPATCHED = "DISPATCHED"
    IN_PROGRESS = "IN_PROGRESS"
    RESPONDING = "RESPONDING"
    ARRIVED = "ARRIVED"
    PENDING_RESOLVE = "PENDING_RESOLVE"
    RESOLVED = "RESOLVED"
    CLOSED = "CLOSED"
    CANCELLED = "CANCELLED"
    SPAM = "SPAM"

    @property
    def rank(self) -> int:
        """Position of this status in the lifecycle."""
        return list(IncidentStatus).index(self)

    @property
    def is_active(self) -> bool:
        return self in ACTIVE_STATUSES


ACTIVE_STATUSES: FrozenSet[IncidentStatus] = frozenset({
    IncidentStatus.PENDING_VERIFICATION,
    IncidentStatus.VERIFIED,
    IncidentStatus.REPORTED,
    IncidentStatus.ACKNOWLEDGED,
    IncidentStatus.DISPATCHED,
    IncidentStatus.IN_PROGRESS,
    IncidentStatus.RESPONDING,
    IncidentStatus.ARRIVED,
    IncidentStatus.PENDING_RESOLVE,
})


class IncidentPriority(str, Enum):
    """Incident priority tiers."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


# Server field name -> IncidentRecord attribute
FIELD_ALIASES: Dict[str, str] = {
    "incidentId": "incident_id",
    "incident_id": "incident_id",
    "id": "incident_id",
    "status": "status",
    "priority": "priority",
    "type": "type",
    "incidentType": "type",
    "title": "title",
    "address": "address",
    "description": "description",
    "acknowledgmentCount": "acknowledged_count",
    "acknowledgedCount": "acknowledged_count",
    "acknowledged_count": "acknowledged_count",
    "totalPersonnelNotified": "total_notified",
    "totalNotified": "total_notified",
    "total_notified": "total_notified",
    "acknowledgmentPercentage": "acknowledgment_percentage",
    "acknowledgment_percentage": "acknowledgment_percentage",
    "createdAt": "created_at",
    "created_at": "created_at",
    "updatedAt": "updated_at",
    "updated_at": "updated_at",
    "resolvedAt": "resolved_at",
    "resolved_at": "resolved_at",
    "version": "version",
}


def coerce_status(value: Any) -> IncidentStatus:
    """Map a raw status value onto IncidentStatus. Raises ValueError."""
    if isinstance(value, IncidentStatus):
        return value
    return IncidentStatus(str(value).upper())


def coerce_priority(value: Any) -> IncidentPriority:
    """Map a raw priority value onto IncidentPriority, defaulting to MEDIUM."""
    if isinstance(value, IncidentPriority):
        return value
    try:
        return IncidentPriority(str(value).upper())
    except ValueError:
        return IncidentPriority.MEDIUM


def acknowledgment_percentage(acknowledged_count: int, total_notified: int) -> float:
    """
    Percentage of notified personnel that acknowledged.

    Always acknowledged / max(total, 1) * 100, clamped to [0, 100]. Not
    rounded; presentation decides the precision.
    """
    percentage = acknowledged_count * 100 / max(total_notified, 1)
    return min(max(percentage, 0.0), 100.0)


def canonical_fields(payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Rename server fields to IncidentRecord attribute names.

    Unknown keys are kept under their original name. A string ``location``
    stands in for ``address`` only when no address was sent.
    """
    result: Dict[str, Any] = {}
    for key, value in payload.items():
        if key == "location":
            if isinstance(value, str) and "address" not in payload:
                result["address"] = value
            else:
                result[key] = value
            continue
        result[FIELD_ALIASES.get(key, key)] = value

    # incidentId wins over the generic id when both are sent
    if payload.get("incidentId"):
        result["incident_id"] = payload["incidentId"]

    if "status" in result and result["status"] is not None:
        result["status"] = coerce_status(result["status"])
    if "priority" in result:
        result["priority"] = coerce_priority(result["priority"])
    if "incident_id" in result and result["incident_id"] is not None:
        result["incident_id"] = str(result["incident_id"])
    return result


@dataclass
class IncidentRecord:
    """
    An incident as held in the canonical collection.

    Mutated in place by the reconciliation engine only.
    """
    incident_id: str
    status: IncidentStatus = IncidentStatus.REPORTED
    priority: IncidentPriority = IncidentPriority.MEDIUM
    type: str = "OTHER"
    title: str = ""
    address: str = ""
    description: str = ""
    acknowledged_count: int = 0
    total_notified: int = 0
    acknowledgment_percentage: float = 0.0
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    resolved_at: Optional[str] = None
    version: Optional[int] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def attribute_names(cls) -> FrozenSet[str]:
        return frozenset(f.name for f in fields(cls) if f.name != "extra")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IncidentRecord":
        """Build a record from a server payload. Raises ValueError."""
        values = canonical_fields(data)
        if not values.get("incident_id"):
            raise ValueError("Incident payload has no identifier")

        known = cls.attribute_names()
        kwargs = {k: v for k, v in values.items() if k in known and v is not None}
        extra = {k: v for k, v in values.items() if k not in known}
        return cls(extra=extra, **kwargs)

    def to_dict(self) -> Dict[str, Any]:
        """Serialized value, used for snapshot diffing."""
        data = {
            "incident_id": self.incident_id,
            "status": self.status.value,
            "priority": self.priority.value,
            "type": self.type,
            "title": self.title,
            "address": self.address,
            "description": self.description,
            "acknowledged_count": self.acknowledged_count,
            "total_notified": self.total_notified,
            "acknowledgment_percentage": self.acknowledgment_percentage,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "resolved_at": self.resolved_at,
            "version": self.version,
        }
        data.update(self.extra)
        return data

    def get_field(self, name: str) -> Any:
        if name in self.attribute_names():
            return getattr(self, name)
        return self.extra.get(name)

    def apply_fields(self, values: Dict[str, Any]) -> None:
        """Overwrite the given fields in place."""
        known = self.attribute_names()
        for name, value in values.items():
            if name == "incident_id":
                continue
            if name in known:
                setattr(self, name, value)
            else:
                self.extra[name] = value

    def replace_with(self, other: "IncidentRecord") -> None:
        """Take over every value of ``other`` while keeping this object."""
        for f in fields(self):
            if f.name == "incident_id":
                continue
            setattr(self, f.name, copy.deepcopy(getattr(other, f.name)))

    def copy(self) -> "IncidentRecord":
        return copy.deepcopy(self)


@dataclass(frozen=True)
class IncidentFilter:
    """
    Predicate deciding membership of a record in the active view.

    Empty inclusion sets match everything. Unless ``include_resolved`` is
    set, only active lifecycle statuses are visible.
    """
    statuses: FrozenSet[IncidentStatus] = frozenset()
    priorities: FrozenSet[IncidentPriority] = frozenset()
    types: FrozenSet[str] = frozenset()
    include_resolved: bool = False

    @classmethod
    def build(
        cls,
        statuses: Optional[Iterable[Any]] = None,
        priorities: Optional[Iterable[Any]] = None,
        types: Optional[Iterable[str]] = None,
        include_resolved: bool = False,
    ) -> "IncidentFilter":
        """Build a filter from raw values."""
        return cls(
            statuses=frozenset(coerce_status(s) for s in statuses or ()),
            priorities=frozenset(coerce_priority(p) for p in priorities or ()),
            types=frozenset(str(t).upper() for t in types or ()),
            include_resolved=include_resolved,
        )

    @property
    def excludes_resolved(self) -> bool:
        return not self.include_resolved

    def __call__(self, record: IncidentRecord) -> bool:
        if not self.include_resolved and record.status not in ACTIVE_STATUSES:
            return False
        if self.statuses and record.status not in self.statuses:
            return False
        if self.priorities and record.priority not in self.priorities:
            return False
        if self.types and str(record.type).upper() not in self.types:
            return False
        return True

    def to_query(self) -> Dict[str, Any]:
        """Query parameters for the pull collaborator."""
        statuses = self.statuses
        if not statuses and not self.include_resolved:
            statuses = ACTIVE_STATUSES

        query: Dict[str, Any] = {}
        if statuses:
            query["status"] = sorted(s.value for s in statuses)
        if self.priorities:
            query["priority"] = sorted(p.value for p in self.priorities)
        if self.types:
            query["type"] = sorted(self.types)
        return query


def _int_or(value: Any, default: int) -> int:
    # servers send null for pagination fields they do not compute
    return default if value is None else int(value)


@dataclass
class IncidentPage:
    """One page returned by the pull query."""
    data: List[IncidentRecord] = field(default_factory=list)
    page: int = 1
    limit: int = 20
    total: int = 0
    total_pages: int = 0

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "IncidentPage":
        """Parse a page, skipping records that cannot be read."""
        records: List[IncidentRecord] = []
        for item in payload.get("data", []) or []:
            try:
                records.append(IncidentRecord.from_dict(item))
            except (ValueError, TypeError, AttributeError) as e:
                logger.warning(f"Skipping unreadable incident in snapshot: {e}")

        return cls(
            data=records,
            page=_int_or(payload.get("page"), 1),
            limit=_int_or(payload.get("limit"), len(records)),
            total=_int_or(payload.get("total"), len(records)),
            total_pages=_int_or(payload.get("totalPages", payload.get("total_pages")), 1),
        )


__all__ = [
    "IncidentStatus",
    "IncidentPriority",
    "ACTIVE_STATUSES",
    "FIELD_ALIASES",
    "IncidentRecord",
    "IncidentFilter",
    "IncidentPage",
    "acknowledgment_percentage",
    "canonical_fields",
    "coerce_status",
    "coerce_priority",
]

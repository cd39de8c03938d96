"""
Reconciliation engine for the active incident collection.

Owns the canonical, ordered (newest first) list of incidents and is the
only component that mutates it. Push events go through ``apply`` and pull
snapshots through ``merge_snapshot``; both take the filter predicate as an
argument so membership is always decided against the current view.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

from .events import EventKind, NotificationEvent
from .models import IncidentRecord, IncidentStatus

logger = logging.getLogger(__name__)

Predicate = Callable[[IncidentRecord], bool]

ACK_FIELDS = ("acknowledged_count", "total_notified", "acknowledgment_percentage")


@dataclass
class ChangeSet:
    """Ids touched by one engine operation."""
    inserted: List[str] = field(default_factory=list)
    updated: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    reordered: bool = False
    reset: bool = False

    def __bool__(self) -> bool:
        return bool(
            self.inserted or self.updated or self.removed
            or self.reordered or self.reset
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "inserted": list(self.inserted),
            "updated": list(self.updated),
            "removed": list(self.removed),
            "reordered": self.reordered,
            "reset": self.reset,
        }


ChangeListener = Callable[[ChangeSet], Any]


def _excludes_resolved(predicate: Predicate) -> bool:
    return getattr(predicate, "excludes_resolved", True)


class ReconciliationEngine:
    """
    Single source of truth for the incident list.

    Invariants:
    - no two records share an identifier;
    - ``total`` always equals the list length, updated with the mutation;
    - acknowledgment patches never move or remove a record.
    """

    def __init__(self):
        self._records: List[IncidentRecord] = []
        self._index: Dict[str, IncidentRecord] = {}
        self._listeners: List[ChangeListener] = []
        self.server_total: int = 0

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    def get(self, incident_id: str) -> Optional[IncidentRecord]:
        return self._index.get(incident_id)

    @property
    def records(self) -> List[IncidentRecord]:
        """Ordered copy of the collection (the records themselves are shared)."""
        return list(self._records)

    @property
    def ids(self) -> List[str]:
        return [r.incident_id for r in self._records]

    @property
    def total(self) -> int:
        return len(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, incident_id: object) -> bool:
        return incident_id in self._index

    def position(self, incident_id: str) -> int:
        """Index of the record in the list, -1 when absent."""
        for i, record in enumerate(self._records):
            if record.incident_id == incident_id:
                return i
        return -1

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def add_listener(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: ChangeListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, changes: ChangeSet) -> ChangeSet:
        if not changes:
            return changes
        for listener in list(self._listeners):
            try:
                listener(changes)
            except Exception as e:
                logger.exception(f"Change listener failed: {e}")
        return changes

    # ------------------------------------------------------------------
    # Push path
    # ------------------------------------------------------------------

    def apply(self, event: NotificationEvent, predicate: Predicate) -> ChangeSet:
        """
        Apply one canonical push event under the given predicate.

        Args:
            event: Normalized (and usually deduplicated) event.
            predicate: The active view's filter, evaluated now.

        Returns:
            The change set produced (empty for a no-op).
        """
        changes = ChangeSet()
        incident_id = event.incident_id
        if incident_id is None or not event.kind.is_incident_event:
            return changes

        kind = event.kind

        if kind == EventKind.INCIDENT_CREATED:
            if incident_id not in self._index:
                record = self._record_from_event(event)
                if predicate(record):
                    self._insert_head(record)
                    changes.inserted.append(incident_id)

        elif kind in (EventKind.INCIDENT_UPDATED, EventKind.INCIDENT_STATUS_CHANGED):
            self._upsert(incident_id, event.fields, predicate, changes)

        elif kind.is_removal:
            if self._remove(incident_id):
                changes.removed.append(incident_id)

        elif kind == EventKind.INCIDENT_RESOLVED:
            if _excludes_resolved(predicate):
                if self._remove(incident_id):
                    changes.removed.append(incident_id)
            elif incident_id in self._index:
                values = dict(event.fields)
                values["status"] = IncidentStatus.RESOLVED
                values.setdefault(
                    "resolved_at", datetime.now(timezone.utc).isoformat()
                )
                self._upsert(incident_id, values, predicate, changes)

        elif kind == EventKind.INCIDENT_ACKNOWLEDGED:
            values = {k: v for k, v in event.fields.items() if k in ACK_FIELDS}
            return self.patch_acknowledgment(incident_id, **values)

        return self._notify(changes)

    def _upsert(
        self,
        incident_id: str,
        values: Dict[str, Any],
        predicate: Predicate,
        changes: ChangeSet,
    ) -> None:
        current = self._index.get(incident_id)

        if current is None:
            record = IncidentRecord(incident_id=incident_id)
            record.apply_fields(values)
            if predicate(record):
                # late-arriving creation
                self._insert_head(record)
                changes.inserted.append(incident_id)
            return

        post_image = current.copy()
        post_image.apply_fields(values)
        if not predicate(post_image):
            self._remove(incident_id)
            changes.removed.append(incident_id)
            return

        if post_image != current:
            current.apply_fields(values)
            changes.updated.append(incident_id)

    def patch_acknowledgment(
        self,
        incident_id: str,
        acknowledged_count: Optional[int] = None,
        total_notified: Optional[int] = None,
        acknowledgment_percentage: Optional[float] = None,
    ) -> ChangeSet:
        """Patch acknowledgment counters in place; never inserts or removes."""
        changes = ChangeSet()
        current = self._index.get(incident_id)
        if current is None:
            logger.debug(f"Acknowledgment for unheld incident {incident_id} ignored")
            return changes

        values = {
            "acknowledged_count": acknowledged_count,
            "total_notified": total_notified,
            "acknowledgment_percentage": acknowledgment_percentage,
        }
        values = {
            k: v for k, v in values.items()
            if v is not None and getattr(current, k) != v
        }
        if values:
            current.apply_fields(values)
            changes.updated.append(incident_id)
        return self._notify(changes)

    # ------------------------------------------------------------------
    # Pull path
    # ------------------------------------------------------------------

    def merge_snapshot(
        self,
        records: Iterable[IncidentRecord],
        predicate: Predicate,
        rebuild: bool = False,
        server_total: Optional[int] = None,
    ) -> ChangeSet:
        """
        Adopt a full snapshot filtered by the predicate.

        Without ``rebuild`` the snapshot is diffed against the held
        collection: unchanged records keep their identity and produce no
        change entries, so re-merging the same snapshot is a no-op. With
        ``rebuild`` the collection is replaced by fresh copies and the change
        set is flagged ``reset``.
        """
        filtered: List[IncidentRecord] = []
        seen = set()
        for record in records:
            if record.incident_id in seen:
                logger.warning(f"Duplicate incident {record.incident_id} in snapshot ignored")
                continue
            seen.add(record.incident_id)
            if predicate(record):
                filtered.append(record)

        old_ids = self.ids
        changes = ChangeSet(reset=rebuild)

        if rebuild:
            previous = self._index
            self._records = [r.copy() for r in filtered]
            self._index = {r.incident_id: r for r in self._records}
            for record in self._records:
                held = previous.get(record.incident_id)
                if held is None:
                    changes.inserted.append(record.incident_id)
                elif held.to_dict() != record.to_dict():
                    changes.updated.append(record.incident_id)
        else:
            merged: List[IncidentRecord] = []
            for incoming in filtered:
                held = self._index.get(incoming.incident_id)
                if held is None:
                    merged.append(incoming.copy())
                    changes.inserted.append(incoming.incident_id)
                    continue
                if held.to_dict() != incoming.to_dict():
                    if self._is_stale(held, incoming):
                        logger.debug(
                            f"Snapshot v{incoming.version} of {incoming.incident_id} "
                            f"older than held v{held.version}, kept held value"
                        )
                    else:
                        held.replace_with(incoming)
                        changes.updated.append(incoming.incident_id)
                merged.append(held)
            self._records = merged
            self._index = {r.incident_id: r for r in merged}

        new_ids = self.ids
        kept = set(new_ids)
        changes.removed.extend(i for i in old_ids if i not in kept)
        survivors_before = [i for i in old_ids if i in kept]
        survivors_after = [i for i in new_ids if i in set(old_ids)]
        changes.reordered = survivors_before != survivors_after

        self.server_total = server_total if server_total is not None else len(self._records)
        return self._notify(changes)

    @staticmethod
    def _is_stale(held: IncidentRecord, incoming: IncidentRecord) -> bool:
        if held.version is None or incoming.version is None:
            return False
        return incoming.version <= held.version

    def refilter(self, predicate: Predicate) -> ChangeSet:
        """Drop every record that no longer satisfies the predicate."""
        changes = ChangeSet()
        for record in list(self._records):
            if not predicate(record):
                self._remove(record.incident_id)
                changes.removed.append(record.incident_id)
        return self._notify(changes)

    def clear(self) -> None:
        self._records = []
        self._index = {}
        self.server_total = 0

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _record_from_event(event: NotificationEvent) -> IncidentRecord:
        record = IncidentRecord(incident_id=event.incident_id)
        record.apply_fields({k: v for k, v in event.fields.items() if v is not None})
        return record

    def _insert_head(self, record: IncidentRecord) -> None:
        self._records.insert(0, record)
        self._index[record.incident_id] = record
        self.server_total += 1

    def _remove(self, incident_id: str) -> bool:
        record = self._index.pop(incident_id, None)
        if record is None:
            return False
        self._records = [r for r in self._records if r is not record]
        self.server_total = max(0, self.server_total - 1)
        return True


__all__ = [
    "ReconciliationEngine",
    "ChangeSet",
    "ChangeListener",
    "ACK_FIELDS",
]

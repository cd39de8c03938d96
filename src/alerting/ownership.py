"""
Alert ownership registry.

A view that presents its own alert for an event stream claims that stream
while it is mounted; the global dispatcher then stays quiet for that stream
so the operator never gets the same alert twice.
"""

import logging
from contextlib import contextmanager
from typing import Dict, Iterator, Optional, Set

logger = logging.getLogger(__name__)


class AlertOwnershipRegistry:
    """Which view, if any, self-handles each event stream."""

    def __init__(self):
        self._claims: Dict[str, Set[str]] = {}
        self._active_view: Optional[str] = None

    @property
    def active_view(self) -> Optional[str]:
        return self._active_view

    def claim(self, view: str, *streams: str) -> None:
        """Register ``view`` as self-handling the given streams."""
        claimed = self._claims.setdefault(view, set())
        claimed.update(getattr(s, "value", s) for s in streams)
        logger.debug(f"View {view} claimed {sorted(claimed)}")

    def release(self, view: str, *streams: str) -> None:
        """Release the given streams, or every stream of the view when omitted."""
        if not streams:
            self._claims.pop(view, None)
        else:
            claimed = self._claims.get(view, set())
            claimed.difference_update(getattr(s, "value", s) for s in streams)
            if not claimed:
                self._claims.pop(view, None)
        if self._active_view == view and view not in self._claims:
            self._active_view = None

    def activate(self, view: Optional[str]) -> None:
        """Mark ``view`` as the one currently shown."""
        self._active_view = view

    def is_owned(self, stream: str) -> bool:
        """True when the active view self-handles ``stream``."""
        if self._active_view is None:
            return False
        return getattr(stream, "value", stream) in self._claims.get(self._active_view, set())

    @contextmanager
    def owned(self, view: str, *streams: str) -> Iterator["AlertOwnershipRegistry"]:
        """Claim and activate for the lifetime of a mounted view."""
        previous = self._active_view
        self.claim(view, *streams)
        self.activate(view)
        try:
            yield self
        finally:
            self.release(view, *streams)
            if self._active_view is None or self._active_view == view:
                self._active_view = previous if previous != view else None


__all__ = ["AlertOwnershipRegistry"]

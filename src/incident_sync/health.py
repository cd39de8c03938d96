"""
Connection health monitoring.

Tracks push channel connectivity from its transitions and answers
on-demand liveness probes used to gate pull resyncs.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional

from src.core.config import settings

from .channel import ChannelTransition, PushChannel

logger = logging.getLogger(__name__)

LivenessCheck = Callable[[], Awaitable[bool]]


class ConnectionHealthMonitor:
    """
    Derives connectivity from channel transitions and probes liveness.

    ``is_connected`` reflects only what the push channel reported; ``probe``
    is an independent network check with a short timeout.
    """

    def __init__(
        self,
        liveness_check: Optional[LivenessCheck] = None,
        probe_timeout: Optional[float] = None,
    ):
        """
        Args:
            liveness_check: Async callable returning True when the server is
                reachable. Without one, the probe falls back to channel state.
            probe_timeout: Upper bound for one probe (seconds).
        """
        self._liveness_check = liveness_check
        self.probe_timeout = probe_timeout or settings.health_timeout

        self._connected = False
        self.last_error: Optional[Exception] = None
        self.last_transition: Optional[ChannelTransition] = None
        self.last_transition_at: Optional[float] = None
        self.last_probe_result: Optional[bool] = None
        self.last_probe_at: Optional[float] = None

    @property
    def is_connected(self) -> bool:
        return self._connected

    def attach(self, channel: PushChannel) -> None:
        """Start following a push channel's transitions."""
        channel.add_transition_listener(self.on_transition)

    def on_transition(
        self,
        transition: ChannelTransition,
        error: Optional[Exception] = None,
    ) -> None:
        """Channel transition listener."""
        self.last_transition = transition
        self.last_transition_at = time.time()

        if transition == ChannelTransition.CONNECTED:
            self._connected = True
            self.last_error = None
        else:
            self._connected = False
            if error is not None:
                self.last_error = error

        logger.debug(f"Channel transition: {transition.value} (connected={self._connected})")

    async def probe(self) -> bool:
        """
        Bounded liveness probe.

        Returns:
            True if the server answered in time, False on timeout or error.
        """
        if self._liveness_check is None:
            result = self._connected
        else:
            try:
                result = bool(await asyncio.wait_for(
                    self._liveness_check(),
                    timeout=self.probe_timeout,
                ))
            except asyncio.TimeoutError:
                logger.warning(f"Liveness probe timed out after {self.probe_timeout}s")
                result = False
            except Exception as e:
                logger.warning(f"Liveness probe failed: {e}")
                result = False

        self.last_probe_result = result
        self.last_probe_at = time.time()
        return result

    def get_status(self) -> dict:
        status: dict[str, Any] = {
            "connected": self._connected,
            "last_transition": self.last_transition.value if self.last_transition else None,
            "last_transition_at": self.last_transition_at,
            "last_probe_result": self.last_probe_result,
            "last_probe_at": self.last_probe_at,
            "last_error": str(self.last_error) if self.last_error else None,
        }
        return status


__all__ = ["ConnectionHealthMonitor", "LivenessCheck"]

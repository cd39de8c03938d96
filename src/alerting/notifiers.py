"""
Toast sinks for the alerting system.

Sinks are responsible for presenting toasts to the operator. Rendering is
out of scope here; the default sink only logs.
"""

import abc
import logging
from typing import List

from .alerts import Toast, ToastSeverity

logger = logging.getLogger(__name__)


class ToastSink(abc.ABC):
    """Abstract base class for toast destinations."""

    @abc.abstractmethod
    def show(self, toast: Toast) -> None:
        """
        Present a toast.

        Args:
            toast: The toast to show
        """
        pass


class LoggingToastSink(ToastSink):
    """
    Logs toasts to the logger.

    Useful for headless deployments and debugging.
    """

    def show(self, toast: Toast) -> None:
        log_msg = f"[TOAST:{toast.severity.value}] {toast.title}"
        if toast.description:
            log_msg += f": {toast.description}"

        if toast.severity == ToastSeverity.ERROR:
            logger.error(log_msg)
        elif toast.severity == ToastSeverity.WARNING:
            logger.warning(log_msg)
        else:
            logger.info(log_msg)


class MemoryToastSink(ToastSink):
    """Keeps every shown toast in a list, newest last."""

    def __init__(self):
        self.toasts: List[Toast] = []

    def show(self, toast: Toast) -> None:
        self.toasts.append(toast)

    @property
    def last(self):
        return self.toasts[-1] if self.toasts else None


__all__ = ["ToastSink", "LoggingToastSink", "MemoryToastSink"]

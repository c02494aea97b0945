"""User-facing toast notifications."""

import itertools
import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Callable

logger = logging.getLogger(__name__)


class ToastKind(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    INFO = "info"


@dataclass(frozen=True)
class Toast:
    """A short message shown to the user."""

    id: int
    message: str
    kind: ToastKind


class Notifier:
    """Collects toasts and fans them out to registered callbacks.

    Keeps the most recent toasts in memory so a UI (or the CLI) can render
    them after the fact.
    """

    def __init__(self, max_recent: int = 20) -> None:
        self._ids = itertools.count(1)
        self._recent: deque[Toast] = deque(maxlen=max_recent)
        self._callbacks: list[Callable[[Toast], None]] = []

    def on_toast(self, callback: Callable[[Toast], None]) -> None:
        """Register callback for every emitted toast."""
        self._callbacks.append(callback)

    @property
    def recent(self) -> list[Toast]:
        return list(self._recent)

    def notify(self, message: str, kind: ToastKind = ToastKind.INFO) -> Toast:
        toast = Toast(id=next(self._ids), message=message, kind=kind)
        self._recent.append(toast)
        for callback in self._callbacks:
            try:
                callback(toast)
            except Exception:
                logger.exception("Toast callback failed: toast_id=%d", toast.id)
        return toast

    def success(self, message: str) -> Toast:
        return self.notify(message, ToastKind.SUCCESS)

    def error(self, message: str) -> Toast:
        return self.notify(message, ToastKind.ERROR)

    def info(self, message: str) -> Toast:
        return self.notify(message, ToastKind.INFO)

    def dismiss(self, toast_id: int) -> None:
        """Remove a toast from the recent list."""
        for toast in list(self._recent):
            if toast.id == toast_id:
                self._recent.remove(toast)

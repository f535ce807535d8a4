"""User-facing alerts and toasts.

A NotificationBus is created by the session and handed to every component
that needs to tell the user something; the view subscribes to ``notified``.
There is no module-level registry.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from PySide6.QtCore import QObject, Signal


class Level(Enum):
    INFO = "info"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class Notification:
    level: Level
    title: str
    message: str = ""


class NotificationBus(QObject):
    notified = Signal(object)  # Notification

    def __init__(self, history_limit: int = 50):
        super().__init__()
        self._history: list[Notification] = []
        self._limit = history_limit
        self._closed = False

    @property
    def history(self) -> list[Notification]:
        return list(self._history)

    @property
    def last(self) -> Notification | None:
        return self._history[-1] if self._history else None

    def notify(self, level: Level, title: str, message: str = "") -> Notification | None:
        if self._closed:
            logging.debug(f"[notifications] bus closed, dropped: {title}")
            return None
        note = Notification(level, title, message)
        self._history.append(note)
        if len(self._history) > self._limit:
            self._history.pop(0)
        self.notified.emit(note)
        return note

    def info(self, title: str, message: str = ""):
        return self.notify(Level.INFO, title, message)

    def success(self, title: str, message: str = ""):
        return self.notify(Level.SUCCESS, title, message)

    def error(self, title: str, message: str = ""):
        return self.notify(Level.ERROR, title, message)

    def batch_result(self, action: str, succeeded: int, total: int):
        """'N of M succeeded' for batch operations; error level if anything failed."""
        message = f"{succeeded} of {total} succeeded"
        if succeeded == total:
            return self.success(action, message)
        return self.error(action, message)

    def close(self):
        self._closed = True
        self._history.clear()

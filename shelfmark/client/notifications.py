from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass

from shelfmark.config import ClientConfig

HISTORY_LIMIT = 20

SUCCESS = "success"
WARNING = "warning"
ERROR = "error"


@dataclass
class Toast:
    message: str
    level: str = SUCCESS


class Notifier:
    """Holds at most one visible toast.

    A new toast replaces the current one and restarts the dismissal timer.
    """

    def __init__(self, duration: float = ClientConfig.TOAST_SECONDS):
        self.duration = duration
        self.current: Toast | None = None
        self.history: deque[Toast] = deque(maxlen=HISTORY_LIMIT)
        self._timer: asyncio.TimerHandle | None = None

    def show(self, message: str, level: str = SUCCESS) -> Toast:
        toast = Toast(message=message, level=level)
        self.current = toast
        self.history.append(toast)
        self._cancel_timer()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        if loop is not None:
            self._timer = loop.call_later(self.duration, self._expire, toast)
        return toast

    def dismiss(self) -> None:
        self._cancel_timer()
        self.current = None

    def _expire(self, toast: Toast) -> None:
        if self.current is toast:
            self.current = None
        self._timer = None

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

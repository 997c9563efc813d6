import asyncio
import itertools
from typing import Dict, List, Tuple

from db.models import Toast, ToastKind
from utils.errors import KurasiError
from utils.logger import get_logger
from utils.subscription import Listeners, Subscription

_logger = get_logger(__name__)

TOAST_LIFETIME_SECONDS = 3.0


class ToastQueue:
    """
    Process-wide list of short-lived notifications, oldest first.

    Each toast removes itself after `lifetime` seconds unless dismissed earlier.
    Listeners receive the queue after every change.
    """

    def __init__(self, lifetime: float = TOAST_LIFETIME_SECONDS) -> None:
        self.lifetime = lifetime
        self._ids = itertools.count(1)
        self._toasts: List[Toast] = []
        self._timers: Dict[int, asyncio.TimerHandle] = {}
        self._listeners: Listeners["ToastQueue"] = Listeners()

    @property
    def toasts(self) -> Tuple[Toast, ...]:
        return tuple(self._toasts)

    def subscribe(self, listener) -> Subscription:
        return self._listeners.add(listener)

    def push(self, message: str, kind: ToastKind = "info") -> Toast:
        toast = Toast(id=next(self._ids), message=message, kind=kind)
        self._toasts.append(toast)
        loop = asyncio.get_running_loop()
        self._timers[toast.id] = loop.call_later(self.lifetime, self._expire, toast.id)
        self._listeners.notify(self)
        return toast

    def success(self, message: str) -> Toast:
        return self.push(message, "success")

    def error(self, message: str) -> Toast:
        return self.push(message, "error")

    def info(self, message: str) -> Toast:
        return self.push(message, "info")

    def report(self, exc: KurasiError) -> Toast:
        """Show a structured error to the user."""
        return self.error(exc.message)

    def _expire(self, toast_id: int) -> None:
        self._timers.pop(toast_id, None)
        self._remove(toast_id)

    def dismiss(self, toast_id: int) -> None:
        timer = self._timers.pop(toast_id, None)
        if timer is not None:
            timer.cancel()
        self._remove(toast_id)

    def _remove(self, toast_id: int) -> None:
        remaining = [t for t in self._toasts if t.id != toast_id]
        if len(remaining) == len(self._toasts):
            return
        self._toasts = remaining
        self._listeners.notify(self)

    def close(self) -> None:
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        self._toasts.clear()
        self._listeners.clear()

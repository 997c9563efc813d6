from typing import Callable, Generic, List, Optional, TypeVar

from utils.logger import get_logger

_logger = get_logger(__name__)

T = TypeVar("T")


class Subscription:
    """
    Handle returned by every `subscribe` call.
    `unsubscribe` runs the release callback at most once.
    """

    def __init__(self, release: Optional[Callable[[], None]] = None) -> None:
        self._release = release
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        if not self._active:
            return
        self._active = False
        release, self._release = self._release, None
        if release is not None:
            release()


class Listeners(Generic[T]):
    """
    Ordered list of change listeners, each called with the owner's payload.
    A failing listener is logged and does not stop the others.
    """

    def __init__(self) -> None:
        self._callbacks: List[Callable[[T], None]] = []

    def __len__(self) -> int:
        return len(self._callbacks)

    def add(self, callback: Callable[[T], None]) -> Subscription:
        self._callbacks.append(callback)

        def release():
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return Subscription(release)

    def notify(self, payload: T) -> None:
        for callback in list(self._callbacks):
            try:
                callback(payload)
            except Exception:
                _logger.exception(f"Listener {callback!r} failed.")

    def clear(self) -> None:
        self._callbacks.clear()

"""
Callback hooks for reporter lifecycle notifications.
"""

import logging
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)


class EventHandler:
    """Ordered list of listeners for one reporter event."""

    def __init__(self, name: str = "event"):
        self._name = name
        self._callbacks: list[Callable] = []

    def __len__(self) -> int:
        return len(self._callbacks)

    def add_listener(self, callback: Callable) -> Callable[[], None]:
        """Add a callback listener. Returns unsubscribe function."""
        self._callbacks.append(callback)

        def unsubscribe():
            self.remove_listener(callback)

        return unsubscribe

    def remove_listener(self, callback: Callable) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def invoke(self, *args: Any, **kwargs: Any) -> None:
        """
        Invoke all registered callbacks on the caller's thread.

        A failing listener is logged and skipped so it cannot take down the
        reporter worker.
        """
        for callback in list(self._callbacks):
            try:
                callback(*args, **kwargs)
            except Exception as e:
                logger.error(f"{self._name} listener {callback!r} failed: {e}")

    def clear(self) -> None:
        self._callbacks.clear()

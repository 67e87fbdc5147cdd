"""Single-slot "latest value wins" hand-off between threads.

A watcher publishes desired configuration names as they change; a worker
waits for the next one. Several publishes between two reads collapse into
the last one, so the worker only ever applies the newest value.

Intended for a long-running agent that watches node labels for the selected
config name and applies it; the one-shot CLI commands do not use it.
"""

import threading
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class LatestValue(Generic[T]):

    def __init__(self):
        self._cond = threading.Condition()
        self._value: Optional[T] = None
        self._version = 0
        self._seen = 0

    def set(self, value: Optional[T]) -> None:
        """Publish ``value``. Empty values are stored but wake nobody."""
        with self._cond:
            self._value = value
            if value:
                self._version += 1
                self._cond.notify_all()

    def peek(self) -> Optional[T]:
        with self._cond:
            return self._value

    def get(self, timeout: Optional[float] = None) -> Optional[T]:
        """Wait for a value newer than the last one returned.

        Returns None if ``timeout`` expires first.
        """
        with self._cond:
            if not self._cond.wait_for(lambda: self._version > self._seen, timeout=timeout):
                return None
            self._seen = self._version
            return self._value

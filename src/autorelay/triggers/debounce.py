"""Keyed debounce window shared by the trigger sources."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Hashable


class Debouncer:
    """Drops repeat firings for a key within *window_ms* of the last accepted one.

    The check-and-update is atomic.  *clock* returns monotonic seconds and
    is injectable for tests.
    """

    def __init__(
        self,
        window_ms: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._window_ms = window_ms
        self._clock = clock
        self._last: dict[Hashable, float] = {}
        self._lock = threading.Lock()

    @property
    def window_ms(self) -> int:
        return self._window_ms

    def should_fire(self, key: Hashable) -> bool:
        now = self._clock() * 1000
        with self._lock:
            last = self._last.get(key)
            if last is not None and now - last < self._window_ms:
                return False
            self._last[key] = now
            return True

    def reset(self, key: Hashable | None = None) -> None:
        with self._lock:
            if key is None:
                self._last.clear()
            else:
                self._last.pop(key, None)

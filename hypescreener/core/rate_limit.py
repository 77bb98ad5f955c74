import time
from typing import Callable, Dict, Tuple


class FixedWindowRateLimiter:
    """
    Counts calls per key inside a fixed window.
    State lives on the instance (one per app), so it resets on restart and is
    not shared between processes.
    """

    def __init__(self, limit: int, interval_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.limit = limit
        self.interval = interval_seconds
        self._clock = clock
        self._windows: Dict[str, Tuple[int, float]] = {}

    def check(self, key: str) -> bool:
        """Registers a call for `key`; returns False when the window is exhausted."""
        now = self._clock()
        entry = self._windows.get(key)

        if entry is None:
            self._windows[key] = (1, now)
            return True

        count, window_start = entry
        if now - window_start > self.interval:
            self._windows[key] = (1, now)
            return True

        if count >= self.limit:
            return False

        self._windows[key] = (count + 1, window_start)
        return True

    def reset(self):
        self._windows.clear()

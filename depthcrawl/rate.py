import threading
import time
from typing import Callable


class RateLimiter:
    """Enforces a minimum spacing between requests across every worker."""

    def __init__(self, delay_seconds: float, now: Callable[[], float] | None = None, sleep: Callable[[float], None] | None = None):
        self.delay_seconds = delay_seconds
        self._last_slot = float("-inf")
        self._lock = threading.Lock()
        self._now = now or time.monotonic
        self._sleep = sleep or time.sleep

    def wait_turn(self) -> float:
        if self.delay_seconds <= 0:
            return 0.0
        with self._lock:
            now = self._now()
            # every attempt waits a full delay, the first one included
            slot = max(now, self._last_slot) + self.delay_seconds
            self._last_slot = slot
            sleep_for = slot - now
        if sleep_for > 0:
            self._sleep(sleep_for)
        return sleep_for

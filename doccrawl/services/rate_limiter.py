import threading
import time
from typing import Callable, Optional


class RateLimiter:
    """Enforces a minimum interval between fetch starts.

    Each caller reserves the next free slot under a lock, then sleeps until
    it. One instance per job gives per-job throttling; sharing one instance
    across jobs throttles globally.
    """

    def __init__(self, interval_seconds: float, *, clock: Callable[[], float] = time.monotonic):
        self.interval_seconds = max(0.0, float(interval_seconds))
        self._clock = clock
        self._lock = threading.Lock()
        self._next_start: Optional[float] = None

    @classmethod
    def from_millis(cls, delay_ms: int) -> "RateLimiter":
        return cls(delay_ms / 1000.0)

    def reserve(self) -> float:
        """Claim the next slot; return how long the caller must wait for it."""
        with self._lock:
            now = self._clock()
            start = now if self._next_start is None else max(now, self._next_start)
            self._next_start = start + self.interval_seconds
            return start - now

    def wait(self, stop_event=None) -> bool:
        """Block until the caller may start a fetch. False if stopped while waiting."""
        delay = self.reserve()
        if delay <= 0:
            return not (stop_event is not None and stop_event.is_set())
        if stop_event is not None:
            return not stop_event.wait(delay)
        time.sleep(delay)
        return True

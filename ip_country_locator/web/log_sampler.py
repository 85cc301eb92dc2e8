import threading
import time


class LogSampler:
    """Lets at most one routine request log line through per *interval* seconds.

    Create one instance per application and hand it to the logging middleware.
    """

    def __init__(self, interval: float = 10.0, clock=time.monotonic):
        self.interval = interval
        self._clock = clock
        self._lock = threading.Lock()
        self._last: float | None = None

    def should_log(self) -> bool:
        now = self._clock()
        with self._lock:
            if self._last is not None and now - self._last < self.interval:
                return False
            self._last = now
            return True

"""Helpers for waiting on change-feed threads"""

import threading
import time

FEED_TIMEOUT = 2.0


class Collector:
    """Thread-safe recorder of callback invocations"""

    def __init__(self, expected: int = 1):
        self.calls = []
        self.expected = expected
        self._lock = threading.Lock()
        self._event = threading.Event()

    def __call__(self, *args):
        with self._lock:
            self.calls.append(args)
            if len(self.calls) >= self.expected:
                self._event.set()

    def wait(self, timeout: float = FEED_TIMEOUT) -> bool:
        return self._event.wait(timeout)


def wait_until(predicate, timeout: float = FEED_TIMEOUT, interval: float = 0.01) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()

"""
Record id issuing.

Ids are handed out by an injected generator instead of a process-wide random
source, so tests and tools can swap in a predictable sequence.
"""
import itertools
import secrets
import threading


class RandomIdGenerator:
    """Positive 63-bit ids, safe to share between threads."""

    def __init__(self):
        self._lock = threading.Lock()

    def next_id(self) -> int:
        with self._lock:
            value = secrets.randbits(63)
            while value == 0:
                value = secrets.randbits(63)
            return value


class SequentialIdGenerator:
    def __init__(self, start: int = 1):
        self._counter = itertools.count(start)
        self._lock = threading.Lock()

    def next_id(self) -> int:
        with self._lock:
            return next(self._counter)

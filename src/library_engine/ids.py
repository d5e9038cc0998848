"""Principal id allocation."""

import threading

DEFAULT_ID_BASE = 100


class IdAllocator:
    """
    Hands out principal ids from a monotonically increasing counter.

    The base value itself is reserved; the first id issued is ``base + 1``.
    Ids are never reused, even after the principal is removed.
    """

    def __init__(self, base: int = DEFAULT_ID_BASE):
        if base < 0:
            raise ValueError("Id base cannot be negative")
        self._base = base
        self._last = base
        self._lock = threading.Lock()

    @property
    def base(self) -> int:
        return self._base

    @property
    def last_issued(self) -> int:
        """Most recently issued id, or the base if none has been issued."""
        return self._last

    def next_id(self) -> int:
        with self._lock:
            self._last += 1
            return self._last

    def reserve_through(self, used_id: int) -> None:
        """Make sure ids up to ``used_id`` are never issued again (used after loading state)."""
        with self._lock:
            if used_id > self._last:
                self._last = used_id

    def peek(self) -> int:
        """Id the next call to ``next_id`` would return."""
        with self._lock:
            return self._last + 1

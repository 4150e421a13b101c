from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Tuple

from .errors import LockTimeoutError


def column_key(column_id: str) -> str:
    return f"column:{column_id}"


def board_key(board_id: str) -> str:
    return f"board:{board_id}"


class ColumnLocks:
    """Per-container mutexes, always taken in ascending key order.

    Each key is either idle or held by exactly one mover. Acquiring several
    keys in one fixed global order rules out deadlock between movers that
    need overlapping sets.
    """

    def __init__(self, timeout: float) -> None:
        self.timeout = timeout
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}
        self._holders: Dict[str, str] = {}

    def _lock_for(self, key: str) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(key, threading.Lock())

    def holder(self, key: str) -> Optional[str]:
        """Mover currently holding ``key``, or ``None`` when idle."""
        with self._guard:
            return self._holders.get(key)

    @contextmanager
    def hold(self, *keys: str, mover: str = "-") -> Iterator[None]:
        ordered = sorted(set(keys))
        acquired: List[Tuple[str, threading.Lock]] = []
        deadline = time.monotonic() + self.timeout
        try:
            for key in ordered:
                lock = self._lock_for(key)
                if not lock.acquire(timeout=max(0.0, deadline - time.monotonic())):
                    raise LockTimeoutError(key, self.timeout)
                acquired.append((key, lock))
                with self._guard:
                    self._holders[key] = mover
            yield
        finally:
            for key, lock in reversed(acquired):
                with self._guard:
                    self._holders.pop(key, None)
                lock.release()

    def discard(self, key: str) -> None:
        """Forget the mutex of a deleted container."""
        with self._guard:
            if key not in self._holders:
                self._locks.pop(key, None)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

"""Per-key in-process locks for the booking and token read-then-write paths"""

import logging
import threading
from contextlib import contextmanager

from .exceptions import TransientStoreError

logger = logging.getLogger(__name__)


class KeyedLock:
    """
    Hands out one mutex per key and forgets it once nobody holds or waits on it.

    Only serializes writers inside this process; the unique constraints on the
    appointments table cover writers in other processes.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[tuple, list] = {}  # key -> [lock, refcount]

    @contextmanager
    def hold(self, key: tuple, timeout: float):
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1

        acquired = entry[0].acquire(timeout=timeout)
        try:
            if not acquired:
                logger.warning(f"⏳ Timed out after {timeout}s waiting for lock {key}")
                raise TransientStoreError(
                    "The schedule is busy, please try again", code="store_unavailable"
                )
            yield
        finally:
            if acquired:
                entry[0].release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    self._locks.pop(key, None)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


slot_locks = KeyedLock()
token_locks = KeyedLock()

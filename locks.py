"""In-process mutual exclusion keyed by an identifier string."""

from contextlib import contextmanager
import logging
import threading
from typing import Dict, List

from errors import BookingTimeout

logger = logging.getLogger(__name__)


class LockRegistry:
    """Hands out one lock per key, creating it the first time the key is seen.

    Locks are never discarded; a single-venue box office only ever sees a
    bounded number of shows and dates per process lifetime.
    """

    def __init__(self, timeout: float = 10.0):
        self.timeout = timeout
        self._locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, key: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, *keys: str, timeout: float = None):
        """Acquire every key in the given order, release in reverse.

        Raises BookingTimeout if any key cannot be taken within ``timeout``
        seconds; keys already taken are released first.
        """
        wait = self.timeout if timeout is None else timeout
        acquired: List[threading.Lock] = []
        try:
            for key in keys:
                lock = self._lock_for(key)
                if not lock.acquire(timeout=wait):
                    logger.warning(f"Timed out after {wait}s waiting for lock {key}")
                    raise BookingTimeout(f"timed out waiting for {key}")
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()

    def is_locked(self, key: str) -> bool:
        return self._lock_for(key).locked()

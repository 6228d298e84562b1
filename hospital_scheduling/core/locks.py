from contextlib import contextmanager
from datetime import date, time
from typing import Dict, Iterator
import logging
import threading

from redis.exceptions import LockError

from .config import settings
from .exceptions import UnavailableError

logger = logging.getLogger(__name__)


def slot_key(doctor_id: int, day: date, slot: time) -> str:
    """Mutual-exclusion key for one doctor's slot on one day."""
    return f"slot:{doctor_id}:{day.isoformat()}:{slot.strftime('%H:%M')}"


def appointment_key(appointment_id: int) -> str:
    """Mutual-exclusion key for status changes on one appointment."""
    return f"appointment:{appointment_id}"


def availability_key(doctor_id: int) -> str:
    """Mutual-exclusion key for rewriting one doctor's weekly template."""
    return f"availability:{doctor_id}"


class LocalLockManager:
    """Per-key locks shared by every thread of this process.

    Locks are created on demand and dropped once nobody holds or waits on
    them, so the registry only ever contains keys in active use.
    """

    def __init__(self, timeout: float):
        self.timeout = timeout
        self._guard = threading.Lock()
        self._locks: Dict[str, list] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1

        acquired = entry[0].acquire(timeout=self.timeout)
        try:
            if not acquired:
                logger.error(f"Timed out waiting for lock {key}")
                raise UnavailableError("Scheduling is busy, please retry")
            yield
        finally:
            if acquired:
                entry[0].release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    self._locks.pop(key, None)


class RedisLockManager:
    """Per-key locks shared across worker processes through Redis."""

    def __init__(self, redis_client, timeout: float):
        self.redis = redis_client
        self.timeout = timeout

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        lock = self.redis.lock(
            f"lock:{key}",
            timeout=self.timeout,
            blocking_timeout=self.timeout,
        )
        if not lock.acquire():
            logger.error(f"Timed out waiting for lock {key}")
            raise UnavailableError("Scheduling is busy, please retry")
        try:
            yield
        finally:
            try:
                lock.release()
            except LockError:
                # The lock expired while held; the unique index still guards the slot
                logger.warning(f"Lock {key} expired before release")


_lock_manager = None


def get_lock_manager(redis_client=None):
    """Return the process-wide lock manager selected by LOCK_BACKEND."""
    global _lock_manager
    if _lock_manager is None:
        if settings.LOCK_BACKEND == "redis":
            from .database import get_redis

            _lock_manager = RedisLockManager(
                redis_client or get_redis(), settings.LOCK_TIMEOUT_SECONDS
            )
        else:
            _lock_manager = LocalLockManager(settings.LOCK_TIMEOUT_SECONDS)
        logger.info(f"Using {type(_lock_manager).__name__} for scheduling locks")
    return _lock_manager

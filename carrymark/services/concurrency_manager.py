"""
Concurrency management: per-key write locks and bounded optimistic retries.
"""

import logging
import threading
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from ..core.exceptions import ConcurrentUpdateConflict, ValidationError


logger = logging.getLogger(__name__)


@dataclass
class LockInfo:
    """Information about a held lock."""
    lock_id: str
    resource_id: str
    holder_id: str
    acquired_at: float
    depth: int = 1


class ConcurrencyManager:
    """Serializes in-process writers per resource and retries lost optimistic races.

    Key locks only cover writers inside this process. Writers in other
    processes are handled by the store's versioned compare-and-set, whose
    conflicts ``execute_with_retry`` absorbs.
    """

    def __init__(self, lock_timeout: float = 10.0):
        if lock_timeout <= 0:
            raise ValidationError(f"lock_timeout must be positive, got {lock_timeout}")
        self._lock_timeout = lock_timeout
        self._lock_holders: Dict[str, LockInfo] = {}  # resource_id -> holder
        self._lock = threading.RLock()
        self._released = threading.Condition(self._lock)
        self._stats = {
            'locks_acquired': 0,
            'lock_timeouts': 0,
            'retries': 0,
            'conflicts_surfaced': 0,
        }

    def acquire_lock(self, resource_id: str, holder_id: str,
                     timeout: Optional[float] = None) -> str:
        """Acquire the write lock on a resource, waiting up to ``timeout`` seconds."""
        timeout = self._lock_timeout if timeout is None else timeout
        deadline = time.monotonic() + timeout
        with self._released:
            while True:
                current = self._lock_holders.get(resource_id)
                if current is None:
                    lock_info = LockInfo(
                        lock_id=str(uuid.uuid4()),
                        resource_id=resource_id,
                        holder_id=holder_id,
                        acquired_at=time.time()
                    )
                    self._lock_holders[resource_id] = lock_info
                    self._stats['locks_acquired'] += 1
                    return lock_info.lock_id

                # Same holder can re-enter
                if current.holder_id == holder_id:
                    current.depth += 1
                    return current.lock_id

                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    self._stats['lock_timeouts'] += 1
                    raise ConcurrentUpdateConflict(
                        f"Timed out waiting for lock on {resource_id}",
                        error_code="LOCK_TIMEOUT",
                        details={'resource_id': resource_id, 'holder_id': current.holder_id}
                    )
                self._released.wait(remaining)

    def release_lock(self, lock_id: str) -> bool:
        """Release a lock."""
        with self._released:
            for resource_id, lock_info in self._lock_holders.items():
                if lock_info.lock_id == lock_id:
                    lock_info.depth -= 1
                    if lock_info.depth == 0:
                        del self._lock_holders[resource_id]
                        self._released.notify_all()
                    return True
            return False

    @contextmanager
    def lock(self, resource_id: str, holder_id: Optional[str] = None,
             timeout: Optional[float] = None):
        """Context manager for acquiring and releasing a resource lock."""
        holder_id = holder_id or f"thread_{threading.get_ident()}"
        lock_id = self.acquire_lock(resource_id, holder_id, timeout)
        try:
            yield lock_id
        finally:
            self.release_lock(lock_id)

    def execute_with_retry(self, func: Callable[[], Any], max_retries: int = 3,
                           backoff_factor: float = 0.01) -> Any:
        """Run ``func``, retrying on ConcurrentUpdateConflict with exponential backoff.

        Makes at most ``max_retries + 1`` attempts, then re-raises the last conflict.
        """
        last_exception = None

        for attempt in range(max_retries + 1):
            try:
                return func()
            except ConcurrentUpdateConflict as e:
                last_exception = e
                if attempt < max_retries:
                    with self._lock:
                        self._stats['retries'] += 1
                    logger.warning("Concurrent update conflict (attempt %d/%d): %s",
                                   attempt + 1, max_retries + 1, e.message)
                    time.sleep(backoff_factor * (2 ** attempt))

        with self._lock:
            self._stats['conflicts_surfaced'] += 1
        raise last_exception

    def get_lock_info(self, resource_id: str) -> Optional[LockInfo]:
        """Get information about the lock on a resource, if held."""
        with self._lock:
            return self._lock_holders.get(resource_id)

    def get_holder_locks(self, holder_id: str) -> List[LockInfo]:
        """Get all locks held by a specific holder."""
        with self._lock:
            return [lock_info for lock_info in self._lock_holders.values()
                    if lock_info.holder_id == holder_id]

    def get_statistics(self) -> Dict[str, Any]:
        with self._lock:
            stats = dict(self._stats)
            stats['locks_held'] = len(self._lock_holders)
            return stats

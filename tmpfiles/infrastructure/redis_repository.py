"""
Redis Locking

Non-blocking distributed lock used by the lifecycle sweeper so that one
cycle runs at a time across all worker processes.
"""

import logging
from contextlib import contextmanager
from typing import Iterator

import redis
from redis.exceptions import LockError

logger = logging.getLogger(__name__)


@contextmanager
def try_distributed_lock(client: redis.Redis, lock_name: str,
                         timeout: int = 600) -> Iterator[bool]:
    """
    Distributed lock context manager that never waits.

    Args:
        client: Redis client
        lock_name: Full Redis key of the lock
        timeout: Lock expiry in seconds, so a crashed holder cannot wedge it

    Yields:
        True if the lock was acquired, False if another holder has it
    """
    lock = client.lock(lock_name, timeout=timeout)
    acquired = lock.acquire(blocking=False)
    try:
        yield bool(acquired)
    finally:
        if acquired:
            try:
                lock.release()
            except LockError:
                # Lock expired while held
                logger.warning(f"Lock {lock_name} expired before release")

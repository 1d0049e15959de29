"""
Lifecycle Sweeper

Deletes expired records (and their bytes) through the storage orchestrator,
then reconciles orphaned objects. One cycle runs at a time per process and,
when a Redis client is supplied, per deployment.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import asdict, dataclass, field
from typing import List, Optional

from redis.exceptions import RedisError

from tmpfiles.config.storage_config import StorageConfig
from tmpfiles.domain.cancellation import CancellationToken, check_cancelled
from tmpfiles.domain.errors import (
    BackendError,
    DomainError,
    NotFoundError,
    OperationCancelledError,
)
from tmpfiles.domain.file_storage.entities import FileRecord
from tmpfiles.domain.file_storage.value_objects import SearchFilter
from tmpfiles.infrastructure.redis_repository import try_distributed_lock

from .storage_orchestrator import StorageOrchestrator

logger = logging.getLogger(__name__)

DEFAULT_LOCK_NAME = "tmp_files:lock:lifecycle_sweep"


@dataclass
class SweepSummary:
    """Outcome of one sweeper cycle."""
    expired_found: int = 0
    expired_processed: int = 0
    deleted: int = 0
    failed: int = 0
    orphans_deleted: int = 0
    orphans_failed: int = 0
    freed_bytes: int = 0
    errors: List[str] = field(default_factory=list)
    duration_seconds: float = 0.0

    def to_dict(self) -> dict:
        return asdict(self)


class LifecycleSweeper:
    """
    Single-flight expiry sweeper.

    A cycle pages through expired records, oldest expiry first, deleting each
    page with a bounded thread pool. Failed records are left in place and
    skipped for the rest of the cycle; the next cycle retries them. Failures
    never abort the cycle.
    """

    def __init__(self, orchestrator: StorageOrchestrator, config: StorageConfig,
                 redis_client=None, lock_name: str = DEFAULT_LOCK_NAME):
        """
        Args:
            orchestrator: Storage orchestrator used for every deletion
            config: Batch size, per-cycle cap and concurrency
            redis_client: When given, cycles are also serialized across processes
            lock_name: Redis key of the cross-process lock
        """
        self.orchestrator = orchestrator
        self.config = config
        self.redis_client = redis_client
        self.lock_name = lock_name
        self._running = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._running.locked()

    def run(self, cancel: Optional[CancellationToken] = None) -> Optional[SweepSummary]:
        """
        Run one cycle unless one is already running.

        Returns:
            SweepSummary, or None if another cycle holds the guard

        Raises:
            OperationCancelledError: If cancelled mid-cycle
            BackendError: If the distributed lock cannot be reached
        """
        if not self._running.acquire(blocking=False):
            logger.info("Lifecycle sweep already running, skipping")
            return None
        try:
            if self.redis_client is None:
                return self._run_cycle(cancel)
            return self._run_locked(cancel)
        finally:
            self._running.release()

    def _run_locked(self, cancel: Optional[CancellationToken]) -> Optional[SweepSummary]:
        timeout = self.config.cleanup_interval_minutes * 60
        try:
            with try_distributed_lock(self.redis_client, self.lock_name, timeout=timeout) as acquired:
                if not acquired:
                    logger.info("Lifecycle sweep running in another worker, skipping")
                    return None
                return self._run_cycle(cancel)
        except RedisError as e:
            raise BackendError(f"Sweep lock unavailable: {e}", e) from e

    def _run_cycle(self, cancel: Optional[CancellationToken]) -> SweepSummary:
        logger.info("Starting lifecycle sweep")
        started = time.monotonic()
        summary = SweepSummary()
        batch_size = self.config.cleanup_batch_size
        max_per_cycle = self.config.cleanup_max_per_cycle

        with ThreadPoolExecutor(max_workers=self.config.cleanup_concurrency,
                                thread_name_prefix="sweeper") as executor:
            first_batch = True
            while summary.expired_processed < max_per_cycle:
                check_cancelled(cancel)
                limit = min(batch_size, max_per_cycle - summary.expired_processed)
                try:
                    result = self.orchestrator.search(
                        SearchFilter(expired_only=True, limit=limit, offset=summary.failed)
                    )
                except BackendError as e:
                    error_msg = f"Expired file search failed: {e}"
                    summary.errors.append(error_msg)
                    logger.error(error_msg)
                    break
                if first_batch:
                    summary.expired_found = result.total
                    first_batch = False
                if not result.records:
                    break

                futures = {
                    executor.submit(self._delete_one, record, cancel): record
                    for record in result.records
                }
                for future in as_completed(futures):
                    record = futures[future]
                    summary.expired_processed += 1
                    try:
                        summary.freed_bytes += future.result()
                        summary.deleted += 1
                    except OperationCancelledError:
                        raise
                    except Exception as e:
                        summary.failed += 1
                        error_msg = f"Failed to delete expired file {record.id}: {e}"
                        summary.errors.append(error_msg)
                        logger.warning(error_msg, exc_info=not isinstance(e, DomainError))

        check_cancelled(cancel)
        try:
            reconciled = self.orchestrator.reconcile_orphans(cancel=cancel)
            summary.orphans_deleted = reconciled.deleted_count
            summary.orphans_failed = reconciled.failed_count
            summary.freed_bytes += reconciled.freed_bytes
        except OperationCancelledError:
            raise
        except DomainError as e:
            error_msg = f"Orphan reconciliation failed: {e}"
            summary.errors.append(error_msg)
            logger.error(error_msg)

        summary.duration_seconds = round(time.monotonic() - started, 3)
        logger.info(
            f"Lifecycle sweep completed - "
            f"expired found: {summary.expired_found}, "
            f"deleted: {summary.deleted}, "
            f"failed: {summary.failed}, "
            f"orphans deleted: {summary.orphans_deleted}, "
            f"orphans failed: {summary.orphans_failed}, "
            f"freed: {summary.freed_bytes} bytes, "
            f"errors: {len(summary.errors)}, "
            f"duration: {summary.duration_seconds}s"
        )
        return summary

    def _delete_one(self, record: FileRecord, cancel: Optional[CancellationToken]) -> int:
        try:
            return self.orchestrator.reclaim(record.id, cancel=cancel)
        except NotFoundError:
            # Deleted concurrently
            logger.debug(f"Expired file {record.id} already gone")
            return 0

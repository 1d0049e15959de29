"""
File Metadata Store Implementation

Concrete implementation of IMetadataStore backed by a single JSON document.

Document Schema (``<storage_dir>/data.json``):
    {
        "version": 1,
        "lastUpdated": "<iso timestamp>",
        "totalFiles": <int>,
        "totalSize": <int>,
        "files": {"<id>": <FileRecord.to_dict()>, ...}
    }

Every mutation is read-modify-write under an exclusive ``fcntl`` lock on
``data.lock`` (serializes worker processes) and a process-local RLock
(serializes threads). The document is replaced atomically via a temp file
and ``os.replace``, so readers never see a torn write and need no lock.
"""

import fcntl
import json
import logging
import os
import tempfile
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, Iterator, Optional, Set, Tuple

from tmpfiles.domain.errors import BackendError
from tmpfiles.domain.file_storage.entities import AggregateStats, FileRecord, utcnow
from tmpfiles.domain.file_storage.repositories import (
    IMetadataStore,
    matches_filter,
    paginate,
    sort_records,
)
from tmpfiles.domain.file_storage.value_objects import SearchFilter, SearchResult

logger = logging.getLogger(__name__)

DOCUMENT_VERSION = 1


class _Snapshot:
    """Parsed document plus the indexes derived from it."""

    def __init__(self, records: Dict[str, FileRecord]):
        self.records = records
        self.by_hash: Dict[str, Set[str]] = {}
        self.refs: Dict[str, Set[str]] = {}
        for record in records.values():
            self.by_hash.setdefault(record.content_hash, set()).add(record.id)
            self.refs.setdefault(record.storage_key, set()).add(record.id)
        self.stats = AggregateStats.from_records(records.values())


class FileMetadataStore(IMetadataStore):
    """
    JSON-document implementation of IMetadataStore.

    Attributes:
        storage_dir: Directory holding ``data.json`` and its lock file
    """

    def __init__(self, storage_dir: str = "/tmp/tmpfiles"):
        self.storage_dir = Path(storage_dir)
        self.document_path = self.storage_dir / "data.json"
        self.lock_path = self.storage_dir / "data.lock"
        self._lock = threading.RLock()
        self._snapshot = _Snapshot({})
        self._signature: Optional[Tuple[int, int, int]] = None

    def init(self) -> None:
        """Create the storage directory and an empty document if missing."""
        try:
            self.storage_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise BackendError(f"Failed to create metadata directory: {self.storage_dir}", e) from e

        with self._exclusive():
            if not self.document_path.exists():
                self._write({})
                logger.info(f"Initialized metadata document at {self.document_path}")
            else:
                self._load(force=True)

    # Locking and persistence

    @contextmanager
    def _exclusive(self):
        with self._lock:
            try:
                handle = open(self.lock_path, "a")
            except OSError as e:
                raise BackendError(f"Failed to open metadata lock file: {e}", e) from e
            try:
                fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
                yield
            finally:
                fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
                handle.close()

    def _load(self, force: bool = False) -> _Snapshot:
        """
        Return the current snapshot, re-reading the document only if it changed.

        Writers pass ``force``: inode numbers are reused and mtimes have
        kernel-tick resolution, so the stat signature alone can miss a
        rewrite by another process.
        """
        with self._lock:
            try:
                stat = self.document_path.stat()
            except FileNotFoundError:
                self._snapshot, self._signature = _Snapshot({}), None
                return self._snapshot
            except OSError as e:
                raise BackendError(f"Failed to stat metadata document: {e}", e) from e

            signature = (stat.st_ino, stat.st_mtime_ns, stat.st_size)
            if not force and signature == self._signature:
                return self._snapshot

            try:
                with open(self.document_path, "r", encoding="utf-8") as f:
                    document = json.load(f)
                records = {
                    record_id: FileRecord.from_dict(data)
                    for record_id, data in document.get("files", {}).items()
                }
            except (ValueError, KeyError, TypeError, AttributeError) as e:
                # Corrupt document: start over with an empty one
                logger.warning(f"Metadata document {self.document_path} is corrupt, recreating: {e}")
                records = {}
            except OSError as e:
                raise BackendError(f"Failed to read metadata document: {e}", e) from e

            self._snapshot = _Snapshot(records)
            self._signature = signature
            return self._snapshot

    def _write(self, records: Dict[str, FileRecord]) -> None:
        snapshot = _Snapshot(records)
        document = {
            "version": DOCUMENT_VERSION,
            "lastUpdated": utcnow().isoformat(),
            "totalFiles": snapshot.stats.total_files,
            "totalSize": snapshot.stats.total_size,
            "files": {record_id: r.to_dict() for record_id, r in records.items()},
        }
        tmp_name = None
        try:
            fd, tmp_name = tempfile.mkstemp(dir=self.storage_dir, prefix=".data-", suffix=".json")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(document, f)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.document_path)
            tmp_name = None
            stat = self.document_path.stat()
        except OSError as e:
            raise BackendError(f"Failed to write metadata document: {e}", e) from e
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    logger.warning(f"Failed to remove temporary metadata file {tmp_name}")

        self._snapshot = snapshot
        self._signature = (stat.st_ino, stat.st_mtime_ns, stat.st_size)

    # IMetadataStore interface methods

    def put(self, record: FileRecord) -> None:
        with self._exclusive():
            records = dict(self._load(force=True).records)
            records[record.id] = record
            self._write(records)

    def attach(self, record: FileRecord) -> bool:
        with self._exclusive():
            snapshot = self._load(force=True)
            if not snapshot.refs.get(record.storage_key):
                return False
            records = dict(snapshot.records)
            records[record.id] = record
            self._write(records)
            return True

    def get(self, record_id: str) -> Optional[FileRecord]:
        return self._load().records.get(record_id)

    def delete(self, record_id: str) -> Optional[FileRecord]:
        with self._exclusive():
            records = dict(self._load(force=True).records)
            record = records.pop(record_id, None)
            if record is None:
                return None
            self._write(records)
            return record

    def find_by_hash(self, content_hash: str,
                     mime_type: Optional[str] = None) -> Optional[FileRecord]:
        snapshot = self._load()
        candidates = [
            record_id for record_id in snapshot.by_hash.get(content_hash, ())
            if mime_type is None or snapshot.records[record_id].mime_type == mime_type
        ]
        if not candidates:
            return None
        return snapshot.records[min(candidates)]

    def references(self, storage_key: str) -> int:
        return len(self._load().refs.get(storage_key, ()))

    def referenced_keys(self, storage_keys: Iterable[str]) -> Set[str]:
        refs = self._load().refs
        return {key for key in storage_keys if refs.get(key)}

    def search(self, search_filter: SearchFilter,
               now: Optional[datetime] = None) -> SearchResult:
        now = now or utcnow()
        matched = [
            r for r in self._load().records.values()
            if matches_filter(r, search_filter, now)
        ]
        ordered = sort_records(matched, search_filter.expired_only)
        return SearchResult(
            records=paginate(ordered, search_filter),
            total=len(ordered),
            filter=search_filter,
        )

    def stats(self) -> AggregateStats:
        stats = self._load().stats
        return AggregateStats(
            total_files=stats.total_files,
            total_size=stats.total_size,
            files_by_mime_type=dict(stats.files_by_mime_type),
            files_by_date=dict(stats.files_by_date),
        )

    def all_ids(self) -> Iterator[str]:
        yield from list(self._load().records)

    def health_check(self) -> bool:
        try:
            self._load()
            return self.storage_dir.is_dir() and os.access(self.storage_dir, os.W_OK)
        except BackendError as e:
            logger.warning(f"Metadata document health check failed: {e}")
            return False

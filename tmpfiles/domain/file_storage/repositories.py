"""
File Storage Repositories

Repository interface for file record persistence, with the search and
ordering rules shared by every implementation.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Iterable, Iterator, List, Optional, Set

from .entities import AggregateStats, FileRecord
from .value_objects import SearchFilter, SearchResult


class IMetadataStore(ABC):
    """
    Abstract repository interface for file record persistence.

    Consistency Contract:
    - put() is visible to get/find_by_hash/search once it returns
    - statistics counters change atomically with the owning put/delete
    - once references(key) reaches zero, attach() refuses to raise it again
    """

    @abstractmethod
    def init(self) -> None:
        """Prepare backing storage (idempotent)."""
        pass

    @abstractmethod
    def put(self, record: FileRecord) -> None:
        """
        Store a record that owns a freshly written storage key.

        Args:
            record: FileRecord to save

        Raises:
            BackendError: If the record could not be persisted
        """
        pass

    @abstractmethod
    def attach(self, record: FileRecord) -> bool:
        """
        Store a record sharing the storage key of an existing record.

        The write happens only if at least one live record still references
        ``record.storage_key``; check and write are a single atomic step.

        Returns:
            True if stored, False if the key is no longer referenced
        """
        pass

    @abstractmethod
    def get(self, record_id: str) -> Optional[FileRecord]:
        """
        Retrieve a record by id, expired or not.

        Returns:
            FileRecord if found, None otherwise
        """
        pass

    @abstractmethod
    def delete(self, record_id: str) -> Optional[FileRecord]:
        """
        Delete a record and its index entries.

        Returns:
            The deleted record, or None if it did not exist
        """
        pass

    @abstractmethod
    def find_by_hash(self, content_hash: str,
                     mime_type: Optional[str] = None) -> Optional[FileRecord]:
        """
        Return a live-or-expired record whose content has this hash.

        With ``mime_type`` only records of that MIME type are considered.
        When several records match, the one with the smallest id wins.
        """
        pass

    @abstractmethod
    def references(self, storage_key: str) -> int:
        """Number of records referencing ``storage_key``."""
        pass

    @abstractmethod
    def referenced_keys(self, storage_keys: Iterable[str]) -> Set[str]:
        """Subset of ``storage_keys`` referenced by at least one record."""
        pass

    @abstractmethod
    def search(self, search_filter: SearchFilter,
               now: Optional[datetime] = None) -> SearchResult:
        """
        Search records.

        Without ``expired_only`` only live records match, newest upload
        first. With ``expired_only`` only expired records match, ordered by
        ``expires_at`` ascending then id ascending.
        """
        pass

    @abstractmethod
    def stats(self) -> AggregateStats:
        """Aggregate statistics over all stored records."""
        pass

    @abstractmethod
    def all_ids(self) -> Iterator[str]:
        """Lazily enumerate all record ids."""
        pass

    @abstractmethod
    def health_check(self) -> bool:
        """Return True when the backend is reachable. Never raises."""
        pass


def matches_filter(record: FileRecord, search_filter: SearchFilter,
                   now: datetime) -> bool:
    """Apply every non-pagination criterion of ``search_filter`` to a record."""
    if record.is_expired(now) != search_filter.expired_only:
        return False
    if search_filter.mime_type and record.mime_type != search_filter.mime_type:
        return False
    if search_filter.min_size is not None and record.size < search_filter.min_size:
        return False
    if search_filter.max_size is not None and record.size > search_filter.max_size:
        return False
    if search_filter.uploaded_after and not record.uploaded_at > search_filter.uploaded_after:
        return False
    if search_filter.uploaded_before and not record.uploaded_at < search_filter.uploaded_before:
        return False
    return True


def sort_records(records: List[FileRecord], expired_only: bool) -> List[FileRecord]:
    """Order records the way search results are ordered."""
    if expired_only:
        return sorted(records, key=lambda r: (r.expires_at, r.id))
    ordered = sorted(records, key=lambda r: r.id)
    return sorted(ordered, key=lambda r: r.uploaded_at, reverse=True)


def paginate(records: List[FileRecord], search_filter: SearchFilter) -> List[FileRecord]:
    start = max(search_filter.offset or 0, 0)
    if search_filter.limit is None:
        return records[start:]
    return records[start:start + search_filter.limit]

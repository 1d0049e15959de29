"""
Storage Orchestrator

Application service that coordinates the byte store and the metadata store.
It is the only component aware of both, and it owns the write ordering that
keeps them consistent: bytes are durable before a record points at them, and
a record is gone before its bytes are removed.
"""

import logging
import uuid
from datetime import datetime, timedelta
from itertools import islice
from typing import BinaryIO, Callable, Dict, Iterable, Iterator, List, Optional, Tuple

from tmpfiles.config.storage_config import StorageConfig
from tmpfiles.domain.cancellation import CancellationToken, check_cancelled
from tmpfiles.domain.errors import (
    BackendError,
    DomainError,
    FileExpiredError,
    NotFoundError,
    ObjectNotFoundError,
    OperationCancelledError,
    PayloadTooLargeError,
    ReconciliationFailure,
    ValidationError,
)
from tmpfiles.domain.file_storage.content_type import SNIFF_SIZE, sniff_mime_type
from tmpfiles.domain.file_storage.entities import AggregateStats, FileRecord, utcnow
from tmpfiles.domain.file_storage.hashing import ContentHasher, HashingReader
from tmpfiles.domain.file_storage.repositories import IMetadataStore
from tmpfiles.domain.file_storage.storage_repository import IByteStore
from tmpfiles.domain.file_storage.value_objects import (
    ByteRange,
    ObjectMeta,
    ReconcileResult,
    SearchFilter,
    SearchResult,
    StorageHealth,
    UploadedFile,
)

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "application/octet-stream"

# Custom metadata limits
MAX_METADATA_KEYS = 50
MAX_METADATA_KEY_LENGTH = 100
MAX_METADATA_VALUE_LENGTH = 1000

# Byte store keys checked against the metadata store per round trip
RECONCILE_PAGE_SIZE = 500


def _pages(keys: Iterable[str], size: int) -> Iterator[List[str]]:
    iterator = iter(keys)
    while True:
        page = list(islice(iterator, size))
        if not page:
            return
        yield page


class StorageOrchestrator:
    """
    Application service for stored files.

    Responsibilities:
    - Validate uploads against the configured limits before any I/O
    - Stream uploads through the content hasher into the byte store
    - Deduplicate identical content by sharing storage keys
    - Serve downloads, including byte ranges, of live records
    - Delete records and release bytes nobody references any more
    - Reconcile objects left behind by interrupted uploads

    Write Ordering:
    - upload: byte store write completes before the metadata write
    - delete: metadata delete completes before the byte store delete
    A crash between the two steps leaves at worst an orphaned object, which
    reconcile_orphans() removes; never a record pointing at missing bytes.
    """

    def __init__(
        self,
        byte_store: IByteStore,
        metadata_store: IMetadataStore,
        config: StorageConfig,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize Storage Orchestrator with dependencies.

        Args:
            byte_store: Raw object storage (IByteStore)
            metadata_store: Record storage (IMetadataStore)
            config: Validated storage configuration
            clock: Returns the current aware UTC time; injectable for tests
        """
        self.byte_store = byte_store
        self.metadata_store = metadata_store
        self.config = config
        self._clock = clock

    # Upload

    def validate_upload(self, uploaded_file: UploadedFile, ttl_seconds: int,
                        custom_metadata: Optional[Dict[str, str]] = None) -> None:
        """
        Check an upload against the configured limits.

        Raises:
            ValidationError: If TTL, name, MIME type or metadata is invalid
            PayloadTooLargeError: If the declared size exceeds the maximum
        """
        if isinstance(ttl_seconds, bool) or not isinstance(ttl_seconds, int):
            raise ValidationError(f"TTL must be an integer number of seconds, got {ttl_seconds!r}")
        if not self.config.ttl_min_seconds <= ttl_seconds <= self.config.ttl_max_seconds:
            raise ValidationError(
                f"TTL must be between {self.config.ttl_min_seconds} and "
                f"{self.config.ttl_max_seconds} seconds, got {ttl_seconds}"
            )

        if not uploaded_file.original_name or not uploaded_file.original_name.strip():
            raise ValidationError("Original filename is required")

        mime_type = uploaded_file.mime_type or DEFAULT_MIME_TYPE
        if not self.config.is_mime_type_allowed(mime_type):
            raise ValidationError(f"MIME type {mime_type} is not allowed")

        if uploaded_file.size is not None:
            if uploaded_file.size < 0:
                raise ValidationError(f"Declared size must be >= 0, got {uploaded_file.size}")
            if uploaded_file.size > self.config.max_file_size:
                raise PayloadTooLargeError(
                    f"Declared size {uploaded_file.size} exceeds maximum of "
                    f"{self.config.max_file_size} bytes"
                )

        self._validate_metadata(custom_metadata)

    @staticmethod
    def _validate_metadata(custom_metadata: Optional[Dict[str, str]]) -> None:
        if custom_metadata is None:
            return
        if not isinstance(custom_metadata, dict):
            raise ValidationError("Custom metadata must be a mapping of strings")
        if len(custom_metadata) > MAX_METADATA_KEYS:
            raise ValidationError(f"Custom metadata may have at most {MAX_METADATA_KEYS} keys")
        for key, value in custom_metadata.items():
            if not isinstance(key, str) or not key or len(key) > MAX_METADATA_KEY_LENGTH:
                raise ValidationError(
                    f"Metadata keys must be 1-{MAX_METADATA_KEY_LENGTH} character strings"
                )
            if not isinstance(value, str):
                raise ValidationError(f"Metadata value for {key!r} must be a string")
            if len(value) > MAX_METADATA_VALUE_LENGTH:
                raise ValidationError(
                    f"Metadata value for {key!r} exceeds {MAX_METADATA_VALUE_LENGTH} characters"
                )

    def upload(self, uploaded_file: UploadedFile, ttl_seconds: int,
               custom_metadata: Optional[Dict[str, str]] = None,
               cancel: Optional[CancellationToken] = None) -> FileRecord:
        """
        Store an upload and create its record.

        Workflow:
        1. Validate (no I/O happens for a rejected upload)
        2. Identify the content type from the leading bytes and check it
           against the allow-list before anything is written
        3. Stream once through HashingReader into the byte store, fresh key
        4. With deduplication on, attach the record to an existing object of
           equal hash and MIME type and discard the fresh copy
        5. Otherwise write the record for the fresh key

        Args:
            uploaded_file: Incoming upload; its stream is read exactly once
            ttl_seconds: Time to live in seconds
            custom_metadata: Optional caller metadata
            cancel: Optional cancellation token

        Returns:
            The new FileRecord

        Raises:
            ValidationError: If the upload or its detected content type is
                rejected (PayloadTooLargeError when the size limit is hit
                before or during streaming)
            OperationCancelledError: If cancelled before the record is written
            BackendError: If either store fails
        """
        self.validate_upload(uploaded_file, ttl_seconds, custom_metadata)
        check_cancelled(cancel)

        declared_mime_type = uploaded_file.mime_type or DEFAULT_MIME_TYPE
        limit = self.config.max_file_size
        if uploaded_file.size is not None:
            limit = min(limit, uploaded_file.size)

        storage_key = str(uuid.uuid4())
        reader = HashingReader(uploaded_file.stream, limit=limit, cancel=cancel)
        mime_type = self._resolve_mime_type(reader, declared_mime_type)
        self.byte_store.save(reader, storage_key, mime_type, declared_size=limit, cancel=cancel)

        record = FileRecord.create(
            original_name=uploaded_file.original_name,
            mime_type=mime_type,
            size=reader.bytes_read,
            content_hash=reader.hexdigest(),
            storage_key=storage_key,
            ttl_seconds=ttl_seconds,
            custom_metadata=custom_metadata,
            now=self._clock(),
        )

        try:
            check_cancelled(cancel)
            shared = self._attach_duplicate(record)
            if shared is not None:
                self._discard_object(storage_key)
                return shared
            self.metadata_store.put(record)
        except Exception:
            self._discard_object(storage_key)
            raise

        logger.info(f"Stored file {record.id} ({record.size} bytes, key {storage_key})")
        return record

    def _resolve_mime_type(self, reader: HashingReader, declared: str) -> str:
        """
        MIME type of an upload, from its leading bytes when recognizable.

        Raises:
            ValidationError: If the detected type is not allowed
        """
        if not self.config.mime_detection_enabled:
            return declared
        detected = sniff_mime_type(reader.peek(SNIFF_SIZE))
        if detected is None or detected == declared:
            return declared
        if not self.config.is_mime_type_allowed(detected):
            raise ValidationError(
                f"MIME type {detected} is not allowed (declared as {declared})"
            )
        logger.debug(f"Declared MIME type {declared} replaced by detected {detected}")
        return detected

    def _attach_duplicate(self, record: FileRecord) -> Optional[FileRecord]:
        if not self.config.deduplication_enabled:
            return None
        existing = self.metadata_store.find_by_hash(record.content_hash, mime_type=record.mime_type)
        if existing is None:
            return None

        shared = record.with_storage_key(existing.storage_key)
        if not self.metadata_store.attach(shared):
            # Last reference vanished concurrently; keep the fresh copy
            logger.debug(f"Object {existing.storage_key} no longer referenced, not deduplicating")
            return None

        logger.info(f"Stored file {shared.id} as duplicate of key {shared.storage_key}")
        return shared

    def _discard_object(self, storage_key: str) -> None:
        try:
            self.byte_store.delete(storage_key)
        except DomainError as e:
            logger.warning(f"Failed to discard object {storage_key}, left for reconciliation: {e}")

    # Read

    def _get_live_record(self, record_id: str) -> FileRecord:
        record = self.metadata_store.get(record_id)
        if record is None:
            raise NotFoundError(f"File not found: {record_id}")
        if record.is_expired(self._clock()):
            raise FileExpiredError(f"File expired: {record_id}")
        return record

    def get_info(self, record_id: str) -> FileRecord:
        """
        Get the record of a live file.

        Raises:
            NotFoundError: If unknown or expired (FileExpiredError)
        """
        return self._get_live_record(record_id)

    def download(self, record_id: str, byte_range: Optional[ByteRange] = None,
                 cancel: Optional[CancellationToken] = None) -> Tuple[BinaryIO, FileRecord]:
        """
        Open a live file for streaming.

        Expiry is checked at read time, so a record that expired but was not
        swept yet is not served. The caller closes the returned stream.

        Returns:
            (stream, record)

        Raises:
            NotFoundError: If unknown, expired, or its bytes are missing
            ValidationError: If the range starts past the end of the file
        """
        record = self._get_live_record(record_id)
        if byte_range is not None and byte_range.offset >= record.size:
            raise ValidationError(
                f"Range offset {byte_range.offset} is past the end of {record.size} bytes"
            )
        try:
            stream = self.byte_store.open_range_stream(record.storage_key, byte_range, cancel=cancel)
        except ObjectNotFoundError:
            logger.error(f"Bytes missing for file {record_id} (key {record.storage_key})")
            raise
        return stream, record

    def read_bytes(self, record_id: str, cancel: Optional[CancellationToken] = None) -> bytes:
        """Read a whole live file into memory."""
        record = self._get_live_record(record_id)
        return self.byte_store.read(record.storage_key, cancel=cancel)

    def exists(self, record_id: str, include_expired: bool = False) -> bool:
        """
        Check whether a file can be served.

        Args:
            record_id: Record id
            include_expired: Also report records that expired but were not
                swept yet

        Returns:
            True if the record exists, is live (unless ``include_expired``)
            and its bytes are present
        """
        record = self.metadata_store.get(record_id)
        if record is None:
            return False
        if not include_expired and record.is_expired(self._clock()):
            return False
        return self.byte_store.exists(record.storage_key)

    # Delete

    def delete_by_id(self, record_id: str,
                     cancel: Optional[CancellationToken] = None) -> FileRecord:
        """
        Delete a record, then its bytes once nothing references them.

        Expired records can be deleted too. A byte store failure after the
        record is gone is logged only; the object becomes an orphan.

        Returns:
            The deleted record

        Raises:
            NotFoundError: If no record has this id
            BackendError: If the metadata store fails
        """
        record, _freed = self._delete(record_id, cancel)
        return record

    def reclaim(self, record_id: str, cancel: Optional[CancellationToken] = None) -> int:
        """
        Delete a record like delete_by_id() and report the space released.

        Returns:
            Bytes freed in the byte store; 0 while another record still
            shares the object or when deleting the object failed. Records
            sharing one object that are deleted concurrently may both
            report it.
        """
        _record, freed = self._delete(record_id, cancel)
        return freed

    def _delete(self, record_id: str,
                cancel: Optional[CancellationToken]) -> Tuple[FileRecord, int]:
        check_cancelled(cancel)
        record = self.metadata_store.delete(record_id)
        if record is None:
            raise NotFoundError(f"File not found: {record_id}")

        freed = 0
        try:
            if self.metadata_store.references(record.storage_key) == 0:
                self.byte_store.delete(record.storage_key, cancel=cancel)
                freed = record.size
        except (BackendError, OperationCancelledError) as e:
            logger.warning(
                f"Record {record_id} deleted but object {record.storage_key} was not: {e}"
            )

        logger.debug(f"Deleted file {record_id}")
        return record, freed

    # Queries

    def search(self, search_filter: SearchFilter) -> SearchResult:
        return self.metadata_store.search(search_filter, now=self._clock())

    def stats(self) -> AggregateStats:
        return self.metadata_store.stats()

    def verify_integrity(self, record_id: str,
                         cancel: Optional[CancellationToken] = None) -> bool:
        """
        Re-hash the stored bytes of a record and compare with its content hash.

        Returns:
            True if the bytes are present and match

        Raises:
            NotFoundError: If no record has this id
        """
        record = self.metadata_store.get(record_id)
        if record is None:
            raise NotFoundError(f"File not found: {record_id}")

        try:
            stream = self.byte_store.open_range_stream(record.storage_key, cancel=cancel)
        except ObjectNotFoundError:
            logger.warning(f"Integrity check failed for {record_id}: object {record.storage_key} missing")
            return False
        try:
            actual = ContentHasher.hash_stream(stream, cancel=cancel)
        finally:
            stream.close()

        if not ContentHasher.compare(actual, record.content_hash):
            logger.warning(f"Integrity check failed for {record_id}: hash mismatch")
            return False
        return True

    def health(self) -> StorageHealth:
        """Availability of both stores plus the current totals."""
        byte_store_healthy = self.byte_store.health_check()
        metadata_store_healthy = self.metadata_store.health_check()

        stats = AggregateStats()
        if metadata_store_healthy:
            try:
                stats = self.metadata_store.stats()
            except BackendError as e:
                logger.warning(f"Could not read storage statistics: {e}")
                metadata_store_healthy = False

        return StorageHealth(
            is_available=byte_store_healthy and metadata_store_healthy,
            byte_store_healthy=byte_store_healthy,
            metadata_store_healthy=metadata_store_healthy,
            file_count=stats.total_files,
            used_space=stats.total_size,
            last_checked=self._clock(),
        )

    # Reconciliation

    def reconcile_orphans(self, cancel: Optional[CancellationToken] = None) -> ReconcileResult:
        """
        Delete objects that no record references.

        Keys are enumerated lazily and checked against the metadata store one
        page at a time. Objects younger than ``orphan_grace_seconds`` are
        skipped: they may belong to an upload whose record is not written yet.
        Afterwards the byte store purges leftovers of interrupted writes that
        are older than the same grace period.

        Returns:
            ReconcileResult with deleted, failed and skipped counts and the
            bytes freed

        Raises:
            BackendError: If listing keys or the reference lookup fails
            OperationCancelledError: If cancelled
        """
        grace = timedelta(seconds=self.config.orphan_grace_seconds)
        now = self._clock()
        deleted = failed = skipped = freed = 0

        for page in _pages(self.byte_store.list_keys(cancel=cancel), RECONCILE_PAGE_SIZE):
            check_cancelled(cancel)
            referenced = self.metadata_store.referenced_keys(page)
            for key in page:
                if key in referenced:
                    continue
                try:
                    meta = self.byte_store.get_meta(key, cancel=cancel)
                    if self._is_recent(meta, now, grace):
                        skipped += 1
                        continue
                    self.byte_store.delete(key, cancel=cancel)
                    deleted += 1
                    freed += meta.size
                except ObjectNotFoundError:
                    continue
                except OperationCancelledError:
                    raise
                except DomainError as e:
                    failure = ReconciliationFailure(key, e)
                    logger.warning(f"{failure}: {e}")
                    failed += 1

        check_cancelled(cancel)
        try:
            purged = self.byte_store.purge_stale(now - grace, cancel=cancel)
            deleted += purged.deleted_count
            failed += purged.failed_count
            freed += purged.freed_bytes
        except OperationCancelledError:
            raise
        except DomainError as e:
            logger.warning(f"Failed to purge stale staging files: {e}")
            failed += 1

        if deleted or failed:
            logger.info(
                f"Reconciled orphans - deleted: {deleted}, failed: {failed}, "
                f"skipped: {skipped}, freed: {freed} bytes"
            )
        return ReconcileResult(
            deleted_count=deleted,
            failed_count=failed,
            skipped_count=skipped,
            freed_bytes=freed,
        )

    @staticmethod
    def _is_recent(meta: ObjectMeta, now: datetime, grace: timedelta) -> bool:
        if not grace or meta.last_modified is None:
            return False
        return now - meta.last_modified < grace

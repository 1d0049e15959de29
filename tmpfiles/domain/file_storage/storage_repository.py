"""
Byte Store Interface

Abstract interface for raw object storage operations.
This abstraction lets the orchestrator stay infrastructure-agnostic by
defining the contract for blob operations without depending on a specific
backend (local filesystem, S3-compatible object store).
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import BinaryIO, Dict, Iterator, Optional

from tmpfiles.domain.cancellation import CancellationToken

from .value_objects import ByteRange, ObjectMeta, ReconcileResult


class IByteStore(ABC):
    """
    Unified interface for byte blob storage.

    Contract Guarantees:
    - save() streams its input; the whole payload is never held in memory
    - save() never leaves a partially written object visible to read paths
    - delete() is idempotent: a missing key is not an error
    - list_keys() is lazy so it stays usable with unbounded key spaces

    Errors:
    - ObjectNotFoundError for a missing key on read/open_range_stream/get_meta
    - PayloadTooLargeError when the stream outgrows ``declared_size``
    - OperationCancelledError when the cancellation token fires
    - BackendError for any other I/O failure

    Thread Safety:
    - Implementations must be safe for concurrent calls on distinct keys
    """

    @abstractmethod
    def save(self, stream: BinaryIO, key: str, mime_type: str,
             declared_size: Optional[int] = None,
             meta: Optional[Dict[str, str]] = None,
             cancel: Optional[CancellationToken] = None) -> str:
        """
        Stream content into storage under ``key``.

        Args:
            stream: Binary file-like object, read until exhausted
            key: Destination key (e.g. a uuid)
            mime_type: Content type stored with the object
            declared_size: Upper bound on the number of bytes accepted
            meta: Optional string metadata stored with the object
            cancel: Optional cancellation token

        Returns:
            The key the object was stored under

        Notes:
            - The object becomes visible only once fully written
            - On overflow or cancellation nothing durable is left behind
        """
        pass  # pragma: no cover

    @abstractmethod
    def read(self, key: str, cancel: Optional[CancellationToken] = None) -> bytes:
        """
        Read a whole object into memory.

        Args:
            key: Object key

        Returns:
            Object content
        """
        pass  # pragma: no cover

    @abstractmethod
    def open_range_stream(self, key: str, byte_range: Optional[ByteRange] = None,
                          cancel: Optional[CancellationToken] = None) -> BinaryIO:
        """
        Open a binary stream over an object or a byte range of it.

        The caller is responsible for closing the stream.

        Args:
            key: Object key
            byte_range: Optional range; None streams the whole object

        Returns:
            Readable binary stream
        """
        pass  # pragma: no cover

    @abstractmethod
    def get_meta(self, key: str, cancel: Optional[CancellationToken] = None) -> ObjectMeta:
        """
        Fetch object metadata without reading its content.

        Returns:
            ObjectMeta with size, content type, modification time and metadata
        """
        pass  # pragma: no cover

    @abstractmethod
    def delete(self, key: str, cancel: Optional[CancellationToken] = None) -> None:
        """
        Delete an object. Deleting a missing key succeeds silently.
        """
        pass  # pragma: no cover

    @abstractmethod
    def list_keys(self, prefix: Optional[str] = None,
                  cancel: Optional[CancellationToken] = None) -> Iterator[str]:
        """
        Lazily enumerate stored keys.

        Args:
            prefix: Only yield keys starting with this prefix

        Returns:
            Iterator of keys, fetched page by page
        """
        pass  # pragma: no cover

    @abstractmethod
    def exists(self, key: str, cancel: Optional[CancellationToken] = None) -> bool:
        """Check whether an object exists under ``key``."""
        pass  # pragma: no cover

    @abstractmethod
    def purge_stale(self, older_than: datetime,
                    cancel: Optional[CancellationToken] = None) -> ReconcileResult:
        """
        Remove leftovers of writes that never completed.

        These live outside the key space, so list_keys() never yields them:
        staging files of a killed upload, metadata of an object that is gone,
        unfinished multipart uploads. Anything newer than ``older_than`` may
        belong to a write in progress and is kept.

        Returns:
            ReconcileResult with deleted and failed counts and bytes freed
        """
        pass  # pragma: no cover

    @abstractmethod
    def health_check(self) -> bool:
        """Return True when the backend is reachable. Never raises."""
        pass  # pragma: no cover

"""
File Storage Value Objects

Immutable value objects passed between the orchestrator and the stores.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import BinaryIO, Dict, List, Optional

from tmpfiles.domain.errors import ValidationError

from .entities import FileRecord


@dataclass(frozen=True)
class ByteRange:
    """
    Value object representing a byte range for partial reads.

    ``length`` of None means "to the end of the object".
    """
    offset: int = 0
    length: Optional[int] = None

    def __post_init__(self):
        if self.offset < 0:
            raise ValidationError(f"Range offset must be >= 0, got {self.offset}")
        if self.length is not None and self.length <= 0:
            raise ValidationError(f"Range length must be > 0, got {self.length}")

    @property
    def end(self) -> Optional[int]:
        """Inclusive last byte index, or None for an open range."""
        if self.length is None:
            return None
        return self.offset + self.length - 1

    def to_http_header(self) -> str:
        """Render as an HTTP/S3 ``Range`` header value."""
        end = "" if self.end is None else str(self.end)
        return f"bytes={self.offset}-{end}"


@dataclass
class UploadedFile:
    """
    An incoming upload as handed over by the HTTP layer.

    ``size`` is the size declared by the client, if any. The stream is read
    exactly once.
    """
    original_name: str
    mime_type: str
    stream: BinaryIO
    size: Optional[int] = None


@dataclass(frozen=True)
class SearchFilter:
    """Metadata search parameters."""
    mime_type: Optional[str] = None
    min_size: Optional[int] = None
    max_size: Optional[int] = None
    uploaded_after: Optional[datetime] = None
    uploaded_before: Optional[datetime] = None
    expired_only: bool = False
    limit: Optional[int] = None
    offset: int = 0


@dataclass
class SearchResult:
    """One page of search results plus the total match count."""
    records: List[FileRecord]
    total: int
    filter: SearchFilter = field(default_factory=SearchFilter)


@dataclass(frozen=True)
class ObjectMeta:
    """Metadata about a stored byte object."""
    key: str
    size: int
    mime_type: Optional[str] = None
    last_modified: Optional[datetime] = None
    metadata: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ReconcileResult:
    """Outcome of an orphan reconciliation pass."""
    deleted_count: int = 0
    failed_count: int = 0
    skipped_count: int = 0
    freed_bytes: int = 0


@dataclass(frozen=True)
class StorageHealth:
    """Combined availability of both stores."""
    is_available: bool
    byte_store_healthy: bool
    metadata_store_healthy: bool
    file_count: int
    used_space: int
    last_checked: datetime

    def to_dict(self) -> dict:
        return {
            "isAvailable": self.is_available,
            "byteStore": self.byte_store_healthy,
            "metadataStore": self.metadata_store_healthy,
            "fileCount": self.file_count,
            "usedSpace": self.used_space,
            "lastChecked": self.last_checked.isoformat(),
        }

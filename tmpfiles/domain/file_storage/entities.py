"""
File Storage Entities

Domain entities for stored file metadata and aggregate statistics.
"""

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from .filename import generate_stored_name


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def _parse_datetime(value) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def date_bucket(moment: datetime) -> str:
    """Upload date bucket used by the statistics (UTC ``YYYY-MM-DD``)."""
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%d")


@dataclass(frozen=True)
class FileRecord:
    """
    Entity representing one stored object's metadata.

    Records are immutable: ``expires_at`` is derived from ``uploaded_at`` and
    ``ttl_seconds`` once, at creation. Several records may share one
    ``storage_key`` when their content was deduplicated.
    """
    id: str
    original_name: str
    stored_name: str
    mime_type: str
    size: int
    content_hash: str
    storage_key: str
    uploaded_at: datetime
    ttl_seconds: int
    expires_at: datetime
    custom_metadata: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def create(cls, original_name: str, mime_type: str, size: int,
               content_hash: str, storage_key: str, ttl_seconds: int,
               custom_metadata: Optional[Dict[str, str]] = None,
               now: Optional[datetime] = None,
               record_id: Optional[str] = None) -> 'FileRecord':
        """
        Factory method to create a new record.

        Args:
            original_name: Client-supplied filename
            mime_type: MIME type of the content
            size: Number of bytes actually stored
            content_hash: Hex SHA-256 of the stored bytes
            storage_key: Byte store key holding the bytes
            ttl_seconds: Time to live in seconds
            custom_metadata: Caller-supplied string mapping
            now: Upload time (defaults to the current UTC time)
            record_id: Explicit id (defaults to a new uuid4)

        Returns:
            New FileRecord instance
        """
        uploaded_at = now or utcnow()
        record_id = record_id or str(uuid.uuid4())
        return cls(
            id=record_id,
            original_name=original_name,
            stored_name=generate_stored_name(record_id, original_name),
            mime_type=mime_type,
            size=size,
            content_hash=content_hash,
            storage_key=storage_key,
            uploaded_at=uploaded_at,
            ttl_seconds=ttl_seconds,
            expires_at=uploaded_at + timedelta(seconds=ttl_seconds),
            custom_metadata=dict(custom_metadata or {}),
        )

    def with_storage_key(self, storage_key: str) -> 'FileRecord':
        """Return a copy pointing at a different storage key."""
        return replace(self, storage_key=storage_key)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """
        Check if the record has expired.

        Returns:
            True once ``now`` is strictly past ``expires_at``
        """
        return (now or utcnow()) > self.expires_at

    def get_remaining_seconds(self, now: Optional[datetime] = None) -> int:
        """
        Get remaining seconds until expiration.

        Returns:
            Seconds remaining (0 if expired)
        """
        remaining = self.expires_at - (now or utcnow())
        return max(0, int(remaining.total_seconds()))

    @property
    def upload_date(self) -> str:
        return date_bucket(self.uploaded_at)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "originalName": self.original_name,
            "storedName": self.stored_name,
            "mimeType": self.mime_type,
            "size": self.size,
            "contentHash": self.content_hash,
            "storageKey": self.storage_key,
            "uploadedAt": self.uploaded_at.isoformat(),
            "ttlSeconds": self.ttl_seconds,
            "expiresAt": self.expires_at.isoformat(),
            "customMetadata": dict(self.custom_metadata),
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'FileRecord':
        """Create FileRecord from dictionary."""
        return cls(
            id=data["id"],
            original_name=data["originalName"],
            stored_name=data.get("storedName") or data["id"],
            mime_type=data["mimeType"],
            size=int(data["size"]),
            content_hash=data["contentHash"],
            storage_key=data["storageKey"],
            uploaded_at=_parse_datetime(data["uploadedAt"]),
            ttl_seconds=int(data["ttlSeconds"]),
            expires_at=_parse_datetime(data["expiresAt"]),
            custom_metadata=dict(data.get("customMetadata") or {}),
        )


@dataclass
class AggregateStats:
    """
    Derived statistics over all live records.

    Always recomputable from the record set; stores that maintain it
    incrementally update it atomically with each put/delete.
    """
    total_files: int = 0
    total_size: int = 0
    files_by_mime_type: Dict[str, int] = field(default_factory=dict)
    files_by_date: Dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_records(cls, records) -> 'AggregateStats':
        stats = cls()
        for record in records:
            stats.add(record)
        return stats

    def add(self, record: FileRecord) -> None:
        self.total_files += 1
        self.total_size += record.size
        self._bump(self.files_by_mime_type, record.mime_type, 1)
        self._bump(self.files_by_date, record.upload_date, 1)

    def remove(self, record: FileRecord) -> None:
        self.total_files -= 1
        self.total_size -= record.size
        self._bump(self.files_by_mime_type, record.mime_type, -1)
        self._bump(self.files_by_date, record.upload_date, -1)

    @staticmethod
    def _bump(counter: Dict[str, int], key: str, delta: int) -> None:
        value = counter.get(key, 0) + delta
        if value > 0:
            counter[key] = value
        else:
            counter.pop(key, None)

    def to_dict(self) -> dict:
        return {
            "totalFiles": self.total_files,
            "totalSize": self.total_size,
            "filesByMimeType": dict(self.files_by_mime_type),
            "filesByDate": dict(self.files_by_date),
        }

"""
File Storage Domain

Handles stored file records, content hashing and the store contracts.
"""

from .entities import AggregateStats, FileRecord
from .hashing import ContentHasher, HashingReader
from .repositories import IMetadataStore
from .storage_repository import IByteStore
from .value_objects import (
    ByteRange,
    ObjectMeta,
    ReconcileResult,
    SearchFilter,
    SearchResult,
    StorageHealth,
    UploadedFile,
)

__all__ = [
    "AggregateStats",
    "ByteRange",
    "ContentHasher",
    "FileRecord",
    "HashingReader",
    "IByteStore",
    "IMetadataStore",
    "ObjectMeta",
    "ReconcileResult",
    "SearchFilter",
    "SearchResult",
    "StorageHealth",
    "UploadedFile",
]

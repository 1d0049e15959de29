"""
Storage Configuration

Immutable settings for the storage core, read from the environment.
Values are validated once at construction and treated as opaque inputs
afterwards.
"""

import json
import os
from dataclasses import dataclass, field
from typing import Optional, Tuple

BYTE_STORE_BACKENDS = ("fs", "s3")
METADATA_BACKENDS = ("fs", "redis")


def env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {value!r}") from e


def parse_mime_types(raw: Optional[str]) -> Tuple[str, ...]:
    """
    Parse an allow-list given either as a JSON array or a comma separated list.

    An empty or missing value means every MIME type is allowed.
    """
    if raw is None or not raw.strip():
        return ()
    raw = raw.strip()
    if raw.startswith("["):
        try:
            values = json.loads(raw)
        except ValueError as e:
            raise ValueError(f"ALLOWED_MIME_TYPES is not a valid JSON array: {e}") from e
        if not isinstance(values, list):
            raise ValueError("ALLOWED_MIME_TYPES JSON value must be an array")
    else:
        values = raw.split(",")
    return tuple(str(v).strip().lower() for v in values if str(v).strip())


@dataclass(frozen=True)
class S3Config:
    """S3-compatible object store settings."""
    bucket: str = ""
    endpoint_url: Optional[str] = None
    region: str = "us-east-1"
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None
    force_path_style: bool = False

    @classmethod
    def from_env(cls) -> 'S3Config':
        return cls(
            bucket=os.getenv("S3_BUCKET", ""),
            endpoint_url=os.getenv("S3_ENDPOINT") or None,
            region=os.getenv("S3_REGION", "us-east-1"),
            access_key_id=os.getenv("S3_ACCESS_KEY_ID") or None,
            secret_access_key=os.getenv("S3_SECRET_ACCESS_KEY") or None,
            force_path_style=env_bool("S3_FORCE_PATH_STYLE", False),
        )


@dataclass(frozen=True)
class StorageConfig:
    """
    Storage core settings.

    Attributes:
        max_file_size: Largest accepted upload in bytes
        allowed_mime_types: Allow-list; empty allows every type
        ttl_min_seconds: Smallest accepted TTL
        ttl_max_seconds: Largest accepted TTL
        deduplication_enabled: Share stored bytes between identical uploads
        mime_detection_enabled: Identify uploads by their leading bytes
        cleanup_interval_minutes: Period of the scheduled lifecycle sweep
        byte_store_backend: ``fs`` or ``s3``
        metadata_backend: ``fs`` or ``redis``
        storage_dir: Root directory of the filesystem backends
        cleanup_batch_size: Expired records fetched per sweep batch
        cleanup_max_per_cycle: Upper bound of records handled per sweep
        cleanup_concurrency: Parallel deletions during a sweep
        orphan_grace_seconds: Minimum age before an unreferenced object is reaped
    """
    max_file_size: int = 100 * 1024 * 1024
    allowed_mime_types: Tuple[str, ...] = ()
    ttl_min_seconds: int = 60
    ttl_max_seconds: int = 44640 * 60
    deduplication_enabled: bool = True
    mime_detection_enabled: bool = True
    cleanup_interval_minutes: int = 10
    byte_store_backend: str = "fs"
    metadata_backend: str = "fs"
    storage_dir: str = "/tmp/tmpfiles"
    cleanup_batch_size: int = 100
    cleanup_max_per_cycle: int = 1000
    cleanup_concurrency: int = 10
    orphan_grace_seconds: int = 60
    s3: S3Config = field(default_factory=S3Config)

    def __post_init__(self):
        if self.max_file_size <= 0:
            raise ValueError("max_file_size must be positive")
        if self.ttl_min_seconds <= 0:
            raise ValueError("ttl_min_seconds must be positive")
        if self.ttl_max_seconds < self.ttl_min_seconds:
            raise ValueError("ttl_max_seconds must be >= ttl_min_seconds")
        if self.cleanup_interval_minutes <= 0:
            raise ValueError("cleanup_interval_minutes must be positive")
        if self.byte_store_backend not in BYTE_STORE_BACKENDS:
            raise ValueError(
                f"byte_store_backend must be one of {BYTE_STORE_BACKENDS}, "
                f"got {self.byte_store_backend!r}"
            )
        if self.metadata_backend not in METADATA_BACKENDS:
            raise ValueError(
                f"metadata_backend must be one of {METADATA_BACKENDS}, "
                f"got {self.metadata_backend!r}"
            )
        if self.byte_store_backend == "s3" and not self.s3.bucket:
            raise ValueError("S3_BUCKET is required when STORAGE_BACKEND=s3")
        for name in ("cleanup_batch_size", "cleanup_max_per_cycle", "cleanup_concurrency"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.orphan_grace_seconds < 0:
            raise ValueError("orphan_grace_seconds must be >= 0")

    @classmethod
    def from_env(cls) -> 'StorageConfig':
        """
        Build the configuration from environment variables.

        Environment Variables:
            MAX_FILE_SIZE_MB: Largest upload in MiB (default: 100)
            ALLOWED_MIME_TYPES: JSON array or comma separated list (default: all)
            MIN_TTL_SEC: Smallest TTL in seconds (default: 60)
            MAX_TTL_MIN: Largest TTL in minutes (default: 44640, 31 days)
            ENABLE_DEDUPLICATION: true/false (default: true)
            ENABLE_MIME_DETECTION: true/false (default: true)
            CLEANUP_INTERVAL_MIN: Sweep period in minutes (default: 10)
            STORAGE_BACKEND: fs or s3 (default: fs)
            METADATA_BACKEND: fs or redis (default: fs)
            STORAGE_DIR: Filesystem root (default: /tmp/tmpfiles)
            CLEANUP_BATCH_SIZE, CLEANUP_MAX_PER_CYCLE, CLEANUP_CONCURRENCY,
            ORPHAN_GRACE_SEC: Sweeper tuning

        Raises:
            ValueError: If a value is malformed or out of range
        """
        return cls(
            max_file_size=env_int("MAX_FILE_SIZE_MB", 100) * 1024 * 1024,
            allowed_mime_types=parse_mime_types(os.getenv("ALLOWED_MIME_TYPES")),
            ttl_min_seconds=env_int("MIN_TTL_SEC", 60),
            ttl_max_seconds=env_int("MAX_TTL_MIN", 44640) * 60,
            deduplication_enabled=env_bool("ENABLE_DEDUPLICATION", True),
            mime_detection_enabled=env_bool("ENABLE_MIME_DETECTION", True),
            cleanup_interval_minutes=env_int("CLEANUP_INTERVAL_MIN", 10),
            byte_store_backend=os.getenv("STORAGE_BACKEND", "fs").strip().lower(),
            metadata_backend=os.getenv("METADATA_BACKEND", "fs").strip().lower(),
            storage_dir=os.getenv("STORAGE_DIR", "/tmp/tmpfiles"),
            cleanup_batch_size=env_int("CLEANUP_BATCH_SIZE", 100),
            cleanup_max_per_cycle=env_int("CLEANUP_MAX_PER_CYCLE", 1000),
            cleanup_concurrency=env_int("CLEANUP_CONCURRENCY", 10),
            orphan_grace_seconds=env_int("ORPHAN_GRACE_SEC", 60),
            s3=S3Config.from_env(),
        )

    def is_mime_type_allowed(self, mime_type: str) -> bool:
        if not self.allowed_mime_types:
            return True
        return (mime_type or "").strip().lower() in self.allowed_mime_types

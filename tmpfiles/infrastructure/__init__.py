"""Infrastructure layer for filesystem, Redis and S3 backends."""

from .file_metadata_repository import FileMetadataStore
from .local_file_storage_repository import LocalByteStore
from .redis_metadata_repository import RedisMetadataStore
from .redis_repository import try_distributed_lock
from .s3_storage_repository import S3ByteStore
from .storage_factory import StorageFactory

__all__ = [
    "FileMetadataStore",
    "LocalByteStore",
    "RedisMetadataStore",
    "try_distributed_lock",
    "S3ByteStore",
    "StorageFactory",
]

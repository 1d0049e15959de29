"""
Storage Factory

Factory for creating the byte store and metadata store implementations.

Backends are selected once, at construction, from StorageConfig. The
application layer depends only on the IByteStore and IMetadataStore
interfaces, never on the concrete classes.
"""

import logging
from typing import Optional

import boto3
import redis
from botocore.config import Config as BotoConfig

from tmpfiles.config.storage_config import S3Config, StorageConfig
from tmpfiles.domain.file_storage.repositories import IMetadataStore
from tmpfiles.domain.file_storage.storage_repository import IByteStore
from tmpfiles.infrastructure.file_metadata_repository import FileMetadataStore
from tmpfiles.infrastructure.local_file_storage_repository import LocalByteStore
from tmpfiles.infrastructure.redis_metadata_repository import (
    DEFAULT_KEY_PREFIX,
    RedisMetadataStore,
)
from tmpfiles.infrastructure.s3_storage_repository import S3ByteStore

logger = logging.getLogger(__name__)


class StorageFactory:
    """
    Factory for creating storage implementations.

    Selection Logic:
    - STORAGE_BACKEND=s3 selects S3ByteStore, otherwise LocalByteStore
    - METADATA_BACKEND=redis selects RedisMetadataStore, otherwise FileMetadataStore
    """

    @staticmethod
    def create_byte_store(config: StorageConfig, s3_client=None) -> IByteStore:
        """
        Create the byte store selected by ``config.byte_store_backend``.

        Args:
            config: Storage configuration
            s3_client: Optional pre-built boto3 client (used for s3 only)

        Returns:
            IByteStore implementation
        """
        if config.byte_store_backend == "s3":
            client = s3_client or StorageFactory.create_s3_client(config.s3)
            logger.info(f"Storage factory: Using S3 bucket {config.s3.bucket}")
            return S3ByteStore(client, config.s3.bucket)

        logger.info(f"Storage factory: Using local filesystem storage at {config.storage_dir}")
        return LocalByteStore(config.storage_dir)

    @staticmethod
    def create_metadata_store(config: StorageConfig,
                              redis_client: Optional[redis.Redis] = None,
                              key_prefix: str = DEFAULT_KEY_PREFIX) -> IMetadataStore:
        """
        Create the metadata store selected by ``config.metadata_backend``.

        Args:
            config: Storage configuration
            redis_client: Redis client, required for the redis backend
            key_prefix: Redis key prefix

        Returns:
            Initialized IMetadataStore implementation

        Raises:
            ValueError: If the redis backend is selected without a client
        """
        if config.metadata_backend == "redis":
            if redis_client is None:
                raise ValueError("METADATA_BACKEND=redis requires a Redis client")
            store = RedisMetadataStore(redis_client, key_prefix=key_prefix)
            logger.info(f"Storage factory: Using Redis metadata store (prefix {key_prefix})")
        else:
            store = FileMetadataStore(config.storage_dir)
            logger.info(f"Storage factory: Using JSON metadata store at {config.storage_dir}")

        store.init()
        return store

    @staticmethod
    def create_s3_client(s3_config: S3Config):
        """
        Build a boto3 S3 client for AWS or an S3-compatible endpoint.
        """
        client_kwargs = {
            "region_name": s3_config.region,
            "config": BotoConfig(
                s3={"addressing_style": "path" if s3_config.force_path_style else "auto"},
                retries={"max_attempts": 3, "mode": "standard"},
            ),
        }
        if s3_config.endpoint_url:
            client_kwargs["endpoint_url"] = s3_config.endpoint_url
        if s3_config.access_key_id and s3_config.secret_access_key:
            client_kwargs["aws_access_key_id"] = s3_config.access_key_id
            client_kwargs["aws_secret_access_key"] = s3_config.secret_access_key
        return boto3.client("s3", **client_kwargs)

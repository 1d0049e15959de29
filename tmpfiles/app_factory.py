"""
Application Factory

Creates and configures the Flask application carrying the storage services.
Route handlers live outside this package; they resolve services from
``app.container``.
"""

import logging
from typing import Optional

from flask import Flask

from tmpfiles.application.dependency_container import DependencyContainer
from tmpfiles.application.lifecycle_sweeper import LifecycleSweeper
from tmpfiles.application.storage_orchestrator import StorageOrchestrator
from tmpfiles.config.celery_config import make_celery
from tmpfiles.config.logging_config import configure_logging
from tmpfiles.config.redis_config import RedisConfig
from tmpfiles.config.storage_config import StorageConfig
from tmpfiles.domain.file_storage.repositories import IMetadataStore
from tmpfiles.domain.file_storage.storage_repository import IByteStore
from tmpfiles.infrastructure.storage_factory import StorageFactory

logger = logging.getLogger(__name__)


class AppConfig:
    """Application configuration."""

    def __init__(self, storage: Optional[StorageConfig] = None,
                 redis: Optional[RedisConfig] = None):
        self.storage = storage or StorageConfig.from_env()
        self.redis = redis or RedisConfig.from_env()


def create_app(config: Optional[AppConfig] = None, redis_client=None, s3_client=None) -> Flask:
    """
    Create and configure Flask application.

    Args:
        config: Application configuration, read from the environment if None
        redis_client: Pre-built Redis client (tests); created from RedisConfig
            when the redis metadata backend is selected and none is given
        s3_client: Pre-built boto3 S3 client (tests)

    Returns:
        Configured Flask application with ``container``, ``storage`` and ``celery``
    """
    configure_logging()

    if config is None:
        config = AppConfig()

    app = Flask(__name__)
    app.config["STORAGE_CONFIG"] = config.storage

    _initialize_celery(app, config)
    _initialize_services(app, config, redis_client, s3_client)

    return app


def _initialize_celery(app: Flask, config: AppConfig) -> None:
    try:
        app.celery = make_celery(app, config.storage)
        logger.info("Celery initialized successfully")
    except Exception as e:
        logger.warning(f"Could not initialize Celery: {e}")
        app.celery = None


def _initialize_services(app: Flask, config: AppConfig, redis_client=None, s3_client=None) -> None:
    """
    Build the stores eagerly and register them in a DependencyContainer.

    The stores are built here so a misconfigured backend fails at startup.
    The sweeper is registered as a lazy singleton: web processes never
    build it, Celery workers build it on their first sweep.

    Raises:
        ValueError: If the configuration selects an unusable backend
        BackendError: If a store cannot be initialized
    """
    storage_config = config.storage

    if redis_client is None and storage_config.metadata_backend == "redis":
        redis_client = config.redis.create_client()
        logger.info("Redis client created")

    byte_store = StorageFactory.create_byte_store(storage_config, s3_client=s3_client)
    metadata_store = StorageFactory.create_metadata_store(
        storage_config, redis_client=redis_client, key_prefix=config.redis.key_prefix
    )

    container = DependencyContainer()
    container.register_instance(StorageConfig, storage_config)
    container.register_instance(IByteStore, byte_store)
    container.register_instance(IMetadataStore, metadata_store)
    container.register_factory(
        StorageOrchestrator,
        lambda: StorageOrchestrator(
            container.resolve(IByteStore),
            container.resolve(IMetadataStore),
            container.resolve(StorageConfig),
        ),
    )
    container.register_factory(
        LifecycleSweeper,
        lambda: LifecycleSweeper(
            container.resolve(StorageOrchestrator),
            container.resolve(StorageConfig),
            redis_client=redis_client,
            lock_name=f"{config.redis.key_prefix}lock:lifecycle_sweep",
        ),
    )

    app.container = container
    app.storage = container.resolve(StorageOrchestrator)

    logger.info(
        f"Storage services initialized - byte store: {storage_config.byte_store_backend}, "
        f"metadata store: {storage_config.metadata_backend}, "
        f"{len(container)} registered services"
    )

"""Configuration read from the environment."""

from .logging_config import configure_logging
from .storage_config import S3Config, StorageConfig

__all__ = [
    "configure_logging",
    "S3Config",
    "StorageConfig",
]

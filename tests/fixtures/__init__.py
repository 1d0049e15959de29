"""
Test fixtures package.

Provides factory functions and test doubles for the storage tests.
"""

from .domain_fixtures import BASE_TIME, ManualClock, create_file_record
from .fake_s3 import FakeS3Client, client_error

__all__ = [
    "BASE_TIME",
    "ManualClock",
    "create_file_record",
    "FakeS3Client",
    "client_error",
]

"""
Shared pytest fixtures and configuration for the tmpfiles test suite.

This module provides:
- Hypothesis profiles (select with HYPOTHESIS_PROFILE)
- Store fixtures backed by pytest temporary directories
- A Redis client fixture that skips when no server is reachable
- Markers derived from the test directory
"""

import os
from pathlib import Path

import pytest
import redis
from hypothesis import HealthCheck, settings

from tmpfiles.application.storage_orchestrator import StorageOrchestrator
from tmpfiles.config.storage_config import StorageConfig
from tmpfiles.infrastructure.file_metadata_repository import FileMetadataStore
from tmpfiles.infrastructure.local_file_storage_repository import LocalByteStore

from tests.fixtures import ManualClock


for _profile, _examples in (("dev", 10), ("default", 100), ("ci", 200)):
    settings.register_profile(
        _profile,
        max_examples=_examples,
        deadline=None,
        suppress_health_check=[HealthCheck.too_slow, HealthCheck.function_scoped_fixture],
    )
settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "default"))


DIRECTORY_MARKERS = {
    "unit": "unit",
    "integration": "integration",
    "contracts": "contract",
    "property": "property",
}


@pytest.fixture
def storage_config(tmp_path) -> StorageConfig:
    """Default configuration rooted in a temporary directory."""
    return StorageConfig(storage_dir=str(tmp_path), orphan_grace_seconds=0)


@pytest.fixture
def byte_store(tmp_path) -> LocalByteStore:
    return LocalByteStore(str(tmp_path / "bytes"))


@pytest.fixture
def metadata_store(tmp_path) -> FileMetadataStore:
    store = FileMetadataStore(str(tmp_path / "metadata"))
    store.init()
    return store


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def orchestrator(byte_store, metadata_store, storage_config, clock) -> StorageOrchestrator:
    return StorageOrchestrator(byte_store, metadata_store, storage_config, clock=clock)


@pytest.fixture
def redis_client():
    """
    Yields a clean Redis client for integration testing.

    Uses REDIS_HOST/REDIS_PORT and a dedicated database (REDIS_TEST_DB,
    default 15) that is flushed before and after each test.
    """
    host = os.getenv("REDIS_HOST", "localhost")
    port = int(os.getenv("REDIS_PORT", 6379))
    db = int(os.getenv("REDIS_TEST_DB", 15))

    client = redis.Redis(host=host, port=port, db=db, decode_responses=True)

    try:
        client.ping()
    except redis.RedisError:
        pytest.skip("Redis service not available. Skipping Redis tests.")

    client.flushdb()

    yield client

    client.flushdb()
    client.close()


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast tests without external services")
    config.addinivalue_line("markers", "integration: tests that may need Redis")
    config.addinivalue_line("markers", "contract: shared suites run against every store backend")
    config.addinivalue_line("markers", "property: Hypothesis property tests")


def pytest_collection_modifyitems(config, items):
    """Mark each test after the tests/ subdirectory it lives in."""
    for item in items:
        parts = Path(str(item.fspath)).parts
        below_tests = parts[parts.index("tests") + 1:] if "tests" in parts else parts
        for part in below_tests:
            marker = DIRECTORY_MARKERS.get(part)
            if marker:
                item.add_marker(getattr(pytest.mark, marker))
                break

"""
Unit tests for StorageConfig and environment parsing.
"""

import pytest

from tmpfiles.config.storage_config import StorageConfig, parse_mime_types

ENV_VARS = (
    "MAX_FILE_SIZE_MB", "ALLOWED_MIME_TYPES", "MIN_TTL_SEC", "MAX_TTL_MIN",
    "ENABLE_DEDUPLICATION", "CLEANUP_INTERVAL_MIN", "STORAGE_BACKEND",
    "METADATA_BACKEND", "STORAGE_DIR", "CLEANUP_BATCH_SIZE",
    "CLEANUP_MAX_PER_CYCLE", "CLEANUP_CONCURRENCY", "ORPHAN_GRACE_SEC",
    "ENABLE_MIME_DETECTION",
    "S3_BUCKET", "S3_ENDPOINT", "S3_FORCE_PATH_STYLE",
)


@pytest.fixture
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestStorageConfigFromEnv:

    def test_defaults(self, clean_env):
        config = StorageConfig.from_env()

        assert config.max_file_size == 100 * 1024 * 1024
        assert config.allowed_mime_types == ()
        assert config.ttl_min_seconds == 60
        assert config.ttl_max_seconds == 44640 * 60
        assert config.deduplication_enabled is True
        assert config.cleanup_interval_minutes == 10
        assert config.byte_store_backend == "fs"
        assert config.metadata_backend == "fs"
        assert config.cleanup_concurrency == 10
        assert config.orphan_grace_seconds == 60
        assert config.mime_detection_enabled is True

    def test_overrides(self, clean_env):
        clean_env.setenv("MAX_FILE_SIZE_MB", "5")
        clean_env.setenv("ENABLE_DEDUPLICATION", "false")
        clean_env.setenv("MAX_TTL_MIN", "60")
        clean_env.setenv("METADATA_BACKEND", "Redis")
        clean_env.setenv("STORAGE_BACKEND", "s3")
        clean_env.setenv("S3_BUCKET", "uploads")
        clean_env.setenv("S3_FORCE_PATH_STYLE", "1")

        config = StorageConfig.from_env()

        assert config.max_file_size == 5 * 1024 * 1024
        assert config.deduplication_enabled is False
        assert config.ttl_max_seconds == 3600
        assert config.metadata_backend == "redis"
        assert config.s3.bucket == "uploads"
        assert config.s3.force_path_style is True

    def test_malformed_integer_rejected(self, clean_env):
        clean_env.setenv("CLEANUP_CONCURRENCY", "ten")

        with pytest.raises(ValueError, match="CLEANUP_CONCURRENCY"):
            StorageConfig.from_env()


class TestStorageConfigValidation:

    @pytest.mark.parametrize("kwargs", [
        {"max_file_size": 0},
        {"ttl_min_seconds": 120, "ttl_max_seconds": 60},
        {"byte_store_backend": "gcs"},
        {"metadata_backend": "sql"},
        {"byte_store_backend": "s3"},
        {"cleanup_concurrency": 0},
        {"orphan_grace_seconds": -1},
    ])
    def test_invalid_values_rejected(self, kwargs):
        with pytest.raises(ValueError):
            StorageConfig(**kwargs)

    def test_config_is_immutable(self):
        config = StorageConfig()
        with pytest.raises(AttributeError):
            config.max_file_size = 1

    def test_mime_allow_list(self):
        config = StorageConfig(allowed_mime_types=("image/png",))

        assert config.is_mime_type_allowed("IMAGE/PNG")
        assert not config.is_mime_type_allowed("text/plain")
        assert StorageConfig().is_mime_type_allowed("anything/at-all")


class TestParseMimeTypes:

    @pytest.mark.parametrize("raw,expected", [
        (None, ()),
        ("", ()),
        ('["image/png", "text/plain"]', ("image/png", "text/plain")),
        ("image/png, Text/Plain,", ("image/png", "text/plain")),
    ])
    def test_formats(self, raw, expected):
        assert parse_mime_types(raw) == expected

    def test_invalid_json_rejected(self):
        with pytest.raises(ValueError):
            parse_mime_types('["image/png"')

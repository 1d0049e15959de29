"""
Unit tests for RedisConfig.
"""

from unittest.mock import patch

from tmpfiles.config.redis_config import RedisConfig

ENV_VARS = (
    "REDIS_HOST", "REDIS_PORT", "REDIS_DB", "REDIS_PASSWORD", "REDIS_URL",
    "REDIS_MAX_CONNECTIONS", "REDIS_KEY_PREFIX",
)


class TestRedisConfig:

    def test_defaults_from_empty_environment(self, monkeypatch):
        for name in ENV_VARS:
            monkeypatch.delenv(name, raising=False)

        config = RedisConfig.from_env()

        assert config == RedisConfig()
        assert config.key_prefix == "tmp_files:"

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("REDIS_HOST", "cache")
        monkeypatch.setenv("REDIS_PORT", "6380")
        monkeypatch.setenv("REDIS_KEY_PREFIX", "staging:")

        config = RedisConfig.from_env()

        assert (config.host, config.port, config.key_prefix) == ("cache", 6380, "staging:")

    def test_url_takes_precedence(self):
        config = RedisConfig(host="ignored", url="redis://cache:6379/3")

        with patch("tmpfiles.config.redis_config.redis.ConnectionPool.from_url") as from_url:
            config.create_client()

        from_url.assert_called_once()
        assert from_url.call_args.args == ("redis://cache:6379/3",)
        assert from_url.call_args.kwargs["decode_responses"] is True

    def test_client_decodes_responses(self):
        client = RedisConfig(host="cache", db=2).create_client()

        kwargs = client.connection_pool.connection_kwargs
        assert kwargs["host"] == "cache"
        assert kwargs["db"] == 2
        assert kwargs["decode_responses"] is True

"""
Redis Configuration

Connection settings for the Redis metadata store and the sweeper lock.
"""

import os
from dataclasses import dataclass
from typing import Optional

import redis

from .storage_config import env_int


@dataclass(frozen=True)
class RedisConfig:
    """
    Redis connection settings.

    ``url`` (``redis://[:password@]host:port/db``) wins over the individual
    host/port/db/password fields when set.
    """
    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None
    url: Optional[str] = None
    max_connections: int = 20
    key_prefix: str = "tmp_files:"

    @classmethod
    def from_env(cls) -> 'RedisConfig':
        return cls(
            host=os.getenv("REDIS_HOST", "localhost"),
            port=env_int("REDIS_PORT", 6379),
            db=env_int("REDIS_DB", 0),
            password=os.getenv("REDIS_PASSWORD") or None,
            url=os.getenv("REDIS_URL") or None,
            max_connections=env_int("REDIS_MAX_CONNECTIONS", 20),
            key_prefix=os.getenv("REDIS_KEY_PREFIX", "tmp_files:"),
        )

    def create_client(self) -> redis.Redis:
        """Build a pooled client returning ``str`` responses."""
        if self.url:
            pool = redis.ConnectionPool.from_url(
                self.url,
                max_connections=self.max_connections,
                decode_responses=True,
                retry_on_timeout=True,
            )
        else:
            pool = redis.ConnectionPool(
                host=self.host,
                port=self.port,
                db=self.db,
                password=self.password,
                max_connections=self.max_connections,
                decode_responses=True,
                retry_on_timeout=True,
                socket_keepalive=True,
            )
        return redis.Redis(connection_pool=pool)

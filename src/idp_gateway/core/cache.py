"""Redis caching layer with TTL support."""

import json
import logging
from datetime import timedelta
from typing import Any

import redis.asyncio as redis
from attrs import field, frozen
from beartype import beartype

from .config import Settings

__all__ = [
    "Cache",
    "CacheConfig",
]

logger = logging.getLogger(__name__)


@frozen
class CacheConfig:
    """Immutable cache configuration."""

    url: str = field()
    default_ttl: int = field(default=3600)  # 1 hour
    max_connections: int = field(default=10)
    decode_responses: bool = field(default=True)

    @classmethod
    def from_settings(cls, settings: Settings) -> "CacheConfig":
        return cls(url=settings.redis_url)


class Cache:
    """Redis cache manager with async support.

    The constructor optionally accepts an already-created
    ``redis.asyncio.Redis`` instance, in which case :py:meth:`connect` is a
    no-op. Tests pass a ``fakeredis.FakeAsyncRedis`` this way.
    """

    def __init__(
        self, config: CacheConfig, redis_client: redis.Redis | None = None
    ) -> None:
        """Create a cache wrapper."""
        self._config = config
        self._redis: redis.Redis | None = redis_client

    def _client(self) -> redis.Redis:
        if self._redis is None:
            raise RuntimeError("Cache not connected")
        return self._redis

    @beartype
    async def connect(self) -> None:
        """Create Redis connection pool."""
        if self._redis is not None:
            return

        self._redis = redis.from_url(
            self._config.url,
            max_connections=self._config.max_connections,
            decode_responses=self._config.decode_responses,
        )
        logger.info("Redis connection pool initialized")

    @beartype
    async def disconnect(self) -> None:
        """Close Redis connection."""
        if self._redis is None:
            return

        await self._redis.aclose()
        self._redis = None
        logger.info("Redis connections closed")

    @beartype
    async def get(self, key: str) -> Any | None:
        """Get value from cache."""
        value = await self._client().get(key)
        if value is None:
            return None

        try:
            return json.loads(value)
        except (json.JSONDecodeError, TypeError):
            return value

    @beartype
    async def set(
        self,
        key: str,
        value: Any,
        ttl: int | timedelta | None = None,
    ) -> bool:
        """Set value in cache with optional TTL."""
        if ttl is None:
            ttl = self._config.default_ttl

        if isinstance(ttl, int):
            ttl = timedelta(seconds=ttl)

        # Redis rejects non-positive expirations
        if ttl.total_seconds() < 1:
            ttl = timedelta(seconds=1)

        if not isinstance(value, (str, int, float, bytes)):
            value = json.dumps(value, default=str)

        result = await self._client().setex(key, ttl, value)
        return bool(result)

    @beartype
    async def delete(self, key: str) -> bool:
        """Delete key from cache."""
        result = await self._client().delete(key)
        return bool(result > 0)

    @beartype
    async def exists(self, key: str) -> bool:
        """Check if key exists in cache."""
        result = await self._client().exists(key)
        return bool(result > 0)

    @property
    def is_connected(self) -> bool:
        """Check if cache is connected."""
        return self._redis is not None

    @beartype
    async def health_check(self) -> bool:
        """Perform cache health check."""
        try:
            if self._redis is None:
                return False

            await self._redis.ping()
            return True
        except Exception:
            return False

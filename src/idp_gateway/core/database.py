"""Database connection management with asyncpg connection pooling."""

import contextlib
import logging
from collections.abc import AsyncIterator
from typing import Any

import asyncpg
from attrs import field, frozen
from beartype import beartype

from .config import Settings
from .result_types import Err, Ok, Result

logger = logging.getLogger(__name__)


@frozen
class DatabaseConfig:
    """Immutable database pool configuration."""

    url: str = field()
    min_size: int = field(default=2)
    max_size: int = field(default=10)
    command_timeout: float = field(default=30.0)

    @classmethod
    def from_settings(cls, settings: Settings) -> "DatabaseConfig":
        return cls(
            url=settings.database_url,
            min_size=settings.database_pool_min,
            max_size=settings.database_pool_max,
            command_timeout=settings.database_command_timeout,
        )


class Database:
    """Thin asyncpg pool wrapper used by the PostgreSQL repositories."""

    def __init__(self, config: DatabaseConfig) -> None:
        """Initialize database manager; :meth:`connect` opens the pool."""
        self._config = config
        self._pool: asyncpg.Pool | None = None

    @beartype
    async def connect(self) -> None:
        """Create the connection pool."""
        if self._pool is not None:
            return

        self._pool = await asyncpg.create_pool(
            self._config.url,
            min_size=self._config.min_size,
            max_size=self._config.max_size,
            command_timeout=self._config.command_timeout,
        )
        logger.info("Database connection pool initialized")

    @beartype
    async def disconnect(self) -> None:
        """Close the connection pool."""
        if self._pool is None:
            return

        await self._pool.close()
        self._pool = None
        logger.info("Database connections closed")

    def _require_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise RuntimeError("Database not connected")
        return self._pool

    @beartype
    async def execute(self, query: str, *args: Any) -> str:
        """Execute a query and return its status string (e.g. ``UPDATE 1``)."""
        async with self._require_pool().acquire() as conn:
            return await conn.execute(query, *args)

    @beartype
    async def fetch(self, query: str, *args: Any) -> list[asyncpg.Record]:
        """Execute a query and fetch all results."""
        async with self._require_pool().acquire() as conn:
            return await conn.fetch(query, *args)

    @beartype
    async def fetchrow(self, query: str, *args: Any) -> asyncpg.Record | None:
        """Execute a query and fetch a single row."""
        async with self._require_pool().acquire() as conn:
            return await conn.fetchrow(query, *args)

    @beartype
    async def fetchval(self, query: str, *args: Any) -> Any:
        """Execute a query and fetch a single value."""
        async with self._require_pool().acquire() as conn:
            return await conn.fetchval(query, *args)

    @contextlib.asynccontextmanager
    async def transaction(self) -> AsyncIterator[asyncpg.Connection]:
        """Create a database transaction context."""
        async with self._require_pool().acquire() as conn:
            async with conn.transaction():
                yield conn

    @beartype
    async def health_check(self) -> Result[bool, str]:
        """Run ``SELECT 1`` against the pool."""
        try:
            value = await self.fetchval("SELECT 1")
            return Ok(value == 1)
        except Exception as e:
            return Err(f"Health check failed: {str(e)}")

    @property
    def is_connected(self) -> bool:
        """Check if database is connected."""
        return self._pool is not None

"""Revocation ledger kept in Redis; key expiry does the cleanup."""

import logging
import math
from datetime import datetime

from beartype import beartype
from redis.exceptions import RedisError

from ..core.cache import Cache
from ..core.clock import Clock, utc_now
from .protocols import StorageError

logger = logging.getLogger(__name__)

_KEY_PREFIX = "revoked_token:"


class RedisRevocationLedger:
    """One key per revoked fingerprint, expiring with the token itself."""

    def __init__(self, cache: Cache, clock: Clock = utc_now) -> None:
        self._cache = cache
        self._clock = clock

    @beartype
    async def add(self, fingerprint: str, expires_at: datetime) -> None:
        # Round up so a token with under a second left still gets a key.
        ttl = math.ceil((expires_at - self._clock()).total_seconds())
        if ttl <= 0:
            # Already expired tokens are rejected by signature checks alone.
            return
        try:
            await self._cache.set(f"{_KEY_PREFIX}{fingerprint}", "1", ttl)
        except (RedisError, RuntimeError) as e:
            logger.error("Failed to record revoked token: %s", e)
            raise StorageError("revocation_add failed") from e

    @beartype
    async def contains(self, fingerprint: str) -> bool:
        try:
            return await self._cache.exists(f"{_KEY_PREFIX}{fingerprint}")
        except (RedisError, RuntimeError) as e:
            logger.error("Failed to query revoked tokens: %s", e)
            raise StorageError("revocation_lookup failed") from e

    @beartype
    async def purge_expired(self) -> int:
        return 0

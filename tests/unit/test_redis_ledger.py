"""Unit tests for the Redis-backed revocation ledger."""

from collections.abc import AsyncGenerator
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from fakeredis import FakeAsyncRedis
from redis.exceptions import ConnectionError as RedisConnectionError

from idp_gateway.core.cache import Cache, CacheConfig
from idp_gateway.core.oauth2.lifecycle import TokenLifecycleCoordinator
from idp_gateway.core.oauth2.tokens import TokenIssuer
from idp_gateway.models.user import FederatedIdentity
from idp_gateway.storage.memory import InMemoryRefreshTokenRepository, InMemoryUserDirectory
from idp_gateway.storage.protocols import StorageError
from idp_gateway.storage.redis_ledger import RedisRevocationLedger

from conftest import FrozenClock

FINGERPRINT = "a" * 64


@pytest_asyncio.fixture
async def cache() -> AsyncGenerator[Cache, None]:
    """Cache wrapper around an in-process fake Redis."""
    redis_client = FakeAsyncRedis(decode_responses=True)
    cache = Cache(CacheConfig(url="redis://fake"), redis_client=redis_client)
    yield cache
    await cache.disconnect()


@pytest.fixture
def redis_ledger(cache: Cache, clock: FrozenClock) -> RedisRevocationLedger:
    return RedisRevocationLedger(cache, clock=clock)


class TestRedisRevocationLedger:
    """Tests for ledger entries stored as expiring keys."""

    @pytest.mark.asyncio
    async def test_add_and_contains(
        self, redis_ledger: RedisRevocationLedger, clock: FrozenClock
    ) -> None:
        await redis_ledger.add(FINGERPRINT, clock() + timedelta(hours=1))

        assert await redis_ledger.contains(FINGERPRINT)
        assert not await redis_ledger.contains("b" * 64)

    @pytest.mark.asyncio
    async def test_key_expires_with_token(
        self, redis_ledger: RedisRevocationLedger, cache: Cache, clock: FrozenClock
    ) -> None:
        await redis_ledger.add(FINGERPRINT, clock() + timedelta(minutes=5))

        ttl = await cache._client().ttl(f"revoked_token:{FINGERPRINT}")
        assert 0 < ttl <= 300

    @pytest.mark.asyncio
    async def test_already_expired_token_not_recorded(
        self, redis_ledger: RedisRevocationLedger, clock: FrozenClock
    ) -> None:
        await redis_ledger.add(FINGERPRINT, clock() - timedelta(seconds=1))

        assert not await redis_ledger.contains(FINGERPRINT)

    @pytest.mark.asyncio
    async def test_purge_is_a_no_op(self, redis_ledger: RedisRevocationLedger) -> None:
        assert await redis_ledger.purge_expired() == 0

    @pytest.mark.asyncio
    async def test_redis_errors_become_storage_errors(self, clock: FrozenClock) -> None:
        broken = AsyncMock(spec=Cache)
        broken.set.side_effect = RedisConnectionError("refused")
        broken.exists.side_effect = RedisConnectionError("refused")
        ledger = RedisRevocationLedger(broken, clock=clock)

        with pytest.raises(StorageError):
            await ledger.add(FINGERPRINT, clock() + timedelta(hours=1))
        with pytest.raises(StorageError):
            await ledger.contains(FINGERPRINT)

    @pytest.mark.asyncio
    async def test_disconnected_cache_is_storage_error(self, clock: FrozenClock) -> None:
        ledger = RedisRevocationLedger(Cache(CacheConfig(url="redis://fake")), clock=clock)

        with pytest.raises(StorageError):
            await ledger.contains(FINGERPRINT)

    @pytest.mark.asyncio
    async def test_sub_second_lifetime_still_recorded(
        self, redis_ledger: RedisRevocationLedger, cache: Cache, clock: FrozenClock
    ) -> None:
        await redis_ledger.add(FINGERPRINT, clock() + timedelta(milliseconds=500))

        assert await redis_ledger.contains(FINGERPRINT)
        assert await cache._client().ttl(f"revoked_token:{FINGERPRINT}") == 1


class TestRevocationThroughRedis:
    """Revocation near the end of a token's life, backed by Redis."""

    @pytest.mark.asyncio
    async def test_token_revoked_in_its_last_second_is_inactive(
        self,
        redis_ledger: RedisRevocationLedger,
        issuer: TokenIssuer,
        refresh_repository: InMemoryRefreshTokenRepository,
        user_directory: InMemoryUserDirectory,
        identity: FederatedIdentity,
        clock: FrozenClock,
    ) -> None:
        lifecycle = TokenLifecycleCoordinator(
            issuer=issuer,
            refresh_tokens=refresh_repository,
            ledger=redis_ledger,
            users=user_directory,
            clock=clock,
        )
        user = await user_directory.find_or_create(identity)
        triple = await lifecycle.issue_for_subject(user, "openid", "demo")

        clock.advance(seconds=3599.5)
        await lifecycle.revoke(triple.access_token)

        assert (await lifecycle.introspect(triple.access_token)).active is False

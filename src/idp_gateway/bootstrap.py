"""Construction of the service graph from settings.

Every stateful component is built here and owned by the application; there
are no module-level singletons. The FastAPI lifespan calls
:meth:`ServiceContainer.start` and :meth:`ServiceContainer.stop`.
"""

import logging

from attrs import define, field

from .core.cache import Cache, CacheConfig
from .core.clock import Clock, utc_now
from .core.config import Settings
from .core.database import Database, DatabaseConfig
from .core.federation import GoogleIdentityProvider, IdentityFederation
from .core.oauth2.clients import ClientValidator
from .core.oauth2.lifecycle import TokenLifecycleCoordinator
from .core.oauth2.pkce import PKCEValidator
from .core.oauth2.server import AuthorizationServer
from .core.oauth2.session_store import SessionCodeStore
from .core.oauth2.tokens import TokenIssuer
from .models.client import OAuthClient
from .storage.memory import (
    InMemoryClientDirectory,
    InMemoryRefreshTokenRepository,
    InMemoryRevocationLedger,
    InMemoryUserDirectory,
)
from .storage.postgres import (
    PostgresClientDirectory,
    PostgresRefreshTokenRepository,
    PostgresRevocationLedger,
    PostgresUserDirectory,
)
from .storage.protocols import (
    ClientDirectory,
    RefreshTokenRepository,
    RevocationLedger,
    UserDirectory,
)
from .storage.redis_ledger import RedisRevocationLedger

logger = logging.getLogger(__name__)


@define
class ServiceContainer:
    """Everything a running server needs, wired together."""

    settings: Settings
    server: AuthorizationServer
    store: SessionCodeStore
    lifecycle: TokenLifecycleCoordinator
    clients: ClientDirectory
    users: UserDirectory
    refresh_tokens: RefreshTokenRepository
    ledger: RevocationLedger
    database: Database | None = field(default=None)
    cache: Cache | None = field(default=None)

    async def start(self) -> None:
        """Open connections and start the expiry sweeper."""
        if self.database is not None:
            await self.database.connect()
        if self.cache is not None:
            await self.cache.connect()
        await self.store.start()

    async def stop(self) -> None:
        """Stop the sweeper and close connections."""
        await self.store.stop()
        if self.cache is not None:
            await self.cache.disconnect()
        if self.database is not None:
            await self.database.disconnect()


def build_container(
    settings: Settings,
    *,
    federation: IdentityFederation | None = None,
    seed_clients: list[OAuthClient] | None = None,
    database: Database | None = None,
    cache: Cache | None = None,
    clock: Clock = utc_now,
) -> ServiceContainer:
    """Build the service graph for ``settings``.

    Args:
        settings: Application settings
        federation: Upstream identity provider, Google from settings when omitted
        seed_clients: Clients preloaded into the in-memory directory
        database: Pre-built database wrapper (postgres backends only)
        cache: Pre-built cache wrapper (redis revocation backend only)
        clock: Time source shared by every component
    """
    needs_database = (
        settings.storage_backend == "postgres" or settings.revocation_backend == "database"
    )
    if needs_database and database is None:
        database = Database(DatabaseConfig.from_settings(settings))
    if settings.revocation_backend == "redis" and cache is None:
        cache = Cache(CacheConfig.from_settings(settings))

    clients: ClientDirectory
    users: UserDirectory
    refresh_tokens: RefreshTokenRepository
    if settings.storage_backend == "postgres":
        assert database is not None
        clients = PostgresClientDirectory(database)
        users = PostgresUserDirectory(database, clock=clock)
        refresh_tokens = PostgresRefreshTokenRepository(database, clock=clock)
    else:
        clients = InMemoryClientDirectory(seed_clients)
        users = InMemoryUserDirectory(clock=clock)
        refresh_tokens = InMemoryRefreshTokenRepository(clock=clock)

    ledger: RevocationLedger
    if settings.revocation_backend == "database":
        assert database is not None
        ledger = PostgresRevocationLedger(database, clock=clock)
    elif settings.revocation_backend == "redis":
        assert cache is not None
        ledger = RedisRevocationLedger(cache, clock=clock)
    else:
        ledger = InMemoryRevocationLedger(clock=clock)

    issuer = TokenIssuer.from_settings(settings, clock=clock)
    store = SessionCodeStore(
        session_ttl=settings.auth_session_ttl,
        sweep_interval=settings.sweep_interval_seconds,
        clock=clock,
    )
    lifecycle = TokenLifecycleCoordinator(
        issuer=issuer,
        refresh_tokens=refresh_tokens,
        ledger=ledger,
        users=users,
        rotate_refresh_tokens=settings.refresh_token_rotation,
        clock=clock,
    )
    store.add_sweep_hook(lifecycle.purge_expired)

    server = AuthorizationServer(
        clients=ClientValidator(
            clients,
            allow_auto_registration=settings.allow_client_auto_registration,
            default_scope=settings.default_scope,
        ),
        store=store,
        lifecycle=lifecycle,
        users=users,
        federation=federation or GoogleIdentityProvider.from_settings(settings),
        pkce=PKCEValidator(),
        code_ttl=settings.authorization_code_ttl,
        default_scope=settings.default_scope,
        require_pkce_for_public_clients=settings.require_pkce_for_public_clients,
        clock=clock,
    )

    logger.info(
        "Built services: storage=%s revocation=%s rotation=%s",
        settings.storage_backend,
        settings.revocation_backend,
        settings.refresh_token_rotation,
    )
    return ServiceContainer(
        settings=settings,
        server=server,
        store=store,
        lifecycle=lifecycle,
        clients=clients,
        users=users,
        refresh_tokens=refresh_tokens,
        ledger=ledger,
        database=database,
        cache=cache,
    )

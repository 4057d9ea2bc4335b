"""Test configuration and fixtures.

Every component is wired with the in-memory storage backends and a
controllable clock, so expiry can be exercised without sleeping. The
upstream identity provider is replaced by ``FakeFederation``.
"""

from collections.abc import Iterator
from datetime import datetime, timedelta, timezone
from typing import Any
from urllib.parse import urlencode

import pytest
from fastapi.testclient import TestClient

from idp_gateway.bootstrap import ServiceContainer, build_container
from idp_gateway.core.config import Settings
from idp_gateway.core.federation import IdentityFederation
from idp_gateway.core.oauth2.clients import ClientValidator
from idp_gateway.core.oauth2.lifecycle import TokenLifecycleCoordinator
from idp_gateway.core.oauth2.pkce import PKCEValidator
from idp_gateway.core.oauth2.server import AuthorizationServer
from idp_gateway.core.oauth2.session_store import SessionCodeStore
from idp_gateway.core.oauth2.tokens import TokenIssuer
from idp_gateway.core.result_types import Err, Ok, Result
from idp_gateway.core.security import hash_secret
from idp_gateway.main import create_app
from idp_gateway.models.client import ClientType, OAuthClient
from idp_gateway.models.user import FederatedIdentity, User
from idp_gateway.storage.memory import (
    InMemoryClientDirectory,
    InMemoryRefreshTokenRepository,
    InMemoryRevocationLedger,
    InMemoryUserDirectory,
)

DEMO_REDIRECT = "http://x/cb"
CONFIDENTIAL_SECRET = "s3cret-value-for-the-confidential-client"
JWT_SECRET = "unit-test-signing-secret-with-at-least-32-characters"


class FrozenClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 7, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class FakeFederation(IdentityFederation):
    """Upstream provider that accepts codes registered with ``add_login``."""

    def __init__(self) -> None:
        super().__init__(
            client_id="upstream-client",
            client_secret="upstream-secret",
            redirect_uri="http://testserver/api/v1/oauth2/callback",
            scopes=["openid", "email", "profile"],
        )
        self.logins: dict[str, FederatedIdentity] = {}

    def add_login(self, code: str, identity: FederatedIdentity) -> None:
        self.logins[code] = identity

    @property
    def provider_name(self) -> str:
        return "fake"

    def build_authorization_url(self, state: str, scope: str | None = None) -> str:
        params = {"state": state, "scope": scope or " ".join(self.scopes)}
        return f"https://idp.test/authorize?{urlencode(params)}"

    async def exchange_code(self, code: str) -> Result[dict[str, Any], str]:
        if code not in self.logins:
            return Err("Token exchange failed: invalid_grant")
        return Ok({"access_token": f"upstream-{code}", "token_type": "Bearer"})

    async def fetch_profile(self, access_token: str) -> Result[FederatedIdentity, str]:
        code = access_token.removeprefix("upstream-")
        return Ok(self.logins[code])


@pytest.fixture
def clock() -> FrozenClock:
    """Controllable time source shared by every component."""
    return FrozenClock()


@pytest.fixture
def settings() -> Settings:
    """Settings for an in-memory development server."""
    return Settings(
        api_env="development",
        storage_backend="memory",
        revocation_backend="memory",
        jwt_secret=JWT_SECRET,
        refresh_token_rotation=False,
        allow_client_auto_registration=False,
    )


@pytest.fixture
def demo_client() -> OAuthClient:
    """Public client that must use PKCE."""
    return OAuthClient(
        client_id="demo",
        client_name="Demo SPA",
        client_type=ClientType.PUBLIC,
        redirect_uris=(DEMO_REDIRECT,),
    )


@pytest.fixture(scope="session")
def confidential_secret_hash() -> str:
    # Argon2 is slow on purpose; hash once per session.
    return hash_secret(CONFIDENTIAL_SECRET)


@pytest.fixture
def confidential_client(confidential_secret_hash: str) -> OAuthClient:
    """Server-side client authenticating with a secret."""
    return OAuthClient(
        client_id="backend",
        client_name="Backend App",
        client_type=ClientType.CONFIDENTIAL,
        client_secret_hash=confidential_secret_hash,
        redirect_uris=("https://app.example.com/callback",),
    )


@pytest.fixture
def identity() -> FederatedIdentity:
    return FederatedIdentity(
        sub="u1",
        email="user@example.com",
        email_verified=True,
        name="Test User",
        given_name="Test",
        family_name="User",
    )


@pytest.fixture
def user(clock: FrozenClock) -> User:
    return User(
        id="user-1",
        provider_subject="u1",
        email="user@example.com",
        email_verified=True,
        name="Test User",
        created_at=clock(),
        updated_at=clock(),
    )


@pytest.fixture
def issuer(clock: FrozenClock) -> TokenIssuer:
    return TokenIssuer(
        secret=JWT_SECRET,
        issuer="oauth-service",
        audience="oauth-service",
        access_ttl=timedelta(hours=1),
        refresh_ttl=timedelta(days=30),
        id_ttl=timedelta(hours=1),
        clock=clock,
    )


@pytest.fixture
def store(clock: FrozenClock) -> SessionCodeStore:
    return SessionCodeStore(session_ttl=timedelta(minutes=15), clock=clock)


@pytest.fixture
def client_directory(
    demo_client: OAuthClient, confidential_client: OAuthClient
) -> InMemoryClientDirectory:
    return InMemoryClientDirectory([demo_client, confidential_client])


@pytest.fixture
def user_directory(clock: FrozenClock) -> InMemoryUserDirectory:
    return InMemoryUserDirectory(clock=clock)


@pytest.fixture
def refresh_repository(clock: FrozenClock) -> InMemoryRefreshTokenRepository:
    return InMemoryRefreshTokenRepository(clock=clock)


@pytest.fixture
def ledger(clock: FrozenClock) -> InMemoryRevocationLedger:
    return InMemoryRevocationLedger(clock=clock)


@pytest.fixture
def lifecycle(
    issuer: TokenIssuer,
    refresh_repository: InMemoryRefreshTokenRepository,
    ledger: InMemoryRevocationLedger,
    user_directory: InMemoryUserDirectory,
    clock: FrozenClock,
) -> TokenLifecycleCoordinator:
    return TokenLifecycleCoordinator(
        issuer=issuer,
        refresh_tokens=refresh_repository,
        ledger=ledger,
        users=user_directory,
        clock=clock,
    )


@pytest.fixture
def federation(identity: FederatedIdentity) -> FakeFederation:
    fake = FakeFederation()
    fake.add_login("upstream-code", identity)
    return fake


@pytest.fixture
def server(
    client_directory: InMemoryClientDirectory,
    store: SessionCodeStore,
    lifecycle: TokenLifecycleCoordinator,
    user_directory: InMemoryUserDirectory,
    federation: FakeFederation,
    clock: FrozenClock,
) -> AuthorizationServer:
    return AuthorizationServer(
        clients=ClientValidator(client_directory),
        store=store,
        lifecycle=lifecycle,
        users=user_directory,
        federation=federation,
        pkce=PKCEValidator(),
        code_ttl=timedelta(minutes=10),
        clock=clock,
    )


@pytest.fixture
def container(
    settings: Settings,
    federation: FakeFederation,
    demo_client: OAuthClient,
    confidential_client: OAuthClient,
    clock: FrozenClock,
) -> ServiceContainer:
    return build_container(
        settings,
        federation=federation,
        seed_clients=[demo_client, confidential_client],
        clock=clock,
    )


@pytest.fixture
def test_client(container: ServiceContainer) -> Iterator[TestClient]:
    """HTTP client against the full application, lifespan included."""
    app = create_app(container=container)
    with TestClient(app) as client:
        yield client

"""Unit tests for the administration commands and service wiring."""

import pytest

from idp_gateway.bootstrap import build_container
from idp_gateway.cli import build_client, build_parser, register_client
from idp_gateway.core.config import Settings
from idp_gateway.core.security import verify_secret
from idp_gateway.models.client import ClientType
from idp_gateway.storage.memory import InMemoryClientDirectory, InMemoryRevocationLedger
from idp_gateway.storage.postgres import PostgresClientDirectory, PostgresRevocationLedger
from idp_gateway.storage.redis_ledger import RedisRevocationLedger

from conftest import JWT_SECRET, FakeFederation


class TestBuildClient:
    """Tests for client record creation."""

    def test_confidential_client_gets_secret(self) -> None:
        client, secret = build_client("Backend", ["https://app.example.com/cb"])

        assert secret is not None
        assert client.client_type == ClientType.CONFIDENTIAL
        assert client.client_secret_hash is not None
        assert verify_secret(secret, client.client_secret_hash)
        assert len(client.client_id) == 24

    def test_public_client_has_no_secret(self) -> None:
        client, secret = build_client(
            "SPA", ["http://localhost/cb"], public=True, scopes=["openid"], client_id="spa"
        )

        assert secret is None
        assert client.client_id == "spa"
        assert client.client_secret_hash is None
        assert client.scopes == ("openid",)

    @pytest.mark.asyncio
    async def test_register_refuses_duplicate_id(self) -> None:
        directory = InMemoryClientDirectory()
        client, _ = build_client("SPA", ["http://localhost/cb"], public=True, client_id="spa")

        assert await register_client(directory, client) == client
        with pytest.raises(ValueError, match="already exists"):
            await register_client(directory, client)

    def test_parser(self) -> None:
        args = build_parser().parse_args(
            [
                "register-client",
                "--name",
                "SPA",
                "--redirect-uri",
                "http://a/cb",
                "--redirect-uri",
                "http://b/cb",
                "--public",
            ]
        )

        assert args.command == "register-client"
        assert args.redirect_uri == ["http://a/cb", "http://b/cb"]
        assert args.public is True
        assert args.scope is None


class TestBuildContainer:
    """Tests for backend selection from settings."""

    def test_memory_backends(self, settings: Settings) -> None:
        container = build_container(settings, federation=FakeFederation())

        assert isinstance(container.clients, InMemoryClientDirectory)
        assert isinstance(container.ledger, InMemoryRevocationLedger)
        assert container.database is None
        assert container.cache is None

    def test_redis_ledger(self) -> None:
        settings = Settings(jwt_secret=JWT_SECRET, revocation_backend="redis")

        container = build_container(settings, federation=FakeFederation())

        assert isinstance(container.ledger, RedisRevocationLedger)
        assert container.cache is not None
        assert container.database is None

    def test_postgres_backends(self) -> None:
        settings = Settings(
            jwt_secret=JWT_SECRET, storage_backend="postgres", revocation_backend="database"
        )

        container = build_container(settings, federation=FakeFederation())

        assert isinstance(container.clients, PostgresClientDirectory)
        assert isinstance(container.ledger, PostgresRevocationLedger)
        assert container.database is not None

"""Unit tests for the PostgreSQL user directory against a scripted connection."""

import contextlib
from collections.abc import AsyncIterator
from typing import Any
from unittest.mock import AsyncMock

import pytest

from idp_gateway.core.database import Database, DatabaseConfig
from idp_gateway.models.user import FederatedIdentity
from idp_gateway.storage.postgres import PostgresUserDirectory
from idp_gateway.storage.protocols import StorageError

from conftest import FrozenClock


def user_row(clock: FrozenClock, user_id: str, name: str) -> dict[str, Any]:
    return {
        "id": user_id,
        "google_id": "u1",
        "email": "user@example.com",
        "email_verified": True,
        "name": name,
        "given_name": "Test",
        "family_name": "User",
        "picture": None,
        "created_at": clock(),
        "updated_at": clock(),
    }


def scripted_database(conn: AsyncMock) -> Database:
    """Database whose transactions all run on ``conn``."""
    db = Database(DatabaseConfig(url="postgresql://unused/db"))

    @contextlib.asynccontextmanager
    async def transaction() -> AsyncIterator[AsyncMock]:
        yield conn

    db.transaction = transaction  # type: ignore[method-assign]
    return db


class TestPostgresUserDirectory:
    """Tests for linking identities to users in PostgreSQL."""

    @pytest.mark.asyncio
    async def test_first_login_insert_is_an_upsert(
        self, identity: FederatedIdentity, clock: FrozenClock
    ) -> None:
        """A login racing another first login returns the row the other created."""
        conn = AsyncMock()
        # Neither select sees the concurrent insert; the insert hits the conflict.
        conn.fetchrow.side_effect = [None, None, user_row(clock, "winner", "Test User")]
        directory = PostgresUserDirectory(scripted_database(conn), clock=clock)

        user = await directory.find_or_create(identity)

        assert user.id == "winner"
        insert_sql = conn.fetchrow.await_args_list[2].args[0]
        assert "ON CONFLICT (google_id) DO UPDATE" in insert_sql
        assert "RETURNING" in insert_sql

    @pytest.mark.asyncio
    async def test_existing_subject_is_updated(
        self, identity: FederatedIdentity, clock: FrozenClock
    ) -> None:
        conn = AsyncMock()
        conn.fetchrow.side_effect = [
            user_row(clock, "user-1", "Old Name"),
            user_row(clock, "user-1", "Test User"),
        ]
        directory = PostgresUserDirectory(scripted_database(conn), clock=clock)

        user = await directory.find_or_create(identity)

        assert user.id == "user-1"
        assert user.name == "Test User"
        assert conn.fetchrow.await_count == 2
        assert conn.fetchrow.await_args_list[1].args[0].strip().startswith("UPDATE users")

    @pytest.mark.asyncio
    async def test_driver_error_is_storage_error(
        self, identity: FederatedIdentity, clock: FrozenClock
    ) -> None:
        conn = AsyncMock()
        conn.fetchrow.side_effect = ConnectionResetError("connection lost")
        directory = PostgresUserDirectory(scripted_database(conn), clock=clock)

        with pytest.raises(StorageError):
            await directory.find_or_create(identity)

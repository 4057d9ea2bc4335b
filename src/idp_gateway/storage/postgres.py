"""PostgreSQL repositories backed by the asyncpg :class:`Database` wrapper."""

import asyncio
import contextlib
import logging
from collections.abc import Iterator
from datetime import datetime
from typing import Any

import asyncpg
from beartype import beartype

from ..core.clock import Clock, utc_now
from ..core.database import Database
from ..core.security import fingerprint_token, generate_identifier
from ..models.client import ClientType, GrantType, OAuthClient
from ..models.token import RefreshTokenRecord
from ..models.user import FederatedIdentity, User
from .protocols import StorageError

logger = logging.getLogger(__name__)


@contextlib.contextmanager
def _storage_errors(operation: str) -> Iterator[None]:
    """Translate driver failures into :class:`StorageError`."""
    try:
        yield
    except (asyncpg.PostgresError, OSError, asyncio.TimeoutError, RuntimeError) as e:
        logger.error("Storage operation %s failed: %s", operation, e)
        raise StorageError(f"{operation} failed") from e


def _affected_rows(status: str) -> int:
    """Row count from an asyncpg status string such as ``UPDATE 1``."""
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (ValueError, IndexError):
        return 0


class PostgresClientDirectory:
    def __init__(self, db: Database) -> None:
        self._db = db

    @beartype
    async def get_client(self, client_id: str) -> OAuthClient | None:
        with _storage_errors("get_client"):
            row = await self._db.fetchrow(
                """
                SELECT client_id, client_name, client_type, client_secret_hash,
                       redirect_uris, grant_types, scopes, created_at
                FROM oauth_clients
                WHERE client_id = $1
                """,
                client_id,
            )
        return self._row_to_client(row) if row else None

    @beartype
    async def create_client(self, client: OAuthClient) -> OAuthClient:
        with _storage_errors("create_client"):
            await self._db.execute(
                """
                INSERT INTO oauth_clients (
                    client_id, client_name, client_type, client_secret_hash,
                    redirect_uris, grant_types, scopes, created_at
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                ON CONFLICT (client_id) DO NOTHING
                """,
                client.client_id,
                client.client_name,
                client.client_type.value,
                client.client_secret_hash,
                list(client.redirect_uris),
                [g.value for g in client.grant_types],
                list(client.scopes),
                client.created_at,
            )
        stored = await self.get_client(client.client_id)
        return stored or client

    @staticmethod
    def _row_to_client(row: Any) -> OAuthClient:
        return OAuthClient(
            client_id=row["client_id"],
            client_name=row["client_name"] or "",
            client_type=ClientType(row["client_type"]),
            client_secret_hash=row["client_secret_hash"],
            redirect_uris=tuple(row["redirect_uris"] or ()),
            grant_types=tuple(GrantType(g) for g in row["grant_types"] or ()),
            scopes=tuple(row["scopes"] or ()),
            created_at=row["created_at"],
        )


_USER_COLUMNS = """
    id, google_id, email, email_verified, name, given_name, family_name,
    picture, created_at, updated_at
"""


class PostgresUserDirectory:
    """Users matched by Google subject first, then by e-mail."""

    def __init__(self, db: Database, clock: Clock = utc_now) -> None:
        self._db = db
        self._clock = clock

    @beartype
    async def find_or_create(self, identity: FederatedIdentity) -> User:
        now = self._clock()
        with _storage_errors("find_or_create_user"):
            async with self._db.transaction() as conn:
                row = await conn.fetchrow(
                    f"SELECT {_USER_COLUMNS} FROM users WHERE google_id = $1 FOR UPDATE",
                    identity.sub,
                )
                if row is None and identity.email:
                    row = await conn.fetchrow(
                        f"SELECT {_USER_COLUMNS} FROM users WHERE email = $1 FOR UPDATE",
                        identity.email,
                    )

                if row is None:
                    # A concurrent first login for the same subject may insert
                    # between the select and here; the conflict arm updates it.
                    row = await conn.fetchrow(
                        f"""
                        INSERT INTO users (
                            id, google_id, email, email_verified, name,
                            given_name, family_name, picture, created_at, updated_at
                        ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $9)
                        ON CONFLICT (google_id) DO UPDATE
                        SET email = COALESCE(NULLIF(EXCLUDED.email, ''), users.email),
                            email_verified = EXCLUDED.email_verified,
                            name = COALESCE(NULLIF(EXCLUDED.name, ''), users.name),
                            given_name = EXCLUDED.given_name,
                            family_name = EXCLUDED.family_name,
                            picture = EXCLUDED.picture,
                            updated_at = EXCLUDED.updated_at
                        RETURNING {_USER_COLUMNS}
                        """,
                        generate_identifier(),
                        identity.sub,
                        identity.email,
                        identity.email_verified,
                        identity.name,
                        identity.given_name,
                        identity.family_name,
                        identity.picture,
                        now,
                    )
                    logger.info("Stored user %s for subject %s", row["id"], identity.sub)
                else:
                    row = await conn.fetchrow(
                        f"""
                        UPDATE users
                        SET google_id = $2,
                            email = COALESCE(NULLIF($3, ''), email),
                            email_verified = $4,
                            name = COALESCE(NULLIF($5, ''), name),
                            given_name = $6,
                            family_name = $7,
                            picture = $8,
                            updated_at = $9
                        WHERE id = $1
                        RETURNING {_USER_COLUMNS}
                        """,
                        row["id"],
                        identity.sub,
                        identity.email,
                        identity.email_verified,
                        identity.name,
                        identity.given_name,
                        identity.family_name,
                        identity.picture,
                        now,
                    )
        return self._row_to_user(row)

    @beartype
    async def get_user(self, user_id: str) -> User | None:
        with _storage_errors("get_user"):
            row = await self._db.fetchrow(
                f"SELECT {_USER_COLUMNS} FROM users WHERE id = $1", user_id
            )
        return self._row_to_user(row) if row else None

    @staticmethod
    def _row_to_user(row: Any) -> User:
        return User(
            id=row["id"],
            provider_subject=row["google_id"],
            email=row["email"] or "",
            email_verified=bool(row["email_verified"]),
            name=row["name"] or "",
            given_name=row["given_name"],
            family_name=row["family_name"],
            picture=row["picture"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


class PostgresRefreshTokenRepository:
    """Refresh tokens stored by SHA-256 hash; the raw token never reaches the table."""

    def __init__(self, db: Database, clock: Clock = utc_now) -> None:
        self._db = db
        self._clock = clock

    @beartype
    async def store(
        self,
        token: str,
        user_id: str,
        client_id: str,
        scope: str,
        expires_at: datetime,
    ) -> None:
        now = self._clock()
        with _storage_errors("store_refresh_token"):
            await self._db.execute(
                """
                INSERT INTO refresh_tokens (
                    token_hash, user_id, client_id, scope, expires_at,
                    revoked, created_at, updated_at
                ) VALUES ($1, $2, $3, $4, $5, false, $6, $6)
                """,
                fingerprint_token(token),
                user_id,
                client_id,
                scope,
                expires_at,
                now,
            )

    @beartype
    async def get(self, token: str) -> RefreshTokenRecord | None:
        with _storage_errors("get_refresh_token"):
            row = await self._db.fetchrow(
                """
                SELECT token_hash, user_id, client_id, scope, expires_at,
                       revoked, created_at, updated_at
                FROM refresh_tokens
                WHERE token_hash = $1
                """,
                fingerprint_token(token),
            )
        if row is None:
            return None
        return RefreshTokenRecord(**dict(row))

    @beartype
    async def mark_revoked(self, token: str) -> bool:
        with _storage_errors("revoke_refresh_token"):
            status = await self._db.execute(
                """
                UPDATE refresh_tokens
                SET revoked = true, updated_at = $2
                WHERE token_hash = $1 AND revoked = false
                """,
                fingerprint_token(token),
                self._clock(),
            )
        return _affected_rows(status) == 1

    @beartype
    async def purge_expired(self) -> int:
        with _storage_errors("purge_refresh_tokens"):
            status = await self._db.execute(
                "DELETE FROM refresh_tokens WHERE expires_at <= $1", self._clock()
            )
        return _affected_rows(status)


class PostgresRevocationLedger:
    def __init__(self, db: Database, clock: Clock = utc_now) -> None:
        self._db = db
        self._clock = clock

    @beartype
    async def add(self, fingerprint: str, expires_at: datetime) -> None:
        with _storage_errors("revocation_add"):
            await self._db.execute(
                """
                INSERT INTO revoked_tokens (token_hash, expires_at)
                VALUES ($1, $2)
                ON CONFLICT (token_hash)
                DO UPDATE SET expires_at = GREATEST(revoked_tokens.expires_at, EXCLUDED.expires_at)
                """,
                fingerprint,
                expires_at,
            )

    @beartype
    async def contains(self, fingerprint: str) -> bool:
        with _storage_errors("revocation_lookup"):
            found = await self._db.fetchval(
                """
                SELECT EXISTS (
                    SELECT 1 FROM revoked_tokens
                    WHERE token_hash = $1 AND expires_at > $2
                )
                """,
                fingerprint,
                self._clock(),
            )
        return bool(found)

    @beartype
    async def purge_expired(self) -> int:
        with _storage_errors("revocation_purge"):
            status = await self._db.execute(
                "DELETE FROM revoked_tokens WHERE expires_at <= $1", self._clock()
            )
        return _affected_rows(status)

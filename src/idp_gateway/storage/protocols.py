"""Interfaces of the durable collaborators used by the OAuth2 engine."""

from datetime import datetime
from typing import Protocol, runtime_checkable

from ..models.client import OAuthClient
from ..models.token import RefreshTokenRecord
from ..models.user import FederatedIdentity, User


class StorageError(Exception):
    """A durable store could not complete an operation."""


@runtime_checkable
class ClientDirectory(Protocol):
    async def get_client(self, client_id: str) -> OAuthClient | None: ...

    async def create_client(self, client: OAuthClient) -> OAuthClient: ...


@runtime_checkable
class UserDirectory(Protocol):
    async def find_or_create(self, identity: FederatedIdentity) -> User:
        """Return the user linked to ``identity``, creating or updating it."""
        ...

    async def get_user(self, user_id: str) -> User | None: ...


@runtime_checkable
class RefreshTokenRepository(Protocol):
    """Refresh tokens keyed by the raw token; implementations store a hash."""

    async def store(
        self,
        token: str,
        user_id: str,
        client_id: str,
        scope: str,
        expires_at: datetime,
    ) -> None: ...

    async def get(self, token: str) -> RefreshTokenRecord | None: ...

    async def mark_revoked(self, token: str) -> bool:
        """Flip the revoked flag; True only for the caller that flipped it."""
        ...

    async def purge_expired(self) -> int: ...


@runtime_checkable
class RevocationLedger(Protocol):
    """Fingerprints of revoked tokens, kept until the token's natural expiry."""

    async def add(self, fingerprint: str, expires_at: datetime) -> None: ...

    async def contains(self, fingerprint: str) -> bool: ...

    async def purge_expired(self) -> int: ...

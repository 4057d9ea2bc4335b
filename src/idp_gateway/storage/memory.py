"""In-memory storage backends for development and tests.

All state lives in the process and disappears on restart. Methods never
await while mutating, so each call is atomic on the event loop.
"""

import logging
from datetime import datetime

from beartype import beartype

from ..core.clock import Clock, utc_now
from ..core.security import fingerprint_token, generate_identifier
from ..models.client import OAuthClient
from ..models.token import RefreshTokenRecord
from ..models.user import FederatedIdentity, User

logger = logging.getLogger(__name__)


class InMemoryClientDirectory:
    def __init__(self, clients: list[OAuthClient] | None = None) -> None:
        self._clients: dict[str, OAuthClient] = {c.client_id: c for c in clients or []}

    @beartype
    async def get_client(self, client_id: str) -> OAuthClient | None:
        return self._clients.get(client_id)

    @beartype
    async def create_client(self, client: OAuthClient) -> OAuthClient:
        # First registration wins when two requests race.
        return self._clients.setdefault(client.client_id, client)


class InMemoryUserDirectory:
    """Users linked by provider subject first, then by e-mail."""

    def __init__(self, clock: Clock = utc_now) -> None:
        self._users: dict[str, User] = {}
        self._clock = clock

    @beartype
    async def find_or_create(self, identity: FederatedIdentity) -> User:
        now = self._clock()
        existing = self._find(identity)
        if existing is None:
            user = User(
                id=generate_identifier(),
                provider_subject=identity.sub,
                email=identity.email,
                email_verified=identity.email_verified,
                name=identity.name,
                given_name=identity.given_name,
                family_name=identity.family_name,
                picture=identity.picture,
                created_at=now,
                updated_at=now,
            )
            logger.info("Created user %s for %s subject", user.id, identity.provider)
        else:
            user = existing.model_copy(
                update={
                    "provider_subject": identity.sub,
                    "email": identity.email or existing.email,
                    "email_verified": identity.email_verified,
                    "name": identity.name or existing.name,
                    "given_name": identity.given_name,
                    "family_name": identity.family_name,
                    "picture": identity.picture,
                    "updated_at": now,
                }
            )
        self._users[user.id] = user
        return user

    @beartype
    async def get_user(self, user_id: str) -> User | None:
        return self._users.get(user_id)

    def _find(self, identity: FederatedIdentity) -> User | None:
        for user in self._users.values():
            if user.provider_subject == identity.sub:
                return user
        if identity.email:
            for user in self._users.values():
                if user.email == identity.email:
                    return user
        return None


class InMemoryRefreshTokenRepository:
    def __init__(self, clock: Clock = utc_now) -> None:
        self._records: dict[str, RefreshTokenRecord] = {}
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
        token_hash = fingerprint_token(token)
        self._records[token_hash] = RefreshTokenRecord(
            token_hash=token_hash,
            user_id=user_id,
            client_id=client_id,
            scope=scope,
            expires_at=expires_at,
            revoked=False,
            created_at=now,
            updated_at=now,
        )

    @beartype
    async def get(self, token: str) -> RefreshTokenRecord | None:
        return self._records.get(fingerprint_token(token))

    @beartype
    async def mark_revoked(self, token: str) -> bool:
        token_hash = fingerprint_token(token)
        record = self._records.get(token_hash)
        if record is None or record.revoked:
            return False
        self._records[token_hash] = record.model_copy(
            update={"revoked": True, "updated_at": self._clock()}
        )
        return True

    @beartype
    async def purge_expired(self) -> int:
        now = self._clock()
        expired = [h for h, r in self._records.items() if r.expires_at <= now]
        for token_hash in expired:
            del self._records[token_hash]
        return len(expired)


class InMemoryRevocationLedger:
    def __init__(self, clock: Clock = utc_now) -> None:
        self._entries: dict[str, datetime] = {}
        self._clock = clock

    @beartype
    async def add(self, fingerprint: str, expires_at: datetime) -> None:
        current = self._entries.get(fingerprint)
        if current is None or expires_at > current:
            self._entries[fingerprint] = expires_at

    @beartype
    async def contains(self, fingerprint: str) -> bool:
        expires_at = self._entries.get(fingerprint)
        return expires_at is not None and expires_at > self._clock()

    @beartype
    async def purge_expired(self) -> int:
        now = self._clock()
        expired = [f for f, exp in self._entries.items() if exp <= now]
        for fingerprint in expired:
            del self._entries[fingerprint]
        return len(expired)

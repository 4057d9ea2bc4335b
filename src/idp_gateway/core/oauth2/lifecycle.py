"""Token lifecycle: issuance, refresh, revocation and introspection.

This is the only component that talks to both the token issuer and the
durable stores. A refresh token is honoured only when its signature, its
durable record and the revocation ledger all agree that it is live.
"""

import logging

from beartype import beartype

from ...models.token import (
    AccessTokenClaims,
    RefreshTokenClaims,
    RefreshTokenRecord,
    TokenKind,
    TokenTriple,
)
from ...models.user import User
from ...schemas.oauth2 import IntrospectionResponse
from ...storage.protocols import (
    RefreshTokenRepository,
    RevocationLedger,
    StorageError,
    UserDirectory,
)
from ..clock import Clock, utc_now
from ..logging_utils import redact_token
from ..security import fingerprint_token
from .errors import (
    InvalidGrantError,
    ServerError,
    TokenVerificationError,
    UnrecognizedTokenError,
)
from .tokens import TokenIssuer

logger = logging.getLogger(__name__)

REFRESH_TOKEN_HINT = "refresh_token"


class TokenLifecycleCoordinator:
    """Issued -> (Refreshed) -> (Revoked).

    Refresh rotation is a policy switch. With ``rotate_refresh_tokens`` off
    (the default) a refresh token stays usable until it expires or is
    revoked. With it on, the presented token is marked revoked once the new
    triple has been stored, so of two concurrent refreshes of the same token
    only one succeeds and the loser's new refresh token is discarded.
    """

    def __init__(
        self,
        issuer: TokenIssuer,
        refresh_tokens: RefreshTokenRepository,
        ledger: RevocationLedger,
        users: UserDirectory,
        rotate_refresh_tokens: bool = False,
        clock: Clock = utc_now,
    ) -> None:
        """Initialize token lifecycle coordinator."""
        self._issuer = issuer
        self._refresh_tokens = refresh_tokens
        self._ledger = ledger
        self._users = users
        self._rotate = rotate_refresh_tokens
        self._clock = clock

    @property
    def rotates_refresh_tokens(self) -> bool:
        return self._rotate

    async def issue_for_subject(self, user: User, scope: str, client_id: str) -> TokenTriple:
        """Mint a token triple and persist the refresh token.

        Raises:
            ServerError: The refresh token could not be stored; no tokens
                are returned in that case
        """
        access = self._issuer.issue_access(user, scope, client_id)
        refresh = self._issuer.issue_refresh(user.id)
        id_token = self._issuer.issue_id(user)

        try:
            await self._refresh_tokens.store(
                refresh.token, user.id, client_id, scope, refresh.expires_at
            )
        except StorageError as e:
            raise ServerError("Failed to persist refresh token") from e

        logger.info("Issued tokens for user %s to client %s", user.id, client_id)
        return TokenTriple(
            access_token=access.token,
            refresh_token=refresh.token,
            id_token=id_token.token,
            expires_in=int(self._issuer.access_ttl.total_seconds()),
            scope=scope,
        )

    async def refresh(self, refresh_token: str, client_id: str) -> TokenTriple:
        """Exchange a live refresh token for a new triple.

        Raises:
            InvalidGrantError: Token invalid, expired, revoked, unknown or
                owned by another client
            ServerError: A durable store is unavailable
        """
        try:
            claims = self._issuer.verify(refresh_token, TokenKind.REFRESH)
        except TokenVerificationError as e:
            logger.info("Refresh rejected: %s", e.error_description)
            raise InvalidGrantError("Invalid refresh token") from e
        assert isinstance(claims, RefreshTokenClaims)

        try:
            record = await self._refresh_tokens.get(refresh_token)
            revoked = await self._ledger.contains(fingerprint_token(refresh_token))
        except StorageError as e:
            raise ServerError("Token storage unavailable") from e

        self._check_record(record, claims, client_id, revoked)
        assert record is not None

        try:
            user = await self._users.get_user(record.user_id)
        except StorageError as e:
            raise ServerError("User directory unavailable") from e
        if user is None:
            raise InvalidGrantError("Refresh token subject no longer exists")

        triple = await self.issue_for_subject(user, record.scope, client_id)
        if self._rotate:
            await self._retire(refresh_token, triple, record.user_id)
        return triple

    async def _retire(self, old_token: str, triple: TokenTriple, user_id: str) -> None:
        # The old record is only revoked once its replacement is stored, so a
        # failed rotation leaves the presented token usable.
        try:
            rotated = await self._refresh_tokens.mark_revoked(old_token)
        except StorageError as e:
            await self._discard(triple)
            raise ServerError("Token storage unavailable") from e
        if not rotated:
            await self._discard(triple)
            logger.warning(
                "Refresh token reuse detected for user %s: %s",
                user_id,
                redact_token(old_token),
            )
            raise InvalidGrantError("Refresh token has already been used")

    async def _discard(self, triple: TokenTriple) -> None:
        try:
            await self._refresh_tokens.mark_revoked(triple.refresh_token)
        except StorageError as e:
            logger.error(
                "Could not discard unreturned refresh token %s: %s",
                redact_token(triple.refresh_token),
                e,
            )

    def _check_record(
        self,
        record: RefreshTokenRecord | None,
        claims: RefreshTokenClaims,
        client_id: str,
        revoked: bool,
    ) -> None:
        if record is None:
            raise InvalidGrantError("Unknown refresh token")
        if record.client_id != client_id:
            logger.warning(
                "Client %s presented a refresh token issued to %s",
                client_id,
                record.client_id,
            )
            raise InvalidGrantError("Refresh token was issued to another client")
        if record.user_id != claims.sub:
            logger.warning("Refresh token subject does not match its record")
            raise InvalidGrantError("Invalid refresh token")
        if revoked or record.revoked:
            raise InvalidGrantError("Refresh token has been revoked")
        if not record.is_usable(self._clock()):
            raise InvalidGrantError("Refresh token has expired")

    async def revoke(self, token: str) -> TokenKind:
        """Revoke an access or refresh token until its natural expiry.

        Returns:
            The kind of token that was revoked

        Raises:
            UnrecognizedTokenError: Neither a valid access nor refresh token
            ServerError: A durable store is unavailable
        """
        claims = self._verify_revocable(token)
        try:
            await self._ledger.add(fingerprint_token(token), claims.expires_at)
            if isinstance(claims, RefreshTokenClaims):
                await self._refresh_tokens.mark_revoked(token)
        except StorageError as e:
            raise ServerError("Token storage unavailable") from e

        kind = TokenKind(claims.type)
        logger.info("Revoked %s token for user %s", kind.value, claims.sub)
        return kind

    def _verify_revocable(self, token: str) -> AccessTokenClaims | RefreshTokenClaims:
        for kind in (TokenKind.ACCESS, TokenKind.REFRESH):
            try:
                claims = self._issuer.verify(token, kind)
            except TokenVerificationError:
                continue
            assert isinstance(claims, (AccessTokenClaims, RefreshTokenClaims))
            return claims
        raise UnrecognizedTokenError("Token is not a valid access or refresh token")

    @beartype
    def verify_access(self, token: str) -> AccessTokenClaims:
        """Verify signature, expiry and type of an access token.

        Raises:
            TokenVerificationError: The token is not a live access token
        """
        claims = self._issuer.verify(token, TokenKind.ACCESS)
        assert isinstance(claims, AccessTokenClaims)
        return claims

    @beartype
    async def is_revoked(self, token: str) -> bool:
        try:
            return await self._ledger.contains(fingerprint_token(token))
        except StorageError as e:
            raise ServerError("Token storage unavailable") from e

    async def introspect(
        self, token: str, token_type_hint: str | None = None
    ) -> IntrospectionResponse:
        """Report whether a token is currently active (RFC 7662).

        Never raises: anything that prevents a positive answer, including a
        storage outage, yields ``active=false``.
        """
        order = (
            (self._introspect_refresh, self._introspect_access)
            if token_type_hint == REFRESH_TOKEN_HINT
            else (self._introspect_access, self._introspect_refresh)
        )
        for check in order:
            try:
                response = await check(token)
            except (TokenVerificationError, StorageError) as e:
                logger.debug("Introspection check failed: %s", e)
                continue
            if response is not None:
                return response
        return IntrospectionResponse(active=False)

    async def _introspect_access(self, token: str) -> IntrospectionResponse | None:
        claims = self.verify_access(token)
        if await self._ledger.contains(fingerprint_token(token)):
            return IntrospectionResponse(active=False)
        return IntrospectionResponse(
            active=True,
            scope=claims.scope,
            client_id=claims.client_id,
            username=claims.email or None,
            token_type="access_token",
            exp=claims.exp,
            iat=claims.iat,
            sub=claims.sub,
            aud=claims.aud,
            iss=claims.iss,
            jti=claims.jti,
        )

    async def _introspect_refresh(self, token: str) -> IntrospectionResponse | None:
        claims = self._issuer.verify(token, TokenKind.REFRESH)
        assert isinstance(claims, RefreshTokenClaims)
        if await self._ledger.contains(fingerprint_token(token)):
            return IntrospectionResponse(active=False)
        record = await self._refresh_tokens.get(token)
        if record is None or not record.is_usable(self._clock()):
            return IntrospectionResponse(active=False)
        return IntrospectionResponse(
            active=True,
            scope=record.scope,
            client_id=record.client_id,
            token_type="refresh_token",
            exp=claims.exp,
            iat=claims.iat,
            sub=claims.sub,
            aud=claims.aud,
            iss=claims.iss,
            jti=claims.jti,
        )

    async def purge_expired(self) -> int:
        """Drop expired ledger entries and refresh records."""
        try:
            purged = await self._ledger.purge_expired()
            purged += await self._refresh_tokens.purge_expired()
        except StorageError as e:
            logger.error("Failed to purge expired tokens: %s", e)
            return 0
        if purged:
            logger.debug("Purged %d expired token entries", purged)
        return purged

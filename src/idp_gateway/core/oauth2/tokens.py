"""Signed token issuer for access, refresh and ID tokens."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import uuid4

import jwt
from beartype import beartype
from pydantic import ValidationError

from ...models.token import (
    AccessTokenClaims,
    IDTokenClaims,
    IssuedToken,
    RefreshTokenClaims,
    TokenKind,
    token_claims_adapter,
)
from ...models.user import User
from ..clock import Clock, utc_now
from ..config import Settings
from .errors import SignatureInvalidError, TokenExpiredError, WrongTokenTypeError

logger = logging.getLogger(__name__)


class TokenIssuer:
    """Mints and verifies HMAC-signed JWTs.

    Every token carries a ``type`` claim so that one kind can never be
    accepted where another is expected. Expiry is checked against the
    injected clock rather than PyJWT's, which keeps verification
    deterministic under test.
    """

    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        issuer: str = "oauth-service",
        audience: str = "oauth-service",
        access_ttl: timedelta = timedelta(hours=1),
        refresh_ttl: timedelta = timedelta(days=30),
        id_ttl: timedelta = timedelta(hours=1),
        clock: Clock = utc_now,
    ) -> None:
        """Initialize token issuer."""
        if not secret:
            raise ValueError("Signing secret must not be empty")
        self._secret = secret
        self._algorithm = algorithm
        self._issuer = issuer
        self._audience = audience
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self.id_ttl = id_ttl
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings, clock: Clock = utc_now) -> "TokenIssuer":
        return cls(
            secret=settings.jwt_secret,
            algorithm=settings.jwt_algorithm,
            issuer=settings.jwt_issuer,
            audience=settings.jwt_audience,
            access_ttl=settings.access_token_ttl,
            refresh_ttl=settings.refresh_token_ttl,
            id_ttl=settings.id_token_ttl,
            clock=clock,
        )

    @beartype
    def issue_access(self, user: User, scope: str, client_id: str) -> IssuedToken:
        """Create an access token for ``user`` on behalf of ``client_id``."""
        jti = str(uuid4())
        claims: dict[str, Any] = {
            "sub": user.id,
            "email": user.email,
            "name": user.name,
            "scope": scope,
            "client_id": client_id,
            "jti": jti,
        }
        return self._sign(claims, TokenKind.ACCESS, self.access_ttl, jti)

    @beartype
    def issue_refresh(self, subject_id: str) -> IssuedToken:
        """Create a refresh token carrying only the subject."""
        jti = str(uuid4())
        return self._sign(
            {"sub": subject_id, "jti": jti}, TokenKind.REFRESH, self.refresh_ttl, jti
        )

    @beartype
    def issue_id(self, user: User) -> IssuedToken:
        """Create an OpenID Connect ID token with the user's profile claims."""
        claims: dict[str, Any] = {
            "sub": user.id,
            "email": user.email,
            "email_verified": user.email_verified,
            "name": user.name,
        }
        # Optional profile claims are omitted rather than sent as null.
        for key in ("given_name", "family_name", "picture"):
            value = getattr(user, key)
            if value:
                claims[key] = value
        return self._sign(claims, TokenKind.ID, self.id_ttl, None)

    @beartype
    def verify(
        self, token: str, expected: TokenKind
    ) -> AccessTokenClaims | RefreshTokenClaims | IDTokenClaims:
        """Verify a token and return its typed claims.

        Args:
            token: Encoded JWT
            expected: Kind the caller is prepared to accept

        Returns:
            The claims variant matching ``expected``

        Raises:
            SignatureInvalidError: Bad signature, malformed token, wrong
                algorithm, issuer or audience
            TokenExpiredError: Token is past its expiry
            WrongTokenTypeError: Token is valid but of another kind
        """
        payload = self.decode(token)

        exp = payload.get("exp")
        if not isinstance(exp, int):
            raise SignatureInvalidError("Token has no usable exp claim")
        if datetime.fromtimestamp(exp, tz=timezone.utc) <= self._clock():
            raise TokenExpiredError("Token has expired")

        token_type = payload.get("type")
        if token_type != expected.value:
            raise WrongTokenTypeError(
                f"Expected a {expected.value} token, got {token_type!r}"
            )

        try:
            return token_claims_adapter.validate_python(payload)
        except ValidationError as e:
            raise SignatureInvalidError("Token claims are malformed") from e

    @beartype
    def decode(self, token: str) -> dict[str, Any]:
        """Check signature, issuer and audience without checking expiry."""
        try:
            return jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                audience=self._audience,
                issuer=self._issuer,
                options={
                    "verify_exp": False,
                    "verify_iat": False,
                    "require": ["exp", "iat", "sub", "iss", "aud"],
                },
            )
        except jwt.PyJWTError as e:
            logger.debug("Token rejected: %s", e)
            raise SignatureInvalidError("Token signature or format is invalid") from e

    @beartype
    def _sign(
        self,
        claims: dict[str, Any],
        kind: TokenKind,
        ttl: timedelta,
        jti: str | None,
    ) -> IssuedToken:
        now = self._clock()
        expires_at = now + ttl
        payload = {
            **claims,
            "iss": self._issuer,
            "aud": self._audience,
            "iat": int(now.timestamp()),
            "exp": int(expires_at.timestamp()),
            "type": kind.value,
        }
        token = jwt.encode(payload, self._secret, algorithm=self._algorithm)
        return IssuedToken(
            token=token,
            kind=kind,
            jti=jti,
            expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
        )

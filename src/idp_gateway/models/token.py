"""Token models: signed claim sets, issued artifacts and durable refresh records."""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Literal

from beartype import beartype
from pydantic import ConfigDict, Field, TypeAdapter

from .base import BaseModelConfig


class TokenKind(str, Enum):
    """Value of the ``type`` claim carried by every issued JWT."""

    ACCESS = "access"
    REFRESH = "refresh"
    ID = "id"


class _Claims(BaseModelConfig):
    """Registered claims shared by every token kind."""

    # Decoded JWTs come from outside the process; ignore claims we do not model.
    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        str_strip_whitespace=True,
        validate_default=True,
    )

    sub: str = Field(..., min_length=1)
    iss: str
    aud: str
    iat: int
    exp: int

    @property
    @beartype
    def expires_at(self) -> datetime:
        return datetime.fromtimestamp(self.exp, tz=timezone.utc)

    @property
    @beartype
    def issued_at(self) -> datetime:
        return datetime.fromtimestamp(self.iat, tz=timezone.utc)


class AccessTokenClaims(_Claims):
    type: Literal["access"] = "access"
    jti: str = Field(..., min_length=1)
    email: str = ""
    name: str = ""
    scope: str = ""
    client_id: str = Field(..., min_length=1)


class RefreshTokenClaims(_Claims):
    type: Literal["refresh"] = "refresh"
    jti: str = Field(..., min_length=1)


class IDTokenClaims(_Claims):
    type: Literal["id"] = "id"
    email: str = ""
    email_verified: bool = False
    name: str = ""
    given_name: str | None = None
    family_name: str | None = None
    picture: str | None = None


TokenClaims = Annotated[
    AccessTokenClaims | RefreshTokenClaims | IDTokenClaims,
    Field(discriminator="type"),
]

token_claims_adapter: TypeAdapter[
    AccessTokenClaims | RefreshTokenClaims | IDTokenClaims
] = TypeAdapter(TokenClaims)


class IssuedToken(BaseModelConfig):
    """A freshly signed token together with its bookkeeping data."""

    token: str = Field(..., min_length=1)
    kind: TokenKind
    jti: str | None = None
    expires_at: datetime


class TokenTriple(BaseModelConfig):
    """Access, refresh and ID tokens minted together for one subject."""

    access_token: str
    refresh_token: str
    id_token: str
    token_type: str = "Bearer"
    expires_in: int = Field(..., ge=0, description="Access token lifetime in seconds")
    scope: str = ""


class RefreshTokenRecord(BaseModelConfig):
    """Durable state of a refresh token. The token itself is stored hashed."""

    token_hash: str = Field(..., min_length=64, max_length=64)
    user_id: str = Field(..., min_length=1)
    client_id: str = Field(..., min_length=1)
    scope: str = ""
    expires_at: datetime
    revoked: bool = False
    created_at: datetime
    updated_at: datetime

    @beartype
    def is_usable(self, now: datetime) -> bool:
        """Unexpired and unrevoked."""
        return not self.revoked and now < self.expires_at

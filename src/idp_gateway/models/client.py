"""OAuth2 client registration model."""

from datetime import datetime, timezone
from enum import Enum

from beartype import beartype
from pydantic import Field, field_validator

from .base import BaseModelConfig


class ClientType(str, Enum):
    """RFC 6749 client types."""

    PUBLIC = "public"
    CONFIDENTIAL = "confidential"


class GrantType(str, Enum):
    """Grant types this server can issue tokens for."""

    AUTHORIZATION_CODE = "authorization_code"
    REFRESH_TOKEN = "refresh_token"


class OAuthClient(BaseModelConfig):
    """A registered relying party."""

    client_id: str = Field(..., min_length=1, description="Client identifier")
    client_name: str = Field(default="", description="Display name")
    client_type: ClientType = Field(default=ClientType.CONFIDENTIAL)
    client_secret_hash: str | None = Field(
        default=None, description="Argon2 hash of the client secret"
    )
    redirect_uris: tuple[str, ...] = Field(
        default=(), description="Exact redirect URIs accepted for this client"
    )
    grant_types: tuple[GrantType, ...] = Field(
        default=(GrantType.AUTHORIZATION_CODE, GrantType.REFRESH_TOKEN),
        description="Grant types the client may use",
    )
    scopes: tuple[str, ...] = Field(
        default=("openid", "email", "profile"),
        description="Scopes the client may request",
    )
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("client_secret_hash")
    @classmethod
    def validate_secret_hash(cls, v: str | None) -> str | None:
        """Normalize an empty hash to None."""
        return v or None

    @property
    @beartype
    def is_public(self) -> bool:
        return self.client_type == ClientType.PUBLIC

    @beartype
    def allows_grant(self, grant_type: str) -> bool:
        """Check whether the client is registered for a grant type."""
        return any(g.value == grant_type for g in self.grant_types)

"""End-user models: the local account and the upstream identity snapshot."""

from typing import Any

from pydantic import Field

from .base import BaseModelConfig, TimestampedModel


class FederatedIdentity(BaseModelConfig):
    """Identity claims returned by the upstream identity provider.

    Only ``sub`` is guaranteed; every other claim may be absent.
    """

    sub: str = Field(..., min_length=1, description="Subject identifier at the provider")
    email: str = Field(default="", description="User email address")
    email_verified: bool = Field(default=False)
    name: str = Field(default="", description="Full name")
    given_name: str | None = Field(default=None)
    family_name: str | None = Field(default=None)
    picture: str | None = Field(default=None, description="Profile picture URL")
    provider: str = Field(default="google", description="Identity provider name")

    @classmethod
    def from_claims(
        cls, claims: dict[str, Any], provider: str = "google"
    ) -> "FederatedIdentity":
        """Build from a raw OIDC userinfo payload, ignoring unknown claims."""
        return cls(
            sub=str(claims.get("sub") or claims.get("id") or ""),
            email=claims.get("email") or "",
            email_verified=bool(
                claims.get("email_verified", claims.get("verified_email", False))
            ),
            name=claims.get("name") or "",
            given_name=claims.get("given_name"),
            family_name=claims.get("family_name"),
            picture=claims.get("picture"),
            provider=provider,
        )


class User(TimestampedModel):
    """Local account linked to an upstream identity."""

    id: str = Field(..., min_length=1, description="Local subject identifier")
    provider_subject: str | None = Field(
        default=None, description="Subject identifier at the upstream provider"
    )
    email: str = Field(default="")
    email_verified: bool = Field(default=False)
    name: str = Field(default="")
    given_name: str | None = Field(default=None)
    family_name: str | None = Field(default=None)
    picture: str | None = Field(default=None)

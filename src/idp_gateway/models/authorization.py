"""Pending authorization state held by the session and code store."""

from datetime import datetime, timedelta

from beartype import beartype
from pydantic import Field

from .base import BaseModelConfig
from .user import FederatedIdentity


class AuthSession(BaseModelConfig):
    """Authorization request waiting for the upstream login to finish."""

    client_id: str = Field(..., min_length=1)
    redirect_uri: str = Field(..., min_length=1)
    state: str = Field(..., description="Opaque CSRF state echoed back to the client")
    scope: str = Field(default="")
    code_challenge: str | None = Field(default=None)
    code_challenge_method: str | None = Field(default=None)
    created_at: datetime = Field(...)

    @beartype
    def is_stale(self, now: datetime, ttl: timedelta) -> bool:
        return now - self.created_at > ttl


class AuthorizationCode(BaseModelConfig):
    """One-time code bound to the client, redirect and PKCE of its session."""

    code: str = Field(..., min_length=1)
    client_id: str = Field(..., min_length=1)
    redirect_uri: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    scope: str = Field(default="")
    code_challenge: str | None = Field(default=None)
    code_challenge_method: str | None = Field(default=None)
    identity: FederatedIdentity = Field(...)
    expires_at: datetime = Field(...)

    @beartype
    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

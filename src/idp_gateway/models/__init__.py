"""Domain models."""

from .authorization import AuthorizationCode, AuthSession
from .base import BaseModelConfig, TimestampedModel
from .client import ClientType, GrantType, OAuthClient
from .token import (
    AccessTokenClaims,
    IDTokenClaims,
    IssuedToken,
    RefreshTokenClaims,
    RefreshTokenRecord,
    TokenClaims,
    TokenKind,
    TokenTriple,
)
from .user import FederatedIdentity, User

__all__ = [
    "AccessTokenClaims",
    "AuthSession",
    "AuthorizationCode",
    "BaseModelConfig",
    "ClientType",
    "FederatedIdentity",
    "GrantType",
    "IDTokenClaims",
    "IssuedToken",
    "OAuthClient",
    "RefreshTokenClaims",
    "RefreshTokenRecord",
    "TimestampedModel",
    "TokenClaims",
    "TokenKind",
    "TokenTriple",
    "User",
]

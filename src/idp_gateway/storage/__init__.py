"""Durable collaborators: clients, users, refresh tokens and the revocation ledger."""

from .memory import (
    InMemoryClientDirectory,
    InMemoryRefreshTokenRepository,
    InMemoryRevocationLedger,
    InMemoryUserDirectory,
)
from .protocols import (
    ClientDirectory,
    RefreshTokenRepository,
    RevocationLedger,
    StorageError,
    UserDirectory,
)

__all__ = [
    "ClientDirectory",
    "InMemoryClientDirectory",
    "InMemoryRefreshTokenRepository",
    "InMemoryRevocationLedger",
    "InMemoryUserDirectory",
    "RefreshTokenRepository",
    "RevocationLedger",
    "StorageError",
    "UserDirectory",
]

"""Security utilities for secret hashing, token fingerprints and random values."""

import hashlib
import hmac
import secrets

from beartype import beartype
from passlib.context import CryptContext

# Client secret hashing
pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")


@beartype
def hash_secret(secret: str) -> str:
    """Hash a client secret for storage."""
    if not secret:
        raise ValueError("Secret must not be empty")
    return pwd_context.hash(secret)


@beartype
def verify_secret(secret: str, secret_hash: str) -> bool:
    """Verify a client secret against its stored hash.

    Malformed hashes are treated as a mismatch.
    """
    try:
        return bool(pwd_context.verify(secret, secret_hash))
    except (ValueError, TypeError):
        return False


@beartype
def fingerprint_token(token: str) -> str:
    """SHA-256 hex digest used to store tokens without keeping them raw."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


@beartype
def generate_token_value(nbytes: int = 32) -> str:
    """Generate a URL-safe random value for codes and session ids."""
    return secrets.token_urlsafe(nbytes)


@beartype
def generate_identifier(length: int = 16) -> str:
    """Generate a random alphanumeric identifier."""
    alphabet = "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
    return "".join(secrets.choice(alphabet) for _ in range(length))


@beartype
def constant_time_compare(left: str, right: str) -> bool:
    """Compare two strings without leaking timing information."""
    return hmac.compare_digest(left.encode("utf-8"), right.encode("utf-8"))

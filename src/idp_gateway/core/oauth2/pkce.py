"""PKCE (RFC 7636) challenge and verifier handling."""

import base64
import hashlib
import re
import secrets
from typing import Final

from beartype import beartype

from ...models.client import ClientType
from ..security import constant_time_compare
from .errors import InvalidChallengeError

METHOD_PLAIN: Final = "plain"
METHOD_S256: Final = "S256"
SUPPORTED_METHODS: Final = (METHOD_PLAIN, METHOD_S256)

MIN_LENGTH: Final = 43
MAX_LENGTH: Final = 128

# Challenges are base64url output, verifiers use the RFC 7636 unreserved set.
_CHALLENGE_RE: Final = re.compile(r"^[A-Za-z0-9_-]{43,128}$")
_VERIFIER_RE: Final = re.compile(r"^[A-Za-z0-9\-._~]{43,128}$")


def _s256(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


class PKCEValidator:
    """Stateless validation of PKCE challenges and verifiers."""

    @beartype
    def validate_challenge(self, challenge: str | None, method: str | None = None) -> None:
        """Check a challenge received at the authorization endpoint.

        Args:
            challenge: The ``code_challenge`` parameter
            method: The ``code_challenge_method`` parameter, absent means plain

        Raises:
            InvalidChallengeError: If the challenge or method is malformed
        """
        if not challenge:
            raise InvalidChallengeError("code_challenge is required")
        if method and method not in SUPPORTED_METHODS:
            raise InvalidChallengeError(
                f"code_challenge_method must be one of {', '.join(SUPPORTED_METHODS)}"
            )
        if not _CHALLENGE_RE.match(challenge):
            raise InvalidChallengeError(
                f"code_challenge must be {MIN_LENGTH}-{MAX_LENGTH} base64url characters"
            )

    @beartype
    def validate_verifier(self, verifier: str | None) -> bool:
        """Check the format of a code verifier."""
        return bool(verifier) and _VERIFIER_RE.match(verifier or "") is not None

    @beartype
    def verify_verifier(
        self, verifier: str | None, challenge: str, method: str | None = None
    ) -> bool:
        """Check a verifier against the challenge stored with the code.

        Never raises: any malformed input is simply a failed verification.
        """
        if not self.validate_verifier(verifier):
            return False
        assert verifier is not None

        if not method or method == METHOD_PLAIN:
            return constant_time_compare(verifier, challenge)
        if method == METHOD_S256:
            return constant_time_compare(_s256(verifier), challenge)
        return False

    @beartype
    def generate_challenge(self, verifier: str, method: str = METHOD_S256) -> str:
        """Derive the challenge a client would send for ``verifier``."""
        if method == METHOD_PLAIN:
            return verifier
        if method == METHOD_S256:
            return _s256(verifier)
        raise InvalidChallengeError(f"Unsupported code_challenge_method: {method}")

    @staticmethod
    @beartype
    def generate_verifier(nbytes: int = 32) -> str:
        """Random verifier; 32 bytes encode to 43 characters."""
        return secrets.token_urlsafe(nbytes)

    @staticmethod
    @beartype
    def should_use_pkce(client_type: ClientType) -> bool:
        """Public clients cannot keep a secret and must bind codes with PKCE."""
        return client_type == ClientType.PUBLIC

"""OAuth2 protocol errors and the component errors that map onto them.

Every error raised by the engine derives from :class:`OAuth2Error`, so the
HTTP layer renders any of them with ``to_dict()`` and ``status_code``.
Component errors keep a precise type for tests and logs while carrying the
RFC 6749 error code the client is allowed to see.
"""

from typing import Any

from beartype import beartype


class OAuth2Error(Exception):
    """OAuth2 specific errors."""

    error_code = "invalid_request"
    default_status = 400
    retryable = False

    def __init__(
        self,
        error_description: str | None = None,
        error_uri: str | None = None,
        status_code: int | None = None,
        error: str | None = None,
    ) -> None:
        """Initialize OAuth2 error."""
        self.error = error or self.error_code
        self.error_description = error_description
        self.error_uri = error_uri
        self.status_code = status_code or self.default_status
        super().__init__(error_description or self.error)

    @beartype
    def to_dict(self) -> dict[str, Any]:
        """Convert to OAuth2 error response."""
        response: dict[str, Any] = {"error": self.error}
        if self.error_description:
            response["error_description"] = self.error_description
        if self.error_uri:
            response["error_uri"] = self.error_uri
        return response

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.error!r}, {self.error_description!r})"


class InvalidRequestError(OAuth2Error):
    error_code = "invalid_request"


class InvalidClientError(OAuth2Error):
    error_code = "invalid_client"
    default_status = 401


class InvalidGrantError(OAuth2Error):
    error_code = "invalid_grant"


class UnauthorizedClientError(OAuth2Error):
    error_code = "unauthorized_client"


class UnsupportedGrantTypeError(OAuth2Error):
    error_code = "unsupported_grant_type"


class UnsupportedResponseTypeError(OAuth2Error):
    error_code = "unsupported_response_type"


class InvalidTokenError(OAuth2Error):
    error_code = "invalid_token"
    default_status = 401


class ServerError(OAuth2Error):
    """Infrastructure failure; the same request may succeed later."""

    error_code = "server_error"
    default_status = 500
    retryable = True


# Component errors


class InvalidChallengeError(InvalidRequestError):
    """PKCE code challenge or method is malformed."""


class UnknownClientError(InvalidClientError):
    """No client is registered under the given id."""


class BadSecretError(InvalidClientError):
    """Confidential client presented a missing or wrong secret."""


class RedirectMismatchError(InvalidRequestError):
    """Redirect URI is not registered for the client."""


class UnknownSessionError(InvalidRequestError):
    """Authorization session is missing, consumed or stale."""


class TokenVerificationError(InvalidTokenError):
    """Base class for signed token verification failures."""


class SignatureInvalidError(TokenVerificationError):
    """Token is malformed, tampered with, or from another issuer or audience."""


class TokenExpiredError(TokenVerificationError):
    """Token is past its exp claim."""


class WrongTokenTypeError(TokenVerificationError):
    """Token verified but carries a different type claim than expected."""


class UnrecognizedTokenError(InvalidTokenError):
    """Token is neither a valid access token nor a valid refresh token."""

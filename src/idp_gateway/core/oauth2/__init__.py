"""OAuth2 authorization-code and token lifecycle engine."""

from .clients import ClientValidator
from .errors import OAuth2Error
from .lifecycle import TokenLifecycleCoordinator
from .pkce import PKCEValidator
from .server import AuthorizationRedirect, AuthorizationServer, ClientRedirect
from .session_store import SessionCodeStore
from .tokens import TokenIssuer

__all__ = [
    "AuthorizationRedirect",
    "AuthorizationServer",
    "ClientRedirect",
    "ClientValidator",
    "OAuth2Error",
    "PKCEValidator",
    "SessionCodeStore",
    "TokenIssuer",
    "TokenLifecycleCoordinator",
]

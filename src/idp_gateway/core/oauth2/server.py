"""OAuth2 authorization server: the operations exposed to the HTTP layer."""

import logging
from datetime import timedelta
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from attrs import frozen
from beartype import beartype

from ...models.authorization import AuthorizationCode, AuthSession
from ...models.client import GrantType
from ...models.token import TokenTriple
from ...models.user import FederatedIdentity
from ...schemas.oauth2 import IntrospectionResponse, UserInfoResponse
from ...storage.protocols import StorageError, UserDirectory
from ..clock import Clock, utc_now
from ..federation import IdentityFederation
from ..logging_utils import redact_token
from ..result_types import Err, Ok, Result
from ..security import generate_token_value
from .clients import ClientValidator
from .errors import (
    InvalidGrantError,
    InvalidRequestError,
    InvalidTokenError,
    OAuth2Error,
    ServerError,
    TokenVerificationError,
    UnknownSessionError,
    UnsupportedGrantTypeError,
    UnsupportedResponseTypeError,
)
from .lifecycle import TokenLifecycleCoordinator
from .pkce import PKCEValidator
from .session_store import SessionCodeStore

logger = logging.getLogger(__name__)

# Shared by every code-binding failure so callers cannot tell which check failed.
_INVALID_CODE = "Invalid authorization code"


@frozen
class AuthorizationRedirect:
    """Where to send the browser after an authorization request was accepted."""

    session_token: str
    federation_url: str


@frozen
class ClientRedirect:
    """Where to send the browser back to the client."""

    location: str
    state: str
    code: str | None = None
    error: str | None = None


@beartype
def append_query(url: str, params: dict[str, str]) -> str:
    """Add query parameters to ``url``, keeping any it already has."""
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.extend(params.items())
    return urlunsplit(parts._replace(query=urlencode(query)))


class AuthorizationServer:
    """Authorization-code flow with PKCE, refresh, introspection and revocation.

    Every operation returns a :class:`Result`; ``OAuth2Error`` never escapes
    and raw storage or federation failures are reported as ``server_error``.
    """

    def __init__(
        self,
        clients: ClientValidator,
        store: SessionCodeStore,
        lifecycle: TokenLifecycleCoordinator,
        users: UserDirectory,
        federation: IdentityFederation,
        pkce: PKCEValidator | None = None,
        code_ttl: timedelta = timedelta(minutes=10),
        default_scope: str = "openid email profile",
        require_pkce_for_public_clients: bool = True,
        clock: Clock = utc_now,
    ) -> None:
        """Initialize authorization server."""
        self._clients = clients
        self._store = store
        self._lifecycle = lifecycle
        self._users = users
        self._federation = federation
        self._pkce = pkce or PKCEValidator()
        self._code_ttl = code_ttl
        self._default_scope = default_scope
        self._require_pkce = require_pkce_for_public_clients
        self._clock = clock

    async def begin_authorization(
        self,
        client_id: str,
        redirect_uri: str,
        state: str | None = None,
        code_challenge: str | None = None,
        code_challenge_method: str | None = None,
        scope: str | None = None,
        response_type: str = "code",
    ) -> Result[AuthorizationRedirect, OAuth2Error]:
        """Handle an authorization request.

        Args:
            client_id: Client identifier
            redirect_uri: Where the client wants the code delivered
            state: Client CSRF state, generated when absent
            code_challenge: PKCE code challenge
            code_challenge_method: PKCE challenge method ("S256" or "plain")
            scope: Space-separated scopes, the configured default when absent
            response_type: Must be "code"

        Returns:
            Result containing the session token and upstream login URL
        """
        try:
            if response_type != "code":
                raise UnsupportedResponseTypeError(
                    f"response_type {response_type!r} is not supported"
                )

            client = await self._clients.resolve_for_authorization(client_id, redirect_uri)
            self._clients.ensure_grant_allowed(client, GrantType.AUTHORIZATION_CODE.value)

            if code_challenge or code_challenge_method:
                self._pkce.validate_challenge(code_challenge, code_challenge_method)
            elif self._require_pkce and self._pkce.should_use_pkce(client.client_type):
                raise InvalidRequestError("Public clients must use PKCE")

            requested_scope = " ".join((scope or self._default_scope).split())
            session_token = generate_token_value()
            self._store.put_session(
                session_token,
                AuthSession(
                    client_id=client.client_id,
                    redirect_uri=redirect_uri,
                    state=state or generate_token_value(16),
                    scope=requested_scope,
                    code_challenge=code_challenge,
                    code_challenge_method=code_challenge_method,
                    created_at=self._clock(),
                ),
            )

            # The session token doubles as the upstream state parameter.
            federation_url = self._federation.build_authorization_url(
                session_token, requested_scope
            )
            logger.info("Authorization started for client %s", client.client_id)
            return Ok(AuthorizationRedirect(session_token, federation_url))

        except OAuth2Error as e:
            return Err(e)
        except Exception:
            logger.exception("Unexpected error in begin_authorization")
            return Err(ServerError("Unexpected error"))

    async def complete_federation(
        self, session_token: str, identity: FederatedIdentity
    ) -> Result[ClientRedirect, OAuth2Error]:
        """Consume a pending session and mint a one-time authorization code."""
        try:
            session = self._store.pop_session(session_token)
            if session is None:
                raise UnknownSessionError("Unknown or expired authorization session")

            try:
                user = await self._users.find_or_create(identity)
            except StorageError as e:
                raise ServerError("User directory unavailable") from e

            code = generate_token_value()
            self._store.put_code(
                AuthorizationCode(
                    code=code,
                    client_id=session.client_id,
                    redirect_uri=session.redirect_uri,
                    user_id=user.id,
                    scope=session.scope,
                    code_challenge=session.code_challenge,
                    code_challenge_method=session.code_challenge_method,
                    identity=identity,
                    expires_at=self._clock() + self._code_ttl,
                )
            )

            location = append_query(
                session.redirect_uri, {"code": code, "state": session.state}
            )
            logger.info(
                "Issued authorization code %s to client %s",
                redact_token(code),
                session.client_id,
            )
            return Ok(ClientRedirect(location=location, state=session.state, code=code))

        except OAuth2Error as e:
            return Err(e)
        except Exception:
            logger.exception("Unexpected error in complete_federation")
            return Err(ServerError("Unexpected error"))

    async def handle_federation_callback(
        self,
        session_token: str,
        code: str | None = None,
        error: str | None = None,
    ) -> Result[ClientRedirect, OAuth2Error]:
        """Finish the upstream login and redirect back to the client.

        An upstream ``error`` (e.g. the user declined consent) is relayed to
        the client as ``access_denied``.
        """
        session = self._store.get_session(session_token)
        if session is None:
            return Err(UnknownSessionError("Unknown or expired authorization session"))

        if error or not code:
            self._store.delete_session(session_token)
            logger.info("Upstream login failed for client %s: %s", session.client_id, error)
            location = append_query(
                session.redirect_uri, {"error": "access_denied", "state": session.state}
            )
            return Ok(
                ClientRedirect(location=location, state=session.state, error="access_denied")
            )

        try:
            identity = await self._federation.authenticate(code)
        except Exception:
            logger.exception("Unexpected error during federation")
            return Err(ServerError("Upstream identity provider failed"))
        if isinstance(identity, Err):
            logger.error(
                "Federation with %s failed: %s",
                self._federation.provider_name,
                identity.error,
            )
            return Err(ServerError("Upstream identity provider failed"))

        return await self.complete_federation(session_token, identity.value)

    async def redeem_code(
        self,
        code: str,
        client_id: str,
        client_secret: str | None,
        redirect_uri: str,
        code_verifier: str | None = None,
    ) -> Result[TokenTriple, OAuth2Error]:
        """Exchange an authorization code for a token triple.

        The code is consumed before its bindings are checked, so a code
        presented with the wrong client, redirect or verifier is burnt.
        """
        try:
            client = await self._clients.authenticate(client_id, client_secret)
            self._clients.ensure_grant_allowed(client, GrantType.AUTHORIZATION_CODE.value)

            entry = self._store.take_code(code)
            if entry is None:
                logger.info("Unknown, expired or reused code %s", redact_token(code))
                raise InvalidGrantError(_INVALID_CODE)
            if entry.client_id != client.client_id:
                logger.warning(
                    "Code issued to %s presented by %s", entry.client_id, client.client_id
                )
                raise InvalidGrantError(_INVALID_CODE)
            if entry.redirect_uri != redirect_uri:
                logger.warning("redirect_uri mismatch for client %s", client.client_id)
                raise InvalidGrantError(_INVALID_CODE)

            if entry.code_challenge:
                if not code_verifier:
                    raise InvalidRequestError("code_verifier is required")
                if not self._pkce.verify_verifier(
                    code_verifier, entry.code_challenge, entry.code_challenge_method
                ):
                    logger.warning("PKCE verification failed for client %s", client.client_id)
                    raise InvalidGrantError(_INVALID_CODE)

            # Tokens carry the profile captured with the code, not whatever a
            # later login wrote to the directory.
            try:
                user = await self._users.find_or_create(entry.identity)
            except StorageError as e:
                raise ServerError("User directory unavailable") from e
            if user.id != entry.user_id:
                logger.warning(
                    "Code subject %s now resolves to user %s", entry.user_id, user.id
                )
                raise InvalidGrantError(_INVALID_CODE)

            triple = await self._lifecycle.issue_for_subject(
                user, entry.scope, client.client_id
            )
            return Ok(triple)

        except OAuth2Error as e:
            return Err(e)
        except Exception:
            logger.exception("Unexpected error in redeem_code")
            return Err(ServerError("Unexpected error"))

    async def refresh_tokens(
        self,
        refresh_token: str,
        client_id: str,
        client_secret: str | None = None,
    ) -> Result[TokenTriple, OAuth2Error]:
        """Exchange a refresh token for a new token triple."""
        try:
            client = await self._clients.authenticate(client_id, client_secret)
            self._clients.ensure_grant_allowed(client, GrantType.REFRESH_TOKEN.value)
            return Ok(await self._lifecycle.refresh(refresh_token, client.client_id))
        except OAuth2Error as e:
            return Err(e)
        except Exception:
            logger.exception("Unexpected error in refresh_tokens")
            return Err(ServerError("Unexpected error"))

    async def token(
        self,
        grant_type: str,
        client_id: str | None,
        client_secret: str | None = None,
        code: str | None = None,
        redirect_uri: str | None = None,
        code_verifier: str | None = None,
        refresh_token: str | None = None,
    ) -> Result[TokenTriple, OAuth2Error]:
        """Token endpoint dispatch on ``grant_type``."""
        if not client_id:
            return Err(InvalidRequestError("client_id is required"))

        if grant_type == GrantType.AUTHORIZATION_CODE.value:
            if not code or not redirect_uri:
                return Err(InvalidRequestError("code and redirect_uri are required"))
            return await self.redeem_code(
                code, client_id, client_secret, redirect_uri, code_verifier
            )

        if grant_type == GrantType.REFRESH_TOKEN.value:
            if not refresh_token:
                return Err(InvalidRequestError("refresh_token is required"))
            return await self.refresh_tokens(refresh_token, client_id, client_secret)

        return Err(UnsupportedGrantTypeError(f"grant_type {grant_type!r} is not supported"))

    async def introspect(
        self, token: str, token_type_hint: str | None = None
    ) -> IntrospectionResponse:
        """Report token state; never fails."""
        try:
            return await self._lifecycle.introspect(token, token_type_hint)
        except Exception:
            logger.exception("Unexpected error in introspect")
            return IntrospectionResponse(active=False)

    async def revoke(self, token: str, token_type_hint: str | None = None) -> bool:
        """Revoke a token. Always reports success to the caller."""
        try:
            kind = await self._lifecycle.revoke(token)
            logger.debug("Revocation of %s token accepted", kind.value)
        except OAuth2Error as e:
            logger.info("Revocation ignored (%s): %s", e.error, e.error_description)
        except Exception:
            logger.exception("Unexpected error in revoke")
        return True

    async def get_user_info(self, access_token: str) -> Result[UserInfoResponse, OAuth2Error]:
        """OpenID Connect userinfo for a live access token."""
        try:
            try:
                claims = self._lifecycle.verify_access(access_token)
            except TokenVerificationError as e:
                raise InvalidTokenError("Invalid access token") from e

            if await self._lifecycle.is_revoked(access_token):
                raise InvalidTokenError("Access token has been revoked")

            try:
                user = await self._users.get_user(claims.sub)
            except StorageError as e:
                raise ServerError("User directory unavailable") from e
            if user is None:
                raise InvalidTokenError("Unknown subject")
            return Ok(UserInfoResponse.from_user(user))

        except OAuth2Error as e:
            return Err(e)
        except Exception:
            logger.exception("Unexpected error in get_user_info")
            return Err(ServerError("Unexpected error"))

    @property
    def store(self) -> SessionCodeStore:
        return self._store

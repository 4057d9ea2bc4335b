"""Client authentication and redirect-URI binding."""

import logging

from beartype import beartype

from ...models.client import ClientType, GrantType, OAuthClient
from ...storage.protocols import ClientDirectory, StorageError
from ..security import verify_secret
from .errors import (
    BadSecretError,
    RedirectMismatchError,
    ServerError,
    UnauthorizedClientError,
    UnknownClientError,
)

logger = logging.getLogger(__name__)


class ClientValidator:
    """Checks client credentials and registered redirect URIs."""

    def __init__(
        self,
        directory: ClientDirectory,
        allow_auto_registration: bool = False,
        default_scope: str = "openid email profile",
    ) -> None:
        """Initialize client validator.

        Args:
            directory: Source of client registrations
            allow_auto_registration: Register unknown client ids as public
                clients on their first authorization request. Off by default;
                enabling it lets anyone mint codes for arbitrary redirect URIs.
            default_scope: Scopes granted to auto-registered clients
        """
        self._directory = directory
        self._allow_auto_registration = allow_auto_registration
        self._default_scope = default_scope

    async def get(self, client_id: str) -> OAuthClient:
        """Look up a client.

        Raises:
            UnknownClientError: No such client
            ServerError: The directory is unavailable
        """
        try:
            client = await self._directory.get_client(client_id)
        except StorageError as e:
            raise ServerError("Client directory unavailable") from e
        if client is None:
            raise UnknownClientError("Unknown client")
        return client

    async def authenticate(self, client_id: str, client_secret: str | None) -> OAuthClient:
        """Authenticate a client at the token endpoint.

        Public clients are accepted on id alone. Confidential clients must
        present the secret matching their stored hash.

        Raises:
            UnknownClientError: No such client
            BadSecretError: Missing or wrong secret
        """
        client = await self.get(client_id)
        if client.client_type == ClientType.PUBLIC:
            return client

        if not client_secret or not client.client_secret_hash:
            logger.warning("Client %s sent no secret", client_id)
            raise BadSecretError("Client authentication failed")
        if not verify_secret(client_secret, client.client_secret_hash):
            logger.warning("Client %s sent a wrong secret", client_id)
            raise BadSecretError("Client authentication failed")
        return client

    @beartype
    def validate_redirect(self, client: OAuthClient, redirect_uri: str) -> None:
        """Require an exact match against a registered redirect URI."""
        if redirect_uri not in client.redirect_uris:
            logger.warning(
                "Client %s used unregistered redirect_uri %s", client.client_id, redirect_uri
            )
            raise RedirectMismatchError("redirect_uri is not registered for this client")

    @beartype
    def ensure_grant_allowed(self, client: OAuthClient, grant_type: str) -> None:
        if not client.allows_grant(grant_type):
            raise UnauthorizedClientError(
                f"Client is not allowed to use the {grant_type} grant"
            )

    async def resolve_for_authorization(
        self, client_id: str, redirect_uri: str
    ) -> OAuthClient:
        """Find the client for an authorization request and check its redirect.

        With auto-registration enabled an unknown client id is registered as
        a public client bound to ``redirect_uri``.
        """
        try:
            client = await self.get(client_id)
        except UnknownClientError:
            if not self._allow_auto_registration:
                raise
            client = await self._register(client_id, redirect_uri)

        self.validate_redirect(client, redirect_uri)
        return client

    async def _register(self, client_id: str, redirect_uri: str) -> OAuthClient:
        client = OAuthClient(
            client_id=client_id,
            client_name=client_id,
            client_type=ClientType.PUBLIC,
            redirect_uris=(redirect_uri,),
            grant_types=(GrantType.AUTHORIZATION_CODE, GrantType.REFRESH_TOKEN),
            scopes=tuple(self._default_scope.split()),
        )
        try:
            registered = await self._directory.create_client(client)
        except StorageError as e:
            raise ServerError("Client directory unavailable") from e
        logger.info("Auto-registered public client %s", client_id)
        return registered

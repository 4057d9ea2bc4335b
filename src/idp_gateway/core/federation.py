"""Upstream identity provider federation."""

import logging
from abc import ABC, abstractmethod
from typing import Any
from urllib.parse import urlencode

import httpx
from beartype import beartype
from pydantic import ValidationError

from ..models.user import FederatedIdentity
from .config import Settings
from .result_types import Err, Ok, Result

logger = logging.getLogger(__name__)


class IdentityFederation(ABC):
    """Base class for upstream OAuth2 / OIDC identity providers."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        scopes: list[str],
    ) -> None:
        """Initialize identity provider.

        Args:
            client_id: OAuth/OIDC client ID registered upstream
            client_secret: OAuth/OIDC client secret
            redirect_uri: Our callback URL registered upstream
            scopes: Default scopes to request
        """
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.scopes = scopes

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Get provider name."""

    @abstractmethod
    def build_authorization_url(self, state: str, scope: str | None = None) -> str:
        """URL the browser is sent to for the upstream login."""

    @abstractmethod
    async def exchange_code(self, code: str) -> Result[dict[str, Any], str]:
        """Exchange the upstream authorization code for upstream tokens."""

    @abstractmethod
    async def fetch_profile(self, access_token: str) -> Result[FederatedIdentity, str]:
        """Fetch the signed-in user's profile with an upstream access token."""

    async def authenticate(self, code: str) -> Result[FederatedIdentity, str]:
        """Exchange ``code`` and fetch the resulting identity."""
        tokens = await self.exchange_code(code)
        if isinstance(tokens, Err):
            return tokens

        access_token = tokens.value.get("access_token")
        if not access_token:
            return Err("Token response did not include an access_token")
        return await self.fetch_profile(access_token)


class GoogleIdentityProvider(IdentityFederation):
    """Google OpenID Connect provider."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        scopes: list[str] | None = None,
        auth_url: str = "https://accounts.google.com/o/oauth2/v2/auth",
        token_url: str = "https://oauth2.googleapis.com/token",
        userinfo_url: str = "https://www.googleapis.com/oauth2/v3/userinfo",
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize Google provider.

        Args:
            http_client: Optional shared client; a short-lived client is
                created per call when omitted
        """
        super().__init__(
            client_id=client_id,
            client_secret=client_secret,
            redirect_uri=redirect_uri,
            scopes=scopes or ["openid", "email", "profile"],
        )
        self.auth_url = auth_url
        self.token_url = token_url
        self.userinfo_url = userinfo_url
        self.timeout = timeout
        self._http_client = http_client

    @classmethod
    def from_settings(
        cls, settings: Settings, http_client: httpx.AsyncClient | None = None
    ) -> "GoogleIdentityProvider":
        return cls(
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
            redirect_uri=settings.google_redirect_url,
            scopes=settings.default_scope.split(),
            auth_url=settings.google_auth_url,
            token_url=settings.google_token_url,
            userinfo_url=settings.google_userinfo_url,
            timeout=settings.federation_timeout_seconds,
            http_client=http_client,
        )

    @property
    def provider_name(self) -> str:
        """Get provider name."""
        return "google"

    @beartype
    def build_authorization_url(self, state: str, scope: str | None = None) -> str:
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": scope or " ".join(self.scopes),
            "state": state,
            # Ask for an upstream refresh token and force the consent screen.
            "access_type": "offline",
            "prompt": "consent",
        }
        return f"{self.auth_url}?{urlencode(params)}"

    @beartype
    async def exchange_code(self, code: str) -> Result[dict[str, Any], str]:
        """Exchange authorization code for tokens.

        Args:
            code: Authorization code from the Google callback

        Returns:
            Result containing the token response or error
        """
        data = {
            "code": code,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "redirect_uri": self.redirect_uri,
            "grant_type": "authorization_code",
        }
        try:
            response = await self._request("POST", self.token_url, data=data)
        except httpx.TimeoutException:
            return Err("Token exchange request timed out")
        except httpx.RequestError as e:
            return Err(f"Network error during token exchange: {str(e)}")

        if response.status_code != 200:
            return Err(f"Token exchange failed: {self._error_message(response)}")

        try:
            tokens = response.json()
        except ValueError:
            return Err("Token exchange returned a non-JSON body")
        if not isinstance(tokens, dict):
            return Err("Token exchange returned an unexpected body")
        return Ok(tokens)

    @beartype
    async def fetch_profile(self, access_token: str) -> Result[FederatedIdentity, str]:
        """Get user information from Google.

        Args:
            access_token: Google access token

        Returns:
            Result containing the identity or error
        """
        try:
            response = await self._request(
                "GET",
                self.userinfo_url,
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except httpx.TimeoutException:
            return Err("User info request timed out")
        except httpx.RequestError as e:
            return Err(f"Network error fetching user info: {str(e)}")

        if response.status_code != 200:
            return Err(f"Failed to get user info: HTTP {response.status_code}")

        try:
            claims = response.json()
            return Ok(FederatedIdentity.from_claims(claims, provider=self.provider_name))
        except (ValueError, AttributeError, ValidationError) as e:
            logger.warning("Unusable profile from %s: %s", self.provider_name, e)
            return Err("User info response was missing required claims")

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        if self._http_client is not None:
            return await self._http_client.request(
                method, url, timeout=self.timeout, **kwargs
            )
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.request(method, url, **kwargs)

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return f"HTTP {response.status_code}"
        if isinstance(body, dict):
            return str(body.get("error_description") or body.get("error") or "Unknown error")
        return f"HTTP {response.status_code}"

"""OAuth2 / OpenID Connect wire schemas."""

from pydantic import BaseModel, ConfigDict, Field

from ..models.token import TokenTriple
from ..models.user import User

_SCHEMA_CONFIG = ConfigDict(
    frozen=True,
    extra="forbid",
    validate_assignment=True,
    str_strip_whitespace=True,
    validate_default=True,
)


# Clients may send parameters this server does not use; RFC 6749 section 3.2
# says unrecognized request parameters are ignored.
_REQUEST_CONFIG = ConfigDict(
    frozen=True,
    extra="ignore",
    str_strip_whitespace=True,
)


class TokenRequest(BaseModel):
    """Token endpoint parameters, from a form or a JSON body."""

    model_config = _REQUEST_CONFIG

    grant_type: str = Field(..., min_length=1)
    client_id: str | None = None
    client_secret: str | None = None
    code: str | None = None
    redirect_uri: str | None = None
    code_verifier: str | None = None
    refresh_token: str | None = None


class IntrospectionRequest(BaseModel):
    """Introspection endpoint parameters, from a form or a JSON body."""

    model_config = _REQUEST_CONFIG

    token: str = Field(..., min_length=1)
    token_type_hint: str | None = None


class TokenResponse(BaseModel):
    """Successful token endpoint response (RFC 6749 section 5.1)."""

    model_config = _SCHEMA_CONFIG

    access_token: str
    token_type: str = "Bearer"
    expires_in: int = Field(..., ge=0)
    refresh_token: str
    id_token: str
    scope: str | None = None

    @classmethod
    def from_triple(cls, triple: TokenTriple) -> "TokenResponse":
        return cls(
            access_token=triple.access_token,
            token_type=triple.token_type,
            expires_in=triple.expires_in,
            refresh_token=triple.refresh_token,
            id_token=triple.id_token,
            scope=triple.scope or None,
        )


class IntrospectionResponse(BaseModel):
    """Token introspection response (RFC 7662). Only ``active`` is mandatory."""

    model_config = _SCHEMA_CONFIG

    active: bool
    scope: str | None = None
    client_id: str | None = None
    username: str | None = None
    token_type: str | None = None
    exp: int | None = None
    iat: int | None = None
    sub: str | None = None
    aud: str | None = None
    iss: str | None = None
    jti: str | None = None


class ErrorResponse(BaseModel):
    """OAuth2 error body."""

    model_config = _SCHEMA_CONFIG

    error: str
    error_description: str | None = None
    error_uri: str | None = None


class UserInfoResponse(BaseModel):
    """OpenID Connect userinfo response."""

    model_config = _SCHEMA_CONFIG

    sub: str
    email: str | None = None
    email_verified: bool = False
    name: str | None = None
    given_name: str | None = None
    family_name: str | None = None
    picture: str | None = None

    @classmethod
    def from_user(cls, user: User) -> "UserInfoResponse":
        return cls(
            sub=user.id,
            email=user.email or None,
            email_verified=user.email_verified,
            name=user.name or None,
            given_name=user.given_name,
            family_name=user.family_name,
            picture=user.picture,
        )

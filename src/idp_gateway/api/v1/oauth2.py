# IdP Gateway - OAuth2 / OpenID Connect Authorization Server
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""OAuth2 authorization endpoints."""

from typing import Any, TypeVar

from beartype import beartype
from fastapi import APIRouter, Depends, Form, Query, Request, Response
from fastapi.responses import JSONResponse, RedirectResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, ValidationError

from ...core.config import Settings
from ...core.oauth2.errors import InvalidRequestError, InvalidTokenError, OAuth2Error
from ...core.oauth2.server import AuthorizationServer
from ...core.result_types import Err, Ok, Result
from ...schemas.oauth2 import (
    ErrorResponse,
    IntrospectionRequest,
    IntrospectionResponse,
    TokenRequest,
    TokenResponse,
    UserInfoResponse,
)
from ..dependencies import get_app_settings, get_authorization_server

router = APIRouter(prefix="/oauth2", tags=["oauth2"])

bearer_scheme = HTTPBearer(auto_error=False)

RequestModel = TypeVar("RequestModel", bound=BaseModel)

# RFC 6749 section 5.1: token responses must not be cached
_NO_STORE_HEADERS = {"Cache-Control": "no-store", "Pragma": "no-cache"}

_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}


def error_response(error: OAuth2Error, headers: dict[str, str] | None = None) -> JSONResponse:
    """Render an OAuth2 error body with its status code."""
    merged = dict(headers or {})
    if error.status_code == 401 and isinstance(error, InvalidTokenError):
        merged.setdefault("WWW-Authenticate", f'Bearer error="{error.error}"')
    return JSONResponse(status_code=error.status_code, content=error.to_dict(), headers=merged)


@router.get("/authorize", responses=_ERROR_RESPONSES)
@beartype
async def authorize(
    client_id: str = Query(..., description="OAuth2 client ID"),
    redirect_uri: str = Query(..., description="Redirect URI for response"),
    response_type: str = Query("code", description="OAuth2 response type, only code"),
    scope: str | None = Query(None, description="Space-separated list of scopes"),
    state: str | None = Query(None, description="State parameter for CSRF protection"),
    code_challenge: str | None = Query(None, description="PKCE code challenge"),
    code_challenge_method: str | None = Query(
        None, description="PKCE challenge method"
    ),
    server: AuthorizationServer = Depends(get_authorization_server),
) -> Response:
    """OAuth2 authorization endpoint.

    Validates the request, records a pending session and sends the browser
    to the upstream identity provider.

    Errors are rendered directly rather than redirected, since the redirect
    URI may be the thing that failed validation.
    """
    result = await server.begin_authorization(
        client_id=client_id,
        redirect_uri=redirect_uri,
        state=state,
        code_challenge=code_challenge,
        code_challenge_method=code_challenge_method,
        scope=scope,
        response_type=response_type,
    )
    if result.is_err():
        return error_response(result.unwrap_err())

    return RedirectResponse(url=result.unwrap().federation_url, status_code=302)


@router.get("/callback", responses=_ERROR_RESPONSES)
@beartype
async def callback(
    state: str = Query(..., description="Session token sent upstream as state"),
    code: str | None = Query(None, description="Upstream authorization code"),
    error: str | None = Query(None, description="Upstream error"),
    server: AuthorizationServer = Depends(get_authorization_server),
) -> Response:
    """Upstream identity provider callback.

    Completes federation and redirects back to the client with a one-time
    code and the client's original state.
    """
    result = await server.handle_federation_callback(state, code=code, error=error)
    if result.is_err():
        return error_response(result.unwrap_err())

    return RedirectResponse(url=result.unwrap().location, status_code=302)


def _request_body_docs(model: type[BaseModel]) -> dict[str, Any]:
    schema = {"schema": model.model_json_schema()}
    return {
        "requestBody": {
            "required": True,
            "content": {
                "application/x-www-form-urlencoded": schema,
                "application/json": schema,
            },
        }
    }


async def parse_body(
    request: Request, model: type[RequestModel]
) -> Result[RequestModel, OAuth2Error]:
    """Read endpoint parameters from a JSON body or a form body.

    JSON is used when the request says ``application/json``; anything else
    is read as a form, as RFC 6749 prescribes.
    """
    content_type = request.headers.get("content-type", "")
    if content_type.split(";")[0].strip().lower() == "application/json":
        try:
            payload = await request.json()
        except ValueError:
            return Err(InvalidRequestError("Invalid JSON body"))
        if not isinstance(payload, dict):
            return Err(InvalidRequestError("Invalid JSON body"))
    else:
        form = await request.form()
        payload = {k: v for k, v in form.items() if isinstance(v, str)}

    try:
        return Ok(model.model_validate(payload))
    except ValidationError as e:
        fields = ", ".join(str(err["loc"][0]) for err in e.errors() if err["loc"])
        return Err(InvalidRequestError(f"Missing or invalid parameters: {fields}"))


@router.post(
    "/token",
    response_model=TokenResponse,
    response_model_exclude_none=True,
    responses=_ERROR_RESPONSES,
    openapi_extra=_request_body_docs(TokenRequest),
)
@beartype
async def token(
    request: Request,
    server: AuthorizationServer = Depends(get_authorization_server),
) -> Any:
    """OAuth2 token endpoint.

    Supports the ``authorization_code`` and ``refresh_token`` grants.
    Parameters may be sent as a form or as a JSON object.
    """
    parsed = await parse_body(request, TokenRequest)
    if parsed.is_err():
        return error_response(parsed.unwrap_err(), headers=_NO_STORE_HEADERS)
    params = parsed.unwrap()

    result = await server.token(
        grant_type=params.grant_type,
        client_id=params.client_id,
        client_secret=params.client_secret,
        code=params.code,
        redirect_uri=params.redirect_uri,
        code_verifier=params.code_verifier,
        refresh_token=params.refresh_token,
    )
    if result.is_err():
        return error_response(result.unwrap_err(), headers=_NO_STORE_HEADERS)

    body = TokenResponse.from_triple(result.unwrap())
    return JSONResponse(
        content=body.model_dump(exclude_none=True), headers=_NO_STORE_HEADERS
    )


@router.post(
    "/introspect",
    response_model=IntrospectionResponse,
    response_model_exclude_none=True,
    responses={400: {"model": ErrorResponse}},
    openapi_extra=_request_body_docs(IntrospectionRequest),
)
@beartype
async def introspect(
    request: Request,
    server: AuthorizationServer = Depends(get_authorization_server),
) -> Any:
    """Token introspection endpoint (RFC 7662).

    Invalid, expired and revoked tokens all report ``active: false``.
    Parameters may be sent as a form or as a JSON object.
    """
    parsed = await parse_body(request, IntrospectionRequest)
    if parsed.is_err():
        return error_response(parsed.unwrap_err())
    params = parsed.unwrap()
    return await server.introspect(params.token, params.token_type_hint)


@router.post("/revoke")
@beartype
async def revoke(
    token: str = Form(...),
    token_type_hint: str | None = Form(None),
    server: AuthorizationServer = Depends(get_authorization_server),
) -> Response:
    """Token revocation endpoint (RFC 7009).

    Always answers 200, even for unknown tokens.
    """
    await server.revoke(token, token_type_hint)
    return Response(status_code=200)


@router.get(
    "/userinfo",
    response_model=UserInfoResponse,
    response_model_exclude_none=True,
)
@beartype
async def userinfo(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    server: AuthorizationServer = Depends(get_authorization_server),
) -> Any:
    """OpenID Connect userinfo endpoint."""
    if credentials is None or credentials.scheme.lower() != "bearer":
        return error_response(InvalidTokenError("Bearer token required"))

    result = await server.get_user_info(credentials.credentials)
    if result.is_err():
        return error_response(result.unwrap_err())
    return result.unwrap()


@router.get("/.well-known/oauth-authorization-server")
@beartype
async def oauth_metadata(
    request: Request,
    settings: Settings = Depends(get_app_settings),
) -> dict[str, Any]:
    """Authorization server metadata (RFC 8414)."""
    base_url = str(request.base_url).rstrip("/")
    prefix = f"{base_url}/api/v1/oauth2"

    return {
        "issuer": settings.jwt_issuer,
        "authorization_endpoint": f"{prefix}/authorize",
        "token_endpoint": f"{prefix}/token",
        "token_endpoint_auth_methods_supported": ["client_secret_post", "none"],
        "introspection_endpoint": f"{prefix}/introspect",
        "revocation_endpoint": f"{prefix}/revoke",
        "userinfo_endpoint": f"{prefix}/userinfo",
        "response_types_supported": ["code"],
        "grant_types_supported": ["authorization_code", "refresh_token"],
        "code_challenge_methods_supported": ["S256", "plain"],
        "scopes_supported": settings.default_scope.split(),
    }

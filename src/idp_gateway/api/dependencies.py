# IdP Gateway - OAuth2 / OpenID Connect Authorization Server
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""FastAPI dependencies resolving the services built at startup."""

from fastapi import Depends, Request

from ..bootstrap import ServiceContainer
from ..core.config import Settings
from ..core.oauth2.server import AuthorizationServer


def get_container(request: Request) -> ServiceContainer:
    """Service container attached to the application by ``create_app``."""
    container: ServiceContainer = request.app.state.container
    return container


def get_app_settings(
    container: ServiceContainer = Depends(get_container),
) -> Settings:
    return container.settings


def get_authorization_server(
    container: ServiceContainer = Depends(get_container),
) -> AuthorizationServer:
    return container.server

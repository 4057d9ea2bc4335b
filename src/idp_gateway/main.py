"""IdP Gateway - Main Application Module."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import uvicorn
from beartype import beartype
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .api.v1 import router as v1_router
from .bootstrap import ServiceContainer, build_container
from .core.config import Settings, get_settings
from .core.logging_utils import configure_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application lifecycle - startup and shutdown."""
    container: ServiceContainer = app.state.container
    logger.info("Starting IdP Gateway in %s mode", container.settings.api_env)

    await container.start()
    logger.info("Services started")

    yield

    logger.info("Shutting down IdP Gateway")
    await container.stop()
    logger.info("Services stopped")


def create_app(
    settings: Settings | None = None,
    container: ServiceContainer | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Settings to use, the environment when omitted
        container: Pre-built services; built from ``settings`` when omitted

    Returns:
        FastAPI: Configured application instance
    """
    settings = container.settings if container is not None else settings or get_settings()
    configure_logging(level=settings.log_level_number)

    app = FastAPI(
        title=settings.app_name,
        description="OAuth2 / OpenID Connect authorization server federating to Google",
        version=__version__,
        docs_url="/docs" if not settings.is_production else None,
        redoc_url="/redoc" if not settings.is_production else None,
        openapi_url="/openapi.json" if not settings.is_production else None,
        lifespan=lifespan,
    )
    app.state.container = container or build_container(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.api_cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    app.include_router(v1_router)

    return app


@beartype
def main() -> None:
    """Run the main application entry point."""
    settings = get_settings()

    uvicorn.run(
        "idp_gateway.main:create_app",
        factory=True,
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.is_development,
        log_level="info" if not settings.is_production else "error",
    )


if __name__ == "__main__":
    main()

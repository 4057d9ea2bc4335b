"""Health check endpoints for monitoring system status."""

import logging
import time

from beartype import beartype
from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel, ConfigDict, Field

from ...bootstrap import ServiceContainer
from ..dependencies import get_container

logger = logging.getLogger(__name__)

router = APIRouter()


class HealthStatus(BaseModel):
    """Individual component health status."""

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        validate_assignment=True,
        str_strip_whitespace=True,
        validate_default=True,
    )

    status: str = Field(..., pattern=r"^(healthy|unhealthy|degraded)$")
    response_time_ms: float | None = Field(
        default=None, ge=0, description="Response time in milliseconds"
    )
    message: str | None = Field(default=None, description="Additional status message")


class HealthResponse(BaseModel):
    """Overall health with per-component detail."""

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        validate_assignment=True,
        str_strip_whitespace=True,
        validate_default=True,
    )

    status: str = Field(..., pattern=r"^(healthy|unhealthy|degraded)$")
    environment: str
    components: dict[str, HealthStatus] = Field(default_factory=dict)
    pending_sessions: int = Field(..., ge=0)
    pending_codes: int = Field(..., ge=0)


@beartype
async def _check_database(container: ServiceContainer) -> HealthStatus:
    assert container.database is not None
    start = time.perf_counter()
    result = await container.database.health_check()
    elapsed = (time.perf_counter() - start) * 1000
    if result.is_err():
        logger.warning("Database health check failed: %s", result.unwrap_err())
        return HealthStatus(
            status="unhealthy", response_time_ms=elapsed, message="Database unreachable"
        )
    return HealthStatus(status="healthy", response_time_ms=elapsed)


@beartype
async def _check_cache(container: ServiceContainer) -> HealthStatus:
    assert container.cache is not None
    start = time.perf_counter()
    healthy = await container.cache.health_check()
    elapsed = (time.perf_counter() - start) * 1000
    if not healthy:
        return HealthStatus(
            status="unhealthy", response_time_ms=elapsed, message="Redis unreachable"
        )
    return HealthStatus(status="healthy", response_time_ms=elapsed)


@router.get("/health", response_model=HealthResponse)
@beartype
async def health_check(
    response: Response,
    container: ServiceContainer = Depends(get_container),
) -> HealthResponse:
    """Report the health of the server and its backing stores.

    Answers 503 when a configured backing store is unreachable.
    """
    components: dict[str, HealthStatus] = {
        "session_store": HealthStatus(
            status="healthy" if container.store.is_running else "degraded",
            message=None if container.store.is_running else "Expiry sweeper not running",
        ),
    }
    if container.database is not None:
        components["database"] = await _check_database(container)
    if container.cache is not None:
        components["redis"] = await _check_cache(container)

    statuses = {c.status for c in components.values()}
    if "unhealthy" in statuses:
        overall = "unhealthy"
        response.status_code = 503
    elif "degraded" in statuses:
        overall = "degraded"
    else:
        overall = "healthy"

    return HealthResponse(
        status=overall,
        environment=container.settings.api_env,
        components=components,
        pending_sessions=container.store.session_count,
        pending_codes=container.store.code_count,
    )

"""
Health check endpoints.

Liveness, database readiness, and a provider reachability check.
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from catalogsync.db.database import get_session
from catalogsync.models.failure import ProviderError
from catalogsync.providers.justtcg import ProviderFactory, get_provider_factory

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    database: str | None = None


class ProviderHealthResponse(BaseModel):
    """Provider check response."""

    status: str
    provider: str
    games: int | None = None
    error: str | None = None


@router.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Liveness check. Does not check dependencies."""
    return HealthResponse(status="healthy")


@router.get(
    "/ready",
    response_model=HealthResponse,
    responses={503: {"model": HealthResponse}},
)
async def ready(
    response: Response,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> HealthResponse:
    """
    Readiness check.

    The sync pipeline keeps all of its state in the database, so the
    service is ready only when the database answers.
    """
    try:
        await session.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.warning("Readiness check failed: database unavailable", exc_info=True)
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(status="not ready", database="disconnected")
    return HealthResponse(status="ready", database="connected")


@router.get(
    "/health/provider",
    response_model=ProviderHealthResponse,
    responses={503: {"model": ProviderHealthResponse}},
)
async def provider_health(
    response: Response,
    provider_factory: Annotated[ProviderFactory, Depends(get_provider_factory)],
) -> ProviderHealthResponse:
    """Check the catalog provider with one lightweight request."""
    async with provider_factory() as provider:
        try:
            games = await provider.ping()
        except ProviderError as e:
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            return ProviderHealthResponse(
                status="unreachable", provider=provider.name, error=e.message
            )
    return ProviderHealthResponse(status="reachable", provider=provider.name, games=games)

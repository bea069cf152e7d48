"""
Sync queue endpoints.

Queue a game's sets for incremental sync, trigger a bounded background
drain, and inspect queue counts.
"""

import logging
from datetime import date
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from catalogsync.config import VALID_GAME_SLUGS, settings
from catalogsync.db.database import get_session, get_session_factory
from catalogsync.db.queue import queue_stats
from catalogsync.models.failure import ProviderError
from catalogsync.providers.justtcg import ProviderFactory, get_provider_factory
from catalogsync.services.background import supervisor
from catalogsync.services.orchestrator import enqueue_game_sets, make_set_processor
from catalogsync.services.queue_worker import DrainResult, QueueDrainWorker

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/catalog/queue", tags=["queue"])


class DrainRequest(BaseModel):
    """Request model for a queue drain. Omitted limits fall back to settings."""

    model_config = ConfigDict(populate_by_name=True)

    mode: str = "pokemon"
    max_concurrency: int | None = Field(default=None, alias="maxConcurrency", ge=1, le=20)
    max_batches: int | None = Field(default=None, alias="maxBatches", ge=1, le=1000)
    batch_size: int | None = Field(default=None, alias="batchSize", ge=1, le=100)
    time_budget_seconds: float | None = Field(
        default=None, alias="timeBudgetSeconds", gt=0, le=3600
    )


class DrainResponse(BaseModel):
    """Response model for a started drain."""

    status: str
    mode: str
    config: dict[str, Any]


class EnqueueRequest(BaseModel):
    """Request model for queueing a game's sets."""

    game: str
    since: date | None = None
    mode: str | None = None


class EnqueueResponse(BaseModel):
    """Response model for an enqueue run."""

    game: str
    mode: str
    sets_found: int
    sets_queued: int


class QueueStatsResponse(BaseModel):
    """Entry counts per status for one mode."""

    mode: str
    stats: dict[str, int]


async def run_drain(
    session_factory: async_sessionmaker[AsyncSession],
    provider_factory: ProviderFactory,
    mode: str,
    **limits: Any,
) -> DrainResult:
    """One bounded drain with its own provider client."""
    async with provider_factory() as provider:
        worker = QueueDrainWorker.from_settings(
            session_factory, make_set_processor(session_factory, provider), **limits
        )
        return await worker.drain(mode)


@router.post("/drain", response_model=DrainResponse)
async def drain_queue(
    request: DrainRequest,
    session_factory: Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)],
    provider_factory: Annotated[ProviderFactory, Depends(get_provider_factory)],
) -> DrainResponse:
    """
    Start draining the queue for a mode and return immediately.

    Designed to be called on a fixed schedule; each call is bounded by its
    batch limit and time budget, and the next call resumes from the queue.
    """
    limits = {
        "max_concurrency": request.max_concurrency or settings.queue_max_concurrency,
        "max_batches": request.max_batches or settings.queue_max_batches,
        "batch_size": request.batch_size or settings.queue_batch_size,
        "time_budget_seconds": request.time_budget_seconds or settings.queue_time_budget_seconds,
    }
    supervisor.spawn(
        run_drain(session_factory, provider_factory, request.mode, **limits),
        name=f"drain:{request.mode}",
    )
    return DrainResponse(
        status="started",
        mode=request.mode,
        config={
            "maxConcurrency": limits["max_concurrency"],
            "maxBatches": limits["max_batches"],
            "batchSize": limits["batch_size"],
            "timeBudgetSeconds": limits["time_budget_seconds"],
        },
    )


@router.post("/enqueue", response_model=EnqueueResponse)
async def enqueue_sets(
    request: EnqueueRequest,
    session: Annotated[AsyncSession, Depends(get_session)],
    provider_factory: Annotated[ProviderFactory, Depends(get_provider_factory)],
) -> EnqueueResponse:
    """
    List a game's sets from the provider, upsert them live and queue each one.

    Sets already queued or in progress are not queued again.
    """
    if request.game not in VALID_GAME_SLUGS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid game: {request.game}. Valid: {list(VALID_GAME_SLUGS)}",
        )

    try:
        async with provider_factory() as provider:
            result = await enqueue_game_sets(
                session, provider, request.game, since=request.since, mode=request.mode
            )
    except ProviderError as e:
        logger.warning("Enqueue for %s failed: %s", request.game, e.message)
        raise HTTPException(status_code=e.status_code, detail=e.message) from e

    return EnqueueResponse(
        game=result.game,
        mode=result.mode,
        sets_found=result.sets_found,
        sets_queued=result.sets_queued,
    )


@router.get("/stats", response_model=QueueStatsResponse)
async def get_queue_stats(
    session: Annotated[AsyncSession, Depends(get_session)],
    mode: Annotated[str, Query(min_length=1)] = "pokemon",
) -> QueueStatsResponse:
    """Entry counts per queue status for a mode."""
    return QueueStatsResponse(mode=mode, stats=await queue_stats(session, mode))

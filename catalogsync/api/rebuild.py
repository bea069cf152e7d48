"""
Catalog rebuild trigger.

Streams the rebuild pipeline's progress events as server-sent events.
"""

from collections.abc import AsyncIterator
from typing import Annotated, Literal

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from catalogsync.config import VALID_GAME_SLUGS
from catalogsync.db.database import get_session_factory
from catalogsync.providers.justtcg import ProviderFactory, get_provider_factory
from catalogsync.services.rebuild import CatalogRebuilder
from catalogsync.services.sync_jobs import JOB_FULL_REBUILD, SyncJobTracker

router = APIRouter(prefix="/catalog", tags=["rebuild"])


class RebuildRequest(BaseModel):
    """Request model for a catalog rebuild."""

    games: list[str] = Field(..., min_length=1, description="Game slugs to rebuild")
    mode: Literal["sequential", "parallel"] = "sequential"


@router.post(
    "/rebuild",
    response_class=StreamingResponse,
    responses={
        200: {"content": {"text/event-stream": {}}},
        400: {"description": "Unknown game slug"},
        409: {"description": "A rebuild is already running for a requested game"},
    },
)
async def rebuild_catalog(
    request: RebuildRequest,
    session_factory: Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)],
    provider_factory: Annotated[ProviderFactory, Depends(get_provider_factory)],
) -> StreamingResponse:
    """
    Rebuild the live catalog for the requested games.

    Every slug is validated before anything runs; one unknown slug rejects
    the whole request. The response is a text/event-stream with one event
    per pipeline phase, ending with COMPLETE.
    """
    invalid = [game for game in request.games if game not in VALID_GAME_SLUGS]
    if invalid:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid games: {invalid}. Valid: {list(VALID_GAME_SLUGS)}",
        )

    tracker = SyncJobTracker(session_factory)
    for game in request.games:
        await tracker.reset_stale_jobs(game, job_type=JOB_FULL_REBUILD)
        running = await tracker.find_running_job(game, JOB_FULL_REBUILD)
        if running is not None:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"Rebuild already running for {game} (job {running.id})",
            )

    async def event_stream() -> AsyncIterator[str]:
        async with provider_factory() as provider:
            rebuilder = CatalogRebuilder(session_factory, provider, tracker)
            async for event in rebuilder.stream(request.games, request.mode):
                yield event.to_sse()

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )

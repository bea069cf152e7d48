"""
Sync job endpoints.

Read-only access to job records for monitoring and postmortems.
"""

from datetime import datetime
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from catalogsync.db.database import get_session_factory
from catalogsync.models.db import SyncJobDB
from catalogsync.services.sync_jobs import SyncJobTracker

router = APIRouter(prefix="/catalog/jobs", tags=["jobs"])


class JobResponse(BaseModel):
    """Response model for a single sync job."""

    id: str
    job_type: str
    source: str
    game: str | None = None
    set_id: str | None = None
    status: str
    total_items: int = 0
    processed_items: int = 0
    progress_percentage: float = 0.0
    error_message: str | None = None
    results: dict[str, Any] = Field(default_factory=dict)
    metrics: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None


class JobListResponse(BaseModel):
    """Response model for a list of jobs."""

    jobs: list[JobResponse]
    count: int


def job_to_response(job: SyncJobDB) -> JobResponse:
    """Convert a database job record to its API form."""
    return JobResponse(
        id=job.id,
        job_type=job.job_type,
        source=job.source,
        game=job.game,
        set_id=job.set_id,
        status=job.status,
        total_items=job.total_items or 0,
        processed_items=job.processed_items or 0,
        progress_percentage=job.progress_percentage or 0.0,
        error_message=job.error_message,
        results=job.results or {},
        metrics=job.metrics or {},
        created_at=job.created_at,
        started_at=job.started_at,
        completed_at=job.completed_at,
    )


@router.get("", response_model=JobListResponse)
async def list_jobs(
    session_factory: Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)],
    game: str | None = None,
    job_status: Annotated[str | None, Query(alias="status")] = None,
    job_type: str | None = None,
    limit: Annotated[int, Query(ge=1, le=500)] = 50,
) -> JobListResponse:
    """Most recent jobs first, optionally filtered by game, status and type."""
    jobs = await SyncJobTracker(session_factory).list_jobs(
        game=game, status=job_status, job_type=job_type, limit=limit
    )
    return JobListResponse(jobs=[job_to_response(job) for job in jobs], count=len(jobs))


@router.get("/{job_id}", response_model=JobResponse)
async def get_job(
    job_id: str,
    session_factory: Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)],
) -> JobResponse:
    """Get one job record. Returns 404 if it does not exist."""
    job = await SyncJobTracker(session_factory).get_job(job_id)
    if job is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Job {job_id} not found",
        )
    return job_to_response(job)

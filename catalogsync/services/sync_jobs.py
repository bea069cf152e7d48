"""
Sync job tracking.

A SyncJob is the audit and progress record for one unit or phase of sync
work. Every tracker call opens its own short session, so a failed write
never poisons the caller's transaction.

Lifecycle: queued -> running -> completed | failed | partial | cancelled
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from catalogsync.config import DEFAULT_PROVIDER, settings
from catalogsync.models.db import CatalogSetDB, SyncJobDB
from catalogsync.models.failure import JobStateError

logger = logging.getLogger(__name__)

# Job types
JOB_SETS = "sets"
JOB_CARDS = "cards"
JOB_FULL_REBUILD = "full-rebuild"

# Job statuses
QUEUED = "queued"
RUNNING = "running"
COMPLETED = "completed"
FAILED = "failed"
PARTIAL = "partial"
CANCELLED = "cancelled"

TERMINAL_STATUSES = (COMPLETED, FAILED, PARTIAL, CANCELLED)
ACTIVE_STATUSES = (QUEUED, RUNNING)


def _as_utc(value: datetime) -> datetime:
    """Some backends hand back naive datetimes; they are stored as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


@dataclass(frozen=True)
class DuplicateCheck:
    """Whether new work for a (game, set) scope should be skipped."""

    skip: bool
    reason: str | None = None
    existing_job_id: str | None = None
    stale_jobs_reset: int = 0


class SyncJobTracker:
    """Create, advance and finish sync job records."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def create_job(
        self,
        job_type: str,
        game: str | None = None,
        set_id: str | None = None,
        total_items: int = 0,
        max_retries: int = 3,
        source: str = DEFAULT_PROVIDER,
    ) -> str:
        """
        Record a new queued job.

        Returns:
            The job id
        """
        job_id = str(uuid.uuid4())
        async with self.session_factory() as session:
            session.add(
                SyncJobDB(
                    id=job_id,
                    job_type=job_type,
                    source=source,
                    game=game,
                    set_id=set_id,
                    status=QUEUED,
                    total_items=total_items,
                    max_retries=max_retries,
                    results={},
                    metrics={},
                )
            )
            await session.commit()

        logger.info("Created %s job %s (game=%s, set=%s)", job_type, job_id, game, set_id)
        return job_id

    async def start_job(self, job_id: str) -> None:
        """
        Move a job from queued to running.

        Raises:
            JobStateError: If the job is missing or not queued
        """
        now = datetime.now(UTC)
        async with self.session_factory() as session:
            result = await session.execute(
                update(SyncJobDB)
                .where(SyncJobDB.id == job_id, SyncJobDB.status == QUEUED)
                .values(status=RUNNING, started_at=now, updated_at=now)
            )
            if result.rowcount == 0:  # type: ignore[attr-defined]
                current = await session.scalar(select(SyncJobDB.status).where(SyncJobDB.id == job_id))
                raise JobStateError(job_id, expected=QUEUED, actual=current)
            await session.commit()

    async def update_progress(self, job_id: str, processed: int, total: int | None = None) -> None:
        """
        Record progress. Best effort: a failed write is logged, never raised.

        The processed counter never moves backwards.
        """
        try:
            async with self.session_factory() as session:
                job = await session.get(SyncJobDB, job_id)
                if job is None:
                    logger.warning("Progress update for unknown job %s", job_id)
                    return

                job.processed_items = max(job.processed_items or 0, processed)
                if total is not None:
                    job.total_items = total
                if job.total_items:
                    job.progress_percentage = min(
                        100.0, round(100.0 * job.processed_items / job.total_items, 2)
                    )
                job.updated_at = datetime.now(UTC)
                await session.commit()
        except SQLAlchemyError:
            logger.warning("Failed to persist progress for job %s", job_id, exc_info=True)

    async def complete_job(
        self,
        job_id: str,
        status: str,
        results: dict[str, Any] | None = None,
        metrics: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> bool:
        """
        Finish a job with a terminal status.

        Only a queued or running job is finished. A job that already reached
        a terminal status (for example one reset as stale by another run)
        keeps it.

        If the full write fails, a minimal status-only UPDATE is retried in a
        fresh session so the job is not left running.

        Returns:
            True if either write succeeded
        """
        if status not in TERMINAL_STATUSES:
            raise ValueError(f"Not a terminal job status: {status}")

        now = datetime.now(UTC)
        try:
            async with self.session_factory() as session:
                job = await session.get(SyncJobDB, job_id)
                if job is None:
                    logger.warning("Completion for unknown job %s", job_id)
                    return False
                if job.status not in ACTIVE_STATUSES:
                    logger.warning(
                        "Job %s already finished as %s (%s); not marking %s",
                        job_id,
                        job.status,
                        job.error_message,
                        status,
                        extra={"job_id": job_id, "game": job.game},
                    )
                    return False
                job.status = status
                job.results = results or {}
                job.metrics = metrics or {}
                job.error_message = error
                job.completed_at = now
                job.updated_at = now
                if status == COMPLETED:
                    job.progress_percentage = 100.0
                await session.commit()
        except SQLAlchemyError:
            logger.warning("Completion write failed for job %s; retrying directly", job_id, exc_info=True)
        else:
            logger.info("Job %s finished: %s", job_id, status)
            return True

        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    update(SyncJobDB)
                    .where(SyncJobDB.id == job_id, SyncJobDB.status.in_(ACTIVE_STATUSES))
                    .values(status=status, error_message=error, completed_at=now, updated_at=now)
                )
                await session.commit()
        except SQLAlchemyError:
            logger.exception("Fallback completion write failed for job %s", job_id)
            return False

        if result.rowcount == 0:  # type: ignore[attr-defined]
            logger.warning("Job %s was no longer active; fallback completion skipped", job_id)
            return False

        logger.info("Job %s finished via fallback: %s", job_id, status)
        return True

    async def get_job(self, job_id: str) -> SyncJobDB | None:
        async with self.session_factory() as session:
            return await session.get(SyncJobDB, job_id)

    async def list_jobs(
        self,
        game: str | None = None,
        status: str | None = None,
        job_type: str | None = None,
        limit: int = 50,
    ) -> list[SyncJobDB]:
        """Most recent jobs first, optionally filtered."""
        query = select(SyncJobDB)
        if game is not None:
            query = query.where(SyncJobDB.game == game)
        if status is not None:
            query = query.where(SyncJobDB.status == status)
        if job_type is not None:
            query = query.where(SyncJobDB.job_type == job_type)
        query = query.order_by(SyncJobDB.created_at.desc(), SyncJobDB.id).limit(limit)

        async with self.session_factory() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def find_running_job(
        self, game: str, job_type: str, set_id: str | None = None
    ) -> SyncJobDB | None:
        """A running job for the scope, if any."""
        query = select(SyncJobDB).where(
            SyncJobDB.game == game,
            SyncJobDB.job_type == job_type,
            SyncJobDB.status == RUNNING,
        )
        if set_id is not None:
            query = query.where(SyncJobDB.set_id == set_id)

        async with self.session_factory() as session:
            result = await session.execute(query.order_by(SyncJobDB.created_at.desc()).limit(1))
            return result.scalar_one_or_none()

    async def reset_stale_jobs(
        self,
        game: str,
        set_id: str | None = None,
        older_than: timedelta | None = None,
        job_type: str | None = None,
    ) -> int:
        """
        Mark running jobs with no recent activity as failed.

        A job's last activity is its last progress write, falling back to
        its start time. Without this, a crashed worker's job would block the
        scope's duplicate check forever.

        Returns:
            Number of jobs marked failed
        """
        if older_than is None:
            older_than = timedelta(minutes=settings.job_liveness_minutes)
        now = datetime.now(UTC)
        minutes = int(older_than.total_seconds() // 60)

        query = update(SyncJobDB).where(
            SyncJobDB.game == game,
            SyncJobDB.status == RUNNING,
            func.coalesce(SyncJobDB.updated_at, SyncJobDB.started_at) < now - older_than,
        )
        if set_id is not None:
            query = query.where(SyncJobDB.set_id == set_id)
        if job_type is not None:
            query = query.where(SyncJobDB.job_type == job_type)

        async with self.session_factory() as session:
            result = await session.execute(
                query.values(
                    status=FAILED,
                    error_message=f"Marked failed: no progress for {minutes} minutes (orphaned running job)",
                    completed_at=now,
                    updated_at=now,
                ).execution_options(synchronize_session=False)
            )
            await session.commit()

        count = int(result.rowcount)  # type: ignore[attr-defined]
        if count:
            logger.warning(
                "Reset %d stale running jobs for %s (set=%s)",
                count,
                game,
                set_id,
                extra={"game": game, "set_id": set_id},
            )
        return count

    async def check_duplicate_sync(
        self,
        game: str,
        set_id: str,
        cooldown_hours: float | None = None,
    ) -> DuplicateCheck:
        """
        Decide whether syncing a set now would duplicate recent or ongoing work.

        Stale running jobs for the scope are reset first, so an orphaned job
        never blocks the scope.
        """
        cooldown_hours = settings.sync_cooldown_hours if cooldown_hours is None else cooldown_hours
        reset = await self.reset_stale_jobs(game, set_id=set_id, job_type=JOB_CARDS)

        async with self.session_factory() as session:
            result = await session.execute(
                select(CatalogSetDB).where(CatalogSetDB.game == game, CatalogSetDB.set_id == set_id)
            )
            live_set = result.scalars().first()

        if (
            live_set is not None
            and live_set.sync_status == "synced"
            and live_set.card_count > 0
            and live_set.last_synced_at is not None
            and cooldown_hours > 0
        ):
            age = datetime.now(UTC) - _as_utc(live_set.last_synced_at)
            if age < timedelta(hours=cooldown_hours):
                return DuplicateCheck(skip=True, reason="recently_synced", stale_jobs_reset=reset)

        running = await self.find_running_job(game, JOB_CARDS, set_id=set_id)
        if running is not None:
            return DuplicateCheck(
                skip=True,
                reason="already_running",
                existing_job_id=running.id,
                stale_jobs_reset=reset,
            )

        return DuplicateCheck(skip=False, stale_jobs_reset=reset)

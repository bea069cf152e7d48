"""Tests for sync job tracking."""

from datetime import UTC, datetime, timedelta
from unittest.mock import patch

import pytest
from sqlalchemy import update
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from catalogsync.db.catalog import set_sync_status, upsert_live
from catalogsync.models.catalog import CatalogSet
from catalogsync.models.db import SyncJobDB
from catalogsync.models.failure import JobStateError
from catalogsync.services.sync_jobs import (
    COMPLETED,
    FAILED,
    JOB_CARDS,
    JOB_FULL_REBUILD,
    QUEUED,
    RUNNING,
    SyncJobTracker,
)


@pytest.fixture
def tracker(session_factory: async_sessionmaker[AsyncSession]) -> SyncJobTracker:
    return SyncJobTracker(session_factory)


async def backdate(
    session_factory: async_sessionmaker[AsyncSession], job_id: str, hours: float
) -> None:
    """Make a job look like it last showed activity ``hours`` ago."""
    then = datetime.now(UTC) - timedelta(hours=hours)
    async with session_factory() as session:
        await session.execute(
            update(SyncJobDB)
            .where(SyncJobDB.id == job_id)
            .values(started_at=then, updated_at=then)
        )
        await session.commit()


async def seed_synced_set(
    session_factory: async_sessionmaker[AsyncSession], set_id: str, card_count: int
) -> None:
    async with session_factory() as session:
        await upsert_live(
            session,
            "sets",
            [CatalogSet(set_id=set_id, game="pokemon", name=set_id, provider_id=set_id).to_row()],
        )
        await set_sync_status(session, "pokemon", set_id, "synced", card_count=card_count)
        await session.commit()


class TestLifecycle:
    async def test_create_and_start(self, tracker: SyncJobTracker) -> None:
        """A job is created queued and moves to running with a start time."""
        job_id = await tracker.create_job(JOB_CARDS, game="pokemon", set_id="s1", total_items=10)

        created = await tracker.get_job(job_id)
        assert created.status == QUEUED
        assert created.total_items == 10

        await tracker.start_job(job_id)

        started = await tracker.get_job(job_id)
        assert started.status == RUNNING
        assert started.started_at is not None

    async def test_start_twice_rejected(self, tracker: SyncJobTracker) -> None:
        """Only a queued job can be started."""
        job_id = await tracker.create_job(JOB_CARDS, game="pokemon")
        await tracker.start_job(job_id)

        with pytest.raises(JobStateError) as exc_info:
            await tracker.start_job(job_id)

        assert exc_info.value.actual == RUNNING
        assert exc_info.value.status_code == 409

    async def test_start_unknown_job(self, tracker: SyncJobTracker) -> None:
        """Starting a job that does not exist is a state error."""
        with pytest.raises(JobStateError) as exc_info:
            await tracker.start_job("no-such-job")

        assert exc_info.value.actual is None

    async def test_progress_never_goes_backwards(self, tracker: SyncJobTracker) -> None:
        """A lower processed count does not overwrite a higher one."""
        job_id = await tracker.create_job(JOB_CARDS, game="pokemon", total_items=200)
        await tracker.start_job(job_id)

        await tracker.update_progress(job_id, 50)
        await tracker.update_progress(job_id, 20)

        job = await tracker.get_job(job_id)
        assert job.processed_items == 50
        assert job.progress_percentage == 25.0

    async def test_progress_percentage_capped(self, tracker: SyncJobTracker) -> None:
        """Processing more than the expected total reports 100 percent."""
        job_id = await tracker.create_job(JOB_CARDS, game="pokemon")

        await tracker.update_progress(job_id, 12, total=10)

        job = await tracker.get_job(job_id)
        assert job.progress_percentage == 100.0

    async def test_progress_for_unknown_job_is_ignored(self, tracker: SyncJobTracker) -> None:
        """Progress writes are best effort and never raise."""
        await tracker.update_progress("no-such-job", 5)

    async def test_complete(self, tracker: SyncJobTracker) -> None:
        """Completion records results, metrics and a completion time."""
        job_id = await tracker.create_job(JOB_CARDS, game="pokemon")
        await tracker.start_job(job_id)

        ok = await tracker.complete_job(
            job_id, COMPLETED, results={"cards": 3}, metrics={"requests": 2}
        )

        job = await tracker.get_job(job_id)
        assert ok
        assert job.status == COMPLETED
        assert job.results == {"cards": 3}
        assert job.metrics == {"requests": 2}
        assert job.progress_percentage == 100.0
        assert job.completed_at is not None

    async def test_complete_rejects_non_terminal_status(self, tracker: SyncJobTracker) -> None:
        """Completing with a non-terminal status is a programming error."""
        job_id = await tracker.create_job(JOB_CARDS)

        with pytest.raises(ValueError):
            await tracker.complete_job(job_id, RUNNING)

    async def test_complete_unknown_job(self, tracker: SyncJobTracker) -> None:
        """Completing a missing job reports failure instead of raising."""
        assert await tracker.complete_job("no-such-job", FAILED) is False

    async def test_complete_falls_back_to_direct_update(self, tracker: SyncJobTracker) -> None:
        """If the full completion write fails, the status is still recorded."""
        job_id = await tracker.create_job(JOB_CARDS, game="pokemon")
        await tracker.start_job(job_id)

        original_commit = AsyncSession.commit
        calls = {"n": 0}

        async def flaky_commit(self: AsyncSession) -> None:
            calls["n"] += 1
            if calls["n"] == 1:
                raise OperationalError("UPDATE sync_jobs", {}, Exception("database is locked"))
            await original_commit(self)

        with patch.object(AsyncSession, "commit", flaky_commit):
            ok = await tracker.complete_job(job_id, FAILED, error="boom")

        job = await tracker.get_job(job_id)
        assert ok
        assert job.status == FAILED
        assert job.error_message == "boom"

    async def test_complete_keeps_stale_reset(self, tracker: SyncJobTracker) -> None:
        """A job already reset as stale is not flipped back by a late completion."""
        job_id = await tracker.create_job(JOB_FULL_REBUILD, game="pokemon")
        await tracker.start_job(job_id)
        await tracker.reset_stale_jobs("pokemon", older_than=timedelta(0))

        ok = await tracker.complete_job(job_id, COMPLETED, results={"swapped": {}})

        job = await tracker.get_job(job_id)
        assert ok is False
        assert job.status == FAILED
        assert "orphaned running job" in job.error_message
        assert job.results == {}

    async def test_fallback_completion_keeps_stale_reset(self, tracker: SyncJobTracker) -> None:
        """The direct fallback write also leaves finished jobs alone."""
        job_id = await tracker.create_job(JOB_CARDS, game="pokemon")
        await tracker.start_job(job_id)
        await tracker.reset_stale_jobs("pokemon", older_than=timedelta(0))

        with patch.object(
            AsyncSession,
            "get",
            side_effect=OperationalError("SELECT sync_jobs", {}, Exception("database is locked")),
        ):
            ok = await tracker.complete_job(job_id, COMPLETED)

        job = await tracker.get_job(job_id)
        assert ok is False
        assert job.status == FAILED


class TestQueries:
    async def test_list_jobs_filters(self, tracker: SyncJobTracker) -> None:
        """Jobs can be filtered by game, status and type."""
        a = await tracker.create_job(JOB_CARDS, game="pokemon")
        await tracker.create_job(JOB_CARDS, game="mtg")
        await tracker.create_job(JOB_FULL_REBUILD, game="pokemon")
        await tracker.start_job(a)

        assert len(await tracker.list_jobs()) == 3
        assert len(await tracker.list_jobs(game="pokemon")) == 2
        assert [j.id for j in await tracker.list_jobs(status=RUNNING)] == [a]
        assert len(await tracker.list_jobs(job_type=JOB_FULL_REBUILD)) == 1
        assert len(await tracker.list_jobs(limit=1)) == 1

    async def test_find_running_job(self, tracker: SyncJobTracker) -> None:
        """Only running jobs of the requested scope are found."""
        queued = await tracker.create_job(JOB_CARDS, game="pokemon", set_id="s1")
        assert await tracker.find_running_job("pokemon", JOB_CARDS, set_id="s1") is None

        await tracker.start_job(queued)

        found = await tracker.find_running_job("pokemon", JOB_CARDS, set_id="s1")
        assert found is not None and found.id == queued
        assert await tracker.find_running_job("pokemon", JOB_CARDS, set_id="s2") is None
        assert await tracker.find_running_job("mtg", JOB_CARDS) is None


class TestStaleJobs:
    async def test_reset_stale_running_job(
        self, tracker: SyncJobTracker, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """A running job with no activity past the liveness window is marked failed."""
        job_id = await tracker.create_job(JOB_CARDS, game="pokemon", set_id="s1")
        await tracker.start_job(job_id)
        await backdate(session_factory, job_id, hours=2)

        reset = await tracker.reset_stale_jobs("pokemon", older_than=timedelta(minutes=30))

        job = await tracker.get_job(job_id)
        assert reset == 1
        assert job.status == FAILED
        assert "orphaned running job" in job.error_message
        assert "30 minutes" in job.error_message

    async def test_recent_job_not_reset(self, tracker: SyncJobTracker) -> None:
        """A job that reported progress recently is left running."""
        job_id = await tracker.create_job(JOB_CARDS, game="pokemon", set_id="s1")
        await tracker.start_job(job_id)
        await tracker.update_progress(job_id, 1)

        assert await tracker.reset_stale_jobs("pokemon", older_than=timedelta(minutes=30)) == 0
        assert (await tracker.get_job(job_id)).status == RUNNING

    async def test_reset_scoped_by_game(
        self, tracker: SyncJobTracker, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """Stale jobs of other games are not touched."""
        job_id = await tracker.create_job(JOB_CARDS, game="mtg")
        await tracker.start_job(job_id)
        await backdate(session_factory, job_id, hours=2)

        assert await tracker.reset_stale_jobs("pokemon") == 0
        assert (await tracker.get_job(job_id)).status == RUNNING


class TestDuplicateCheck:
    async def test_no_history_does_not_skip(self, tracker: SyncJobTracker) -> None:
        """A never-synced set with no running job may sync."""
        check = await tracker.check_duplicate_sync("pokemon", "s1")

        assert not check.skip

    async def test_running_job_skips(self, tracker: SyncJobTracker) -> None:
        """An active running job for the scope causes a skip."""
        job_id = await tracker.create_job(JOB_CARDS, game="pokemon", set_id="s1")
        await tracker.start_job(job_id)

        check = await tracker.check_duplicate_sync("pokemon", "s1")

        assert check.skip
        assert check.reason == "already_running"
        assert check.existing_job_id == job_id

    async def test_orphaned_job_is_reset_and_does_not_block(
        self, tracker: SyncJobTracker, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """A running job abandoned two hours ago is failed and the scope proceeds."""
        job_id = await tracker.create_job(JOB_CARDS, game="pokemon", set_id="s1")
        await tracker.start_job(job_id)
        await backdate(session_factory, job_id, hours=2)

        check = await tracker.check_duplicate_sync("pokemon", "s1")

        job = await tracker.get_job(job_id)
        assert not check.skip
        assert check.stale_jobs_reset == 1
        assert job.status == FAILED
        assert "orphaned running job" in job.error_message

    async def test_recently_synced_set_skips(
        self, tracker: SyncJobTracker, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """A set synced inside the cooldown window is skipped."""
        await seed_synced_set(session_factory, "s1", card_count=10)

        check = await tracker.check_duplicate_sync("pokemon", "s1", cooldown_hours=12)

        assert check.skip
        assert check.reason == "recently_synced"

    async def test_cooldown_disabled(
        self, tracker: SyncJobTracker, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """A zero cooldown never skips on recency."""
        await seed_synced_set(session_factory, "s1", card_count=10)

        check = await tracker.check_duplicate_sync("pokemon", "s1", cooldown_hours=0)

        assert not check.skip

    async def test_synced_set_without_cards_not_skipped(
        self, tracker: SyncJobTracker, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        """A set that synced zero cards is retried."""
        await seed_synced_set(session_factory, "s1", card_count=0)

        check = await tracker.check_duplicate_sync("pokemon", "s1", cooldown_hours=12)

        assert not check.skip

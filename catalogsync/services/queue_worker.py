"""
Bounded, self-resuming queue drain.

One drain claims small batches of queue entries and runs each entry's unit
of work with bounded concurrency. It stops when the queue is empty, after
max_batches, or once its time budget is spent, whichever comes first. All
state lives in the queue table, so the next scheduled drain simply resumes.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass, field
from datetime import timedelta
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from catalogsync.config import settings
from catalogsync.db.queue import (
    ClaimedEntry,
    claim_batch,
    mark_done,
    mark_error,
    queued_count,
    requeue_stale,
)
from catalogsync.models.failure import FailureKind

logger = logging.getLogger(__name__)

ProcessEntry = Callable[[ClaimedEntry], Awaitable[Any]]

STOP_QUEUE_EMPTY = "queue_empty"
STOP_MAX_BATCHES = "max_batches"
STOP_TIME_BUDGET = "time_budget"


@dataclass
class DrainResult:
    """Summary of one drain invocation."""

    mode: str
    processed: int = 0
    errors: int = 0
    batches: int = 0
    duration_seconds: float = 0.0
    status: str = "empty"
    stopped_reason: str = STOP_QUEUE_EMPTY
    failures: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class QueueDrainWorker:
    """
    Drains queue entries for one mode with bounded concurrency.

    Never more than max_concurrency units are in flight, and one unit's
    failure marks only that entry as error.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        process_entry: ProcessEntry,
        max_concurrency: int = 3,
        max_batches: int = 10,
        batch_size: int = 5,
        time_budget_seconds: float = 45.0,
        batch_pause_seconds: float = 0.2,
        requeue_after: timedelta | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_concurrency < 1 or batch_size < 1 or max_batches < 1:
            raise ValueError("max_concurrency, batch_size and max_batches must be positive")
        self.session_factory = session_factory
        self.process_entry = process_entry
        self.max_concurrency = max_concurrency
        self.max_batches = max_batches
        self.batch_size = batch_size
        self.time_budget_seconds = time_budget_seconds
        self.batch_pause_seconds = batch_pause_seconds
        self.requeue_after = requeue_after or timedelta(minutes=settings.job_liveness_minutes)
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        session_factory: async_sessionmaker[AsyncSession],
        process_entry: ProcessEntry,
        **overrides: Any,
    ) -> "QueueDrainWorker":
        """Worker configured from settings, with optional per-call overrides."""
        config: dict[str, Any] = {
            "max_concurrency": settings.queue_max_concurrency,
            "max_batches": settings.queue_max_batches,
            "batch_size": settings.queue_batch_size,
            "time_budget_seconds": settings.queue_time_budget_seconds,
        }
        config.update({k: v for k, v in overrides.items() if v is not None})
        return cls(session_factory, process_entry, **config)

    async def _finish(self, entry: ClaimedEntry, error: str | None) -> None:
        try:
            async with self.session_factory() as session:
                if error is None:
                    await mark_done(session, entry.id)
                else:
                    await mark_error(session, entry.id, error)
                await session.commit()
        except SQLAlchemyError:
            # Left in_progress; requeue_stale returns it to the queue later
            logger.exception("Could not record outcome for queue entry %s", entry.id)

    async def _run_unit(
        self, semaphore: asyncio.Semaphore, entry: ClaimedEntry
    ) -> dict[str, Any] | None:
        """Run one entry. Returns its failure record, or None on success."""
        async with semaphore:
            try:
                await self.process_entry(entry)
            except Exception as e:
                error = f"{type(e).__name__}: {e}"
                logger.warning(
                    "Queue entry %s (%s/%s) failed: %s",
                    entry.id,
                    entry.game,
                    entry.set_id,
                    e,
                    extra={
                        "entry_id": entry.id,
                        "game": entry.game,
                        "set_id": entry.set_id,
                        "kind": FailureKind.UNIT_FAILED.value,
                    },
                )
                await self._finish(entry, error)
                return {
                    "entry_id": entry.id,
                    "game": entry.game,
                    "set_id": entry.set_id,
                    "kind": FailureKind.UNIT_FAILED.value,
                    "error": error,
                }

            await self._finish(entry, None)
            return None

    async def drain(self, mode: str) -> DrainResult:
        """
        Drain queued entries for ``mode`` until empty, max_batches or time budget.

        Returns:
            DrainResult with processed/error counts and why the drain stopped
        """
        started = self._clock()
        result = DrainResult(mode=mode)
        semaphore = asyncio.Semaphore(self.max_concurrency)

        logger.info(
            "Starting drain for %s (concurrency=%d, batches=%d, batch_size=%d, budget=%.1fs)",
            mode,
            self.max_concurrency,
            self.max_batches,
            self.batch_size,
            self.time_budget_seconds,
        )

        async with self.session_factory() as session:
            await requeue_stale(session, mode, self.requeue_after)
            await session.commit()

        while True:
            if self._clock() - started >= self.time_budget_seconds:
                result.stopped_reason = STOP_TIME_BUDGET
                break
            if result.batches >= self.max_batches:
                result.stopped_reason = STOP_MAX_BATCHES
                break

            async with self.session_factory() as session:
                if await queued_count(session, mode) == 0:
                    result.stopped_reason = STOP_QUEUE_EMPTY
                    break
                entries = await claim_batch(session, mode, self.batch_size)
                await session.commit()

            if not entries:
                # Another drain claimed the remaining entries
                result.stopped_reason = STOP_QUEUE_EMPTY
                break

            result.batches += 1
            outcomes = await asyncio.gather(*(self._run_unit(semaphore, entry) for entry in entries))
            failures = [failure for failure in outcomes if failure is not None]
            succeeded = len(outcomes) - len(failures)
            result.processed += succeeded
            result.errors += len(failures)
            result.failures.extend(failures)

            logger.info(
                "Drain %s batch %d: %d succeeded, %d failed",
                mode,
                result.batches,
                succeeded,
                len(outcomes) - succeeded,
            )

            if self.batch_pause_seconds > 0:
                await asyncio.sleep(self.batch_pause_seconds)

        result.duration_seconds = round(self._clock() - started, 3)
        if result.batches == 0:
            result.status = "empty"
        elif result.errors:
            result.status = "partial_success"
        else:
            result.status = "success"

        logger.info(
            "Drain for %s finished: %s (processed=%d, errors=%d, batches=%d, reason=%s)",
            mode,
            result.status,
            result.processed,
            result.errors,
            result.batches,
            result.stopped_reason,
        )
        return result

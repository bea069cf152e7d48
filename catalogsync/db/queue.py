"""
Durable sync queue operations.

The queue is the work list: one entry per (mode, game, set) to sync.
Entries move queued -> in_progress -> done | error.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from catalogsync.models.db import QueueEntryDB

logger = logging.getLogger(__name__)

QUEUED = "queued"
IN_PROGRESS = "in_progress"
DONE = "done"
ERROR = "error"

ACTIVE_STATUSES = (QUEUED, IN_PROGRESS)
QUEUE_STATUSES = (QUEUED, IN_PROGRESS, DONE, ERROR)


@dataclass(frozen=True)
class ClaimedEntry:
    """A claimed queue entry, detached from the session that claimed it."""

    id: int
    mode: str
    game: str
    set_id: str
    attempts: int
    claim_token: str


async def enqueue(session: AsyncSession, mode: str, game: str, set_id: str) -> bool:
    """
    Add a set to the queue unless it is already queued or in progress.

    Returns:
        True if a new entry was created, False if the scope was already active.
    """
    existing = await session.execute(
        select(QueueEntryDB.id).where(
            QueueEntryDB.mode == mode,
            QueueEntryDB.game == game,
            QueueEntryDB.set_id == set_id,
            QueueEntryDB.status.in_(ACTIVE_STATUSES),
        )
    )
    if existing.first() is not None:
        return False

    try:
        async with session.begin_nested():
            session.add(QueueEntryDB(mode=mode, game=game, set_id=set_id, status=QUEUED))
    except IntegrityError:
        # Another invocation queued the same scope between our check and insert
        logger.debug("Set %s/%s already queued for %s", game, set_id, mode)
        return False
    return True


async def queued_count(session: AsyncSession, mode: str) -> int:
    result = await session.execute(
        select(func.count())
        .select_from(QueueEntryDB)
        .where(QueueEntryDB.mode == mode, QueueEntryDB.status == QUEUED)
    )
    return int(result.scalar_one())


async def queue_stats(session: AsyncSession, mode: str) -> dict[str, int]:
    """Entry counts per status for a mode (every status present, zero if empty)."""
    result = await session.execute(
        select(QueueEntryDB.status, func.count())
        .where(QueueEntryDB.mode == mode)
        .group_by(QueueEntryDB.status)
    )
    stats = dict.fromkeys(QUEUE_STATUSES, 0)
    for status, count in result.all():
        stats[status] = int(count)
    return stats


async def claim_batch(session: AsyncSession, mode: str, limit: int) -> list[ClaimedEntry]:
    """
    Atomically move up to ``limit`` queued entries to in_progress.

    The conditional UPDATE only takes rows still queued, and each claim
    carries a unique token, so two concurrent drains never receive the same
    entry. On PostgreSQL, candidate rows are locked with SKIP LOCKED.
    """
    candidates = (
        select(QueueEntryDB.id)
        .where(QueueEntryDB.mode == mode, QueueEntryDB.status == QUEUED)
        .order_by(QueueEntryDB.created_at, QueueEntryDB.id)
        .limit(limit)
    )
    if session.get_bind().dialect.name == "postgresql":
        candidates = candidates.with_for_update(skip_locked=True)

    ids = list((await session.execute(candidates)).scalars().all())
    if not ids:
        return []

    token = str(uuid.uuid4())
    await session.execute(
        update(QueueEntryDB)
        .where(QueueEntryDB.id.in_(ids), QueueEntryDB.status == QUEUED)
        .values(
            status=IN_PROGRESS,
            claim_token=token,
            claimed_at=datetime.now(UTC),
            attempts=QueueEntryDB.attempts + 1,
        )
        .execution_options(synchronize_session=False)
    )
    claimed = await session.execute(
        select(QueueEntryDB)
        .where(QueueEntryDB.claim_token == token)
        .order_by(QueueEntryDB.id)
        .execution_options(populate_existing=True)
    )
    return [
        ClaimedEntry(
            id=row.id,
            mode=row.mode,
            game=row.game,
            set_id=row.set_id,
            attempts=row.attempts,
            claim_token=token,
        )
        for row in claimed.scalars().all()
    ]


async def mark_done(session: AsyncSession, entry_id: int) -> None:
    await session.execute(
        update(QueueEntryDB)
        .where(QueueEntryDB.id == entry_id)
        .values(status=DONE, last_error=None, finished_at=datetime.now(UTC))
    )


async def mark_error(session: AsyncSession, entry_id: int, error: str) -> None:
    await session.execute(
        update(QueueEntryDB)
        .where(QueueEntryDB.id == entry_id)
        .values(status=ERROR, last_error=error[:2000], finished_at=datetime.now(UTC))
    )


async def requeue_stale(session: AsyncSession, mode: str, older_than: timedelta) -> int:
    """
    Return entries stuck in_progress (claimed by a crashed drain) to the queue.

    Returns:
        Number of entries requeued
    """
    cutoff = datetime.now(UTC) - older_than
    result = await session.execute(
        update(QueueEntryDB)
        .where(
            QueueEntryDB.mode == mode,
            QueueEntryDB.status == IN_PROGRESS,
            QueueEntryDB.claimed_at < cutoff,
        )
        .values(status=QUEUED, claim_token=None, claimed_at=None)
        .execution_options(synchronize_session=False)
    )
    count = int(result.rowcount)  # type: ignore[attr-defined]
    if count:
        logger.warning("Requeued %d stale in-progress entries for mode %s", count, mode)
    return count

"""
Incremental sync orchestration.

Lists a game's sets from the provider, upserts them into the live catalog
and queues one entry per set. The queue drain worker then syncs each set
as an independent unit of work.
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import date

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from catalogsync.db.catalog import live_sets_by_provider_id, upsert_live
from catalogsync.db.queue import ClaimedEntry, enqueue
from catalogsync.providers.justtcg import JustTCGProvider
from catalogsync.providers.mapping import map_set, resolve_local_sets
from catalogsync.services.set_sync import SetSyncResult, sync_set
from catalogsync.services.sync_jobs import SyncJobTracker

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EnqueueResult:
    game: str
    mode: str
    sets_found: int
    sets_queued: int


async def enqueue_game_sets(
    session: AsyncSession,
    provider: JustTCGProvider,
    game: str,
    since: date | None = None,
    mode: str | None = None,
) -> EnqueueResult:
    """
    Upsert a game's provider sets into the live catalog and queue each one.

    Sets already queued or in progress for the mode are not queued twice.
    The caller commits.

    Args:
        session: Database session
        provider: Provider adapter
        game: Internal game slug
        since: Only sets released on or after this date
        mode: Queue mode (defaults to the game slug)
    """
    mode = mode or game

    provider_sets = [
        map_set(raw, game, provider=provider.name)
        async for raw in provider.iter_sets(game, since=since)
    ]
    known = await live_sets_by_provider_id(session, game)
    sets, _ = resolve_local_sets(provider_sets, known)

    await upsert_live(session, "sets", [s.to_row() for s in sets])

    queued = 0
    for catalog_set in sets:
        if await enqueue(session, mode, game, catalog_set.set_id):
            queued += 1

    logger.info("Queued %d of %d %s sets for mode %s", queued, len(sets), game, mode)
    return EnqueueResult(game=game, mode=mode, sets_found=len(sets), sets_queued=queued)


def make_set_processor(
    session_factory: async_sessionmaker[AsyncSession],
    provider: JustTCGProvider,
    tracker: SyncJobTracker | None = None,
) -> Callable[[ClaimedEntry], Awaitable[SetSyncResult]]:
    """Unit-of-work callable for the queue drain worker."""
    tracker = tracker or SyncJobTracker(session_factory)

    async def process(entry: ClaimedEntry) -> SetSyncResult:
        return await sync_set(session_factory, provider, entry.game, entry.set_id, tracker=tracker)

    return process

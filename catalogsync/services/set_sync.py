"""
Incremental sync of one set straight into the live catalog.

This is the unit of work behind every queue entry: fetch the set's cards
page by page, upsert cards and variants into the live tables, and record
the outcome on the set and on a SyncJob. Upserts are idempotent, so a unit
that is retried after a crash converges on the same rows.
"""

import logging
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from catalogsync.db.catalog import get_live_set, set_sync_status, upsert_live
from catalogsync.models.failure import FailureKind, KnownError
from catalogsync.providers.justtcg import JustTCGProvider
from catalogsync.providers.mapping import map_card_with_variants
from catalogsync.services.sync_jobs import COMPLETED, FAILED, JOB_CARDS, SyncJobTracker

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SetSyncResult:
    """Outcome of one unit of work."""

    game: str
    set_id: str
    status: str  # "synced" or "skipped"
    cards: int = 0
    variants: int = 0
    job_id: str | None = None
    reason: str | None = None


async def _mark_set_failed(
    session_factory: async_sessionmaker[AsyncSession], game: str, set_id: str
) -> None:
    try:
        async with session_factory() as session:
            await set_sync_status(session, game, set_id, "failed")
            await session.commit()
    except SQLAlchemyError:
        logger.warning("Could not mark %s set %s failed", game, set_id, exc_info=True)


async def sync_set(
    session_factory: async_sessionmaker[AsyncSession],
    provider: JustTCGProvider,
    game: str,
    set_id: str,
    tracker: SyncJobTracker | None = None,
    cooldown_hours: float | None = None,
) -> SetSyncResult:
    """
    Sync one live set's cards and variants from the provider.

    Args:
        session_factory: Opens short sessions for each write
        provider: Source of card pages
        game: Internal game slug
        set_id: Local set id of a live set
        tracker: Job tracker (one is built from session_factory if omitted)
        cooldown_hours: Override the recently-synced window

    Returns:
        SetSyncResult; skipped duplicates report status "skipped"

    Raises:
        KnownError: If the set is missing or has no provider id
        ProviderError: If the provider fails after retries
    """
    tracker = tracker or SyncJobTracker(session_factory)

    check = await tracker.check_duplicate_sync(game, set_id, cooldown_hours=cooldown_hours)
    if check.skip:
        logger.info("Skipping %s set %s: %s", game, set_id, check.reason)
        return SetSyncResult(
            game=game,
            set_id=set_id,
            status="skipped",
            job_id=check.existing_job_id,
            reason=check.reason,
        )

    job_id = await tracker.create_job(JOB_CARDS, game=game, set_id=set_id)
    await tracker.start_job(job_id)

    cards = 0
    variants = 0
    pages = 0
    requests_before = provider.request_count
    try:
        async with session_factory() as session:
            live_set = await get_live_set(session, game, set_id=set_id)
            if live_set is None:
                raise KnownError(
                    kind=FailureKind.NOT_FOUND,
                    message=f"Set {set_id} not found for {game}",
                    status_code=404,
                )
            if not live_set.provider_id:
                raise KnownError(
                    kind=FailureKind.DATA_INTEGRITY,
                    message=f"Set {set_id} for {game} has no provider id",
                )
            provider_set_id = live_set.provider_id
            expected_total = live_set.total

        async for page in provider.iter_card_pages(game, provider_set_id):
            pages += 1
            mapped = [map_card_with_variants(raw, game, set_id, provider=provider.name) for raw in page]
            async with session_factory() as session:
                cards += await upsert_live(session, "cards", [card.to_row() for card, _ in mapped])
                variants += await upsert_live(
                    session, "variants", [v.to_row() for _, vs in mapped for v in vs]
                )
                await session.commit()
            await tracker.update_progress(job_id, cards, total=expected_total)

        async with session_factory() as session:
            await set_sync_status(session, game, set_id, "synced", card_count=cards)
            await session.commit()
    except Exception as e:
        logger.exception("Sync failed for %s set %s", game, set_id)
        await _mark_set_failed(session_factory, game, set_id)
        await tracker.complete_job(
            job_id,
            FAILED,
            results={"cards": cards, "variants": variants},
            metrics={"pages": pages, "requests": provider.request_count - requests_before},
            error=str(e),
        )
        raise

    await tracker.complete_job(
        job_id,
        COMPLETED,
        results={"cards": cards, "variants": variants},
        metrics={"pages": pages, "requests": provider.request_count - requests_before},
    )
    logger.info("Synced %s set %s: %d cards, %d variants", game, set_id, cards, variants)
    return SetSyncResult(
        game=game,
        set_id=set_id,
        status="synced",
        cards=cards,
        variants=variants,
        job_id=job_id,
    )

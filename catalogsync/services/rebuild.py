"""
Full catalog rebuild pipeline.

Per game: clear shadow -> fetch provider snapshot -> stage into shadow ->
guardrails -> validation -> atomic swap. Each phase transition is emitted
as a RebuildEvent. Games are isolated from each other: a failure in one
game is reported as an ERROR event for that game and the next game still
runs.
"""

import asyncio
import contextlib
import functools
import logging
from collections.abc import AsyncIterator, Callable, Iterable, Mapping
from dataclasses import asdict, replace
from datetime import UTC, datetime
from typing import Any, Literal

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from catalogsync.db.catalog import (
    atomic_swap,
    clear_shadow,
    live_sets_by_provider_id,
    write_shadow,
)
from catalogsync.models.catalog import ProviderCatalog
from catalogsync.models.events import EventType, RebuildEvent
from catalogsync.models.failure import FailureKind, KnownError, ValidationFailedError
from catalogsync.providers.justtcg import JustTCGProvider
from catalogsync.providers.mapping import resolve_local_sets
from catalogsync.services.guardrails import fix_bad_writes, validate_no_null_provider_ids
from catalogsync.services.sync_jobs import (
    COMPLETED,
    FAILED,
    JOB_FULL_REBUILD,
    SyncJobTracker,
)

logger = logging.getLogger(__name__)

RebuildMode = Literal["sequential", "parallel"]
Emit = Callable[[RebuildEvent], None]

# Per-game outcomes reported in the COMPLETE event
SWAPPED = "swapped"
VALIDATION_FAILED = "validation_failed"
ALREADY_RUNNING = "already_running"
GAME_FAILED = "failed"


def build_shadow_rows(
    catalog: ProviderCatalog, known: Mapping[str, Any]
) -> dict[str, list[dict[str, Any]]]:
    """
    Turn a provider snapshot into shadow rows per entity kind.

    Only the snapshot is staged. ``known`` maps provider ids to live sets;
    a set the live catalog already knows keeps its local id, and its cards
    follow it. Live sets the provider no longer lists are not staged, so the
    swap retires them.
    """
    sets, remap = resolve_local_sets(catalog.sets, known)

    cards = [replace(card, set_id=remap.get(card.set_id, card.set_id)) for card in catalog.cards]
    cards_per_set: dict[str, int] = {}
    for card in cards:
        cards_per_set[card.set_id] = cards_per_set.get(card.set_id, 0) + 1

    now = datetime.now(UTC)
    return {
        "sets": [
            {
                **s.to_row(),
                "sync_status": "synced",
                "card_count": cards_per_set.get(s.set_id, 0),
                "last_synced_at": now,
            }
            for s in sets
        ],
        "cards": [card.to_row() for card in cards],
        "variants": [variant.to_row() for variant in catalog.variants],
    }


class CatalogRebuilder:
    """Runs the shadow -> validate -> swap pipeline for one or more games."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        provider: JustTCGProvider,
        tracker: SyncJobTracker | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.provider = provider
        self.tracker = tracker or SyncJobTracker(session_factory)

    async def rebuild_game(self, game: str, emit: Emit) -> str:
        """
        Rebuild one game. Never raises for game-level failures.

        Returns:
            The game's outcome
        """
        emit(RebuildEvent(type=EventType.START_GAME, game=game))

        job_id: str | None = None
        try:
            await self.tracker.reset_stale_jobs(game, job_type=JOB_FULL_REBUILD)
            running = await self.tracker.find_running_job(game, JOB_FULL_REBUILD)
            if running is not None:
                emit(
                    RebuildEvent(
                        type=EventType.ERROR,
                        game=game,
                        message="REBUILD_IN_PROGRESS",
                        data={"job_id": running.id, "kind": FailureKind.CONFLICT.value},
                    )
                )
                return ALREADY_RUNNING

            job_id = await self.tracker.create_job(JOB_FULL_REBUILD, game=game)
            await self.tracker.start_job(job_id)

            emit(RebuildEvent(type=EventType.IMPORT_PHASE, game=game, step="CLEAR_SHADOW"))
            async with self.session_factory() as session:
                await clear_shadow(session, game)
                await session.commit()

            # Progress writes double as the job's heartbeat while the snapshot downloads
            emit(RebuildEvent(type=EventType.IMPORT_PHASE, game=game, step="FETCH_PROVIDER"))
            catalog = await self.provider.fetch_catalog(
                game, on_page=functools.partial(self.tracker.update_progress, job_id)
            )

            emit(
                RebuildEvent(
                    type=EventType.IMPORT_PHASE,
                    game=game,
                    step="UPSERT",
                    data=catalog.counts,
                )
            )
            async with self.session_factory() as session:
                rows = build_shadow_rows(catalog, await live_sets_by_provider_id(session, game))
                staged = {
                    kind: await write_shadow(session, kind, rows[kind])
                    for kind in ("sets", "cards", "variants")
                }
                await session.commit()
            await self.tracker.update_progress(job_id, staged["cards"], total=staged["cards"])

            emit(RebuildEvent(type=EventType.FIX_BAD_WRITES, game=game))
            async with self.session_factory() as session:
                summary = await fix_bad_writes(session, game, catalog.sets)
                await session.commit()
            emit(
                RebuildEvent(
                    type=EventType.FIX_BAD_WRITES_SUMMARY,
                    game=game,
                    data=summary.to_dict(),
                )
            )

            emit(RebuildEvent(type=EventType.VALIDATE, game=game))
            async with self.session_factory() as session:
                validation = await validate_no_null_provider_ids(session, game)
            if not validation.ok:
                raise ValidationFailedError(
                    game, validation.null_provider_ids, reason=validation.reason
                )

            emit(RebuildEvent(type=EventType.READY_TO_SWAP, game=game))
            counts = await atomic_swap(self.session_factory, game)
            swapped = {k: v for k, v in asdict(counts).items() if k != "game"}
            emit(RebuildEvent(type=EventType.SWAP_DONE, game=game, data=swapped))

            await self.tracker.complete_job(
                job_id,
                COMPLETED,
                results={"swapped": swapped, "guardrails": summary.to_dict()},
                metrics={"requests": self.provider.request_count},
            )
            return SWAPPED

        except ValidationFailedError as e:
            emit(
                RebuildEvent(
                    type=EventType.ERROR,
                    game=game,
                    message=e.message,
                    data={**validation.to_dict(), "kind": e.kind.value, "detail": e.detail},
                )
            )
            if job_id is not None:
                await self.tracker.complete_job(
                    job_id,
                    FAILED,
                    results={"staged": staged, "guardrails": summary.to_dict()},
                    error=e.detail,
                )
            return VALIDATION_FAILED

        except Exception as e:
            logger.exception("Rebuild failed for %s", game)
            if isinstance(e, KnownError):
                data = e.to_dict()
            else:
                data = {
                    "kind": FailureKind.UNKNOWN.value,
                    "message": str(e),
                    "detail": type(e).__name__,
                }
            emit(RebuildEvent(type=EventType.ERROR, game=game, message=str(e), data=data))
            if job_id is not None:
                await self.tracker.complete_job(job_id, FAILED, error=str(e))
            return GAME_FAILED

    async def run(self, games: list[str], mode: RebuildMode, emit: Emit) -> dict[str, str]:
        """Rebuild each game, one after another or concurrently."""
        if mode == "parallel":
            outcomes = await asyncio.gather(*(self.rebuild_game(game, emit) for game in games))
        else:
            outcomes = [await self.rebuild_game(game, emit) for game in games]
        return dict(zip(games, outcomes, strict=True))

    async def stream(
        self, games: Iterable[str], mode: RebuildMode = "sequential"
    ) -> AsyncIterator[RebuildEvent]:
        """
        Run the rebuild and yield its events as they happen.

        The stream always starts with START and ends with COMPLETE once every
        requested game has been attempted. Closing the stream early cancels
        the run.
        """
        games = list(dict.fromkeys(games))
        events: asyncio.Queue[RebuildEvent | None] = asyncio.Queue()
        emit = events.put_nowait

        async def runner() -> None:
            try:
                emit(RebuildEvent(type=EventType.START, data={"games": games, "mode": mode}))
                outcomes = await self.run(games, mode, emit)
                emit(RebuildEvent(type=EventType.COMPLETE, data={"games": outcomes}))
            except Exception as e:
                logger.exception("Rebuild run failed")
                emit(RebuildEvent(type=EventType.ERROR, message=str(e)))
            finally:
                events.put_nowait(None)

        task = asyncio.create_task(runner(), name=f"rebuild:{','.join(games)}")
        try:
            while (event := await events.get()) is not None:
                yield event
        finally:
            if not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task


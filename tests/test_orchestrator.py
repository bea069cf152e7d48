"""Tests for queueing sets and the per-entry unit of work."""

from datetime import date

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from catalogsync.db.catalog import get_live_sets, upsert_live
from catalogsync.db.queue import claim_batch, queue_stats
from catalogsync.models.catalog import CatalogSet
from catalogsync.models.db import CatalogCardDB
from catalogsync.services.orchestrator import enqueue_game_sets, make_set_processor
from catalogsync.services.queue_worker import QueueDrainWorker

POKEMON_SETS = [
    {"id": "sv1", "code": "SVI", "name": "Scarlet & Violet", "releaseDate": "2023-03-31"},
    {"id": "sv2", "code": "PAL", "name": "Paldea Evolved", "releaseDate": "2023-06-09"},
]


class TestEnqueueGameSets:
    async def test_upserts_sets_and_queues_each(self, session: AsyncSession, make_provider) -> None:
        """Every provider set lands in the live catalog and the queue."""
        provider = make_provider(sets={"pokemon": POKEMON_SETS})

        result = await enqueue_game_sets(session, provider, "pokemon")
        await session.commit()

        assert (result.sets_found, result.sets_queued) == (2, 2)
        assert result.mode == "pokemon"
        assert [s.set_id for s in await get_live_sets(session, "pokemon")] == ["PAL", "SVI"]
        assert (await queue_stats(session, "pokemon"))["queued"] == 2

    async def test_second_enqueue_does_not_duplicate(
        self, session: AsyncSession, make_provider
    ) -> None:
        """Sets still queued are not queued again."""
        provider = make_provider(sets={"pokemon": POKEMON_SETS})
        await enqueue_game_sets(session, provider, "pokemon")
        await session.commit()

        again = await enqueue_game_sets(session, provider, "pokemon")
        await session.commit()

        assert again.sets_queued == 0
        assert (await queue_stats(session, "pokemon"))["queued"] == 2

    async def test_since_filters_sets(self, session: AsyncSession, make_provider) -> None:
        """Only sets released on or after ``since`` are queued."""
        provider = make_provider(sets={"pokemon": POKEMON_SETS})

        result = await enqueue_game_sets(session, provider, "pokemon", since=date(2023, 5, 1))
        await session.commit()

        assert result.sets_found == 1
        [entry] = await claim_batch(session, "pokemon", 5)
        assert entry.set_id == "PAL"

    async def test_custom_mode(self, session: AsyncSession, make_provider) -> None:
        """A queue mode other than the game slug may be used."""
        provider = make_provider(sets={"pokemon": POKEMON_SETS})

        result = await enqueue_game_sets(session, provider, "pokemon", mode="nightly")
        await session.commit()

        assert result.mode == "nightly"
        assert (await queue_stats(session, "nightly"))["queued"] == 2
        assert (await queue_stats(session, "pokemon"))["queued"] == 0

    async def test_known_provider_id_keeps_local_set_id(
        self, session: AsyncSession, make_provider
    ) -> None:
        """A set already live under another local id is queued under that id."""
        await upsert_live(
            session,
            "sets",
            [CatalogSet(set_id="sv01", game="pokemon", name="Scarlet & Violet", provider_id="sv1").to_row()],
        )
        await session.commit()
        provider = make_provider(sets={"pokemon": POKEMON_SETS[:1]})

        await enqueue_game_sets(session, provider, "pokemon")
        await session.commit()

        assert [s.set_id for s in await get_live_sets(session, "pokemon")] == ["sv01"]
        [entry] = await claim_batch(session, "pokemon", 5)
        assert entry.set_id == "sv01"


class TestEndToEnd:
    async def test_enqueue_then_drain(
        self, session: AsyncSession, session_factory, make_provider, card_records
    ) -> None:
        """Queued sets are synced by the drain worker with the set processor."""
        provider = make_provider(
            sets={"pokemon": POKEMON_SETS},
            cards={"sv1": card_records("sv1", 3), "sv2": card_records("sv2", 2)},
        )
        await enqueue_game_sets(session, provider, "pokemon")
        await session.commit()

        worker = QueueDrainWorker(
            session_factory,
            make_set_processor(session_factory, provider),
            batch_pause_seconds=0,
        )
        result = await worker.drain("pokemon")

        assert (result.processed, result.errors, result.status) == (2, 0, "success")
        cards = (await session.execute(select(CatalogCardDB.set_id))).scalars().all()
        assert sorted(cards) == ["PAL", "PAL", "SVI", "SVI", "SVI"]
        assert (await queue_stats(session, "pokemon"))["done"] == 2

    async def test_failing_set_is_isolated(
        self, session: AsyncSession, session_factory, make_provider, card_records
    ) -> None:
        """A set whose provider calls fail is marked error; the other set syncs."""
        provider = make_provider(
            sets={"pokemon": POKEMON_SETS},
            cards={"sv1": card_records("sv1", 3), "sv2": card_records("sv2", 2)},
            fail_sets=("sv2",),
        )
        await enqueue_game_sets(session, provider, "pokemon")
        await session.commit()

        worker = QueueDrainWorker(
            session_factory,
            make_set_processor(session_factory, provider),
            batch_pause_seconds=0,
        )
        result = await worker.drain("pokemon")

        assert (result.processed, result.errors) == (1, 1)
        stats = await queue_stats(session, "pokemon")
        assert (stats["done"], stats["error"]) == (1, 1)

"""
Drain the sync queue once.

Optionally queues a game's sets first, then runs one bounded drain.
Suitable for cron: each run stops at its batch limit or time budget and
the next run resumes from the queue.

Usage:
    python -m catalogsync.jobs.drain_queue --mode pokemon --enqueue
"""

import argparse
import asyncio
import logging

from catalogsync.config import VALID_GAME_SLUGS
from catalogsync.db.database import async_session_factory, init_db
from catalogsync.providers.justtcg import open_provider
from catalogsync.services.orchestrator import enqueue_game_sets, make_set_processor
from catalogsync.services.queue_worker import DrainResult, QueueDrainWorker

logger = logging.getLogger(__name__)


async def run_drain(
    mode: str,
    enqueue_game: str | None = None,
    max_batches: int | None = None,
    time_budget_seconds: float | None = None,
) -> DrainResult:
    """
    Run one drain for a mode.

    Args:
        mode: Queue mode to drain
        enqueue_game: Queue this game's sets before draining
        max_batches: Override the configured batch limit
        time_budget_seconds: Override the configured time budget
    """
    await init_db()

    async with open_provider() as provider:
        if enqueue_game is not None:
            async with async_session_factory() as session:
                queued = await enqueue_game_sets(session, provider, enqueue_game, mode=mode)
                await session.commit()
            logger.info("Queued %d of %d sets", queued.sets_queued, queued.sets_found)

        worker = QueueDrainWorker.from_settings(
            async_session_factory,
            make_set_processor(async_session_factory, provider),
            max_batches=max_batches,
            time_budget_seconds=time_budget_seconds,
        )
        return await worker.drain(mode)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Drain the catalog sync queue once")
    parser.add_argument("--mode", default="pokemon", help="Queue mode to drain")
    parser.add_argument(
        "--enqueue",
        action="store_true",
        help="Queue the mode's game sets before draining",
    )
    parser.add_argument("--max-batches", type=int, default=None)
    parser.add_argument("--time-budget", type=float, default=None, help="Seconds")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for running a drain."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    args = parse_args(argv)
    if args.enqueue and args.mode not in VALID_GAME_SLUGS:
        raise SystemExit(f"--enqueue needs the mode to be a game: {list(VALID_GAME_SLUGS)}")

    result = asyncio.run(
        run_drain(
            args.mode,
            enqueue_game=args.mode if args.enqueue else None,
            max_batches=args.max_batches,
            time_budget_seconds=args.time_budget,
        )
    )
    logger.info("Drain result: %s", result.to_dict())


if __name__ == "__main__":
    main()

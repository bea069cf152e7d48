"""
Rebuild the live catalog from the provider.

Runs the shadow -> validate -> swap pipeline and logs each progress event.
Can be run as a standalone script or called from a scheduler.

Usage:
    python -m catalogsync.jobs.rebuild_catalog pokemon mtg --parallel
"""

import argparse
import asyncio
import logging

from catalogsync.config import VALID_GAME_SLUGS
from catalogsync.db.database import async_session_factory, init_db
from catalogsync.models.events import EventType
from catalogsync.providers.justtcg import open_provider
from catalogsync.services.rebuild import CatalogRebuilder, RebuildMode

logger = logging.getLogger(__name__)


async def run_rebuild(games: list[str], mode: RebuildMode = "sequential") -> dict[str, str]:
    """
    Rebuild the given games.

    Returns:
        Dict mapping game to its outcome (empty if the run did not complete)
    """
    await init_db()

    outcomes: dict[str, str] = {}
    async with open_provider() as provider:
        rebuilder = CatalogRebuilder(async_session_factory, provider)
        async for event in rebuilder.stream(games, mode):
            if event.type == EventType.ERROR:
                logger.error("%s %s: %s", event.type.value, event.game or "-", event.message)
            else:
                logger.info(
                    "%s %s %s",
                    event.type.value,
                    event.game or "-",
                    event.step or event.data or "",
                )
            if event.type == EventType.COMPLETE and event.data:
                outcomes = dict(event.data.get("games", {}))

    return outcomes


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Rebuild the live catalog for one or more games")
    parser.add_argument(
        "games",
        nargs="*",
        default=list(VALID_GAME_SLUGS),
        help=f"Games to rebuild (default: all of {', '.join(VALID_GAME_SLUGS)})",
    )
    parser.add_argument(
        "--parallel",
        action="store_true",
        help="Rebuild games concurrently",
    )
    args = parser.parse_args(argv)
    invalid = [game for game in args.games if game not in VALID_GAME_SLUGS]
    if invalid:
        parser.error(f"invalid games: {invalid}")
    return args


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for running a rebuild."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    args = parse_args(argv)
    outcomes = asyncio.run(run_rebuild(args.games, "parallel" if args.parallel else "sequential"))
    logger.info("Rebuild finished: %s", outcomes)


if __name__ == "__main__":
    main()

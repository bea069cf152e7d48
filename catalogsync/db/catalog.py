"""
Catalog storage operations.

Two write paths exist per entity kind:
- write_shadow: idempotent batch upsert into the staging tables (rebuilds)
- upsert_live: idempotent batch upsert into the live tables (incremental sync)

atomic_swap promotes a game's staged rows to live inside one transaction.
"""

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Literal

from sqlalchemy import delete, func, insert, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from catalogsync.config import DEFAULT_PROVIDER, settings
from catalogsync.models.db import (
    Base,
    CatalogCardDB,
    CatalogSetDB,
    CatalogVariantDB,
    ShadowCardDB,
    ShadowSetDB,
    ShadowVariantDB,
)
from catalogsync.models.failure import SwapFailedError

logger = logging.getLogger(__name__)

EntityKind = Literal["sets", "cards", "variants"]


@dataclass(frozen=True)
class _KindTables:
    live: type[Base]
    shadow: type[Base]
    key: str


_KINDS: dict[str, _KindTables] = {
    "sets": _KindTables(CatalogSetDB, ShadowSetDB, "set_id"),
    "cards": _KindTables(CatalogCardDB, ShadowCardDB, "card_id"),
    "variants": _KindTables(CatalogVariantDB, ShadowVariantDB, "variant_key"),
}

# Children first when deleting, parents first when inserting
_DELETE_ORDER: tuple[EntityKind, ...] = ("variants", "cards", "sets")
_INSERT_ORDER: tuple[EntityKind, ...] = ("sets", "cards", "variants")


@dataclass(frozen=True)
class SwapCounts:
    """Rows promoted for one game."""

    game: str
    sets: int
    cards: int
    variants: int


def _tables(kind: str) -> _KindTables:
    try:
        return _KINDS[kind]
    except KeyError:
        raise ValueError(f"Unknown entity kind: {kind}") from None


def _dialect_insert(session: AsyncSession, model: type[Base]) -> Any:
    """INSERT construct supporting ON CONFLICT for the session's dialect."""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model)
    if dialect == "sqlite":
        return sqlite.insert(model)
    raise NotImplementedError(f"Upsert not supported for dialect {dialect}")


def _prepare_rows(rows: Iterable[Mapping[str, Any]], key: str) -> list[dict[str, Any]]:
    """
    Deduplicate rows on their natural key (last one wins) and give every
    row the same set of columns.
    """
    deduped: dict[tuple[Any, Any, Any], dict[str, Any]] = {}
    for row in rows:
        values = dict(row)
        values.setdefault("provider", DEFAULT_PROVIDER)
        values.pop("id", None)
        deduped[(values["game"], values["provider"], values[key])] = values

    prepared = list(deduped.values())
    columns: set[str] = set()
    for values in prepared:
        columns.update(values)
    return [{column: values.get(column) for column in columns} for values in prepared]


async def _upsert(
    session: AsyncSession,
    model: type[Base],
    key: str,
    rows: Iterable[Mapping[str, Any]],
    chunk_size: int | None = None,
) -> int:
    prepared = _prepare_rows(rows, key)
    if not prepared:
        return 0

    chunk_size = chunk_size or settings.db_chunk_size
    conflict_cols = ["game", "provider", key]
    for start in range(0, len(prepared), chunk_size):
        chunk = prepared[start : start + chunk_size]
        stmt = _dialect_insert(session, model).values(chunk)
        update_cols = {
            column: stmt.excluded[column] for column in chunk[0] if column not in conflict_cols
        }
        update_cols.setdefault("updated_at", func.now())
        await session.execute(stmt.on_conflict_do_update(index_elements=conflict_cols, set_=update_cols))

    return len(prepared)


# --- Shadow store ---


async def clear_shadow(session: AsyncSession, game: str) -> int:
    """
    Remove every shadow row for a game.

    Scoped by game so concurrent rebuilds of other games are unaffected.
    Returns the number of shadow sets removed.
    """
    removed = 0
    for kind in _DELETE_ORDER:
        shadow = _tables(kind).shadow
        result = await session.execute(delete(shadow).where(shadow.game == game))  # type: ignore[attr-defined]
        if kind == "sets":
            removed = int(result.rowcount)  # type: ignore[attr-defined]
    return removed


async def write_shadow(
    session: AsyncSession,
    kind: EntityKind,
    rows: Iterable[Mapping[str, Any]],
    chunk_size: int | None = None,
) -> int:
    """
    Batch upsert staged rows for one entity kind.

    Keyed by (game, provider, local id); repeating the call with the same
    rows leaves the shadow state unchanged.

    Returns:
        Number of distinct rows written
    """
    tables = _tables(kind)
    return await _upsert(session, tables.shadow, tables.key, rows, chunk_size)


async def get_shadow_sets(session: AsyncSession, game: str) -> list[ShadowSetDB]:
    result = await session.execute(
        select(ShadowSetDB).where(ShadowSetDB.game == game).order_by(ShadowSetDB.set_id)
    )
    return list(result.scalars().all())


async def clear_shadow_provider_ids(session: AsyncSession, row_ids: list[int]) -> int:
    """Null out provider_id on the given shadow set rows. Rows are kept."""
    if not row_ids:
        return 0
    result = await session.execute(
        update(ShadowSetDB).where(ShadowSetDB.id.in_(row_ids)).values(provider_id=None)
    )
    return int(result.rowcount)  # type: ignore[attr-defined]


async def count_null_provider_ids(session: AsyncSession, game: str) -> int:
    result = await session.execute(
        select(func.count())
        .select_from(ShadowSetDB)
        .where(ShadowSetDB.game == game, ShadowSetDB.provider_id.is_(None))
    )
    return int(result.scalar_one())


async def count_rows(session: AsyncSession, game: str, shadow: bool = False) -> dict[str, int]:
    """Row counts per entity kind for a game, live or shadow."""
    counts: dict[str, int] = {}
    for kind in _INSERT_ORDER:
        tables = _tables(kind)
        model = tables.shadow if shadow else tables.live
        result = await session.execute(
            select(func.count()).select_from(model).where(model.game == game)  # type: ignore[attr-defined]
        )
        counts[kind] = int(result.scalar_one())
    return counts


# --- Atomic swap ---


def _copy_columns(model: type[Base]) -> list[str]:
    return [column.name for column in model.__table__.columns if column.name != "id"]


async def _replace_live(session: AsyncSession, kind: EntityKind, game: str) -> None:
    """Copy one kind's shadow rows for a game into the (already emptied) live table."""
    tables = _tables(kind)
    columns = _copy_columns(tables.shadow)
    shadow_table = tables.shadow.__table__
    await session.execute(
        insert(tables.live).from_select(
            columns,
            select(*[shadow_table.c[name] for name in columns]).where(shadow_table.c.game == game),
        )
    )


async def atomic_swap(session_factory: async_sessionmaker[AsyncSession], game: str) -> SwapCounts:
    """
    Promote a game's shadow rows to the live catalog.

    All-or-nothing: old live rows for the game are deleted and the shadow
    rows inserted in a single transaction, then the shadow is cleared in
    that same transaction. On any error the transaction rolls back and
    live data is exactly as before. Other games are never touched.

    Raises:
        SwapFailedError: If the transaction failed
    """
    async with session_factory() as session:
        try:
            async with session.begin():
                counts = await count_rows(session, game, shadow=True)

                for kind in _DELETE_ORDER:
                    live = _tables(kind).live
                    await session.execute(delete(live).where(live.game == game))  # type: ignore[attr-defined]

                for kind in _INSERT_ORDER:
                    await _replace_live(session, kind, game)

                await clear_shadow(session, game)
        except SQLAlchemyError as e:
            logger.exception("Atomic swap failed for %s; live catalog unchanged", game)
            raise SwapFailedError(game, detail=str(e)) from e

    logger.info(
        "Swapped %s: %d sets, %d cards, %d variants",
        game,
        counts["sets"],
        counts["cards"],
        counts["variants"],
    )
    return SwapCounts(game=game, sets=counts["sets"], cards=counts["cards"], variants=counts["variants"])


# --- Live catalog ---


async def upsert_live(
    session: AsyncSession,
    kind: EntityKind,
    rows: Iterable[Mapping[str, Any]],
    chunk_size: int | None = None,
) -> int:
    """
    Batch upsert rows straight into the live tables.

    Used by incremental sync; repeated ingestion of the same records updates
    rows in place instead of inserting duplicates.
    """
    tables = _tables(kind)
    return await _upsert(session, tables.live, tables.key, rows, chunk_size)


async def get_live_sets(session: AsyncSession, game: str) -> list[CatalogSetDB]:
    result = await session.execute(
        select(CatalogSetDB).where(CatalogSetDB.game == game).order_by(CatalogSetDB.set_id)
    )
    return list(result.scalars().all())


async def live_sets_by_provider_id(session: AsyncSession, game: str) -> dict[str, CatalogSetDB]:
    """Live sets for a game that carry a provider id, keyed by it."""
    return {s.provider_id: s for s in await get_live_sets(session, game) if s.provider_id}


async def get_live_set(
    session: AsyncSession,
    game: str,
    set_id: str | None = None,
    provider_id: str | None = None,
) -> CatalogSetDB | None:
    """Find a live set by local id or provider id."""
    query = select(CatalogSetDB).where(CatalogSetDB.game == game)
    if set_id is not None:
        query = query.where(CatalogSetDB.set_id == set_id)
    elif provider_id is not None:
        query = query.where(CatalogSetDB.provider_id == provider_id)
    else:
        raise ValueError("set_id or provider_id is required")
    result = await session.execute(query.limit(1))
    return result.scalar_one_or_none()


async def set_sync_status(
    session: AsyncSession,
    game: str,
    set_id: str,
    status: str,
    card_count: int | None = None,
) -> None:
    """Record the outcome of syncing one live set."""
    values: dict[str, Any] = {"sync_status": status}
    if card_count is not None:
        values["card_count"] = card_count
    if status == "synced":
        values["last_synced_at"] = datetime.now(UTC)
    await session.execute(
        update(CatalogSetDB)
        .where(CatalogSetDB.game == game, CatalogSetDB.set_id == set_id)
        .values(**values)
    )

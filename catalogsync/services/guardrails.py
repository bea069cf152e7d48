"""
Guardrails for staged catalog data.

Provider identifiers drift when an upstream catalog is restructured. A
drifted id swapped into the live catalog would silently break every
downstream cross-reference, so staged sets are checked against a fresh
provider snapshot before any swap:

1. Orphan check: a provider_id the provider no longer lists is cleared
   (counted as not_found).
2. Name-drift check: a provider_id whose provider name no longer matches
   the staged name is cleared (counted as rolled_back).
3. Validation: any staged set left without a provider_id blocks the swap
   for that game only.

Rows are never deleted by the guardrails; only their provider_id is cleared.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from catalogsync.db.catalog import (
    clear_shadow_provider_ids,
    count_null_provider_ids,
    count_rows,
    get_shadow_sets,
)
from catalogsync.models.catalog import CatalogSet
from catalogsync.providers.mapping import normalize_name

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GuardrailSummary:
    """Counts of provider ids cleared by the guardrails for one game."""

    game: str
    checked: int
    rolled_back: int
    not_found: int

    def to_dict(self) -> dict[str, int]:
        return {"checked": self.checked, "rolled_back": self.rolled_back, "not_found": self.not_found}


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of the pre-swap validation for one game."""

    game: str
    ok: bool
    shadow_sets: int
    null_provider_ids: int
    reason: str | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "ok": self.ok,
            "shadow_sets": self.shadow_sets,
            "null_provider_ids": self.null_provider_ids,
            "reason": self.reason,
        }


async def fix_bad_writes(
    session: AsyncSession,
    game: str,
    provider_sets: Iterable[CatalogSet],
) -> GuardrailSummary:
    """
    Clear staged provider ids that are orphaned or point at a renamed set.

    Args:
        session: Database session (caller commits)
        game: Game whose shadow sets are checked
        provider_sets: Fresh provider snapshot of the game's sets

    Returns:
        GuardrailSummary with rolled_back and not_found counts
    """
    names_by_provider_id = {s.provider_id: s.name for s in provider_sets if s.provider_id}

    not_found_ids: list[int] = []
    rolled_back_ids: list[int] = []
    checked = 0

    for row in await get_shadow_sets(session, game):
        if row.provider_id is None:
            continue
        checked += 1

        if row.provider_id not in names_by_provider_id:
            not_found_ids.append(row.id)
            logger.warning(
                "Provider id %s for %s set %s not found upstream; clearing",
                row.provider_id,
                game,
                row.set_id,
            )
            continue

        provider_name = names_by_provider_id[row.provider_id]
        if normalize_name(provider_name) != normalize_name(row.name):
            rolled_back_ids.append(row.id)
            logger.warning(
                "Provider id %s for %s set %s now names %r (staged %r); rolling back",
                row.provider_id,
                game,
                row.set_id,
                provider_name,
                row.name,
            )

    await clear_shadow_provider_ids(session, not_found_ids + rolled_back_ids)

    summary = GuardrailSummary(
        game=game,
        checked=checked,
        rolled_back=len(rolled_back_ids),
        not_found=len(not_found_ids),
    )
    logger.info(
        "Guardrails for %s: checked=%d rolled_back=%d not_found=%d",
        game,
        summary.checked,
        summary.rolled_back,
        summary.not_found,
    )
    return summary


async def validate_no_null_provider_ids(session: AsyncSession, game: str) -> ValidationResult:
    """
    Pre-swap validation for one game.

    Fails if any staged set has no provider id, or if nothing was staged at
    all (swapping an empty shadow would wipe the game's live catalog).
    """
    shadow_sets = (await count_rows(session, game, shadow=True))["sets"]
    null_ids = await count_null_provider_ids(session, game)

    reason = None
    if shadow_sets == 0:
        reason = "EMPTY_SHADOW"
    elif null_ids > 0:
        reason = "NULL_PROVIDER_IDS"

    result = ValidationResult(
        game=game,
        ok=reason is None,
        shadow_sets=shadow_sets,
        null_provider_ids=null_ids,
        reason=reason,
    )
    if not result.ok:
        logger.error(
            "Validation failed for %s: %s (shadow_sets=%d, null_provider_ids=%d)",
            game,
            reason,
            shadow_sets,
            null_ids,
        )
    return result

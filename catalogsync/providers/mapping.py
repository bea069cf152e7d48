"""
Pure mapping from raw provider records to catalog records.

Every function here is deterministic: the same raw record always maps to
the same identifiers. Fields without a first-class column are preserved in
the record's ``data`` payload.
"""

import json
import re
from collections.abc import Iterable, Mapping
from dataclasses import replace
from datetime import date, datetime
from typing import Any

from catalogsync.config import DEFAULT_PROVIDER
from catalogsync.models.catalog import CatalogCard, CatalogSet, CatalogVariant

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def normalize_name(name: str | None) -> str:
    """
    Normalize a display name for exact comparison.

    Case and punctuation are ignored: "Scarlet & Violet—151" and
    "scarlet violet 151" compare equal.
    """
    if not name:
        return ""
    return _NON_ALNUM.sub(" ", name.lower()).strip()


def json_safe(value: Any) -> Any:
    """Deep copy of a raw record that is guaranteed to be JSON serializable."""
    if value is None:
        return None
    return json.loads(json.dumps(value, default=str))


def parse_release_date(value: Any) -> date | None:
    """Parse provider release dates ("2023-03-31", "2023/03/31", ISO datetimes)."""
    if not value or not isinstance(value, str):
        return None
    text = value.strip().replace("/", "-")
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        return None


def _to_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _to_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _to_str(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def sanitize_images(images: Any) -> Any:
    """Coerce provider image fields into a JSON object or list of objects."""
    if not images:
        return None
    if isinstance(images, dict):
        return json_safe(images)
    if isinstance(images, str):
        return {"url": images}
    if isinstance(images, list):
        return [{"url": img} if isinstance(img, str) else json_safe(img) for img in images]
    return None


def provider_set_key(raw: dict[str, Any]) -> str | None:
    """The provider's identifier for a set record."""
    return _to_str(raw.get("id")) or _to_str(raw.get("code")) or _to_str(raw.get("name"))


def local_set_id(raw: dict[str, Any]) -> str | None:
    """Local id assigned to a set seen for the first time: code, else id, else name."""
    return _to_str(raw.get("code")) or _to_str(raw.get("id")) or _to_str(raw.get("name"))


def map_set(raw: dict[str, Any], game: str, provider: str = DEFAULT_PROVIDER) -> CatalogSet:
    """Map a raw provider set record."""
    set_id = local_set_id(raw)
    if set_id is None:
        raise ValueError("Provider set record has no id, code or name")

    return CatalogSet(
        set_id=set_id,
        game=game,
        name=_to_str(raw.get("name")),
        provider_id=provider_set_key(raw),
        provider=provider,
        series=_to_str(raw.get("series")),
        printed_total=_to_int(raw.get("printedTotal") or raw.get("printed_total")),
        total=_to_int(raw.get("total") or raw.get("cards_count")),
        release_date=parse_release_date(raw.get("releaseDate") or raw.get("release_date")),
        images=sanitize_images(raw.get("images")),
        data=json_safe(raw),
    )


def resolve_local_sets(
    sets: Iterable[CatalogSet], known: Mapping[str, Any]
) -> tuple[list[CatalogSet], dict[str, str]]:
    """
    Keep local set identity stable across syncs.

    A set whose provider_id is already known (``known`` maps provider_id to
    an object with a ``set_id``) keeps its existing local id. Names always
    come from the provider. Unknown sets keep the id they were mapped with.

    Returns:
        (resolved sets, mapped set_id -> resolved set_id)
    """
    resolved: list[CatalogSet] = []
    remap: dict[str, str] = {}
    for catalog_set in sets:
        existing = known.get(catalog_set.provider_id) if catalog_set.provider_id else None
        if existing is not None:
            remap[catalog_set.set_id] = existing.set_id
            catalog_set = replace(catalog_set, set_id=existing.set_id)
        else:
            remap[catalog_set.set_id] = catalog_set.set_id
        resolved.append(catalog_set)
    return resolved, remap


def card_key(raw: dict[str, Any], set_id: str) -> str:
    """Local card id: the provider id, else "<set>-<number or name>"."""
    provider_id = _to_str(raw.get("id"))
    if provider_id:
        return provider_id
    suffix = _to_str(raw.get("number")) or _to_str(raw.get("name")) or "unknown"
    return f"{set_id}-{suffix}"


def map_card(
    raw: dict[str, Any], game: str, set_id: str, provider: str = DEFAULT_PROVIDER
) -> CatalogCard:
    """Map a raw provider card record (embedded variants are mapped separately)."""
    subtypes = raw.get("subtypes")
    payload = {k: v for k, v in raw.items() if k != "variants"}

    return CatalogCard(
        card_id=card_key(raw, set_id),
        game=game,
        set_id=set_id,
        name=_to_str(raw.get("name")),
        provider_id=_to_str(raw.get("id")),
        provider=provider,
        number=_to_str(raw.get("number")),
        rarity=_to_str(raw.get("rarity")),
        supertype=_to_str(raw.get("supertype")),
        subtypes=[str(s) for s in subtypes] if isinstance(subtypes, list) else None,
        tcgplayer_product_id=_to_str(raw.get("tcgplayerId") or raw.get("tcgplayer_product_id")),
        images=sanitize_images(raw.get("images")),
        data=json_safe(payload),
    )


def derive_variant_key(card_id: str, raw: dict[str, Any]) -> str:
    """
    Stable identity for a variant.

    The provider variant id when present, otherwise composed from the card
    and the printing/condition/language triple.
    """
    provider_variant_id = _to_str(raw.get("id"))
    if provider_variant_id:
        return provider_variant_id

    parts = [
        (_to_str(raw.get(field)) or "-").strip().lower()
        for field in ("printing", "condition", "language")
    ]
    return ":".join([card_id, *parts])


def map_variant(
    raw: dict[str, Any], game: str, card_id: str, provider: str = DEFAULT_PROVIDER
) -> CatalogVariant:
    """Map a raw provider variant record."""
    return CatalogVariant(
        variant_key=derive_variant_key(card_id, raw),
        game=game,
        card_id=card_id,
        provider_variant_id=_to_str(raw.get("id")),
        provider=provider,
        printing=_to_str(raw.get("printing")),
        condition=_to_str(raw.get("condition")),
        language=_to_str(raw.get("language")),
        sku=_to_str(raw.get("sku")),
        price=_to_float(raw.get("price")),
        market_price=_to_float(raw.get("marketPrice") or raw.get("market_price")),
        low_price=_to_float(raw.get("lowPrice") or raw.get("low_price")),
        mid_price=_to_float(raw.get("midPrice") or raw.get("mid_price")),
        high_price=_to_float(raw.get("highPrice") or raw.get("high_price")),
        currency=_to_str(raw.get("currency")) or "USD",
        data=json_safe(raw),
    )


def map_card_with_variants(
    raw: dict[str, Any], game: str, set_id: str, provider: str = DEFAULT_PROVIDER
) -> tuple[CatalogCard, list[CatalogVariant]]:
    """Map a card record together with its embedded variants."""
    card = map_card(raw, game, set_id, provider)
    variants = [
        map_variant(v, game, card.card_id, provider)
        for v in raw.get("variants") or []
        if isinstance(v, dict)
    ]
    return card, variants

from dataclasses import asdict, dataclass, field
from datetime import date
from typing import Any

from catalogsync.config import DEFAULT_PROVIDER


@dataclass(frozen=True, slots=True)
class CatalogSet:
    """
    A release/collection within a game.

    Attributes:
        set_id: Local identifier, stable once assigned
        provider_id: Provider's set identifier (None until resolved)
        game: Internal game slug (e.g., "pokemon", "mtg")
        name: Display name
        data: Raw provider record, kept whole so schema drift loses nothing
    """

    set_id: str
    game: str
    name: str | None
    provider_id: str | None = None
    provider: str = DEFAULT_PROVIDER
    series: str | None = None
    printed_total: int | None = None
    total: int | None = None
    release_date: date | None = None
    images: Any = None
    data: dict[str, Any] | None = None

    def to_row(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class CatalogCard:
    """A card belonging to exactly one set of the same game."""

    card_id: str
    game: str
    set_id: str
    name: str | None
    provider_id: str | None = None
    provider: str = DEFAULT_PROVIDER
    number: str | None = None
    rarity: str | None = None
    supertype: str | None = None
    subtypes: list[str] | None = None
    tcgplayer_product_id: str | None = None
    images: Any = None
    data: dict[str, Any] | None = None

    def to_row(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class CatalogVariant:
    """
    A priceable unit of a card (printing, condition, language).

    variant_key is derived so re-ingesting the same variant always hits
    the same row.
    """

    variant_key: str
    game: str
    card_id: str
    provider_variant_id: str | None = None
    provider: str = DEFAULT_PROVIDER
    printing: str | None = None
    condition: str | None = None
    language: str | None = None
    sku: str | None = None
    price: float | None = None
    market_price: float | None = None
    low_price: float | None = None
    mid_price: float | None = None
    high_price: float | None = None
    currency: str = "USD"
    data: dict[str, Any] | None = None

    def to_row(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ProviderCatalog:
    """Mapped provider snapshot for one game (optionally one set)."""

    game: str
    sets: list[CatalogSet] = field(default_factory=list)
    cards: list[CatalogCard] = field(default_factory=list)
    variants: list[CatalogVariant] = field(default_factory=list)

    @property
    def counts(self) -> dict[str, int]:
        return {"sets": len(self.sets), "cards": len(self.cards), "variants": len(self.variants)}

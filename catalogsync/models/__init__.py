from catalogsync.models.catalog import CatalogCard, CatalogSet, CatalogVariant, ProviderCatalog
from catalogsync.models.events import EventType, RebuildEvent
from catalogsync.models.failure import (
    FailureKind,
    JobStateError,
    KnownError,
    ProviderError,
    SwapFailedError,
    UnsupportedGameError,
    ValidationFailedError,
)

__all__ = [
    "CatalogCard",
    "CatalogSet",
    "CatalogVariant",
    "EventType",
    "FailureKind",
    "JobStateError",
    "KnownError",
    "ProviderCatalog",
    "ProviderError",
    "RebuildEvent",
    "SwapFailedError",
    "UnsupportedGameError",
    "ValidationFailedError",
]

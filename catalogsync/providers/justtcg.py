"""
JustTCG provider adapter.

Turns the provider's offset-paginated REST API into lazy async sequences of
raw set and card records, and maps them into catalog records.

Endpoints used:
    GET /games
    GET /sets?game=...&limit=...&offset=...
    GET /cards?game=...&set=...&limit=...&offset=...   (variants embedded)
"""

import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from datetime import date
from typing import Any

import httpx

from catalogsync.config import DEFAULT_PROVIDER, GAME_API_PARAMS, settings
from catalogsync.models.catalog import ProviderCatalog
from catalogsync.models.failure import ProviderError, UnsupportedGameError
from catalogsync.providers.fetcher import RetryConfig, RetryingFetcher
from catalogsync.providers.mapping import (
    map_card_with_variants,
    map_set,
    parse_release_date,
    provider_set_key,
)
from catalogsync.providers.rate_limiter import get_rate_limiter

logger = logging.getLogger(__name__)


def game_params(game: str) -> dict[str, str]:
    """Provider query parameters for an internal game slug."""
    try:
        return dict(GAME_API_PARAMS[game])
    except KeyError:
        raise UnsupportedGameError(game) from None


def _has_more(payload: dict[str, Any], offset: int, page_len: int, page_size: int) -> bool:
    """Decide whether another page exists from whatever hint the provider sent."""
    meta = payload.get("meta") or {}
    for source in (meta, payload):
        for key in ("hasMore", "has_more"):
            if key in source and source[key] is not None:
                return bool(source[key])
    for source in (meta, payload):
        total = source.get("total")
        if isinstance(total, int):
            return offset < total
    # No hint: a full page suggests there may be more
    return page_len >= page_size


class JustTCGProvider:
    """Paginated, rate-limited access to one provider's catalog."""

    name = DEFAULT_PROVIDER

    def __init__(
        self,
        fetcher: RetryingFetcher,
        base_url: str | None = None,
        api_key: str | None = None,
        page_size: int | None = None,
    ) -> None:
        self.fetcher = fetcher
        self.base_url = (base_url or settings.justtcg_base_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.justtcg_api_key
        self.page_size = page_size or settings.provider_page_size

    @property
    def request_count(self) -> int:
        return self.fetcher.request_count

    async def _get_json(self, path: str, params: dict[str, Any]) -> dict[str, Any] | None:
        """
        GET a provider endpoint.

        Returns:
            Decoded JSON body, or None for 404 (treated as end of data).

        Raises:
            ProviderError: On transport failure, non-2xx status or bad JSON
        """
        url = f"{self.base_url}{path}"
        try:
            response = await self.fetcher.request(
                "GET", url, params=params, headers={"X-API-Key": self.api_key}
            )
        except (httpx.TransportError, TimeoutError) as e:
            raise ProviderError(f"Provider request failed: {e}", url=url) from e

        if response.status_code == 404:
            return None
        if not response.is_success:
            raise ProviderError(
                f"Provider returned HTTP {response.status_code}",
                status=response.status_code,
                url=url,
            )
        try:
            body = response.json()
        except ValueError as e:
            raise ProviderError("Provider returned invalid JSON", url=url) from e
        if not isinstance(body, dict):
            raise ProviderError("Provider returned unexpected payload", url=url)
        return body

    async def _pages(self, path: str, params: dict[str, Any]) -> AsyncIterator[list[dict[str, Any]]]:
        offset = 0
        page = 0
        while True:
            page += 1
            payload = await self._get_json(path, {**params, "limit": self.page_size, "offset": offset})
            if payload is None:
                return
            records = [r for r in payload.get("data") or [] if isinstance(r, dict)]
            if not records:
                return

            offset += len(records)
            logger.debug("Fetched %s page %d (%d records, offset %d)", path, page, len(records), offset)
            yield records

            if not _has_more(payload, offset, len(records), self.page_size):
                return

    async def ping(self) -> int:
        """Lightweight reachability check. Returns the number of games the provider lists."""
        payload = await self._get_json("/games", {})
        if payload is None:
            return 0
        return len(payload.get("data") or [])

    async def iter_sets(self, game: str, since: date | None = None) -> AsyncIterator[dict[str, Any]]:
        """
        Yield raw set records for a game.

        Sets released before ``since`` are skipped; sets without a release
        date are always yielded.
        """
        async for records in self._pages("/sets", game_params(game)):
            for record in records:
                if since is not None:
                    released = parse_release_date(record.get("releaseDate") or record.get("release_date"))
                    if released is not None and released < since:
                        continue
                yield record

    async def iter_card_pages(
        self, game: str, set_provider_id: str
    ) -> AsyncIterator[list[dict[str, Any]]]:
        """Yield pages of raw card records for one provider set."""
        params = {**game_params(game), "set": set_provider_id}
        async for records in self._pages("/cards", params):
            yield records

    async def iter_cards(self, game: str, set_provider_id: str) -> AsyncIterator[dict[str, Any]]:
        """Yield raw card records for one provider set."""
        async for records in self.iter_card_pages(game, set_provider_id):
            for record in records:
                yield record

    async def fetch_catalog(
        self,
        game: str,
        set_provider_id: str | None = None,
        since: date | None = None,
        on_page: Callable[[int], Awaitable[None]] | None = None,
    ) -> ProviderCatalog:
        """
        Materialize a mapped snapshot of a game's catalog.

        Args:
            game: Internal game slug
            set_provider_id: Restrict to one provider set
            since: Skip sets released before this date
            on_page: Awaited after every card page with the number of cards
                fetched so far

        Returns:
            ProviderCatalog with sets, cards and variants
        """
        catalog = ProviderCatalog(game=game)

        async for raw_set in self.iter_sets(game, since=since):
            if set_provider_id is not None and provider_set_key(raw_set) != set_provider_id:
                continue
            catalog_set = map_set(raw_set, game, provider=self.name)
            catalog.sets.append(catalog_set)

            if catalog_set.provider_id is None:
                continue
            async for records in self.iter_card_pages(game, catalog_set.provider_id):
                for raw_card in records:
                    card, variants = map_card_with_variants(
                        raw_card, game, catalog_set.set_id, provider=self.name
                    )
                    catalog.cards.append(card)
                    catalog.variants.extend(variants)
                if on_page is not None:
                    await on_page(len(catalog.cards))

        logger.info(
            "Fetched %s catalog: %d sets, %d cards, %d variants",
            game,
            len(catalog.sets),
            len(catalog.cards),
            len(catalog.variants),
        )
        return catalog


def build_fetcher(client: httpx.AsyncClient) -> RetryingFetcher:
    """Fetcher wired to the shared provider rate limiter and configured retries."""
    return RetryingFetcher(
        client,
        limiter=get_rate_limiter(DEFAULT_PROVIDER),
        retry_config=RetryConfig(
            max_retries=settings.provider_max_retries,
            base_delay=settings.provider_backoff_base_seconds,
            max_delay=settings.provider_backoff_max_seconds,
        ),
        timeout=settings.provider_timeout_seconds,
    )


@asynccontextmanager
async def open_provider() -> AsyncIterator[JustTCGProvider]:
    """Provider with its own HTTP client, closed on exit."""
    async with httpx.AsyncClient(
        headers={"User-Agent": "catalogsync/1.0"},
        follow_redirects=True,
        timeout=settings.provider_timeout_seconds,
    ) as client:
        yield JustTCGProvider(build_fetcher(client))


ProviderFactory = Callable[[], AbstractAsyncContextManager[JustTCGProvider]]


def get_provider_factory() -> ProviderFactory:
    """
    Dependency that provides a way to open the provider.

    Streaming and background work opens the provider inside the work itself,
    so the HTTP client lives exactly as long as the work does.
    """
    return open_provider

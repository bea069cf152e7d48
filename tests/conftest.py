from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from catalogsync.config import GAME_API_PARAMS
from catalogsync.db.database import get_session, get_session_factory
from catalogsync.main import app
from catalogsync.models.db import Base
from catalogsync.models.failure import ProviderError
from catalogsync.providers.justtcg import JustTCGProvider, get_provider_factory
from catalogsync.services.background import supervisor

_SLUG_BY_PARAMS = {tuple(sorted(params.items())): slug for slug, params in GAME_API_PARAMS.items()}


class FakeProvider(JustTCGProvider):
    """
    Provider serving an in-memory catalog through the real pagination code.

    Args:
        sets: game slug -> raw set records
        cards: provider set id -> raw card records
        fail_sets: provider set ids whose card requests fail with HTTP 500
        fail_games: game slugs whose set requests fail with HTTP 500
    """

    def __init__(
        self,
        sets: dict[str, list[dict[str, Any]]] | None = None,
        cards: dict[str, list[dict[str, Any]]] | None = None,
        page_size: int = 2,
        fail_sets: tuple[str, ...] = (),
        fail_games: tuple[str, ...] = (),
    ) -> None:
        super().__init__(
            fetcher=None,  # type: ignore[arg-type]
            base_url="http://provider.test",
            api_key="test-key",
            page_size=page_size,
        )
        self.sets = sets or {}
        self.cards = cards or {}
        self.fail_sets = set(fail_sets)
        self.fail_games = set(fail_games)
        self.calls: list[tuple[str, dict[str, Any]]] = []

    @property
    def request_count(self) -> int:
        return len(self.calls)

    async def _get_json(self, path: str, params: dict[str, Any]) -> dict[str, Any] | None:
        self.calls.append((path, dict(params)))
        if path == "/games":
            return {"data": [{"id": slug} for slug in GAME_API_PARAMS]}

        game_params = {k: v for k, v in params.items() if k in ("game", "region")}
        game = _SLUG_BY_PARAMS[tuple(sorted(game_params.items()))]

        if path == "/sets":
            if game in self.fail_games:
                raise ProviderError("Provider returned HTTP 500", status=500)
            records = self.sets.get(game, [])
        else:
            if params["set"] in self.fail_sets:
                raise ProviderError("Provider returned HTTP 500", status=500)
            if params["set"] not in self.cards:
                return None
            records = self.cards[params["set"]]

        offset, limit = params["offset"], params["limit"]
        page = records[offset : offset + limit]
        return {
            "data": page,
            "meta": {"total": len(records), "hasMore": offset + limit < len(records)},
        }


def make_cards(set_id: str, count: int, variants_per_card: int = 0) -> list[dict[str, Any]]:
    """Raw provider card records for one set."""
    return [
        {
            "id": f"{set_id}-{n}",
            "name": f"Card {n}",
            "number": str(n),
            "rarity": "Common",
            "variants": [
                {"id": f"{set_id}-{n}-v{v}", "printing": "Normal", "condition": "NM", "price": 1.5}
                for v in range(variants_per_card)
            ],
        }
        for n in range(1, count + 1)
    ]


@pytest.fixture
async def async_engine(tmp_path):
    """File-backed SQLite engine, so concurrent sessions see the same data."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'catalog.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(async_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_factory) -> AsyncIterator[AsyncSession]:
    """Provide a database session for tests."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def provider_factory_for() -> Callable[[JustTCGProvider], Callable[[], Any]]:
    """Build a provider factory dependency that always opens the given provider."""

    def build(provider: JustTCGProvider) -> Callable[[], Any]:
        @asynccontextmanager
        async def open_fake() -> AsyncIterator[JustTCGProvider]:
            yield provider

        return open_fake

    return build


@pytest.fixture
def make_provider() -> type[FakeProvider]:
    return FakeProvider


@pytest.fixture
def card_records() -> Callable[..., list[dict[str, Any]]]:
    return make_cards


DEFAULT_SETS = {
    "pokemon": [
        {"id": "sv1", "code": "SVI", "name": "Scarlet & Violet"},
        {"id": "sv2", "code": "PAL", "name": "Paldea Evolved"},
    ],
    "mtg": [{"id": "dmu", "name": "Dominaria United"}],
}


@pytest.fixture
def provider() -> FakeProvider:
    """Provider with a small two-game catalog."""
    return FakeProvider(
        sets=DEFAULT_SETS,
        cards={
            "sv1": make_cards("sv1", 3, variants_per_card=1),
            "sv2": make_cards("sv2", 2, variants_per_card=1),
            "dmu": make_cards("dmu", 2),
        },
    )


@pytest.fixture
async def client(session_factory, provider, provider_factory_for) -> AsyncIterator[AsyncClient]:
    """Provide an async test client with overridden database and provider dependencies."""

    async def override_get_session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_provider_factory] = lambda: provider_factory_for(provider)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    await supervisor.join()
    app.dependency_overrides.clear()

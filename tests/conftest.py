"""Pytest configuration and fixtures."""

import copy
from collections.abc import AsyncGenerator
from pathlib import Path
from typing import Any

import httpx
import pytest
import pytest_asyncio
from fakeredis import aioredis as fake_aioredis
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from catalog_sync.config import Settings
from catalog_sync.exceptions import DispatchError, RemoteErrorKind, RemoteUnavailable
from catalog_sync.infrastructure.database.connection import create_session_factory, get_async_engine
from catalog_sync.infrastructure.database.models import Base
from catalog_sync.infrastructure.redis import CacheService
from catalog_sync.main import create_app
from catalog_sync.schemas import CategoryPayload, ProductListEntry, ProductPayload
from catalog_sync.services.container import SyncServices, build_services

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


class FakeRemoteClient:
    """In-memory stand-in for RemoteCatalogClient."""

    def __init__(self) -> None:
        self.categories: list[dict[str, Any]] = [{"id": "10", "name": "Switches", "slug": "switches"}]
        self.product_list: list[Any] = []
        self.details: dict[str, dict[str, Any]] = {}
        self.failing_slugs: set[str] = set()
        self.category_error: RemoteUnavailable | None = None
        self.list_error: RemoteUnavailable | None = None
        self.detail_calls: list[str] = []

    def add_product(self, slug: str, category_slug: str | None = None, **fields: Any) -> dict[str, Any]:
        raw = {
            "id": f"p-{slug}",
            "slug": slug,
            "name": f"CODE-{slug.upper()}",
            "desc": f"Product {slug}",
            "overview": f"<p>About {slug}</p>",
            "applications": "",
            "keyfeatures": "",
            "specifications": [],
            "category_ids": [],
        }
        raw.update(fields)
        self.details[slug] = raw
        entry: dict[str, Any] = {"slug": slug, "id": raw["id"]}
        if category_slug:
            entry["1st_categories"] = [{"slug": category_slug}]
        self.product_list.append(entry)
        return raw

    def remove_product(self, slug: str) -> None:
        self.details.pop(slug, None)
        self.product_list = [e for e in self.product_list if not (isinstance(e, dict) and e["slug"] == slug)]

    async def fetch_category_list(self, level: int = 1) -> list[CategoryPayload]:
        if self.category_error is not None:
            raise self.category_error
        return [CategoryPayload.from_api(item) for item in self.categories]

    async def fetch_product_list(self) -> list[ProductListEntry]:
        if self.list_error is not None:
            raise self.list_error
        return [ProductListEntry.from_api(item) for item in self.product_list]

    async def fetch_product_detail(self, slug: str) -> ProductPayload:
        self.detail_calls.append(slug)
        if slug in self.failing_slugs or slug not in self.details:
            raise RemoteUnavailable(RemoteErrorKind.UNREACHABLE, "/getProductBySlug", "connection refused")
        return ProductPayload.from_api(copy.deepcopy(self.details[slug]), slug)

    async def test_connection(self) -> dict[str, Any]:
        return {"success": True, "message": "Connection successful", "categories_count": len(self.categories)}

    async def clear_cache(self) -> int:
        return 0

    async def aclose(self) -> None:
        pass


class FakeDispatcher:
    """Records dispatch requests; raises DispatchError when ``fail`` is set."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.calls = 0

    def dispatch(self) -> None:
        self.calls += 1
        if self.fail:
            raise DispatchError("broker unreachable")


def _media_handler(request: httpx.Request) -> httpx.Response:
    if "missing" in request.url.path:
        return httpx.Response(404)
    return httpx.Response(200, content=PNG_BYTES, headers={"content-type": "image/png"})


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Get test settings with overrides."""
    return Settings(
        app_env="test",
        debug=False,
        database_url_override="sqlite+aiosqlite:///:memory:",
        remote_api_base_url="https://remote.test/api",
        remote_api_key="test-key",
        remote_api_max_retries=3,
        remote_api_retry_delay_seconds=0,
        remote_asset_base_url="https://remote.test",
        site_url="https://shop.test",
        media_root=str(tmp_path / "media"),
        max_attempts=3,
        orphan_action="keep",
        background_item_sleep_seconds=0,
        background_time_limit_seconds=60,
        fallback_delay_seconds=0,
    )


@pytest_asyncio.fixture
async def engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine, None]:
    """In-memory SQLite engine with the full schema."""
    engine = get_async_engine(test_settings)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(engine)


@pytest_asyncio.fixture
async def cache() -> AsyncGenerator[CacheService, None]:
    """CacheService backed by fakeredis."""
    client = fake_aioredis.FakeRedis()
    yield CacheService(client)
    await client.aclose()


@pytest_asyncio.fixture
async def media_http() -> AsyncGenerator[httpx.AsyncClient, None]:
    """HTTP client serving a PNG for every URL except paths containing 'missing'."""
    async with httpx.AsyncClient(transport=httpx.MockTransport(_media_handler)) as client:
        yield client


@pytest.fixture
def remote() -> FakeRemoteClient:
    return FakeRemoteClient()


@pytest.fixture
def dispatcher() -> FakeDispatcher:
    return FakeDispatcher()


@pytest_asyncio.fixture
async def services(
    test_settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    cache: CacheService,
    media_http: httpx.AsyncClient,
    remote: FakeRemoteClient,
    dispatcher: FakeDispatcher,
) -> AsyncGenerator[SyncServices, None]:
    """Fully wired service graph over SQLite, fakeredis and the fake remote."""
    services = build_services(
        test_settings,
        session_factory,
        cache,
        media_http=media_http,
        dispatcher=dispatcher,
        client=remote,
    )
    yield services
    await services.aclose()


@pytest.fixture
def client() -> TestClient:
    """Synchronous test client for endpoints that need no services."""
    return TestClient(create_app())


@pytest_asyncio.fixture
async def async_client(services: SyncServices) -> AsyncGenerator[httpx.AsyncClient, None]:
    """Asynchronous test client bound to the test service graph."""
    app = create_app(services)
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

"""Wiring of the sync services for the API process and Celery tasks."""

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import TypeVar

import httpx
import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from catalog_sync.config import Settings, get_settings
from catalog_sync.infrastructure.catalog import MediaLibrary, SqlCatalogStore
from catalog_sync.infrastructure.database.connection import create_session_factory, get_async_engine
from catalog_sync.infrastructure.redis import CacheService, create_redis_client
from catalog_sync.infrastructure.remote import RemoteCatalogClient
from catalog_sync.services.activity_log import ActivityLogService
from catalog_sync.services.background_worker import BackgroundWorker
from catalog_sync.services.category_reconciler import CategoryReconciler
from catalog_sync.services.dispatch import CeleryDispatcher, Dispatcher
from catalog_sync.services.orchestrator import CurrentBatch, SyncCoordinator, SyncOrchestrator
from catalog_sync.services.orphan_handler import OrphanHandler
from catalog_sync.services.product_reconciler import ProductReconciler
from catalog_sync.services.product_snapshots import ProductSnapshotService
from catalog_sync.services.progress import ProgressView
from catalog_sync.services.scheduler import ActionScheduler
from catalog_sync.services.state_store import StateStore
from catalog_sync.services.sync_queue import SyncQueueStore
from catalog_sync.services.task_queue import PersistedTaskQueue
from shared.constants import PRODUCT_SYNC_QUEUE

logger = structlog.get_logger()

T = TypeVar("T")


@dataclass
class SyncServices:
    settings: Settings
    session_factory: async_sessionmaker[AsyncSession]
    cache: CacheService
    client: RemoteCatalogClient
    media: MediaLibrary
    store: SqlCatalogStore
    state: StateStore
    activity_log: ActivityLogService
    queue: SyncQueueStore
    tasks: PersistedTaskQueue[str]
    scheduler: ActionScheduler
    snapshots: ProductSnapshotService
    categories: CategoryReconciler
    products: ProductReconciler
    orphans: OrphanHandler
    progress: ProgressView
    current: CurrentBatch
    orchestrator: SyncOrchestrator
    coordinator: SyncCoordinator
    worker: BackgroundWorker

    async def aclose(self) -> None:
        await self.client.aclose()
        await self.media.aclose()


def build_services(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    cache: CacheService,
    remote_http: httpx.AsyncClient | None = None,
    media_http: httpx.AsyncClient | None = None,
    dispatcher: Dispatcher | None = None,
    client: RemoteCatalogClient | None = None,
) -> SyncServices:
    """Assemble the full service graph over one session factory and cache."""
    client = client or RemoteCatalogClient(settings, cache, http_client=remote_http)
    media = MediaLibrary(settings, session_factory, http_client=media_http)
    store = SqlCatalogStore(session_factory, media)
    state = StateStore(session_factory)
    activity_log = ActivityLogService(session_factory)
    queue = SyncQueueStore(session_factory, lease_seconds=settings.claim_lease_seconds)
    tasks: PersistedTaskQueue[str] = PersistedTaskQueue(
        session_factory, PRODUCT_SYNC_QUEUE, lease_seconds=settings.claim_lease_seconds
    )
    scheduler = ActionScheduler(session_factory)
    snapshots = ProductSnapshotService(session_factory)
    categories = CategoryReconciler(client, store, activity_log)
    products = ProductReconciler(store, activity_log, settings, snapshots=snapshots)
    orphans = OrphanHandler(store, activity_log, settings.orphan_action)
    progress = ProgressView(queue, state, cache, cache_ttl_seconds=settings.progress_cache_ttl_seconds)
    current = CurrentBatch(state)
    orchestrator = SyncOrchestrator(
        settings, client, queue, categories, products, orphans, progress, activity_log, state, current
    )
    coordinator = SyncCoordinator(orchestrator, current, queue, state, settings)
    worker = BackgroundWorker(
        settings,
        orchestrator,
        queue,
        tasks,
        state,
        scheduler,
        progress,
        activity_log,
        current,
        dispatcher=dispatcher,
    )
    return SyncServices(
        settings=settings,
        session_factory=session_factory,
        cache=cache,
        client=client,
        media=media,
        store=store,
        state=state,
        activity_log=activity_log,
        queue=queue,
        tasks=tasks,
        scheduler=scheduler,
        snapshots=snapshots,
        categories=categories,
        products=products,
        orphans=orphans,
        progress=progress,
        current=current,
        orchestrator=orchestrator,
        coordinator=coordinator,
        worker=worker,
    )


def celery_dispatcher() -> Dispatcher:
    """Dispatcher bound to the sync worker's Celery app."""
    from sync_worker.main import app

    return CeleryDispatcher(app)


@asynccontextmanager
async def open_services(settings: Settings | None = None) -> AsyncIterator[SyncServices]:
    """Services with their own engine and Redis client, closed on exit.

    Celery tasks run each invocation in a fresh event loop, so nothing
    loop-bound may outlive the block.
    """
    settings = settings or get_settings()
    engine = get_async_engine(settings)
    redis_client = await create_redis_client(settings)
    services = build_services(
        settings,
        create_session_factory(engine),
        CacheService(redis_client),
        dispatcher=celery_dispatcher(),
    )
    try:
        yield services
    finally:
        await services.aclose()
        if redis_client is not None:
            await redis_client.aclose()
        await engine.dispose()


def run_with_services(fn: Callable[[SyncServices], Awaitable[T]], settings: Settings | None = None) -> T:
    """Run ``fn`` on a fresh event loop with its own service graph."""

    async def runner() -> T:
        async with open_services(settings) as services:
            return await fn(services)

    return asyncio.run(runner())

"""FastAPI application entry point."""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from catalog_sync import __version__
from catalog_sync.api.v1.router import api_router
from catalog_sync.config import get_settings
from catalog_sync.infrastructure.database.connection import get_session_factory
from catalog_sync.infrastructure.redis import CacheService, close_redis, get_redis_client
from catalog_sync.log_config import configure_logging
from catalog_sync.services.container import SyncServices, build_services, celery_dispatcher

configure_logging()

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager for startup and shutdown events."""
    settings = get_settings()
    logger.info(
        "Starting Catalog Sync Service",
        app_env=settings.app_env,
        sync_method=settings.sync_method,
        debug=settings.debug,
    )

    owns_services = getattr(app.state, "services", None) is None
    if owns_services:
        cache = CacheService(await get_redis_client())
        app.state.services = build_services(
            settings, get_session_factory(), cache, dispatcher=celery_dispatcher()
        )

    yield

    if owns_services:
        await app.state.services.aclose()
    await close_redis()
    logger.info("Shutting down Catalog Sync Service")


def create_app(services: SyncServices | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Catalog Sync API",
        description="Synchronizes a remote product catalog into the local catalog store",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router, prefix="/api/v1")

    media_dir = Path(settings.media_root)
    media_dir.mkdir(parents=True, exist_ok=True)
    app.mount(settings.media_url_path, StaticFiles(directory=media_dir), name="media")

    return app


app = create_app()


def run() -> None:
    """Run the application using uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "catalog_sync.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        workers=1 if settings.debug else settings.api_workers,
    )


if __name__ == "__main__":
    run()

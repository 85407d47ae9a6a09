"""Scheduled catalog sync tasks."""

from datetime import timedelta

import structlog
from celery import shared_task

from catalog_sync.config import get_settings
from catalog_sync.exceptions import CatalogSyncError
from catalog_sync.infrastructure.database.models import utcnow
from catalog_sync.services.container import SyncServices, run_with_services

logger = structlog.get_logger()


async def _scheduled_sync(services: SyncServices) -> dict:
    settings = services.settings
    try:
        if settings.sync_method == "background":
            if await services.worker.is_active():
                logger.info("Background sync already active, skipping scheduled run")
                return {"skipped": True, "reason": "already running"}
            result = await services.worker.start_background()
            return {"skipped": False, "method": "background", **result}
        chunk = await services.coordinator.run_chunk(settings.cron_chunk_size)
        return {"skipped": False, "method": "step", **chunk}
    except CatalogSyncError as e:
        logger.error("Scheduled sync failed", error=str(e), error_type=type(e).__name__)
        return {"skipped": False, "error": str(e)}


@shared_task(bind=True, max_retries=0)
def run_scheduled_sync(self) -> dict:
    """
    Run the automatic sync at the configured frequency.

    In background mode this starts a batch for the worker unless one is
    already active. In step mode it advances the current batch by up to
    ``cron_chunk_size`` products, starting a new batch when none is open.

    Returns:
        dict: Summary of the run
    """
    settings = get_settings()
    if not settings.auto_sync_enabled:
        return {"skipped": True, "reason": "auto sync disabled"}

    logger.info("Starting scheduled sync", method=settings.sync_method)
    return run_with_services(_scheduled_sync)


async def _purge(services: SyncServices) -> dict:
    settings = services.settings
    queue_deleted = await services.queue.delete_old_batches(settings.queue_retention_days)
    log_deleted = await services.activity_log.clear(
        before=utcnow() - timedelta(days=settings.activity_log_retention_days)
    )
    return {"queue_items_deleted": queue_deleted, "log_entries_deleted": log_deleted}


@shared_task(bind=True, max_retries=3, default_retry_delay=300)
def purge_sync_history(self) -> dict:
    """
    Drop queue items and activity log entries past their retention window.

    Returns:
        dict: Number of rows deleted per table
    """
    logger.info("Purging sync history")
    return run_with_services(_purge)

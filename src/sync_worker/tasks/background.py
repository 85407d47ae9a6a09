"""Background worker tasks."""

import structlog
from celery import shared_task

from catalog_sync.services.container import SyncServices, run_with_services

logger = structlog.get_logger()


async def _process(services: SyncServices) -> dict:
    return await services.worker.handle()


async def _due_actions(services: SyncServices) -> dict:
    fired = await services.worker.run_due_actions()
    return {"fired": fired}


@shared_task(bind=True, max_retries=0)
def process_background_queue(self) -> dict:
    """
    Drain the background product queue for one time slice.

    Sent by the dispatcher; the worker re-dispatches itself while items
    remain, so this task is short-lived.

    Returns:
        dict: Number of tasks processed
    """
    result = run_with_services(_process)
    logger.info("Background queue slice finished", **result)
    return result


@shared_task(bind=True, max_retries=0)
def run_due_actions(self) -> dict:
    """Fire due health-checks and single-item fallbacks. Runs every minute."""
    return run_with_services(_due_actions)

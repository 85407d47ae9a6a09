"""Dispatchers that wake the background worker out of process."""

from typing import Protocol

import structlog
from celery import Celery
from kombu.exceptions import KombuError, OperationalError

from catalog_sync.exceptions import DispatchError

logger = structlog.get_logger()

PROCESS_QUEUE_TASK = "sync_worker.tasks.background.process_background_queue"


class Dispatcher(Protocol):
    """Requests an out-of-band run of the background worker."""

    def dispatch(self) -> None:
        """Raises DispatchError when the request could not be delivered."""
        ...


class CeleryDispatcher:
    """Sends the queue-processing task through the Celery broker."""

    def __init__(self, app: Celery, task_name: str = PROCESS_QUEUE_TASK):
        self.app = app
        self.task_name = task_name

    def dispatch(self) -> None:
        try:
            result = self.app.send_task(self.task_name)
        except (OperationalError, KombuError, ConnectionError) as e:
            raise DispatchError(f"Could not send {self.task_name}: {e}") from e
        logger.debug("Background processing dispatched", task=self.task_name, task_id=result.id)

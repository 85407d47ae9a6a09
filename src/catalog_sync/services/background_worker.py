"""Background driver: drains the persisted task queue one product at a time."""

import asyncio
import time
import uuid
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

import structlog

from catalog_sync.config import Settings
from catalog_sync.exceptions import DispatchError, SyncAlreadyRunning
from catalog_sync.infrastructure.database.models import LogAction, LogType, QueueStatus, utcnow
from catalog_sync.services.activity_log import ActivityLogService
from catalog_sync.services.dispatch import Dispatcher
from catalog_sync.services.orchestrator import OUTCOME_STATUS, CurrentBatch, SyncOrchestrator
from catalog_sync.services.product_reconciler import ReconcileOutcome
from catalog_sync.services.progress import ProgressView, Stage
from catalog_sync.services.scheduler import ActionScheduler
from catalog_sync.services.state_store import StateStore
from catalog_sync.services.sync_queue import BatchHandle, QueueItem, SyncQueueStore
from catalog_sync.services.task_queue import ClaimedTask, PersistedTaskQueue
from shared.constants import (
    HOOK_HEALTHCHECK,
    HOOK_PROCESS_QUEUE_ITEM,
    STATE_RETRY_DONE_PREFIX,
    STATE_WORKER_LOCK,
    STATE_WORKER_STATUS,
)

logger = structlog.get_logger()

FETCH_FAILED = "Failed to fetch product details"


class WorkerStatus(str, Enum):
    RUNNING = "running"
    PAUSED = "paused"
    CANCELLED = "cancelled"


class BackgroundWorker:
    """Processes a batch through ``PersistedTaskQueue`` without a foreground caller.

    Out-of-band runs are requested through the dispatcher (a Celery task).
    When that is unavailable, a single-item action is scheduled instead and
    picked up by the beat tick. A recurring health-check re-dispatches while
    the queue is non-empty, so a crashed run is eventually resumed.
    """

    def __init__(
        self,
        settings: Settings,
        orchestrator: SyncOrchestrator,
        queue: SyncQueueStore,
        tasks: PersistedTaskQueue[str],
        state: StateStore,
        scheduler: ActionScheduler,
        progress: ProgressView,
        activity_log: ActivityLogService,
        current: CurrentBatch,
        dispatcher: Dispatcher | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.settings = settings
        self.orchestrator = orchestrator
        self.queue = queue
        self.tasks = tasks
        self.state = state
        self.scheduler = scheduler
        self.progress = progress
        self.activity_log = activity_log
        self.current = current
        self.dispatcher = dispatcher
        self._sleep = sleep

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    async def status(self) -> WorkerStatus:
        value = await self.state.get(STATE_WORKER_STATUS)
        return WorkerStatus(value) if value else WorkerStatus.RUNNING

    async def is_paused(self) -> bool:
        return await self.status() is WorkerStatus.PAUSED

    async def is_processing(self) -> bool:
        return await self.state.lock_holder(STATE_WORKER_LOCK) is not None

    async def is_queued(self) -> bool:
        return not await self.tasks.is_empty()

    async def is_active(self) -> bool:
        return await self.is_queued() or await self.is_processing()

    # -------------------------------------------------------------------------
    # Operator verbs
    # -------------------------------------------------------------------------

    async def start_background(self) -> dict[str, Any]:
        """Start a batch and hand it to the background queue.

        Raises:
            SyncAlreadyRunning: a background run is still queued or processing.
            ValidationFailure, RemoteUnavailable: from batch setup.
        """
        if await self.is_active():
            raise SyncAlreadyRunning("A background sync is already in progress")

        result = await self.orchestrator.start_batch()
        await self.tasks.clear()
        pending = await self.queue.items(result.batch, QueueStatus.PENDING)
        await self.tasks.push([item.product_slug for item in pending], batch_id=result.batch.batch_id)
        await self.state.set(STATE_WORKER_STATUS, WorkerStatus.RUNNING.value)

        dispatched = await self.dispatch()
        logger.info("Background sync started", batch_id=result.batch.batch_id, total=result.total)
        return {**result.as_dict(), "dispatched": dispatched}

    async def pause(self) -> None:
        await self.state.set(STATE_WORKER_STATUS, WorkerStatus.PAUSED.value)
        await self.progress.mark_stage(Stage.PAUSED)
        await self.activity_log.log(LogType.SYSTEM, LogAction.INFO, None, "Background sync paused")

    async def resume(self) -> bool:
        await self.state.set(STATE_WORKER_STATUS, WorkerStatus.RUNNING.value)
        await self.progress.mark_stage(Stage.PROCESSING)
        await self.activity_log.log(LogType.SYSTEM, LogAction.INFO, None, "Background sync resumed")
        return await self.dispatch()

    async def cancel(self) -> bool:
        await self.state.set(STATE_WORKER_STATUS, WorkerStatus.CANCELLED.value)
        await self.progress.clear()
        await self.activity_log.log(LogType.SYSTEM, LogAction.WARNING, None, "Background sync cancelled")
        return await self.dispatch()

    async def retry_failed(self) -> int:
        """Reset the latest batch's failures and queue them for another pass."""
        batch = await self.current.get() or await self.current.last()
        if batch is None:
            return 0
        slugs = await self.orchestrator.retry_failed(batch)
        if not slugs:
            return 0
        if await self.current.get() is None:
            await self.current.set(batch)
        await self.tasks.push(slugs, batch_id=batch.batch_id)
        await self.state.set(STATE_WORKER_STATUS, WorkerStatus.RUNNING.value)
        await self.dispatch()
        return len(slugs)

    async def trigger_processing(self) -> dict[str, Any]:
        reason = await self._reject_reason()
        if reason:
            return {"success": False, "message": reason}
        await self.schedule_healthcheck()
        result = await self.handle()
        return {"success": True, "message": "Processing triggered", **result}

    async def trigger_healthcheck(self) -> dict[str, Any]:
        reason = await self._reject_reason()
        if reason:
            return {"success": False, "message": reason}
        result = await self.handle_healthcheck()
        return {"success": True, "message": "Health-check triggered", **result}

    async def _reject_reason(self) -> str | None:
        if await self.is_processing():
            return "Background processing is already running"
        if await self.tasks.is_empty():
            return "Background queue is empty"
        return None

    # -------------------------------------------------------------------------
    # Processing
    # -------------------------------------------------------------------------

    async def handle(self) -> dict[str, Any]:
        """Drain tasks under the process lock until empty, paused or out of time."""
        holder = uuid.uuid4().hex
        if not await self.state.acquire_lock(STATE_WORKER_LOCK, holder, self.settings.background_lock_ttl_seconds):
            logger.info("Background queue already being processed")
            return {"processed": 0, "locked": True}

        processed = 0
        deadline = time.monotonic() + self.settings.background_time_limit_seconds
        try:
            while not await self.is_paused():
                task = await self.tasks.claim()
                if task is None:
                    break
                await self._run(task)
                processed += 1
                if time.monotonic() >= deadline:
                    logger.info("Background time limit reached", processed=processed)
                    break
        finally:
            await self.state.release_lock(STATE_WORKER_LOCK)

        if await self.tasks.is_empty():
            await self.complete()
        elif not await self.is_paused():
            await self.dispatch()
        return {"processed": processed, "locked": False}

    async def process_queue_item(self) -> dict[str, Any]:
        """Single-item fallback run by the scheduled action."""
        if await self.is_processing():
            return {"processed": 0, "reason": "processing"}
        if await self.is_paused():
            return {"processed": 0, "reason": "paused"}
        if await self.tasks.is_empty():
            await self.scheduler.unschedule_all(HOOK_PROCESS_QUEUE_ITEM)
            await self.complete()
            return {"processed": 0, "reason": "empty"}

        holder = uuid.uuid4().hex
        if not await self.state.acquire_lock(STATE_WORKER_LOCK, holder, self.settings.background_lock_ttl_seconds):
            return {"processed": 0, "reason": "processing"}
        processed = 0
        try:
            task = await self.tasks.claim()
            if task is not None:
                await self._run(task)
                processed = 1
        finally:
            await self.state.release_lock(STATE_WORKER_LOCK)

        if await self.tasks.is_empty():
            await self.complete()
        else:
            await self.schedule_queue_item_processing()
        return {"processed": processed}

    async def handle_healthcheck(self) -> dict[str, Any]:
        if await self.is_processing():
            return {"action": "none"}
        if await self.tasks.is_empty():
            await self.clear_schedules()
            return {"action": "cleared"}
        dispatched = await self.dispatch()
        return {"action": "dispatched" if dispatched else "scheduled"}

    async def _run(self, task: ClaimedTask[str]) -> None:
        batch = await self._batch_for(task.batch_id)
        if batch is None:
            logger.warning("Dropping task with no batch", slug=task.item)
            await self.tasks.ack(task)
            return
        again = await self.process_slug(task.item, batch)
        if again:
            await self.tasks.retry(task)
        else:
            await self.tasks.ack(task)

    async def process_slug(self, slug: str, batch: BatchHandle) -> bool:
        """Process one product. Returns True when the task should be re-queued."""
        status = await self.status()
        if status is WorkerStatus.CANCELLED:
            logger.info("Dropping task for cancelled sync", slug=slug)
            return False
        if status is WorkerStatus.PAUSED:
            return True

        item = await self.queue.claim_by_slug(batch, slug)
        if item is None:
            logger.warning("No pending queue item for task", slug=slug, batch_id=batch.batch_id)
            return False

        attempt = await self.orchestrator.attempt_item(item)
        if not attempt.fetched:
            return await self._retry_or_fail(item, batch, FETCH_FAILED)

        if attempt.outcome is ReconcileOutcome.ERROR:
            again = await self._retry_or_fail(item, batch, attempt.message)
        else:
            await self.queue.mark(item.id, OUTCOME_STATUS[attempt.outcome], attempt.message)
            await self.progress.refresh(batch, Stage.PROCESSING)
            again = False

        await self._sleep(self.settings.background_item_sleep_seconds)
        return again

    async def _retry_or_fail(self, item: QueueItem, batch: BatchHandle, message: str) -> bool:
        attempts = await self.queue.increment_attempts(item.id)
        failed = await self.orchestrator.record_failure(item, message, attempts)
        await self.progress.refresh(batch, Stage.PROCESSING)
        return not failed

    async def _batch_for(self, batch_id: str | None) -> BatchHandle | None:
        current = await self.current.get()
        if current is not None and (batch_id is None or current.batch_id == batch_id):
            return current
        if batch_id is None:
            batch_id = await self.queue.latest_batch_id()
        return BatchHandle(batch_id=batch_id, created_at=utcnow()) if batch_id else None

    async def complete(self) -> dict[str, Any]:
        """Completion hook: one automatic retry pass, then finalize."""
        batch = await self.current.get()
        if batch is None:
            await self.clear_schedules()
            return {"complete": False}

        retry_key = f"{STATE_RETRY_DONE_PREFIX}{batch.batch_id}"
        status = await self.status()
        stats = await self.queue.statistics(batch)
        if stats.failed and status is not WorkerStatus.CANCELLED and not await self.state.get(retry_key):
            slugs = await self.orchestrator.retry_failed(batch)
            await self.tasks.push(slugs, batch_id=batch.batch_id)
            await self.state.set(
                retry_key, True, ttl_seconds=self.settings.queue_retention_days * 86400
            )
            await self.activity_log.log(
                LogType.SYSTEM, LogAction.INFO, batch.batch_id, f"Retrying {len(slugs)} failed products"
            )
            await self.dispatch()
            return {"complete": False, "retrying": len(slugs)}

        result = await self.orchestrator.finalize(batch)
        await self.state.delete(STATE_WORKER_STATUS)
        await self.tasks.clear()
        await self.clear_schedules()
        if status is WorkerStatus.CANCELLED:
            await self.progress.clear()
        logger.info("Background sync complete", batch_id=batch.batch_id, **result.statistics)
        return {"complete": True, "statistics": result.statistics}

    # -------------------------------------------------------------------------
    # Dispatch and scheduling
    # -------------------------------------------------------------------------

    async def dispatch(self) -> bool:
        """Request another run. Returns False when the scheduled fallback was used."""
        await self.schedule_healthcheck()
        if self.dispatcher is not None:
            try:
                await asyncio.to_thread(self.dispatcher.dispatch)
                return True
            except DispatchError as e:
                logger.warning("Dispatch failed, falling back to scheduled processing", error=str(e))
        else:
            logger.warning("No dispatcher configured, using scheduled processing")

        if not await self.is_processing() and not await self.tasks.is_empty():
            await self.schedule_queue_item_processing()
        return False

    async def schedule_healthcheck(self) -> None:
        if await self.scheduler.next_scheduled(HOOK_HEALTHCHECK) is None:
            await self.scheduler.schedule_recurring(HOOK_HEALTHCHECK, self.settings.healthcheck_interval_minutes * 60)

    async def schedule_queue_item_processing(self) -> None:
        if await self.scheduler.next_scheduled(HOOK_PROCESS_QUEUE_ITEM) is None:
            await self.scheduler.schedule_single(HOOK_PROCESS_QUEUE_ITEM, self.settings.fallback_delay_seconds)

    async def clear_schedules(self) -> None:
        await self.scheduler.unschedule_all(HOOK_HEALTHCHECK)
        await self.scheduler.unschedule_all(HOOK_PROCESS_QUEUE_ITEM)

    async def run_due_actions(self) -> list[str]:
        """Fire scheduled hooks that are due. Called by the beat tick."""
        handlers = {
            HOOK_HEALTHCHECK: self.handle_healthcheck,
            HOOK_PROCESS_QUEUE_ITEM: self.process_queue_item,
        }
        fired = []
        for hook in await self.scheduler.claim_due():
            handler = handlers.get(hook)
            if handler is None:
                logger.warning("Unknown scheduled hook", hook=hook)
                continue
            await handler()
            fired.append(hook)
        return fired

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    async def get_status(self) -> dict[str, Any]:
        batch = await self.current.get()
        return {
            "status": (await self.status()).value,
            "is_processing": await self.is_processing(),
            "is_queued": await self.is_queued(),
            "is_active": await self.is_active(),
            "queue_size": await self.tasks.size(),
            "batch_id": batch.batch_id if batch else None,
        }

    async def debug_info(self) -> dict[str, Any]:
        batch = await self.current.get()
        stats = await self.queue.statistics(batch) if batch else None
        next_healthcheck = await self.scheduler.next_scheduled(HOOK_HEALTHCHECK)
        next_item = await self.scheduler.next_scheduled(HOOK_PROCESS_QUEUE_ITEM)
        return {
            "queue_size": await self.tasks.size(),
            "pending_items": stats.pending if stats else 0,
            "lock_holder": await self.state.lock_holder(STATE_WORKER_LOCK),
            "status": (await self.status()).value,
            "batch_id": batch.batch_id if batch else None,
            "next_healthcheck": next_healthcheck.isoformat() if next_healthcheck else None,
            "next_queue_item": next_item.isoformat() if next_item else None,
            "dispatcher_configured": self.dispatcher is not None,
        }

"""Sync orchestration: batch lifecycle and the per-item step.

A batch moves through Idle → ValidatingCategories → FetchingList →
Processing → Complete. ``SyncOrchestrator`` takes the batch explicitly on
every call; only ``SyncCoordinator`` resolves which batch is current.
"""

from dataclasses import asdict, dataclass, field
from typing import Any

import structlog

from catalog_sync.config import Settings
from catalog_sync.exceptions import RemoteUnavailable, ValidationFailure
from catalog_sync.infrastructure.database.models import LogAction, LogType, QueueStatus, utcnow
from catalog_sync.infrastructure.remote.client import RemoteCatalogClient
from catalog_sync.services.activity_log import ActivityLogService
from catalog_sync.services.category_reconciler import CategoryReconciler, CategoryReconcileResult
from catalog_sync.services.orphan_handler import OrphanHandler, OrphanReport
from catalog_sync.services.product_reconciler import ProductReconciler, ReconcileOutcome
from catalog_sync.services.progress import ProgressView, Stage
from catalog_sync.services.state_store import StateStore
from catalog_sync.services.sync_queue import BatchHandle, QueueItem, SyncQueueStore
from shared.constants import (
    STATE_CURRENT_BATCH,
    STATE_LAST_BATCH,
    STATE_LAST_STEP_AT,
    STATE_LAST_SYNC_COMPLETED,
    STATE_LAST_SYNC_STARTED,
    STATE_LAST_SYNC_STATS,
)

logger = structlog.get_logger()

FETCH_FAILED_MESSAGE = "Failed to fetch product details from API"

OUTCOME_MESSAGES = {
    ReconcileOutcome.CREATED: "Created: {name}",
    ReconcileOutcome.UPDATED: "Updated: {name}",
    ReconcileOutcome.SKIPPED: "Skipped - No change detected: {name}",
    ReconcileOutcome.ERROR: "Error processing: {name}",
}

OUTCOME_STATUS = {
    ReconcileOutcome.CREATED: QueueStatus.SYNCED,
    ReconcileOutcome.UPDATED: QueueStatus.SYNCED,
    ReconcileOutcome.SKIPPED: QueueStatus.SKIPPED,
    ReconcileOutcome.ERROR: QueueStatus.FAILED,
}


class CurrentBatch:
    """The single "current batch" pointer, persisted in the state store."""

    def __init__(self, state: StateStore):
        self.state = state

    async def get(self) -> BatchHandle | None:
        value = await self.state.get(STATE_CURRENT_BATCH)
        return BatchHandle.from_dict(value) if value else None

    async def last(self) -> BatchHandle | None:
        value = await self.state.get(STATE_LAST_BATCH)
        return BatchHandle.from_dict(value) if value else None

    async def set(self, batch: BatchHandle) -> None:
        await self.state.set(STATE_CURRENT_BATCH, batch.to_dict())

    async def finish(self, batch: BatchHandle) -> bool:
        """Retire ``batch`` if it is current. False when it already was retired."""
        current = await self.get()
        if current is None or current.batch_id != batch.batch_id:
            return False
        await self.state.set(STATE_LAST_BATCH, batch.to_dict())
        await self.state.delete(STATE_CURRENT_BATCH)
        return True


@dataclass
class BatchStartResult:
    batch: BatchHandle
    total: int
    categories: CategoryReconcileResult
    orphans: OrphanReport
    message: str

    def as_dict(self) -> dict[str, Any]:
        return {
            "batch_id": self.batch.batch_id,
            "total": self.total,
            "categories": self.categories.as_dict(),
            "orphans": self.orphans.as_dict(),
            "message": self.message,
        }


@dataclass
class StepResult:
    success: bool
    complete: bool
    slug: str | None = None
    name: str | None = None
    outcome: ReconcileOutcome | None = None
    message: str = ""
    current: int = 0
    total: int = 0
    statistics: dict[str, int] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["outcome"] = self.outcome.value if self.outcome else None
        return data


@dataclass
class ItemAttempt:
    """Result of fetching and reconciling one queue item, before status bookkeeping."""

    fetched: bool
    outcome: ReconcileOutcome
    name: str
    message: str


class SyncOrchestrator:
    """Runs the batch lifecycle against explicit batch handles."""

    def __init__(
        self,
        settings: Settings,
        client: RemoteCatalogClient,
        queue: SyncQueueStore,
        categories: CategoryReconciler,
        products: ProductReconciler,
        orphans: OrphanHandler,
        progress: ProgressView,
        activity_log: ActivityLogService,
        state: StateStore,
        current: CurrentBatch,
    ):
        self.settings = settings
        self.client = client
        self.queue = queue
        self.categories = categories
        self.products = products
        self.orphans = orphans
        self.progress = progress
        self.activity_log = activity_log
        self.state = state
        self.current = current

    async def start_batch(self) -> BatchStartResult:
        """Validate categories, enqueue the remote product list and sweep orphans.

        Raises:
            ValidationFailure: categories could not be reconciled or the list is empty.
            RemoteUnavailable: the product list could not be fetched.
        """
        await self.state.set(STATE_LAST_SYNC_STARTED, utcnow().isoformat())
        await self.activity_log.log(LogType.SYSTEM, LogAction.SYNC_START, None, "Sync started")

        categories = await self.categories.reconcile_top_level_categories()
        if not categories.success:
            raise ValidationFailure(categories.message)

        try:
            entries = await self.client.fetch_product_list()
        except RemoteUnavailable as e:
            await self.activity_log.log(
                LogType.SYSTEM, LogAction.ERROR, None, f"Failed to fetch product list: {e}"
            )
            raise

        valid = [entry for entry in entries if entry.slug]
        if not valid:
            message = "Product list is empty or invalid"
            await self.activity_log.log(LogType.SYSTEM, LogAction.ERROR, None, message)
            raise ValidationFailure(message)

        batch, total = await self.queue.initialize(valid, self.settings.stale_pending_hours)
        await self.current.set(batch)
        await self.progress.refresh(batch, Stage.PROCESSING)

        orphans = await self.orphans.reconcile_orphans(
            {entry.slug for entry in valid},
            {entry.external_id for entry in valid if entry.external_id},
        )

        message = f"Queued {total} products for sync"
        await self.activity_log.log(LogType.SYSTEM, LogAction.INFO, batch.batch_id, message)
        return BatchStartResult(batch=batch, total=total, categories=categories, orphans=orphans, message=message)

    async def step_one(self, batch: BatchHandle) -> StepResult:
        """Process the oldest pending item of ``batch``, or finalize it when none remain."""
        item = await self.queue.claim_next(batch)
        if item is None:
            stats = await self.queue.statistics(batch)
            if stats.pending:
                return StepResult(
                    success=True,
                    complete=False,
                    message="Remaining items are being processed by another driver",
                    current=stats.total - stats.pending,
                    total=stats.total,
                    statistics=stats.as_dict(),
                )
            return await self.finalize(batch)

        attempts = await self.queue.increment_attempts(item.id)
        attempt = await self.attempt_item(item)
        if attempt.outcome is ReconcileOutcome.ERROR:
            await self.record_failure(item, attempt.message, attempts)
        else:
            await self.queue.mark(item.id, OUTCOME_STATUS[attempt.outcome], attempt.message)

        snapshot = await self.progress.refresh(batch, Stage.PROCESSING)
        return StepResult(
            success=attempt.outcome is not ReconcileOutcome.ERROR,
            complete=False,
            slug=item.product_slug,
            name=attempt.name,
            outcome=attempt.outcome,
            message=attempt.message,
            current=snapshot.current,
            total=snapshot.total,
            statistics={
                "synced": snapshot.synced,
                "failed": snapshot.failed,
                "skipped": snapshot.skipped,
                "pending": snapshot.pending,
            },
        )

    async def attempt_item(self, item: QueueItem) -> ItemAttempt:
        """Fetch detail for a claimed item and reconcile it. Never raises."""
        slug = item.product_slug
        try:
            payload = await self.client.fetch_product_detail(slug)
        except RemoteUnavailable as e:
            await self.activity_log.log(LogType.PRODUCT, LogAction.ERROR, slug, f"{FETCH_FAILED_MESSAGE}: {e}")
            return ItemAttempt(fetched=False, outcome=ReconcileOutcome.ERROR, name=slug, message=FETCH_FAILED_MESSAGE)

        outcome = await self.products.reconcile_one_product(slug, payload, item.category_slug)
        name = payload.desc
        return ItemAttempt(
            fetched=True,
            outcome=outcome,
            name=name,
            message=OUTCOME_MESSAGES[outcome].format(name=name),
        )

    async def record_failure(self, item: QueueItem, message: str, attempts: int) -> bool:
        """Fail the item permanently once attempts are exhausted, else leave it pending.

        Returns True when the item was marked failed.
        """
        if attempts >= self.settings.max_attempts:
            await self.queue.mark(item.id, QueueStatus.FAILED, f"{message} after {attempts} attempts")
            logger.warning("Queue item failed permanently", slug=item.product_slug, attempts=attempts)
            return True
        await self.queue.release(item.id)
        logger.info("Queue item will be retried", slug=item.product_slug, attempts=attempts)
        return False

    async def finalize(self, batch: BatchHandle) -> StepResult:
        """Close out a batch with no pending items. Repeated calls change nothing."""
        stats = await self.queue.statistics(batch)
        result = StepResult(
            success=True,
            complete=True,
            message="All products processed",
            current=stats.total - stats.pending,
            total=stats.total,
            statistics=stats.as_dict(),
        )
        if not await self.current.finish(batch):
            return result

        await self.state.set(STATE_LAST_SYNC_COMPLETED, utcnow().isoformat())
        await self.state.set(STATE_LAST_SYNC_STATS, stats.as_dict())
        await self.progress.refresh(batch, Stage.COMPLETE)
        await self.activity_log.log(
            LogType.SYSTEM,
            LogAction.SYNC_COMPLETE,
            batch.batch_id,
            f"Sync complete: {stats.synced} synced, {stats.skipped} skipped, {stats.failed} failed",
        )
        return result

    async def retry_failed(self, batch: BatchHandle) -> list[str]:
        """Reset failed items of ``batch`` to pending. Returns their slugs."""
        slugs = await self.queue.reset_failed_to_pending(batch)
        if slugs:
            await self.progress.refresh(batch, Stage.PROCESSING)
        await self.activity_log.log(
            LogType.SYSTEM, LogAction.INFO, batch.batch_id, f"Reset {len(slugs)} failed products to pending"
        )
        return slugs


class SyncCoordinator:
    """Process-wide entry point that owns the current batch pointer."""

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        current: CurrentBatch,
        queue: SyncQueueStore,
        state: StateStore,
        settings: Settings,
    ):
        self.orchestrator = orchestrator
        self.current = current
        self.queue = queue
        self.state = state
        self.settings = settings

    async def current_batch(self) -> BatchHandle | None:
        return await self.current.get()

    async def latest_batch(self) -> BatchHandle | None:
        return await self.current.get() or await self.current.last()

    async def start_batch(self) -> BatchStartResult:
        return await self.orchestrator.start_batch()

    async def seconds_until_next_step(self) -> float:
        """Remaining wait before a foreground caller may step again."""
        last = await self.state.get(STATE_LAST_STEP_AT)
        if last is None:
            return 0.0
        elapsed = utcnow().timestamp() - float(last)
        return max(0.0, self.settings.step_min_interval_seconds - elapsed)

    async def step(self) -> StepResult:
        batch = await self.latest_batch()
        if batch is None:
            return StepResult(success=False, complete=False, message="No sync batch has been started")
        await self.state.set(STATE_LAST_STEP_AT, utcnow().timestamp())
        return await self.orchestrator.step_one(batch)

    async def run_chunk(self, limit: int | None = None) -> dict[str, Any]:
        """Advance the current batch by up to ``limit`` items, starting one if needed."""
        limit = limit or self.settings.cron_chunk_size
        batch = await self.current.get()
        if batch is not None and await self.queue.is_complete(batch):
            await self.orchestrator.finalize(batch)
            batch = None
        if batch is None:
            batch = (await self.orchestrator.start_batch()).batch

        processed = 0
        result = None
        for _ in range(limit):
            result = await self.orchestrator.step_one(batch)
            if result.complete or result.outcome is None:
                break
            processed += 1

        summary = {
            "batch_id": batch.batch_id,
            "processed": processed,
            "complete": bool(result and result.complete),
            "statistics": (await self.queue.statistics(batch)).as_dict(),
        }
        logger.info("Sync chunk processed", **summary)
        return summary

    async def retry_failed(self) -> int:
        batch = await self.latest_batch()
        if batch is None:
            return 0
        slugs = await self.orchestrator.retry_failed(batch)
        if slugs and await self.current.get() is None:
            await self.current.set(batch)
        return len(slugs)

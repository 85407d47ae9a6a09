"""Sync services."""

from catalog_sync.services.activity_log import ActivityLogService
from catalog_sync.services.background_worker import BackgroundWorker, WorkerStatus
from catalog_sync.services.category_reconciler import CategoryReconciler
from catalog_sync.services.orchestrator import SyncCoordinator, SyncOrchestrator
from catalog_sync.services.orphan_handler import OrphanAction, OrphanHandler
from catalog_sync.services.product_reconciler import ProductReconciler, ReconcileOutcome
from catalog_sync.services.progress import ProgressView, Stage
from catalog_sync.services.state_store import StateStore
from catalog_sync.services.sync_queue import SyncQueueStore
from catalog_sync.services.task_queue import PersistedTaskQueue

__all__ = [
    "ActivityLogService",
    "BackgroundWorker",
    "CategoryReconciler",
    "OrphanAction",
    "OrphanHandler",
    "PersistedTaskQueue",
    "ProductReconciler",
    "ProgressView",
    "ReconcileOutcome",
    "Stage",
    "StateStore",
    "SyncCoordinator",
    "SyncOrchestrator",
    "SyncQueueStore",
    "WorkerStatus",
]

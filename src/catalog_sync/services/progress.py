"""Cached progress read model derived from queue statistics."""

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any

import structlog

from catalog_sync.infrastructure.database.models import utcnow
from catalog_sync.infrastructure.redis import CacheService
from catalog_sync.services.state_store import StateStore
from catalog_sync.services.sync_queue import BatchHandle, QueueStatistics, SyncQueueStore
from shared.constants import (
    CACHE_PROGRESS,
    STATE_LAST_SYNC_COMPLETED,
    STATE_LAST_SYNC_STARTED,
    STATE_PROGRESS,
)

logger = structlog.get_logger()


class Stage(str, Enum):
    IDLE = "idle"
    PROCESSING = "processing"
    PAUSED = "paused"
    COMPLETE = "complete"


@dataclass
class ProgressSnapshot:
    stage: str
    current: int = 0
    total: int = 0
    percentage: float = 0.0
    synced: int = 0
    failed: int = 0
    skipped: int = 0
    pending: int = 0
    is_running: bool = False
    batch_id: str | None = None
    never_run: bool = False
    last_completed_at: str | None = None
    updated_at: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProgressSnapshot":
        fields = cls.__dataclass_fields__
        return cls(**{k: v for k, v in data.items() if k in fields})

    @classmethod
    def from_statistics(
        cls, stats: QueueStatistics, stage: Stage, batch: BatchHandle | None
    ) -> "ProgressSnapshot":
        current = stats.total - stats.pending
        percentage = round(current / stats.total * 100, 2) if stats.total else 0.0
        return cls(
            stage=stage.value,
            current=current,
            total=stats.total,
            percentage=percentage,
            synced=stats.synced,
            failed=stats.failed,
            skipped=stats.skipped,
            pending=stats.pending,
            is_running=stage in (Stage.PROCESSING, Stage.PAUSED),
            batch_id=batch.batch_id if batch else None,
            updated_at=utcnow().isoformat(),
        )


class ProgressView:
    """Serves the progress snapshot through a short-lived cache.

    Writers call ``refresh`` (or ``mark_stage``/``clear``), each of which
    persists the snapshot and invalidates the cache.
    """

    def __init__(self, queue: SyncQueueStore, state: StateStore, cache: CacheService, cache_ttl_seconds: int = 3):
        self.queue = queue
        self.state = state
        self.cache = cache
        self.cache_ttl_seconds = cache_ttl_seconds

    async def get_progress(self) -> ProgressSnapshot:
        cached = await self.cache.get(CACHE_PROGRESS)
        if cached is not None:
            return ProgressSnapshot.from_dict(cached)

        persisted = await self.state.get(STATE_PROGRESS)
        if persisted is not None:
            snapshot = ProgressSnapshot.from_dict(persisted)
        else:
            started = await self.state.get(STATE_LAST_SYNC_STARTED)
            snapshot = ProgressSnapshot(
                stage=Stage.IDLE.value,
                never_run=started is None,
                last_completed_at=await self.state.get(STATE_LAST_SYNC_COMPLETED),
            )

        await self.cache.set(CACHE_PROGRESS, snapshot.as_dict(), ttl_seconds=self.cache_ttl_seconds)
        return snapshot

    async def refresh(self, batch: BatchHandle, stage: Stage = Stage.PROCESSING) -> ProgressSnapshot:
        """Recompute from the queue, persist and invalidate the cache."""
        stats = await self.queue.statistics(batch)
        snapshot = ProgressSnapshot.from_statistics(stats, stage, batch)
        if stage is Stage.COMPLETE:
            snapshot.last_completed_at = await self.state.get(STATE_LAST_SYNC_COMPLETED)
        await self._store(snapshot)
        return snapshot

    async def mark_stage(self, stage: Stage) -> None:
        persisted = await self.state.get(STATE_PROGRESS)
        if persisted is None:
            return
        snapshot = ProgressSnapshot.from_dict(persisted)
        snapshot.stage = stage.value
        snapshot.is_running = stage in (Stage.PROCESSING, Stage.PAUSED)
        snapshot.updated_at = utcnow().isoformat()
        await self._store(snapshot)

    async def clear(self) -> None:
        await self.state.delete(STATE_PROGRESS)
        await self.invalidate()

    async def invalidate(self) -> None:
        await self.cache.delete(CACHE_PROGRESS)

    async def _store(self, snapshot: ProgressSnapshot) -> None:
        await self.state.set(STATE_PROGRESS, snapshot.as_dict())
        await self.invalidate()

"""Persisted per-product work queue scoped to a batch."""

import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Any

import structlog
from sqlalchemy import and_, delete, func, insert, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from catalog_sync.infrastructure.database.models import QueueStatus, SyncQueueItem, utcnow
from catalog_sync.schemas import ProductListEntry
from shared.constants import BATCH_ID_PREFIX

logger = structlog.get_logger()

CLAIM_RETRIES = 5


@dataclass(frozen=True)
class BatchHandle:
    """Identity of one sync batch."""

    batch_id: str
    created_at: datetime

    @classmethod
    def new(cls) -> "BatchHandle":
        now = utcnow()
        return cls(batch_id=f"{BATCH_ID_PREFIX}{now:%Y%m%d%H%M%S}_{uuid.uuid4().hex[:8]}", created_at=now)

    def to_dict(self) -> dict[str, str]:
        return {"batch_id": self.batch_id, "created_at": self.created_at.isoformat()}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BatchHandle":
        return cls(batch_id=data["batch_id"], created_at=datetime.fromisoformat(data["created_at"]))


@dataclass(frozen=True)
class QueueItem:
    id: int
    batch_id: str
    product_slug: str
    product_id: str | None
    category_slug: str | None
    status: QueueStatus
    attempts: int
    result_message: str | None


@dataclass
class QueueStatistics:
    total: int = 0
    pending: int = 0
    synced: int = 0
    failed: int = 0
    skipped: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


class SyncQueueStore:
    """Queue items for every batch, with an atomic claim.

    A claim stamps ``claimed_at``/``claim_token`` with a compare-and-set
    update on a still-pending, unleased row, so two drivers can never hold
    the same item. Leases older than ``lease_seconds`` are claimable again.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], lease_seconds: int = 600):
        self.session_factory = session_factory
        self.lease_seconds = lease_seconds

    # -------------------------------------------------------------------------
    # Batch setup
    # -------------------------------------------------------------------------

    async def initialize(
        self, entries: list[ProductListEntry], stale_pending_hours: int = 24
    ) -> tuple[BatchHandle, int]:
        """Create a batch with one pending item per distinct non-empty slug."""
        await self.purge_stale_pending(stale_pending_hours)

        batch = BatchHandle.new()
        seen: set[str] = set()
        rows = []
        for entry in entries:
            slug = entry.slug.strip()
            if not slug or slug in seen:
                continue
            seen.add(slug)
            rows.append(
                {
                    "batch_id": batch.batch_id,
                    "product_slug": slug,
                    "product_id": entry.external_id,
                    "category_slug": entry.category_slug,
                    "status": QueueStatus.PENDING,
                    "attempts": 0,
                    "created_at": batch.created_at,
                }
            )

        if rows:
            async with self.session_factory() as session:
                await session.execute(insert(SyncQueueItem), rows)
                await session.commit()

        skipped = len(entries) - len(rows)
        logger.info("Sync queue initialized", batch_id=batch.batch_id, total=len(rows), skipped=skipped)
        return batch, len(rows)

    async def purge_stale_pending(self, hours: int = 24) -> int:
        """Delete pending items left behind by batches abandoned long ago."""
        cutoff = utcnow() - timedelta(hours=hours)
        async with self.session_factory() as session:
            result = await session.execute(
                delete(SyncQueueItem).where(
                    SyncQueueItem.status == QueueStatus.PENDING,
                    SyncQueueItem.created_at < cutoff,
                )
            )
            await session.commit()
        if result.rowcount:
            logger.info("Purged stale pending queue items", deleted=result.rowcount)
        return result.rowcount

    async def delete_old_batches(self, days: int = 30) -> int:
        """Retention sweep: drop every item older than ``days``."""
        cutoff = utcnow() - timedelta(days=days)
        async with self.session_factory() as session:
            result = await session.execute(delete(SyncQueueItem).where(SyncQueueItem.created_at < cutoff))
            await session.commit()
        logger.info("Old sync batches deleted", deleted=result.rowcount, days=days)
        return result.rowcount

    # -------------------------------------------------------------------------
    # Claiming
    # -------------------------------------------------------------------------

    def _claimable(self, now: datetime):
        stale = now - timedelta(seconds=self.lease_seconds)
        return and_(
            SyncQueueItem.status == QueueStatus.PENDING,
            or_(SyncQueueItem.claimed_at.is_(None), SyncQueueItem.claimed_at < stale),
        )

    async def claim_next(self, batch: BatchHandle) -> QueueItem | None:
        """Claim the oldest claimable pending item of a batch (FIFO by id)."""
        return await self._claim(SyncQueueItem.batch_id == batch.batch_id)

    async def claim_by_slug(self, batch: BatchHandle, slug: str) -> QueueItem | None:
        """Claim the pending item for one product of a batch."""
        return await self._claim(
            and_(SyncQueueItem.batch_id == batch.batch_id, SyncQueueItem.product_slug == slug)
        )

    async def _claim(self, criteria) -> QueueItem | None:
        for _ in range(CLAIM_RETRIES):
            now = utcnow()
            token = uuid.uuid4().hex
            async with self.session_factory() as session:
                candidate = await session.scalar(
                    select(SyncQueueItem.id)
                    .where(criteria, self._claimable(now))
                    .order_by(SyncQueueItem.id)
                    .limit(1)
                )
                if candidate is None:
                    return None

                result = await session.execute(
                    update(SyncQueueItem)
                    .where(SyncQueueItem.id == candidate, self._claimable(now))
                    .values(claimed_at=now, claim_token=token)
                    .execution_options(synchronize_session=False)
                )
                await session.commit()
                if result.rowcount != 1:
                    logger.debug("Queue claim lost race, retrying", item_id=candidate)
                    continue

                row = await session.scalar(select(SyncQueueItem).where(SyncQueueItem.id == candidate))
                return _to_item(row)
        return None

    async def release(self, item_id: int) -> None:
        """Drop the claim so the item is immediately claimable again."""
        async with self.session_factory() as session:
            await session.execute(
                update(SyncQueueItem)
                .where(SyncQueueItem.id == item_id)
                .values(claimed_at=None, claim_token=None)
                .execution_options(synchronize_session=False)
            )
            await session.commit()

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    async def mark(self, item_id: int, status: QueueStatus, message: str) -> bool:
        """Move a pending item to a terminal status."""
        async with self.session_factory() as session:
            result = await session.execute(
                update(SyncQueueItem)
                .where(SyncQueueItem.id == item_id, SyncQueueItem.status == QueueStatus.PENDING)
                .values(
                    status=status,
                    result_message=message,
                    completed_at=utcnow(),
                    claimed_at=None,
                    claim_token=None,
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()
        if result.rowcount == 0:
            logger.warning("Queue item not pending, status unchanged", item_id=item_id, status=status.value)
            return False
        return True

    async def increment_attempts(self, item_id: int) -> int:
        async with self.session_factory() as session:
            await session.execute(
                update(SyncQueueItem)
                .where(SyncQueueItem.id == item_id)
                .values(attempts=SyncQueueItem.attempts + 1)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return await session.scalar(select(SyncQueueItem.attempts).where(SyncQueueItem.id == item_id)) or 0

    async def reset_failed_to_pending(self, batch: BatchHandle) -> list[str]:
        """Reset every failed item of a batch, clearing attempts. Returns their slugs."""
        async with self.session_factory() as session:
            slugs = list(
                await session.scalars(
                    select(SyncQueueItem.product_slug)
                    .where(SyncQueueItem.batch_id == batch.batch_id, SyncQueueItem.status == QueueStatus.FAILED)
                    .order_by(SyncQueueItem.id)
                )
            )
            if slugs:
                await session.execute(
                    update(SyncQueueItem)
                    .where(SyncQueueItem.batch_id == batch.batch_id, SyncQueueItem.status == QueueStatus.FAILED)
                    .values(
                        status=QueueStatus.PENDING,
                        attempts=0,
                        result_message=None,
                        completed_at=None,
                        claimed_at=None,
                        claim_token=None,
                    )
                    .execution_options(synchronize_session=False)
                )
                await session.commit()
        return slugs

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    async def get(self, item_id: int) -> QueueItem | None:
        async with self.session_factory() as session:
            row = await session.get(SyncQueueItem, item_id)
            return _to_item(row) if row else None

    async def items(self, batch: BatchHandle, status: QueueStatus | None = None) -> list[QueueItem]:
        query = select(SyncQueueItem).where(SyncQueueItem.batch_id == batch.batch_id)
        if status is not None:
            query = query.where(SyncQueueItem.status == status)
        async with self.session_factory() as session:
            rows = await session.scalars(query.order_by(SyncQueueItem.id))
            return [_to_item(row) for row in rows]

    async def failed_items(self, batch: BatchHandle) -> list[QueueItem]:
        return await self.items(batch, QueueStatus.FAILED)

    async def latest_batch_id(self) -> str | None:
        async with self.session_factory() as session:
            return await session.scalar(
                select(SyncQueueItem.batch_id).order_by(SyncQueueItem.id.desc()).limit(1)
            )

    async def statistics(self, batch: BatchHandle | None) -> QueueStatistics:
        stats = QueueStatistics()
        if batch is None:
            return stats
        async with self.session_factory() as session:
            rows = await session.execute(
                select(SyncQueueItem.status, func.count())
                .where(SyncQueueItem.batch_id == batch.batch_id)
                .group_by(SyncQueueItem.status)
            )
            for status, count in rows:
                setattr(stats, status.value, count)
                stats.total += count
        return stats

    async def is_complete(self, batch: BatchHandle) -> bool:
        return (await self.statistics(batch)).pending == 0


def _to_item(row: SyncQueueItem) -> QueueItem:
    return QueueItem(
        id=row.id,
        batch_id=row.batch_id,
        product_slug=row.product_slug,
        product_id=row.product_id,
        category_slug=row.category_slug,
        status=row.status,
        attempts=row.attempts,
        result_message=row.result_message,
    )

"""Unit tests for the persisted sync queue."""

from datetime import timedelta

import pytest
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from catalog_sync.infrastructure.database.models import QueueStatus, SyncQueueItem, utcnow
from catalog_sync.schemas import ProductListEntry
from catalog_sync.services.sync_queue import BatchHandle, SyncQueueStore


def _entries(*slugs: str) -> list[ProductListEntry]:
    return [ProductListEntry(slug=slug, external_id=f"id-{slug}" if slug else None) for slug in slugs]


@pytest.fixture
def queue(session_factory: async_sessionmaker[AsyncSession]) -> SyncQueueStore:
    return SyncQueueStore(session_factory, lease_seconds=600)


async def _age_items(session_factory: async_sessionmaker[AsyncSession], **delta: float) -> None:
    async with session_factory() as session:
        await session.execute(
            update(SyncQueueItem).values(created_at=utcnow() - timedelta(**delta))
        )
        await session.commit()


class TestInitialize:
    @pytest.mark.asyncio
    async def test_one_pending_item_per_distinct_slug(self, queue: SyncQueueStore) -> None:
        batch, total = await queue.initialize(_entries("a", "b", "a", "", "c"))

        assert total == 3
        items = await queue.items(batch)
        assert [i.product_slug for i in items] == ["a", "b", "c"]
        assert all(i.status is QueueStatus.PENDING and i.attempts == 0 for i in items)

    @pytest.mark.asyncio
    async def test_batch_id_format(self, queue: SyncQueueStore) -> None:
        batch, _ = await queue.initialize(_entries("a"))
        prefix, stamp, suffix = batch.batch_id.split("_")
        assert prefix == "sync"
        assert len(stamp) == 14 and stamp.isdigit()
        assert len(suffix) == 8

    @pytest.mark.asyncio
    async def test_stale_pending_items_are_purged(
        self, queue: SyncQueueStore, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        old_batch, _ = await queue.initialize(_entries("old"))
        await _age_items(session_factory, hours=25)

        await queue.initialize(_entries("new"))

        assert await queue.items(old_batch) == []

    def test_handle_round_trips_through_dict(self) -> None:
        batch = BatchHandle.new()
        assert BatchHandle.from_dict(batch.to_dict()) == batch


class TestClaiming:
    @pytest.mark.asyncio
    async def test_claims_in_fifo_order_without_duplicates(self, queue: SyncQueueStore) -> None:
        batch, _ = await queue.initialize(_entries("a", "b"))

        first = await queue.claim_next(batch)
        second = await queue.claim_next(batch)
        third = await queue.claim_next(batch)

        assert first.product_slug == "a"
        assert second.product_slug == "b"
        assert third is None

    @pytest.mark.asyncio
    async def test_release_makes_item_claimable_again(self, queue: SyncQueueStore) -> None:
        batch, _ = await queue.initialize(_entries("a"))
        item = await queue.claim_next(batch)

        await queue.release(item.id)

        again = await queue.claim_next(batch)
        assert again.id == item.id

    @pytest.mark.asyncio
    async def test_expired_lease_is_reclaimable(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        queue = SyncQueueStore(session_factory, lease_seconds=0)
        batch, _ = await queue.initialize(_entries("a"))
        await queue.claim_next(batch)
        async with session_factory() as session:
            await session.execute(update(SyncQueueItem).values(claimed_at=utcnow() - timedelta(seconds=5)))
            await session.commit()

        assert (await queue.claim_next(batch)).product_slug == "a"

    @pytest.mark.asyncio
    async def test_claim_by_slug(self, queue: SyncQueueStore) -> None:
        batch, _ = await queue.initialize(_entries("a", "b"))

        item = await queue.claim_by_slug(batch, "b")

        assert item.product_slug == "b"
        assert await queue.claim_by_slug(batch, "b") is None
        assert await queue.claim_by_slug(batch, "missing") is None

    @pytest.mark.asyncio
    async def test_claims_are_scoped_to_batch(self, queue: SyncQueueStore) -> None:
        first, _ = await queue.initialize(_entries("a"))
        second, _ = await queue.initialize(_entries("b"))

        assert (await queue.claim_next(second)).product_slug == "b"
        assert (await queue.claim_next(first)).product_slug == "a"


class TestTransitions:
    @pytest.mark.asyncio
    async def test_mark_only_moves_pending_items(self, queue: SyncQueueStore) -> None:
        batch, _ = await queue.initialize(_entries("a"))
        item = await queue.claim_next(batch)

        assert await queue.mark(item.id, QueueStatus.SYNCED, "Created: A") is True
        assert await queue.mark(item.id, QueueStatus.FAILED, "late failure") is False

        stored = await queue.get(item.id)
        assert stored.status is QueueStatus.SYNCED
        assert stored.result_message == "Created: A"

    @pytest.mark.asyncio
    async def test_increment_attempts(self, queue: SyncQueueStore) -> None:
        batch, _ = await queue.initialize(_entries("a"))
        item = await queue.claim_next(batch)

        assert await queue.increment_attempts(item.id) == 1
        assert await queue.increment_attempts(item.id) == 2

    @pytest.mark.asyncio
    async def test_reset_failed_to_pending(self, queue: SyncQueueStore) -> None:
        batch, _ = await queue.initialize(_entries("a", "b"))
        a = await queue.claim_next(batch)
        b = await queue.claim_next(batch)
        await queue.increment_attempts(a.id)
        await queue.mark(a.id, QueueStatus.FAILED, "boom")
        await queue.mark(b.id, QueueStatus.SYNCED, "ok")

        slugs = await queue.reset_failed_to_pending(batch)

        assert slugs == ["a"]
        reset = await queue.get(a.id)
        assert reset.status is QueueStatus.PENDING
        assert reset.attempts == 0
        assert reset.result_message is None
        assert (await queue.get(b.id)).status is QueueStatus.SYNCED


class TestQueries:
    @pytest.mark.asyncio
    async def test_statistics(self, queue: SyncQueueStore) -> None:
        batch, _ = await queue.initialize(_entries("a", "b", "c", "d"))
        a = await queue.claim_next(batch)
        b = await queue.claim_next(batch)
        c = await queue.claim_next(batch)
        await queue.mark(a.id, QueueStatus.SYNCED, "")
        await queue.mark(b.id, QueueStatus.SKIPPED, "")
        await queue.mark(c.id, QueueStatus.FAILED, "")

        stats = await queue.statistics(batch)

        assert stats.as_dict() == {"total": 4, "pending": 1, "synced": 1, "failed": 1, "skipped": 1}
        assert await queue.is_complete(batch) is False

    @pytest.mark.asyncio
    async def test_statistics_without_batch(self, queue: SyncQueueStore) -> None:
        assert (await queue.statistics(None)).total == 0

    @pytest.mark.asyncio
    async def test_latest_batch(self, queue: SyncQueueStore) -> None:
        await queue.initialize([ProductListEntry(slug="a", category_slug="switches")])
        latest, _ = await queue.initialize([ProductListEntry(slug="b")])

        assert await queue.latest_batch_id() == latest.batch_id

    @pytest.mark.asyncio
    async def test_delete_old_batches(
        self, queue: SyncQueueStore, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        batch, _ = await queue.initialize(_entries("a"))
        item = await queue.claim_next(batch)
        await queue.mark(item.id, QueueStatus.SYNCED, "")
        await _age_items(session_factory, days=31)

        assert await queue.delete_old_batches(30) == 1
        assert await queue.items(batch) == []

"""Unit tests for orphaned entry handling."""

import pytest

from catalog_sync.infrastructure.database.models import EntryStatus
from catalog_sync.services.container import SyncServices
from catalog_sync.services.orphan_handler import OrphanAction, OrphanHandler
from shared.constants import META_FINGERPRINT, META_REMOTE_ID, META_REMOTE_SLUG


async def _stamped(services: SyncServices, slug: str, remote_id: str | None = None) -> int:
    entry = await services.store.create_entry(slug, slug.upper(), "")
    await services.store.set_meta(entry.id, META_FINGERPRINT, "abc")
    await services.store.set_meta(entry.id, META_REMOTE_SLUG, slug)
    if remote_id:
        await services.store.set_meta(entry.id, META_REMOTE_ID, remote_id)
    return entry.id


def _handler(services: SyncServices, action: OrphanAction) -> OrphanHandler:
    return OrphanHandler(services.store, services.activity_log, action)


class TestOrphanHandler:
    @pytest.mark.asyncio
    async def test_hard_delete_removes_missing_entries(self, services: SyncServices) -> None:
        await _stamped(services, "kept")
        await _stamped(services, "gone")

        report = await _handler(services, OrphanAction.HARD_DELETE).reconcile_orphans({"kept"}, set())

        assert (report.found, report.processed, report.action) == (1, 1, "hard_delete")
        assert await services.store.find_entry_by_slug("gone") is None
        assert await services.store.find_entry_by_slug("kept") is not None

    @pytest.mark.asyncio
    async def test_keep_does_nothing(self, services: SyncServices) -> None:
        await _stamped(services, "gone")

        report = await _handler(services, OrphanAction.KEEP).reconcile_orphans(set(), set())

        assert (report.found, report.processed) == (0, 0)
        assert await services.store.find_entry_by_slug("gone") is not None

    @pytest.mark.asyncio
    async def test_hand_made_entries_are_never_touched(self, services: SyncServices) -> None:
        await services.store.create_entry("manual", "Manual", "")

        report = await _handler(services, OrphanAction.HARD_DELETE).reconcile_orphans(set(), set())

        assert report.found == 0
        assert await services.store.find_entry_by_slug("manual") is not None

    @pytest.mark.asyncio
    async def test_remote_id_keeps_renamed_product(self, services: SyncServices) -> None:
        await _stamped(services, "old-slug", remote_id="p-1")

        report = await _handler(services, OrphanAction.HARD_DELETE).reconcile_orphans({"new-slug"}, {"p-1"})

        assert report.found == 0

    @pytest.mark.asyncio
    async def test_hide_moves_to_draft_once(self, services: SyncServices) -> None:
        await _stamped(services, "gone")
        handler = _handler(services, OrphanAction.HIDE)

        first = await handler.reconcile_orphans(set(), set())
        second = await handler.reconcile_orphans(set(), set())

        assert (await services.store.find_entry_by_slug("gone")).status is EntryStatus.DRAFT
        assert first.processed == 1
        assert (second.found, second.processed) == (1, 0)

    @pytest.mark.asyncio
    async def test_soft_delete_moves_to_trash(self, services: SyncServices) -> None:
        await _stamped(services, "gone")

        await _handler(services, OrphanAction.SOFT_DELETE).reconcile_orphans(set(), set())

        assert (await services.store.find_entry_by_slug("gone")).status is EntryStatus.TRASH

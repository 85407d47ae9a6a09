"""Unit tests for the batch lifecycle and the foreground step driver."""

import pytest

from catalog_sync.exceptions import RemoteErrorKind, RemoteUnavailable, ValidationFailure
from catalog_sync.infrastructure.database.models import LogAction, QueueStatus
from catalog_sync.services.container import SyncServices
from catalog_sync.services.orphan_handler import OrphanAction, OrphanHandler
from catalog_sync.services.product_reconciler import ReconcileOutcome
from shared.constants import META_FINGERPRINT, META_REMOTE_SLUG, STATE_LAST_SYNC_COMPLETED


class TestStartBatch:
    @pytest.mark.asyncio
    async def test_queues_every_distinct_slug(self, services: SyncServices, remote) -> None:
        remote.add_product("a")
        remote.add_product("b")
        remote.product_list += ["a", {"id": "x"}]

        result = await services.orchestrator.start_batch()

        assert result.total == 2
        assert result.categories.created == 1
        items = await services.queue.items(result.batch, QueueStatus.PENDING)
        assert [i.product_slug for i in items] == ["a", "b"]
        assert (await services.coordinator.current_batch()).batch_id == result.batch.batch_id

    @pytest.mark.asyncio
    async def test_category_failure_aborts_before_queueing(self, services: SyncServices, remote) -> None:
        remote.add_product("a")
        remote.category_error = RemoteUnavailable(RemoteErrorKind.UNREACHABLE, "/getProduct1stCategoryList")

        with pytest.raises(ValidationFailure):
            await services.orchestrator.start_batch()

        assert await services.queue.latest_batch_id() is None
        assert await services.coordinator.current_batch() is None

    @pytest.mark.asyncio
    async def test_empty_product_list_is_rejected(self, services: SyncServices) -> None:
        with pytest.raises(ValidationFailure, match="empty or invalid"):
            await services.orchestrator.start_batch()

    @pytest.mark.asyncio
    async def test_product_list_failure_propagates(self, services: SyncServices, remote) -> None:
        remote.list_error = RemoteUnavailable(RemoteErrorKind.BAD_STATUS, "/getProductList", status_code=500)

        with pytest.raises(RemoteUnavailable):
            await services.orchestrator.start_batch()

    @pytest.mark.asyncio
    async def test_orphans_are_swept_with_configured_action(self, services: SyncServices, remote) -> None:
        orphan = await services.store.create_entry("z", "Z", "")
        await services.store.set_meta(orphan.id, META_FINGERPRINT, "abc")
        await services.store.set_meta(orphan.id, META_REMOTE_SLUG, "z")
        remote.add_product("a")
        services.orchestrator.orphans = OrphanHandler(
            services.store, services.activity_log, OrphanAction.HARD_DELETE
        )

        result = await services.orchestrator.start_batch()

        assert (result.orphans.found, result.orphans.processed) == (1, 1)
        assert await services.store.find_entry_by_slug("z") is None

    @pytest.mark.asyncio
    async def test_keep_reports_no_orphans(self, services: SyncServices, remote) -> None:
        orphan = await services.store.create_entry("z", "Z", "")
        await services.store.set_meta(orphan.id, META_FINGERPRINT, "abc")
        remote.add_product("a")

        result = await services.orchestrator.start_batch()

        assert result.orphans.found == 0
        assert await services.store.find_entry_by_slug("z") is not None


class TestStepOne:
    @pytest.mark.asyncio
    async def test_two_new_products_then_complete(self, services: SyncServices, remote) -> None:
        remote.add_product("a")
        remote.add_product("b")
        batch = (await services.orchestrator.start_batch()).batch

        first = await services.orchestrator.step_one(batch)
        second = await services.orchestrator.step_one(batch)
        done = await services.orchestrator.step_one(batch)

        assert (first.slug, first.outcome, first.current, first.total) == ("a", ReconcileOutcome.CREATED, 1, 2)
        assert first.message == "Created: Product a"
        assert (second.slug, second.outcome, second.current) == ("b", ReconcileOutcome.CREATED, 2)
        assert done.complete is True
        assert done.statistics == {"total": 2, "pending": 0, "synced": 2, "failed": 0, "skipped": 0}
        assert await services.coordinator.current_batch() is None

    @pytest.mark.asyncio
    async def test_unchanged_product_is_skipped(self, services: SyncServices, remote) -> None:
        remote.add_product("a")
        batch = (await services.orchestrator.start_batch()).batch
        await services.orchestrator.step_one(batch)
        again = (await services.orchestrator.start_batch()).batch

        result = await services.orchestrator.step_one(again)

        assert result.outcome is ReconcileOutcome.SKIPPED
        assert result.message == "Skipped - No change detected: Product a"
        [item] = await services.queue.items(again)
        assert item.status is QueueStatus.SKIPPED

    @pytest.mark.asyncio
    async def test_fetch_failure_is_retried_until_attempts_run_out(self, services: SyncServices, remote) -> None:
        remote.add_product("c")
        remote.failing_slugs.add("c")
        batch = (await services.orchestrator.start_batch()).batch

        results = [await services.orchestrator.step_one(batch) for _ in range(3)]

        assert all(r.success is False and r.slug == "c" for r in results)
        [item] = await services.queue.items(batch)
        assert item.status is QueueStatus.FAILED
        assert item.attempts == 3
        assert item.result_message == "Failed to fetch product details from API after 3 attempts"
        assert remote.detail_calls == ["c", "c", "c"]

        done = await services.orchestrator.step_one(batch)
        assert done.complete is True
        assert done.statistics["failed"] == 1

    @pytest.mark.asyncio
    async def test_item_stays_pending_between_attempts(self, services: SyncServices, remote) -> None:
        remote.add_product("c")
        remote.failing_slugs.add("c")
        batch = (await services.orchestrator.start_batch()).batch

        await services.orchestrator.step_one(batch)

        [item] = await services.queue.items(batch)
        assert (item.status, item.attempts) == (QueueStatus.PENDING, 1)

    @pytest.mark.asyncio
    async def test_finalize_is_idempotent(self, services: SyncServices, remote) -> None:
        remote.add_product("a")
        batch = (await services.orchestrator.start_batch()).batch
        await services.orchestrator.step_one(batch)
        await services.orchestrator.step_one(batch)
        completed_at = await services.state.get(STATE_LAST_SYNC_COMPLETED)

        result = await services.orchestrator.finalize(batch)

        assert result.complete is True
        assert await services.state.get(STATE_LAST_SYNC_COMPLETED) == completed_at
        completions = await services.activity_log.recent(action=LogAction.SYNC_COMPLETE)
        assert len(completions) == 1


class TestCoordinator:
    @pytest.mark.asyncio
    async def test_step_without_batch(self, services: SyncServices) -> None:
        result = await services.coordinator.step()

        assert result.success is False
        assert result.message == "No sync batch has been started"

    @pytest.mark.asyncio
    async def test_step_records_spacing(self, services: SyncServices, remote) -> None:
        remote.add_product("a")
        await services.coordinator.start_batch()
        assert await services.coordinator.seconds_until_next_step() == 0.0

        await services.coordinator.step()

        remaining = await services.coordinator.seconds_until_next_step()
        assert 0 < remaining <= services.settings.step_min_interval_seconds

    @pytest.mark.asyncio
    async def test_retry_failed_reopens_latest_batch(self, services: SyncServices, remote) -> None:
        remote.add_product("c")
        remote.failing_slugs.add("c")
        batch = (await services.orchestrator.start_batch()).batch
        for _ in range(4):
            await services.orchestrator.step_one(batch)
        assert await services.coordinator.current_batch() is None

        assert await services.coordinator.retry_failed() == 1

        assert (await services.coordinator.current_batch()).batch_id == batch.batch_id
        [item] = await services.queue.items(batch)
        assert (item.status, item.attempts) == (QueueStatus.PENDING, 0)

    @pytest.mark.asyncio
    async def test_retry_failed_without_history(self, services: SyncServices) -> None:
        assert await services.coordinator.retry_failed() == 0

    @pytest.mark.asyncio
    async def test_run_chunk_starts_and_completes_a_batch(self, services: SyncServices, remote) -> None:
        remote.add_product("a")
        remote.add_product("b")

        summary = await services.coordinator.run_chunk(limit=5)

        assert summary["processed"] == 2
        assert summary["complete"] is True
        assert summary["statistics"]["synced"] == 2

    @pytest.mark.asyncio
    async def test_run_chunk_respects_limit(self, services: SyncServices, remote) -> None:
        for slug in "abc":
            remote.add_product(slug)

        first = await services.coordinator.run_chunk(limit=2)
        second = await services.coordinator.run_chunk(limit=2)

        assert (first["processed"], first["complete"]) == (2, False)
        assert second["batch_id"] == first["batch_id"]
        assert (second["processed"], second["complete"]) == (1, True)

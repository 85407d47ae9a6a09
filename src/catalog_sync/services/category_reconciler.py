"""Top-level category reconciliation."""

from dataclasses import asdict, dataclass
from typing import Any

import structlog

from catalog_sync.exceptions import PersistenceFailure, RemoteUnavailable
from catalog_sync.infrastructure.catalog.store import CatalogStore, CategoryRecord
from catalog_sync.infrastructure.database.models import LogAction, LogType
from catalog_sync.infrastructure.remote.client import RemoteCatalogClient
from catalog_sync.schemas import CategoryPayload
from catalog_sync.services.activity_log import ActivityLogService

logger = structlog.get_logger()


@dataclass
class CategoryReconcileResult:
    success: bool
    total_remote: int = 0
    matched: int = 0
    created: int = 0
    updated: int = 0
    error_count: int = 0
    message: str = ""

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


class _LocalIndex:
    """Lookup of local top-level categories: stamped remote id first, then name."""

    def __init__(self, categories: list[CategoryRecord]):
        self.by_remote_id = {c.remote_id: c for c in categories if c.remote_id}
        self.by_name = {c.name.lower(): c for c in categories}

    def match(self, remote: CategoryPayload) -> tuple[CategoryRecord | None, str | None]:
        if remote.id and remote.id in self.by_remote_id:
            return self.by_remote_id[remote.id], "remote_id"
        local = self.by_name.get(remote.name.lower())
        return (local, "name") if local else (None, None)

    def add(self, category: CategoryRecord) -> None:
        if category.remote_id:
            self.by_remote_id[category.remote_id] = category
        self.by_name[category.name.lower()] = category


class CategoryReconciler:
    """Keeps local top-level categories aligned with the remote level-1 list."""

    def __init__(
        self,
        client: RemoteCatalogClient,
        store: CatalogStore,
        activity_log: ActivityLogService,
    ):
        self.client = client
        self.store = store
        self.activity_log = activity_log

    async def reconcile_top_level_categories(self) -> CategoryReconcileResult:
        """Create missing categories, refresh descriptions and stamp remote ids.

        Per-category write failures are counted. Only a failed remote fetch
        makes the result unsuccessful.
        """
        try:
            remote_categories = await self.client.fetch_category_list(1)
        except RemoteUnavailable as e:
            message = f"Failed to fetch categories from API: {e}"
            await self.activity_log.log(LogType.CATEGORY, LogAction.ERROR, None, message)
            return CategoryReconcileResult(success=False, message=message)

        index = _LocalIndex(await self.store.list_top_level_categories())
        result = CategoryReconcileResult(success=True, total_remote=len(remote_categories))

        for remote in remote_categories:
            try:
                local, _ = index.match(remote)
                if local is None:
                    created = await self.store.create_category(
                        remote.name, description=remote.description, remote_id=remote.id
                    )
                    index.add(created)
                    result.created += 1
                    await self.activity_log.log(
                        LogType.CATEGORY, LogAction.CREATE, remote.name, f"Created category: {remote.name}"
                    )
                    continue

                result.matched += 1
                description_changed = bool(remote.description) and remote.description != local.description
                needs_stamp = bool(remote.id) and local.remote_id != remote.id
                if description_changed or needs_stamp:
                    await self.store.update_category(
                        local.id,
                        description=remote.description if description_changed else None,
                        remote_id=remote.id if needs_stamp else None,
                    )
                if description_changed:
                    result.updated += 1
                    await self.activity_log.log(
                        LogType.CATEGORY,
                        LogAction.UPDATE,
                        local.name,
                        f"Updated category description: {local.name}",
                    )
                else:
                    await self.activity_log.log(
                        LogType.CATEGORY, LogAction.SKIP, local.name, f"Category matched: {local.name}"
                    )
            except PersistenceFailure as e:
                result.error_count += 1
                await self.activity_log.log(
                    LogType.CATEGORY, LogAction.ERROR, remote.name, f"Failed to sync category {remote.name}: {e}"
                )

        result.message = (
            f"Validated {result.total_remote} categories: {result.matched} matched, "
            f"{result.created} created, {result.error_count} errors"
        )
        logger.info("Category reconciliation finished", **result.as_dict())
        return result

    async def compare_categories(self) -> dict[str, Any]:
        """Side-by-side view of remote and local top-level categories."""
        remote_categories = await self.client.fetch_category_list(1)
        local_categories = await self.store.list_top_level_categories()
        index = _LocalIndex(local_categories)

        rows = []
        summary = {
            "total_remote": len(remote_categories),
            "total_local": len(local_categories),
            "matched": 0,
            "mismatch": 0,
            "missing": 0,
        }
        for remote in remote_categories:
            local, matched_by = index.match(remote)
            if local is None:
                status = "missing"
            elif matched_by == "remote_id" and local.name.lower() != remote.name.lower():
                status = "mismatch"
            else:
                status = "matched"
            summary[status] += 1
            rows.append(
                {
                    "remote_id": remote.id,
                    "remote_name": remote.name,
                    "local_id": local.id if local else None,
                    "local_name": local.name if local else None,
                    "status": status,
                }
            )
        return {"comparison": rows, "summary": summary}

    async def create_missing_categories(self) -> dict[str, Any]:
        """Create remote categories that match nothing locally. Existing ones are left alone."""
        try:
            remote_categories = await self.client.fetch_category_list(1)
        except RemoteUnavailable as e:
            message = f"Failed to fetch categories from API: {e}"
            await self.activity_log.log(LogType.CATEGORY, LogAction.ERROR, None, message)
            return {"success": False, "created": 0, "message": message}

        index = _LocalIndex(await self.store.list_top_level_categories())
        created = 0
        for remote in remote_categories:
            local, _ = index.match(remote)
            if local is not None:
                continue
            try:
                category = await self.store.create_category(
                    remote.name, description=remote.description, remote_id=remote.id
                )
            except PersistenceFailure as e:
                await self.activity_log.log(
                    LogType.CATEGORY, LogAction.ERROR, remote.name, f"Failed to create category {remote.name}: {e}"
                )
                continue
            index.add(category)
            created += 1
            await self.activity_log.log(
                LogType.CATEGORY, LogAction.CREATE, remote.name, f"Created category: {remote.name}"
            )

        logger.info("Missing categories created", created=created)
        return {"success": True, "created": created, "message": f"Created {created} missing categories"}

"""Disposition of local entries that disappeared from the remote catalog."""

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any

import structlog

from catalog_sync.exceptions import PersistenceFailure
from catalog_sync.infrastructure.catalog.store import CatalogStore
from catalog_sync.infrastructure.database.models import EntryStatus, LogAction, LogType
from catalog_sync.services.activity_log import ActivityLogService
from shared.constants import META_FINGERPRINT, META_REMOTE_ID, META_REMOTE_SLUG

logger = structlog.get_logger()


class OrphanAction(str, Enum):
    KEEP = "keep"
    HIDE = "hide"
    SOFT_DELETE = "soft_delete"
    HARD_DELETE = "hard_delete"


_TARGET_STATUS = {
    OrphanAction.HIDE: EntryStatus.DRAFT,
    OrphanAction.SOFT_DELETE: EntryStatus.TRASH,
}


@dataclass
class OrphanReport:
    found: int
    processed: int
    action: str

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


class OrphanHandler:
    """Applies the configured action to stamped entries missing remotely.

    Only entries carrying a sync fingerprint are considered, so entries
    created by hand are never touched.
    """

    def __init__(self, store: CatalogStore, activity_log: ActivityLogService, action: OrphanAction | str):
        self.store = store
        self.activity_log = activity_log
        self.action = OrphanAction(action)

    async def reconcile_orphans(self, remote_slugs: set[str], remote_ids: set[str]) -> OrphanReport:
        if self.action is OrphanAction.KEEP:
            return OrphanReport(found=0, processed=0, action=self.action.value)

        stamped = await self.store.list_stamped_entries(META_FINGERPRINT, META_REMOTE_SLUG, META_REMOTE_ID)
        orphans = [
            entry
            for entry in stamped
            if (entry.remote_slug or entry.slug) not in remote_slugs
            and not (entry.remote_id and entry.remote_id in remote_ids)
        ]

        processed = 0
        for entry in orphans:
            target = _TARGET_STATUS.get(self.action)
            if target is not None and entry.status == target:
                continue
            try:
                if self.action is OrphanAction.HARD_DELETE:
                    await self.store.delete_entry(entry.id)
                else:
                    await self.store.set_entry_status(entry.id, target)
            except PersistenceFailure as e:
                await self.activity_log.log(
                    LogType.PRODUCT, LogAction.ERROR, entry.slug, f"Failed to handle orphaned product: {e}"
                )
                continue
            processed += 1
            await self.activity_log.log(
                LogType.PRODUCT,
                LogAction.DELETE,
                entry.slug,
                f"Orphaned product handled ({self.action.value}): {entry.slug}",
            )

        report = OrphanReport(found=len(orphans), processed=processed, action=self.action.value)
        logger.info("Orphan sweep finished", **report.as_dict())
        return report

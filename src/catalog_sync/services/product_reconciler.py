"""Per-product idempotent upsert into the local catalog."""

import hashlib
from enum import Enum
from typing import Any

import orjson
import structlog

from catalog_sync.config import Settings
from catalog_sync.exceptions import ItemProcessingError
from catalog_sync.infrastructure.catalog.store import CatalogStore
from catalog_sync.infrastructure.database.models import LogAction, LogType
from catalog_sync.schemas import ProductPayload
from catalog_sync.services.activity_log import ActivityLogService
from catalog_sync.services.html_content import (
    absolute_image_url,
    format_specifications_table,
    rewrite_images,
)
from catalog_sync.services.product_snapshots import ProductSnapshotService
from shared.constants import (
    META_APPLICATIONS,
    META_FINGERPRINT,
    META_KEY_FEATURES,
    META_PRODUCT_CODE,
    META_REMOTE_ID,
    META_REMOTE_SLUG,
    META_SPECIFICATIONS,
)

logger = structlog.get_logger()


class ReconcileOutcome(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"
    ERROR = "error"


def compute_fingerprint(raw: dict[str, Any]) -> str:
    """Deterministic hash of a full remote payload."""
    return hashlib.sha256(orjson.dumps(raw, option=orjson.OPT_SORT_KEYS)).hexdigest()


class ProductReconciler:
    """Creates, updates or skips one local entry from a remote payload.

    Entries are located by slug, then by product code. An entry whose stored
    fingerprint equals the payload's is skipped without any write. Every
    failure is caught here and reported as ``ReconcileOutcome.ERROR``.
    """

    def __init__(
        self,
        store: CatalogStore,
        activity_log: ActivityLogService,
        settings: Settings,
        snapshots: ProductSnapshotService | None = None,
    ):
        self.store = store
        self.activity_log = activity_log
        self.settings = settings
        self.snapshots = snapshots

    async def reconcile_one_product(
        self,
        slug: str,
        payload: ProductPayload,
        category_hint: str | None = None,
    ) -> ReconcileOutcome:
        name = payload.desc
        try:
            outcome = await self._apply(slug, payload, category_hint)
        except ItemProcessingError as e:
            logger.error("Product reconciliation failed", slug=slug, error=str(e))
            await self.activity_log.log(
                LogType.PRODUCT, LogAction.ERROR, slug, f"Error processing {name}: {e}"
            )
            return ReconcileOutcome.ERROR

        if outcome is ReconcileOutcome.SKIPPED:
            await self.activity_log.log(LogType.PRODUCT, LogAction.SKIP, slug, f"No change detected: {name}")
            return outcome

        action = LogAction.CREATE if outcome is ReconcileOutcome.CREATED else LogAction.UPDATE
        await self.activity_log.log(LogType.PRODUCT, action, slug, f"{outcome.value.capitalize()}: {name}")
        return outcome

    async def _apply(
        self,
        slug: str,
        payload: ProductPayload,
        category_hint: str | None,
    ) -> ReconcileOutcome:
        """Write one product. Any failure surfaces as ItemProcessingError."""
        try:
            fingerprint = compute_fingerprint(payload.raw)

            entry = await self.store.find_entry_by_slug(slug)
            if entry is None and payload.name:
                entry = await self.store.find_entry_by_meta(META_PRODUCT_CODE, payload.name)

            if entry is not None:
                stored = await self.store.get_meta(entry.id, META_FINGERPRINT)
                if stored and stored == fingerprint:
                    return ReconcileOutcome.SKIPPED

            description = await self._localize(payload.overview)
            if entry is None:
                entry = await self.store.create_entry(slug, payload.desc, description)
                outcome = ReconcileOutcome.CREATED
            else:
                await self.store.update_entry(entry.id, payload.desc, description)
                outcome = ReconcileOutcome.UPDATED

            await self._write_details(entry.id, slug, payload, fingerprint, category_hint)
            if self.snapshots is not None:
                await self.snapshots.upsert(payload)
        except Exception as e:
            raise ItemProcessingError(str(e)) from e
        return outcome

    async def _write_details(
        self,
        entry_id: int,
        slug: str,
        payload: ProductPayload,
        fingerprint: str,
        category_hint: str | None,
    ) -> None:
        category_ids = await self._resolve_categories(slug, payload, category_hint)
        if category_ids:
            await self.store.set_entry_categories(entry_id, category_ids)

        await self._sync_images(entry_id, payload)

        await self.store.set_meta(entry_id, META_REMOTE_ID, payload.id or "")
        await self.store.set_meta(entry_id, META_PRODUCT_CODE, payload.name)
        await self.store.set_meta(entry_id, META_REMOTE_SLUG, payload.slug)
        await self.store.set_meta(entry_id, META_APPLICATIONS, await self._localize(payload.applications))
        await self.store.set_meta(entry_id, META_KEY_FEATURES, await self._localize(payload.keyfeatures))
        await self.store.set_meta(
            entry_id,
            META_SPECIFICATIONS,
            format_specifications_table(payload.specifications) if payload.specifications else "",
        )
        # Stamped last so a partial write is redone on the next run
        await self.store.set_meta(entry_id, META_FINGERPRINT, fingerprint)

    async def _resolve_categories(
        self, slug: str, payload: ProductPayload, category_hint: str | None
    ) -> list[int]:
        remote_ids = payload.remote_category_ids
        if remote_ids:
            matched = await self.store.find_categories_by_remote_ids(remote_ids)
            if matched:
                return [category.id for category in matched]

        if category_hint:
            category = await self.store.find_category_by_slug(category_hint)
            if category is not None:
                return [category.id]
            await self.activity_log.log(
                LogType.PRODUCT, LogAction.WARNING, slug, f"Category not found: {category_hint}"
            )
        return []

    async def _sync_images(self, entry_id: int, payload: ProductPayload) -> None:
        image_id = None
        if payload.image:
            media = await self._attach(payload.image)
            image_id = media.id if media else None

        gallery_ids = []
        for url in payload.gallery:
            media = await self._attach(url)
            if media is not None:
                gallery_ids.append(media.id)

        if image_id is not None or gallery_ids:
            await self.store.set_entry_media(entry_id, image_id, gallery_ids)

    async def _attach(self, url: str):
        absolute = absolute_image_url(url, self.settings.remote_asset_base_url)
        if absolute is None:
            return None
        return await self.store.attach_media(absolute)

    async def _resolve_local_url(self, url: str) -> str | None:
        media = await self.store.attach_media(url)
        return media.url if media else None

    async def _localize(self, html: str) -> str:
        return await rewrite_images(
            html,
            self._resolve_local_url,
            site_url=self.settings.site_url,
            base_url=self.settings.remote_asset_base_url,
        )

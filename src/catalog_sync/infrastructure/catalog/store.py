"""Local catalog store: entries, taxonomy, metadata and media."""

import re
from dataclasses import dataclass
from typing import Protocol

import structlog
from sqlalchemy import delete, insert, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from catalog_sync.exceptions import PersistenceFailure
from catalog_sync.infrastructure.catalog.media import MediaLibrary, MediaRecord
from catalog_sync.infrastructure.database.models import (
    CatalogCategory,
    CatalogEntry,
    CatalogEntryMeta,
    EntryStatus,
    catalog_entry_categories,
    utcnow,
)

logger = structlog.get_logger()


def slugify(value: str) -> str:
    text = str(value or "").strip().lower()
    text = re.sub(r"[^a-z0-9]+", "-", text)
    return text.strip("-")


@dataclass(frozen=True)
class EntryRecord:
    id: int
    slug: str
    title: str
    status: EntryStatus


@dataclass(frozen=True)
class CategoryRecord:
    id: int
    name: str
    slug: str
    description: str
    remote_id: str | None
    parent_id: int | None = None


@dataclass(frozen=True)
class StampedEntry:
    """Entry that carries a sync fingerprint, with its remote back-references."""

    id: int
    slug: str
    status: EntryStatus
    remote_slug: str | None
    remote_id: str | None


class CatalogStore(Protocol):
    """Operations the reconcilers need from the local catalog."""

    async def find_entry_by_slug(self, slug: str) -> EntryRecord | None: ...

    async def find_entry_by_meta(self, key: str, value: str) -> EntryRecord | None: ...

    async def create_entry(self, slug: str, title: str, description: str) -> EntryRecord: ...

    async def update_entry(self, entry_id: int, title: str, description: str) -> None: ...

    async def get_meta(self, entry_id: int, key: str) -> str | None: ...

    async def set_meta(self, entry_id: int, key: str, value: str | None) -> None: ...

    async def set_entry_categories(self, entry_id: int, category_ids: list[int]) -> None: ...

    async def set_entry_media(self, entry_id: int, image_id: int | None, gallery_ids: list[int]) -> None: ...

    async def set_entry_status(self, entry_id: int, status: EntryStatus) -> None: ...

    async def delete_entry(self, entry_id: int) -> None: ...

    async def list_stamped_entries(
        self, stamp_key: str, remote_slug_key: str, remote_id_key: str
    ) -> list[StampedEntry]: ...

    async def list_top_level_categories(self) -> list[CategoryRecord]: ...

    async def find_category_by_slug(self, slug: str) -> CategoryRecord | None: ...

    async def find_categories_by_remote_ids(self, remote_ids: list[str]) -> list[CategoryRecord]: ...

    async def create_category(
        self, name: str, description: str = "", remote_id: str | None = None
    ) -> CategoryRecord: ...

    async def update_category(
        self, category_id: int, description: str | None = None, remote_id: str | None = None
    ) -> None: ...

    async def attach_media(self, url: str) -> MediaRecord | None: ...


class SqlCatalogStore:
    """SQLAlchemy implementation of CatalogStore.

    Every call runs in its own short transaction. Database errors surface as
    PersistenceFailure so callers can count them without knowing the driver.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], media: MediaLibrary):
        self.session_factory = session_factory
        self.media = media

    # -------------------------------------------------------------------------
    # Entries
    # -------------------------------------------------------------------------

    async def find_entry_by_slug(self, slug: str) -> EntryRecord | None:
        async with self.session_factory() as session:
            entry = await session.scalar(select(CatalogEntry).where(CatalogEntry.slug == slug))
            return _entry_record(entry) if entry else None

    async def find_entry_by_meta(self, key: str, value: str) -> EntryRecord | None:
        if not value:
            return None
        async with self.session_factory() as session:
            entry = await session.scalar(
                select(CatalogEntry)
                .join(CatalogEntryMeta, CatalogEntryMeta.entry_id == CatalogEntry.id)
                .where(CatalogEntryMeta.meta_key == key, CatalogEntryMeta.meta_value == value)
                .order_by(CatalogEntry.id)
                .limit(1)
            )
            return _entry_record(entry) if entry else None

    async def create_entry(self, slug: str, title: str, description: str) -> EntryRecord:
        entry = CatalogEntry(slug=slug, title=title, description=description, gallery_ids=[])
        async with self.session_factory() as session:
            session.add(entry)
            await self._commit(session, "create entry", slug=slug)
        return _entry_record(entry)

    async def update_entry(self, entry_id: int, title: str, description: str) -> None:
        async with self.session_factory() as session:
            await session.execute(
                update(CatalogEntry)
                .where(CatalogEntry.id == entry_id)
                .values(title=title, description=description, updated_at=utcnow())
            )
            await self._commit(session, "update entry", entry_id=entry_id)

    async def get_meta(self, entry_id: int, key: str) -> str | None:
        async with self.session_factory() as session:
            return await session.scalar(
                select(CatalogEntryMeta.meta_value).where(
                    CatalogEntryMeta.entry_id == entry_id, CatalogEntryMeta.meta_key == key
                )
            )

    async def get_all_meta(self, entry_id: int) -> dict[str, str | None]:
        async with self.session_factory() as session:
            rows = await session.execute(
                select(CatalogEntryMeta.meta_key, CatalogEntryMeta.meta_value).where(
                    CatalogEntryMeta.entry_id == entry_id
                )
            )
            return {row.meta_key: row.meta_value for row in rows}

    async def set_meta(self, entry_id: int, key: str, value: str | None) -> None:
        async with self.session_factory() as session:
            result = await session.execute(
                update(CatalogEntryMeta)
                .where(CatalogEntryMeta.entry_id == entry_id, CatalogEntryMeta.meta_key == key)
                .values(meta_value=value)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                session.add(CatalogEntryMeta(entry_id=entry_id, meta_key=key, meta_value=value))
            await self._commit(session, "set meta", entry_id=entry_id, key=key)

    async def set_entry_categories(self, entry_id: int, category_ids: list[int]) -> None:
        async with self.session_factory() as session:
            await session.execute(
                delete(catalog_entry_categories).where(catalog_entry_categories.c.entry_id == entry_id)
            )
            unique_ids = list(dict.fromkeys(category_ids))
            if unique_ids:
                await session.execute(
                    insert(catalog_entry_categories),
                    [{"entry_id": entry_id, "category_id": cid} for cid in unique_ids],
                )
            await self._commit(session, "set categories", entry_id=entry_id)

    async def get_entry_category_ids(self, entry_id: int) -> list[int]:
        async with self.session_factory() as session:
            rows = await session.scalars(
                select(catalog_entry_categories.c.category_id).where(
                    catalog_entry_categories.c.entry_id == entry_id
                )
            )
            return list(rows)

    async def set_entry_media(self, entry_id: int, image_id: int | None, gallery_ids: list[int]) -> None:
        async with self.session_factory() as session:
            await session.execute(
                update(CatalogEntry)
                .where(CatalogEntry.id == entry_id)
                .values(image_id=image_id, gallery_ids=gallery_ids)
            )
            await self._commit(session, "set media", entry_id=entry_id)

    async def set_entry_status(self, entry_id: int, status: EntryStatus) -> None:
        async with self.session_factory() as session:
            await session.execute(
                update(CatalogEntry).where(CatalogEntry.id == entry_id).values(status=status)
            )
            await self._commit(session, "set status", entry_id=entry_id)

    async def delete_entry(self, entry_id: int) -> None:
        async with self.session_factory() as session:
            await session.execute(delete(CatalogEntryMeta).where(CatalogEntryMeta.entry_id == entry_id))
            await session.execute(
                delete(catalog_entry_categories).where(catalog_entry_categories.c.entry_id == entry_id)
            )
            await session.execute(delete(CatalogEntry).where(CatalogEntry.id == entry_id))
            await self._commit(session, "delete entry", entry_id=entry_id)

    async def list_stamped_entries(
        self, stamp_key: str, remote_slug_key: str, remote_id_key: str
    ) -> list[StampedEntry]:
        async with self.session_factory() as session:
            stamped_ids = select(CatalogEntryMeta.entry_id).where(CatalogEntryMeta.meta_key == stamp_key)
            entries = (
                await session.scalars(select(CatalogEntry).where(CatalogEntry.id.in_(stamped_ids)))
            ).all()
            if not entries:
                return []
            meta_rows = await session.execute(
                select(CatalogEntryMeta.entry_id, CatalogEntryMeta.meta_key, CatalogEntryMeta.meta_value).where(
                    CatalogEntryMeta.entry_id.in_([e.id for e in entries]),
                    CatalogEntryMeta.meta_key.in_([remote_slug_key, remote_id_key]),
                )
            )
            meta: dict[int, dict[str, str | None]] = {}
            for row in meta_rows:
                meta.setdefault(row.entry_id, {})[row.meta_key] = row.meta_value

        return [
            StampedEntry(
                id=e.id,
                slug=e.slug,
                status=e.status,
                remote_slug=meta.get(e.id, {}).get(remote_slug_key),
                remote_id=meta.get(e.id, {}).get(remote_id_key),
            )
            for e in entries
        ]

    # -------------------------------------------------------------------------
    # Taxonomy
    # -------------------------------------------------------------------------

    async def list_top_level_categories(self) -> list[CategoryRecord]:
        async with self.session_factory() as session:
            rows = await session.scalars(
                select(CatalogCategory).where(CatalogCategory.parent_id.is_(None)).order_by(CatalogCategory.id)
            )
            return [_category_record(c) for c in rows]

    async def find_category_by_slug(self, slug: str) -> CategoryRecord | None:
        async with self.session_factory() as session:
            category = await session.scalar(select(CatalogCategory).where(CatalogCategory.slug == slug))
            return _category_record(category) if category else None

    async def find_categories_by_remote_ids(self, remote_ids: list[str]) -> list[CategoryRecord]:
        if not remote_ids:
            return []
        async with self.session_factory() as session:
            rows = await session.scalars(
                select(CatalogCategory).where(CatalogCategory.remote_id.in_(remote_ids))
            )
            by_remote = {c.remote_id: _category_record(c) for c in rows}
        return [by_remote[rid] for rid in remote_ids if rid in by_remote]

    async def create_category(
        self, name: str, description: str = "", remote_id: str | None = None
    ) -> CategoryRecord:
        base_slug = slugify(name) or "category"
        async with self.session_factory() as session:
            taken = set(
                await session.scalars(
                    select(CatalogCategory.slug).where(CatalogCategory.slug.like(f"{base_slug}%"))
                )
            )
            slug, suffix = base_slug, 2
            while slug in taken:
                slug, suffix = f"{base_slug}-{suffix}", suffix + 1

            category = CatalogCategory(name=name, slug=slug, description=description, remote_id=remote_id)
            session.add(category)
            await self._commit(session, "create category", name=name)
        return _category_record(category)

    async def update_category(
        self, category_id: int, description: str | None = None, remote_id: str | None = None
    ) -> None:
        values: dict[str, str] = {}
        if description is not None:
            values["description"] = description
        if remote_id is not None:
            values["remote_id"] = remote_id
        if not values:
            return
        async with self.session_factory() as session:
            await session.execute(
                update(CatalogCategory).where(CatalogCategory.id == category_id).values(**values)
            )
            await self._commit(session, "update category", category_id=category_id)

    # -------------------------------------------------------------------------
    # Media
    # -------------------------------------------------------------------------

    async def attach_media(self, url: str) -> MediaRecord | None:
        return await self.media.attach_from_url(url)

    @staticmethod
    async def _commit(session: AsyncSession, operation: str, **context: object) -> None:
        try:
            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            logger.error("Catalog write rejected", operation=operation, error=str(e), **context)
            raise PersistenceFailure(f"{operation} failed: {e}") from e


def _entry_record(entry: CatalogEntry) -> EntryRecord:
    return EntryRecord(id=entry.id, slug=entry.slug, title=entry.title, status=entry.status)


def _category_record(category: CatalogCategory) -> CategoryRecord:
    return CategoryRecord(
        id=category.id,
        name=category.name,
        slug=category.slug,
        description=category.description,
        remote_id=category.remote_id,
        parent_id=category.parent_id,
    )

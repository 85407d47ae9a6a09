"""Archive of the last raw payload received per remote product."""

import structlog
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from catalog_sync.infrastructure.database.models import ProductSnapshot, utcnow
from catalog_sync.schemas import ProductPayload

logger = structlog.get_logger()


class ProductSnapshotService:
    """Upserts one snapshot row per product, matched by remote id then slug."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def upsert(self, payload: ProductPayload) -> None:
        conditions = [ProductSnapshot.slug == payload.slug]
        if payload.id:
            conditions.insert(0, ProductSnapshot.remote_id == payload.id)

        async with self.session_factory() as session:
            snapshot = await session.scalar(
                select(ProductSnapshot).where(or_(*conditions)).order_by(ProductSnapshot.id).limit(1)
            )
            if snapshot is None:
                snapshot = ProductSnapshot(slug=payload.slug, snapshot_data={})
                session.add(snapshot)

            snapshot.remote_id = payload.id
            snapshot.slug = payload.slug
            snapshot.name = payload.name
            snapshot.description = payload.desc
            snapshot.first_categories = payload.raw.get("1st_categories") or None
            snapshot.snapshot_data = payload.raw
            snapshot.updated_at = utcnow()
            await session.commit()
        logger.debug("Product snapshot stored", slug=payload.slug)

    async def get(self, slug: str) -> dict | None:
        async with self.session_factory() as session:
            snapshot = await session.scalar(select(ProductSnapshot).where(ProductSnapshot.slug == slug))
            return snapshot.snapshot_data if snapshot else None

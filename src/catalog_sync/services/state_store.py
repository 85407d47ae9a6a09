"""Named, optionally expiring state values backed by the ``sync_state`` table."""

from datetime import timedelta
from typing import Any

import structlog
from sqlalchemy import delete, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from catalog_sync.infrastructure.database.models import SyncState, utcnow

logger = structlog.get_logger()


class StateStore:
    """Key/value state shared by every sync driver.

    Holds the batch pointers, the persisted progress snapshot, control flags
    and the worker process lock. Expired values read as absent.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def get(self, key: str, default: Any = None) -> Any:
        async with self.session_factory() as session:
            row = await session.get(SyncState, key)
            if row is None or (row.expires_at is not None and row.expires_at <= utcnow()):
                return default
            return row.value

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        expires_at = utcnow() + timedelta(seconds=ttl_seconds) if ttl_seconds else None
        async with self.session_factory() as session:
            result = await session.execute(
                update(SyncState)
                .where(SyncState.key == key)
                .values(value=value, expires_at=expires_at, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                session.add(SyncState(key=key, value=value, expires_at=expires_at))
            try:
                await session.commit()
            except IntegrityError:
                # Lost an insert race; the row exists now
                await session.rollback()
                await session.execute(
                    update(SyncState)
                    .where(SyncState.key == key)
                    .values(value=value, expires_at=expires_at, updated_at=utcnow())
                    .execution_options(synchronize_session=False)
                )
                await session.commit()

    async def delete(self, key: str) -> bool:
        async with self.session_factory() as session:
            result = await session.execute(delete(SyncState).where(SyncState.key == key))
            await session.commit()
            return result.rowcount > 0

    async def delete_prefix(self, prefix: str) -> int:
        async with self.session_factory() as session:
            result = await session.execute(delete(SyncState).where(SyncState.key.like(f"{prefix}%")))
            await session.commit()
            return result.rowcount

    async def acquire_lock(self, key: str, holder: str, ttl_seconds: int) -> bool:
        """Take ``key`` as a lock unless another holder's lease is still live."""
        now = utcnow()
        expires_at = now + timedelta(seconds=ttl_seconds)
        async with self.session_factory() as session:
            session.add(SyncState(key=key, value={"holder": holder}, expires_at=expires_at))
            try:
                await session.commit()
                return True
            except IntegrityError:
                await session.rollback()

            result = await session.execute(
                update(SyncState)
                .where(
                    SyncState.key == key,
                    SyncState.expires_at <= now,
                )
                .values(value={"holder": holder}, expires_at=expires_at, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            acquired = result.rowcount == 1
        if acquired:
            logger.debug("Took over expired lock", key=key, holder=holder)
        return acquired

    async def lock_holder(self, key: str) -> str | None:
        value = await self.get(key)
        if isinstance(value, dict):
            return value.get("holder")
        return None

    async def release_lock(self, key: str) -> None:
        await self.delete(key)

"""Generic persisted FIFO task queue with claim leases."""

import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Generic, TypeVar

import orjson
import structlog
from sqlalchemy import delete, func, insert, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from catalog_sync.infrastructure.database.models import BackgroundTask, utcnow

logger = structlog.get_logger()

T = TypeVar("T")


def _encode_json(item: Any) -> str:
    return orjson.dumps(item).decode()


@dataclass(frozen=True)
class ClaimedTask(Generic[T]):
    id: int
    item: T
    batch_id: str | None


class PersistedTaskQueue(Generic[T]):
    """Push/claim/ack/retry over the ``background_tasks`` table.

    Several named queues share the table. A claimed task stays invisible to
    other claimers until it is acked, retried or its lease expires.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        name: str,
        encode: Callable[[T], str] = _encode_json,
        decode: Callable[[str], T] = orjson.loads,
        lease_seconds: int = 600,
    ):
        self.session_factory = session_factory
        self.name = name
        self.encode = encode
        self.decode = decode
        self.lease_seconds = lease_seconds

    async def push(self, items: Iterable[T], batch_id: str | None = None) -> int:
        now = utcnow()
        rows = [
            {"queue_name": self.name, "batch_id": batch_id, "payload": self.encode(item), "enqueued_at": now}
            for item in items
        ]
        if not rows:
            return 0
        async with self.session_factory() as session:
            await session.execute(insert(BackgroundTask), rows)
            await session.commit()
        logger.debug("Tasks pushed", queue=self.name, count=len(rows), batch_id=batch_id)
        return len(rows)

    async def claim(self) -> ClaimedTask[T] | None:
        for _ in range(5):
            now = utcnow()
            stale = now - timedelta(seconds=self.lease_seconds)
            claimable = or_(BackgroundTask.claimed_at.is_(None), BackgroundTask.claimed_at < stale)
            async with self.session_factory() as session:
                row = (
                    await session.execute(
                        select(BackgroundTask.id, BackgroundTask.payload, BackgroundTask.batch_id)
                        .where(BackgroundTask.queue_name == self.name, claimable)
                        .order_by(BackgroundTask.enqueued_at, BackgroundTask.id)
                        .limit(1)
                    )
                ).first()
                if row is None:
                    return None
                result = await session.execute(
                    update(BackgroundTask)
                    .where(BackgroundTask.id == row.id, claimable)
                    .values(claimed_at=now, claim_token=uuid.uuid4().hex)
                    .execution_options(synchronize_session=False)
                )
                await session.commit()
                if result.rowcount == 1:
                    return ClaimedTask(id=row.id, item=self.decode(row.payload), batch_id=row.batch_id)
        return None

    async def ack(self, task: ClaimedTask[T]) -> None:
        """Remove a finished task."""
        async with self.session_factory() as session:
            await session.execute(delete(BackgroundTask).where(BackgroundTask.id == task.id))
            await session.commit()

    async def retry(self, task: ClaimedTask[T], item: T | None = None) -> None:
        """Release a task and move it to the back of the queue."""
        payload = self.encode(task.item if item is None else item)
        async with self.session_factory() as session:
            await session.execute(
                update(BackgroundTask)
                .where(BackgroundTask.id == task.id)
                .values(payload=payload, claimed_at=None, claim_token=None, enqueued_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            await session.commit()

    async def size(self) -> int:
        async with self.session_factory() as session:
            return await session.scalar(
                select(func.count()).select_from(BackgroundTask).where(BackgroundTask.queue_name == self.name)
            ) or 0

    async def is_empty(self) -> bool:
        return await self.size() == 0

    async def clear(self) -> int:
        async with self.session_factory() as session:
            result = await session.execute(delete(BackgroundTask).where(BackgroundTask.queue_name == self.name))
            await session.commit()
        return result.rowcount

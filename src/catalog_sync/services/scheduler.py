"""Database-backed scheduled actions, fired by the Celery beat tick."""

from datetime import datetime, timedelta

import structlog
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from catalog_sync.infrastructure.database.models import ScheduledAction, utcnow

logger = structlog.get_logger()


class ActionScheduler:
    """One-shot and recurring hooks.

    ``claim_due`` hands each due action to exactly one caller: one-shot
    actions are deleted and recurring ones advanced with a conditional
    update.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def schedule_single(self, hook: str, delay_seconds: int = 0) -> int:
        action = ScheduledAction(hook=hook, run_at=utcnow() + timedelta(seconds=delay_seconds))
        async with self.session_factory() as session:
            session.add(action)
            await session.commit()
        logger.debug("Scheduled single action", hook=hook, run_at=action.run_at.isoformat())
        return action.id

    async def schedule_recurring(self, hook: str, interval_seconds: int) -> int:
        action = ScheduledAction(
            hook=hook,
            run_at=utcnow() + timedelta(seconds=interval_seconds),
            interval_seconds=interval_seconds,
        )
        async with self.session_factory() as session:
            session.add(action)
            await session.commit()
        logger.debug("Scheduled recurring action", hook=hook, interval_seconds=interval_seconds)
        return action.id

    async def next_scheduled(self, hook: str) -> datetime | None:
        async with self.session_factory() as session:
            return await session.scalar(
                select(func.min(ScheduledAction.run_at)).where(ScheduledAction.hook == hook)
            )

    async def unschedule_all(self, hook: str) -> int:
        async with self.session_factory() as session:
            result = await session.execute(delete(ScheduledAction).where(ScheduledAction.hook == hook))
            await session.commit()
        if result.rowcount:
            logger.debug("Unscheduled actions", hook=hook, count=result.rowcount)
        return result.rowcount

    async def claim_due(self, now: datetime | None = None) -> list[str]:
        """Claim every action due at ``now`` and return their hooks in run order."""
        now = now or utcnow()
        hooks: list[str] = []
        async with self.session_factory() as session:
            due = (
                await session.execute(
                    select(ScheduledAction.id, ScheduledAction.hook, ScheduledAction.run_at, ScheduledAction.interval_seconds)
                    .where(ScheduledAction.run_at <= now)
                    .order_by(ScheduledAction.run_at, ScheduledAction.id)
                )
            ).all()
            for action in due:
                if action.interval_seconds:
                    result = await session.execute(
                        update(ScheduledAction)
                        .where(ScheduledAction.id == action.id, ScheduledAction.run_at == action.run_at)
                        .values(run_at=now + timedelta(seconds=action.interval_seconds))
                        .execution_options(synchronize_session=False)
                    )
                else:
                    result = await session.execute(
                        delete(ScheduledAction).where(ScheduledAction.id == action.id)
                    )
                if result.rowcount == 1:
                    hooks.append(action.hook)
            await session.commit()
        return hooks

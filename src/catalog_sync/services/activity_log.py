"""Activity log service.

Every sync event goes to two places: the append-only ``sync_activity_log``
table that operators browse, and structlog for diagnostics.
"""

from datetime import datetime
from typing import Any

import structlog
from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from catalog_sync.infrastructure.database.models import ActivityLogEntry, LogAction, LogType

logger = structlog.get_logger()

_LEVELS = {
    LogAction.ERROR: "error",
    LogAction.WARNING: "warning",
    LogAction.SKIP: "debug",
}


class ActivityLogService:
    """Writes and queries operator-visible sync history."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def log(
        self,
        log_type: LogType,
        action: LogAction,
        identifier: str | None,
        message: str,
    ) -> None:
        """Append an entry. Logging never raises into the caller."""
        level = _LEVELS.get(action, "info")
        getattr(logger, level)(message, log_type=log_type.value, action=action.value, identifier=identifier)
        try:
            async with self.session_factory() as session:
                session.add(
                    ActivityLogEntry(log_type=log_type, action=action, identifier=identifier, message=message)
                )
                await session.commit()
        except Exception as e:
            logger.error("Failed to write activity log", error=str(e), message=message)

    async def recent(
        self,
        limit: int = 600,
        log_type: LogType | None = None,
        action: LogAction | None = None,
    ) -> list[dict[str, Any]]:
        query = select(ActivityLogEntry)
        if log_type is not None:
            query = query.where(ActivityLogEntry.log_type == log_type)
        if action is not None:
            query = query.where(ActivityLogEntry.action == action)
        query = query.order_by(ActivityLogEntry.id.desc()).limit(limit)
        async with self.session_factory() as session:
            rows = await session.scalars(query)
            return [_to_dict(row) for row in rows]

    async def errors(self, limit: int = 100) -> list[dict[str, Any]]:
        return await self.recent(limit=limit, action=LogAction.ERROR)

    async def search(self, term: str, limit: int = 100) -> list[dict[str, Any]]:
        pattern = f"%{term}%"
        async with self.session_factory() as session:
            rows = await session.scalars(
                select(ActivityLogEntry)
                .where(
                    or_(
                        ActivityLogEntry.message.like(pattern),
                        ActivityLogEntry.identifier.like(pattern),
                    )
                )
                .order_by(ActivityLogEntry.id.desc())
                .limit(limit)
            )
            return [_to_dict(row) for row in rows]

    async def clear(self, before: datetime | None = None) -> int:
        """Delete history, optionally only entries older than ``before``."""
        query = delete(ActivityLogEntry)
        if before is not None:
            query = query.where(ActivityLogEntry.created_at < before)
        async with self.session_factory() as session:
            result = await session.execute(query)
            await session.commit()
        logger.info("Activity log cleared", deleted=result.rowcount, before=before)
        return result.rowcount

    async def sync_stats(self) -> dict[str, Any]:
        """Counts per ``<type>_<action>`` within the most recent sync run."""
        async with self.session_factory() as session:
            started = await session.scalar(
                select(func.max(ActivityLogEntry.created_at)).where(
                    ActivityLogEntry.action == LogAction.SYNC_START
                )
            )
            if started is None:
                return {"last_sync_started_at": None, "last_sync_completed_at": None, "counts": {}}

            completed = await session.scalar(
                select(func.max(ActivityLogEntry.created_at)).where(
                    ActivityLogEntry.action == LogAction.SYNC_COMPLETE,
                    ActivityLogEntry.created_at >= started,
                )
            )
            query = (
                select(ActivityLogEntry.log_type, ActivityLogEntry.action, func.count())
                .where(ActivityLogEntry.created_at >= started)
                .group_by(ActivityLogEntry.log_type, ActivityLogEntry.action)
            )
            if completed is not None:
                query = query.where(ActivityLogEntry.created_at <= completed)
            rows = await session.execute(query)

        counts: dict[str, int] = {}
        for log_type, action, count in rows:
            counts[f"{log_type.value}_{action.value}"] = count
        counts["errors"] = sum(v for k, v in counts.items() if k.endswith("_error"))
        return {
            "last_sync_started_at": started.isoformat(),
            "last_sync_completed_at": completed.isoformat() if completed else None,
            "counts": counts,
        }


def _to_dict(row: ActivityLogEntry) -> dict[str, Any]:
    return {
        "id": row.id,
        "type": row.log_type.value,
        "action": row.action.value,
        "identifier": row.identifier,
        "message": row.message,
        "created_at": row.created_at.isoformat(),
    }

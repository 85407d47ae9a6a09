"""SQLAlchemy models for the catalog synchronizer.

Sync bookkeeping (queue, activity log, state, background tasks, scheduled
actions) lives next to the local catalog tables the sync writes into.
"""

from datetime import datetime, timezone
from enum import Enum as PyEnum
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all models."""


def utcnow() -> datetime:
    """Naive UTC timestamp, the format stored in every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _enum(enum_cls: type[PyEnum]) -> Enum:
    return Enum(
        enum_cls,
        native_enum=False,
        length=20,
        values_callable=lambda members: [m.value for m in members],
    )


# =============================================================================
# Enums
# =============================================================================


class QueueStatus(str, PyEnum):
    """Lifecycle of a queue item."""

    PENDING = "pending"
    SYNCED = "synced"
    SKIPPED = "skipped"
    FAILED = "failed"


class LogType(str, PyEnum):
    """Subject of an activity log entry."""

    CATEGORY = "category"
    PRODUCT = "product"
    SYSTEM = "system"


class LogAction(str, PyEnum):
    """What happened to the subject."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    SKIP = "skip"
    ERROR = "error"
    INFO = "info"
    WARNING = "warning"
    SYNC_START = "sync_start"
    SYNC_COMPLETE = "sync_complete"


class EntryStatus(str, PyEnum):
    """Visibility of a local catalog entry."""

    PUBLISH = "publish"
    DRAFT = "draft"
    TRASH = "trash"


# =============================================================================
# Sync Queue
# =============================================================================


class SyncQueueItem(Base):
    """One product's unit of work within a batch."""

    __tablename__ = "sync_queue"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    batch_id: Mapped[str] = mapped_column(String(64), nullable=False)
    product_slug: Mapped[str] = mapped_column(String(255), nullable=False)
    product_id: Mapped[Optional[str]] = mapped_column(String(64))
    category_slug: Mapped[Optional[str]] = mapped_column(String(255))
    status: Mapped[QueueStatus] = mapped_column(
        _enum(QueueStatus), default=QueueStatus.PENDING, nullable=False
    )
    result_message: Mapped[Optional[str]] = mapped_column(Text)
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Claim lease for the atomic claim operation
    claimed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    claim_token: Mapped[Optional[str]] = mapped_column(String(64))

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (
        Index("ix_sync_queue_batch_status", "batch_id", "status"),
        Index("ix_sync_queue_slug", "product_slug"),
        Index("ix_sync_queue_created", "created_at"),
    )


# =============================================================================
# Activity Log
# =============================================================================


class ActivityLogEntry(Base):
    """Append-only operator history."""

    __tablename__ = "sync_activity_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    log_type: Mapped[LogType] = mapped_column(_enum(LogType), nullable=False)
    action: Mapped[LogAction] = mapped_column(_enum(LogAction), nullable=False)
    identifier: Mapped[Optional[str]] = mapped_column(String(255))
    message: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_sync_activity_log_type_action", "log_type", "action"),
        Index("ix_sync_activity_log_created", "created_at"),
    )


# =============================================================================
# Key/Value State
# =============================================================================


class SyncState(Base):
    """Named state values: batch pointers, progress, control flags, locks."""

    __tablename__ = "sync_state"

    key: Mapped[str] = mapped_column(String(191), primary_key=True)
    value: Mapped[Any] = mapped_column(JSON, nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )


# =============================================================================
# Background Worker
# =============================================================================


class BackgroundTask(Base):
    """Push-queue entry for the background worker."""

    __tablename__ = "background_tasks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    queue_name: Mapped[str] = mapped_column(String(64), nullable=False)
    batch_id: Mapped[Optional[str]] = mapped_column(String(64))
    payload: Mapped[str] = mapped_column(Text, nullable=False)
    enqueued_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    claimed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    claim_token: Mapped[Optional[str]] = mapped_column(String(64))

    __table_args__ = (Index("ix_background_tasks_queue_order", "queue_name", "enqueued_at", "id"),)


class ScheduledAction(Base):
    """One-shot or recurring hook fired by the beat tick."""

    __tablename__ = "scheduled_actions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    hook: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    run_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    interval_seconds: Mapped[Optional[int]] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


# =============================================================================
# Local Catalog
# =============================================================================


catalog_entry_categories = Table(
    "catalog_entry_categories",
    Base.metadata,
    Column("entry_id", ForeignKey("catalog_entries.id", ondelete="CASCADE"), primary_key=True),
    Column("category_id", ForeignKey("catalog_categories.id", ondelete="CASCADE"), primary_key=True),
)


class CatalogCategory(Base):
    """Taxonomy entry of the local catalog."""

    __tablename__ = "catalog_categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    parent_id: Mapped[Optional[int]] = mapped_column(ForeignKey("catalog_categories.id"))
    remote_id: Mapped[Optional[str]] = mapped_column(String(64), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class CatalogMedia(Base):
    """Downloaded media file, deduplicated by its source URL."""

    __tablename__ = "catalog_media"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    original_url: Mapped[str] = mapped_column(String(1024), unique=True, nullable=False)
    file_path: Mapped[str] = mapped_column(String(1024), nullable=False)
    url: Mapped[str] = mapped_column(String(1024), nullable=False)
    mime_type: Mapped[Optional[str]] = mapped_column(String(100))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class CatalogEntry(Base):
    """Product entry of the local catalog."""

    __tablename__ = "catalog_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    slug: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    status: Mapped[EntryStatus] = mapped_column(
        _enum(EntryStatus), default=EntryStatus.PUBLISH, nullable=False
    )
    image_id: Mapped[Optional[int]] = mapped_column(ForeignKey("catalog_media.id", ondelete="SET NULL"))
    gallery_ids: Mapped[Optional[list]] = mapped_column(JSON, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), default=utcnow, onupdate=utcnow, nullable=False
    )

    categories: Mapped[list[CatalogCategory]] = relationship(
        secondary=catalog_entry_categories, lazy="selectin"
    )


class ProductSnapshot(Base):
    """Last raw remote payload seen for a product."""

    __tablename__ = "product_snapshots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    remote_id: Mapped[Optional[str]] = mapped_column(String(64), index=True)
    slug: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    first_categories: Mapped[Optional[list]] = mapped_column(JSON)
    snapshot_data: Mapped[dict] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class CatalogEntryMeta(Base):
    """Arbitrary key/value metadata attached to a catalog entry."""

    __tablename__ = "catalog_entry_meta"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    entry_id: Mapped[int] = mapped_column(
        ForeignKey("catalog_entries.id", ondelete="CASCADE"), nullable=False
    )
    meta_key: Mapped[str] = mapped_column(String(191), nullable=False)
    meta_value: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (
        UniqueConstraint("entry_id", "meta_key", name="uq_catalog_entry_meta_key"),
        Index("ix_catalog_entry_meta_key_value", "meta_key"),
    )

"""SQLAlchemy models for sources, receipts, releases and notifications."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum as SAEnum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import Uuid


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum_values(enum_cls: type[Enum]) -> list[str]:
    # persist enum values, not member names
    return [member.value for member in enum_cls]


class Base(DeclarativeBase):
    """Base class for ORM models."""


class TimestampMixin:
    """Adds created_at/updated_at columns."""

    # Python-side default keeps microsecond ordering on SQLite as well.
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
    )


class SourceKind(str, Enum):
    FEED = "feed"
    PAGE = "page"


class Park(str, Enum):
    DISNEY = "disney"
    UNIVERSAL = "universal"
    SEAWORLD = "seaworld"


class ItemCategory(str, Enum):
    LOUNGEFLY = "loungefly"
    EARS = "ears"
    SPIRIT_JERSEY = "spirit_jersey"
    POPCORN_BUCKET = "popcorn_bucket"
    PINS = "pins"
    PLUSH = "plush"
    APPAREL = "apparel"
    DRINKWARE = "drinkware"
    COLLECTIBLE = "collectible"
    HOME_DECOR = "home_decor"
    TOYS = "toys"
    JEWELRY = "jewelry"
    OTHER = "other"


class ReleaseStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    COMING_SOON = "coming_soon"


class JobStage(str, Enum):
    PROCESS = "process"
    NOTIFY = "notify"


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class Source(TimestampMixin, Base):
    """A configured blog/feed polled by the processing run."""

    __tablename__ = "sources"
    __table_args__ = (UniqueConstraint("url", name="uq_sources_url"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    url: Mapped[str] = mapped_column(String(2048), nullable=False)
    kind: Mapped[SourceKind] = mapped_column(
        SAEnum(SourceKind, name="source_kind", native_enum=False, values_callable=_enum_values, length=8),
        nullable=False,
        default=SourceKind.FEED,
    )
    # "all" or a Park value
    park_scope: Mapped[str] = mapped_column(String(16), nullable=False, default="all")
    polling_interval_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=360)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    last_checked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_error: Mapped[str | None] = mapped_column(String(1024))


class ProcessingReceipt(Base):
    """Marks an article as examined; never updated after insert."""

    __tablename__ = "processing_receipts"
    __table_args__ = (
        UniqueConstraint("article_url", name="uq_processing_receipts_article_url"),
        Index("ix_processing_receipts_processed_at", "processed_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    source_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("sources.id", ondelete="SET NULL")
    )
    article_url: Mapped[str] = mapped_column(String(2048), nullable=False)
    title: Mapped[str] = mapped_column(String(512), nullable=False, default="")
    items_found: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error: Mapped[str | None] = mapped_column(String(1024))
    processed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )


class Release(TimestampMixin, Base):
    """Customer-facing merchandise entry."""

    __tablename__ = "releases"
    __table_args__ = (
        # at most one unmerged release per canonical name
        Index(
            "uq_releases_canonical_unmerged",
            "canonical_name",
            unique=True,
            sqlite_where=text("merged_into_id IS NULL"),
            postgresql_where=text("merged_into_id IS NULL"),
        ),
        Index("ix_releases_park_merged", "park", "merged_into_id"),
        Index("ix_releases_status_created", "status", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    title: Mapped[str] = mapped_column(String(512), nullable=False)
    canonical_name: Mapped[str] = mapped_column(String(512), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    image_url: Mapped[str] = mapped_column(String(2048), nullable=False, default="")
    original_image_url: Mapped[str | None] = mapped_column(String(2048))
    park: Mapped[Park] = mapped_column(
        SAEnum(Park, name="park", native_enum=False, values_callable=_enum_values, length=16),
        nullable=False,
    )
    category: Mapped[ItemCategory] = mapped_column(
        SAEnum(ItemCategory, name="item_category", native_enum=False, values_callable=_enum_values, length=24),
        nullable=False,
        default=ItemCategory.OTHER,
    )
    price_estimate: Mapped[float | None] = mapped_column(Float)
    is_limited_edition: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    tags: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    status: Mapped[ReleaseStatus] = mapped_column(
        SAEnum(ReleaseStatus, name="release_status", native_enum=False, values_callable=_enum_values, length=16),
        nullable=False,
        default=ReleaseStatus.PENDING,
    )
    merged_into_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("releases.id", ondelete="SET NULL")
    )
    source_url: Mapped[str | None] = mapped_column(String(2048))
    source_name: Mapped[str | None] = mapped_column(String(200))
    raw_content: Mapped[str | None] = mapped_column(Text)


class ReleaseSighting(Base):
    """An article in which a release was seen."""

    __tablename__ = "release_sightings"
    __table_args__ = (UniqueConstraint("release_id", "source_url", name="uq_release_sightings_release_url"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    release_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("releases.id", ondelete="CASCADE"), nullable=False
    )
    source_url: Mapped[str] = mapped_column(String(2048), nullable=False)
    source_name: Mapped[str | None] = mapped_column(String(200))
    article_title: Mapped[str | None] = mapped_column(String(512))
    discovered_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )


class CustomerInterest(TimestampMixin, Base):
    """A customer's stored notification interest."""

    __tablename__ = "customer_interests"
    __table_args__ = (Index("ix_customer_interests_customer", "customer_id"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    customer_id: Mapped[str] = mapped_column(String(64), nullable=False)
    category: Mapped[str | None] = mapped_column(String(24))
    park: Mapped[str | None] = mapped_column(String(16))
    keywords: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    notify: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class NotificationRecord(Base):
    """At-most-once delivery marker per (release, customer)."""

    __tablename__ = "notification_records"
    __table_args__ = (
        UniqueConstraint("release_id", "customer_id", name="uq_notification_records_release_customer"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    release_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("releases.id", ondelete="CASCADE"), nullable=False
    )
    customer_id: Mapped[str] = mapped_column(String(64), nullable=False)
    sent_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )
    delivered: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    error: Mapped[str | None] = mapped_column(String(512))


class JobRun(TimestampMixin, Base):
    """Represents a single processing or notification run."""

    __tablename__ = "job_runs"
    __table_args__ = (
        Index("ix_job_runs_stage_status", "stage", "status"),
        Index("ix_job_runs_trace", "trace_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    stage: Mapped[JobStage] = mapped_column(
        SAEnum(JobStage, name="job_stage", native_enum=False, values_callable=_enum_values, length=16),
        nullable=False,
    )
    status: Mapped[JobStatus] = mapped_column(
        SAEnum(JobStatus, name="job_status", native_enum=False, values_callable=_enum_values, length=16),
        nullable=False,
        default=JobStatus.PENDING,
    )
    source: Mapped[str | None] = mapped_column(String(200))
    task_name: Mapped[str | None] = mapped_column(String(100))
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    error_message: Mapped[str | None] = mapped_column(String(512))
    trace_id: Mapped[str | None] = mapped_column(String(64))
    stats: Mapped[dict | None] = mapped_column(JSON)

"""SQLAlchemy 2.0 ORM models.

This module contains all SQLAlchemy models for the orchestration core.
All models use the Mapped[type] annotation pattern required by SQLAlchemy 2.0.

Encrypted Fields Pattern:
    Credential secrets are stored Fernet-encrypted in `secret_encrypted`
    (LargeBinary, Fernet outputs bytes). A SHA-256 `secret_fingerprint`
    enforces uniqueness and `secret_hint` holds the masked form that admin
    views display.

    NEVER expose encrypted fields or plaintext secrets in __repr__ or logs.

Timestamps:
    All timestamps are written timezone-aware in UTC. SQLite (tests) returns
    naive values; use `as_utc()` before comparing in Python.
"""

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    LargeBinary,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utcnow() -> datetime:
    """Get current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Normalize a datetime loaded from storage to aware UTC.

    SQLite drops tzinfo on round trip; PostgreSQL keeps it. Naive values are
    assumed to already be UTC, since everything is written as UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class TranslationStatus(enum.Enum):
    """Downstream submission lifecycle of a content item.

    Flow:
        none (not eligible) | pending → processing → completed
                                      ↘ failed

    `pending` items are picked up by the submission queue (directly after
    sync, or by the periodic re-scan). `completed` is only ever set by the
    out-of-band completion signal.
    """

    NONE = "none"
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class JobState(enum.Enum):
    """Persisted state of a recurring job (one JobStatus row per task)."""

    IDLE = "idle"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


class SourceType(enum.Enum):
    """Kind of upstream source a subscription follows."""

    CHANNEL = "channel"
    PLAYLIST = "playlist"


def _enum_column(enum_cls: type[enum.Enum], name: str) -> Enum:
    # values_callable stores enum.value (lowercase) instead of enum.name
    return Enum(
        enum_cls,
        native_enum=True,
        name=name,
        values_callable=lambda x: [e.value for e in x],
    )


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class Credential(Base):
    """A rate-limited API key in the rotation pool.

    Selection rule (CredentialPool.select_active): active, valid, and
    `quota_used < quota_limit`, ordered by priority then usage. Exhausted or
    invalid credentials are excluded from selection, never deleted.

    Attributes:
        id: Integer primary key.
        name: Human-readable label.
        secret_encrypted: Fernet-encrypted API key.
        secret_fingerprint: SHA-256 of the API key (unique).
        secret_hint: Masked API key for display ("AIza...x9Qk").
        is_active: Administratively enabled.
        is_valid: False once the upstream reported quota exhaustion for it.
        priority: Lower value is preferred.
        quota_limit: Daily quota units (YouTube default 10,000).
        quota_used: Units consumed since the last reset.
        reset_at: When quota_used returns to zero (next Pacific midnight).
        last_used_at: Last time a call was recorded against this key.
        last_error: Error text stored when the key was invalidated.
    """

    __tablename__ = "credentials"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    secret_encrypted: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    secret_fingerprint: Mapped[str] = mapped_column(
        String(64),
        unique=True,
        nullable=False,
    )
    secret_hint: Mapped[str] = mapped_column(String(16), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_valid: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    priority: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    quota_limit: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=10000,
        server_default="10000",
    )
    quota_used: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default="0",
    )
    reset_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
    )

    usage_records: Mapped[list["UsageRecord"]] = relationship(
        "UsageRecord",
        back_populates="credential",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("ix_credentials_selection", "is_active", "is_valid", "priority", "quota_used"),
        CheckConstraint("quota_used >= 0", name="ck_credentials_used_non_negative"),
        CheckConstraint("quota_limit > 0", name="ck_credentials_limit_positive"),
    )

    def __repr__(self) -> str:
        return (
            f"<Credential(id={self.id}, name={self.name!r}, key={self.secret_hint}, "
            f"usage={self.quota_used}/{self.quota_limit}, active={self.is_active}, "
            f"valid={self.is_valid}, priority={self.priority})>"
        )


class UsageRecord(Base):
    """Append-only audit row for every upstream call made with a credential.

    Written for successes and failures alike, in the same transaction as the
    quota increment.
    """

    __tablename__ = "credential_usage_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    credential_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("credentials.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    operation: Mapped[str] = mapped_column(String(50), nullable=False)
    endpoint: Mapped[str] = mapped_column(String(100), nullable=False)
    cost: Mapped[int] = mapped_column(Integer, nullable=False)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    error_info: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        index=True,
    )

    credential: Mapped["Credential"] = relationship("Credential", back_populates="usage_records")

    def __repr__(self) -> str:
        return (
            f"<UsageRecord(credential_id={self.credential_id}, operation={self.operation!r}, "
            f"cost={self.cost}, success={self.success})>"
        )


class JobStatus(Base):
    """Persisted status of one recurring job, read by the dashboard.

    Exactly one row per task_name. Mutated only through StatusStore by the
    JobRunner.
    """

    __tablename__ = "job_status"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    task_name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    status: Mapped[JobState] = mapped_column(
        _enum_column(JobState, "jobstate"),
        nullable=False,
        default=JobState.IDLE,
    )
    last_run_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    next_run_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    run_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
    )

    def __repr__(self) -> str:
        return (
            f"<JobStatus(task_name={self.task_name!r}, status={self.status.value}, "
            f"run_count={self.run_count})>"
        )


class Subscription(Base):
    """An upstream channel or playlist followed by the sync job.

    Attributes:
        source_type: channel or playlist.
        source_id: Upstream channel/playlist id.
        auto_translate: Whether new items may be submitted downstream.
        max_duration_minutes: Items must be strictly shorter than this to be
            eligible for submission. None means no cap.
        last_sync_at: Watermark; only items published after it are fetched.
    """

    __tablename__ = "subscriptions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    source_type: Mapped[SourceType] = mapped_column(
        _enum_column(SourceType, "sourcetype"),
        nullable=False,
    )
    source_id: Mapped[str] = mapped_column(String(100), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    auto_translate: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    max_duration_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    last_sync_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
    )

    items: Mapped[list["ContentItem"]] = relationship(
        "ContentItem",
        back_populates="subscription",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        UniqueConstraint("source_type", "source_id", name="uq_subscriptions_source"),
    )

    def __repr__(self) -> str:
        return (
            f"<Subscription(id={self.id}, name={self.name!r}, "
            f"source={self.source_type.value}:{self.source_id}, "
            f"auto_translate={self.auto_translate})>"
        )


class ContentItem(Base):
    """An upstream item synced for one subscription.

    The same upstream item may belong to several subscriptions, so uniqueness
    is (external_id, subscription_id), not external_id alone.
    """

    __tablename__ = "content_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    external_id: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    subscription_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("subscriptions.id", ondelete="CASCADE"),
        nullable=False,
    )

    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    title_translated: Mapped[str | None] = mapped_column(String(500), nullable=True)
    description_translated: Mapped[str | None] = mapped_column(Text, nullable=True)
    thumbnail_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    duration_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)

    owner_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    owner_name: Mapped[str | None] = mapped_column(String(200), nullable=True)

    translation_status: Mapped[TranslationStatus] = mapped_column(
        _enum_column(TranslationStatus, "translationstatus"),
        nullable=False,
        default=TranslationStatus.NONE,
        index=True,
    )
    translation_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    output_ref: Mapped[str | None] = mapped_column(String(500), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
    )

    subscription: Mapped["Subscription"] = relationship("Subscription", back_populates="items")

    __table_args__ = (
        UniqueConstraint("external_id", "subscription_id", name="uq_content_items_external_sub"),
        Index("ix_content_items_status_created", "translation_status", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<ContentItem(id={self.id}, external_id={self.external_id!r}, "
            f"subscription_id={self.subscription_id}, "
            f"status={self.translation_status.value})>"
        )

import enum
import uuid
from datetime import UTC, date, datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.db import Base, TimestampMixin


class RenewalRunStatus(str, enum.Enum):
    running = "running"
    completed = "completed"
    failed = "failed"


class DeadLetterReason(str, enum.Enum):
    malformed = "malformed"
    exhausted = "exhausted"


class OutboxEntry(Base):
    """Durable record of a renewal that is due, relayed to the bus later.

    Never deleted: the table doubles as an audit and replay log.
    """

    __tablename__ = "renewal_outbox"
    __table_args__ = (
        UniqueConstraint(
            "subscription_id", "due_date", name="uq_renewal_outbox_subscription_due"
        ),
        Index(
            "ix_renewal_outbox_unpublished",
            "published_at",
            "publish_attempts",
            "created_at",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    subscription_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("subscriptions.id"), nullable=False
    )
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    publish_attempts: Mapped[int] = mapped_column(Integer, default=0)
    last_error: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC)
    )
    published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class RenewalRun(TimestampMixin, Base):
    """One execution of the scan + relay batch for a schedule date."""

    __tablename__ = "renewal_runs"
    __table_args__ = (
        UniqueConstraint(
            "job_name", "schedule_date", "run_key", name="uq_renewal_runs_instance"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    job_name: Mapped[str] = mapped_column(String(80), nullable=False)
    schedule_date: Mapped[date] = mapped_column(Date, nullable=False)
    run_key: Mapped[str] = mapped_column(String(80), nullable=False)
    timezone: Mapped[str] = mapped_column(String(64), nullable=False)
    force: Mapped[bool] = mapped_column(Boolean, default=False)
    status: Mapped[RenewalRunStatus] = mapped_column(
        Enum(RenewalRunStatus), default=RenewalRunStatus.running
    )
    inserted_count: Mapped[int] = mapped_column(Integer, default=0)
    published_count: Mapped[int] = mapped_column(Integer, default=0)
    publish_failed_count: Mapped[int] = mapped_column(Integer, default=0)
    error: Mapped[str | None] = mapped_column(Text)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class RenewalDeadLetter(Base):
    __tablename__ = "renewal_dead_letters"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    message_id: Mapped[str | None] = mapped_column(String(255), index=True)
    subscription_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), index=True
    )
    reason: Mapped[DeadLetterReason] = mapped_column(
        Enum(DeadLetterReason), nullable=False
    )
    error: Mapped[str | None] = mapped_column(Text)
    payload: Mapped[str] = mapped_column(Text, nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, default=1)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC)
    )

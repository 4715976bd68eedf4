"""ReportJob model: the durable state of one asynchronous report export."""

from datetime import datetime
from enum import StrEnum

from sqlalchemy import JSON, BigInteger, Boolean, Index, Integer, String, Text, and_, or_
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql.elements import ColumnElement

from analytics_exports.models.base import Base, TimestampMixin, UTCDateTime, UUIDMixin

_JSON = JSON().with_variant(JSONB(), "postgresql")


class JobStatus(StrEnum):
    """Lifecycle states of a report job."""

    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


ACTIVE_STATUSES = (JobStatus.QUEUED, JobStatus.RUNNING)
CANCELLED_MESSAGE = "cancelled by user"


class ReportJob(Base, UUIDMixin, TimestampMixin):
    """One export request: what to build, how far it got, and where the result lives.

    ``checkpoint_data`` holds a versioned checkpoint record (see
    ``analytics_exports.lib.pipeline.checkpoint``).  The queue columns
    (``attempts``, ``next_attempt_at``, ``leased_by``, ``lease_expires_at``)
    let a single durable table act as the at-least-once work queue.
    """

    __tablename__ = "report_jobs"

    owner_id: Mapped[str] = mapped_column(String(100), nullable=False)
    report_type: Mapped[str] = mapped_column(String(20), nullable=False)
    output_format: Mapped[str] = mapped_column(String(10), nullable=False)
    filters: Mapped[dict] = mapped_column(_JSON, nullable=False, default=dict)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=JobStatus.QUEUED, server_default=JobStatus.QUEUED.value
    )

    # Progress
    total_rows: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    processed_rows: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    progress_percent: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    current_section: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Checkpoint and retry bookkeeping
    checkpoint_data: Mapped[dict | None] = mapped_column(_JSON, nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancel_requested: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="0")

    # Queue leasing
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    next_attempt_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    leased_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    lease_expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    # Output
    file_path: Mapped[str | None] = mapped_column(String(500), nullable=True)
    file_size_bytes: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    page_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    download_expired: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="0")

    started_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    __table_args__ = (
        Index("ix_report_jobs_owner_status", "owner_id", "status"),
        Index("ix_report_jobs_claimable", "status", "next_attempt_at"),
        Index("ix_report_jobs_created_at", "created_at"),
    )

    def has_expired(self, now: datetime) -> bool:
        """Whether the download window of a finished job has closed."""
        return self.download_expired or (self.expires_at is not None and self.expires_at <= now)

    def __repr__(self) -> str:
        return f"<ReportJob(id={self.id}, type={self.report_type}, format={self.output_format}, status={self.status})>"


def awaiting_retry() -> ColumnElement[bool]:
    """Failed jobs with a retry still scheduled."""
    return and_(ReportJob.status == JobStatus.FAILED, ReportJob.next_attempt_at.is_not(None))


def is_live() -> ColumnElement[bool]:
    """Jobs that are queued, running or awaiting a retry."""
    return or_(ReportJob.status.in_(ACTIVE_STATUSES), awaiting_retry())

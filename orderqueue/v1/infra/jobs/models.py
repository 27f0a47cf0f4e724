"""
Job queue models: the job table and its append-only log table.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from sqlalchemy import (
    JSON,
    TIMESTAMP,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    SmallInteger,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from orderqueue.infra.database import Base


class JobStatus(str, Enum):
    """Job status enumeration."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class JobLogLevel(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


ACTIVE_STATUSES = (JobStatus.PENDING.value, JobStatus.PROCESSING.value)
TERMINAL_STATUSES = (
    JobStatus.COMPLETED.value,
    JobStatus.FAILED.value,
    JobStatus.CANCELLED.value,
)

# Allowed predecessor states for each target state.
ALLOWED_TRANSITIONS: dict[str, tuple[str, ...]] = {
    JobStatus.PENDING.value: (JobStatus.PROCESSING.value,),
    JobStatus.PROCESSING.value: (JobStatus.PENDING.value,),
    JobStatus.COMPLETED.value: (JobStatus.PROCESSING.value,),
    JobStatus.FAILED.value: (JobStatus.PROCESSING.value,),
    JobStatus.CANCELLED.value: ACTIVE_STATUSES,
}


def generate_job_id() -> str:
    return f"job_{uuid4().hex}"


def utcnow() -> datetime:
    return datetime.now(UTC)


class Job(Base):
    """
    A queued unit of work: one fulfillment order or one status check.

    Rows are owned by the worker from dequeue until they reach a terminal
    status; every transition goes through a compare-and-set UPDATE in
    JobService so a stuck-job sweep and a normal completion cannot both win.
    """

    __tablename__ = "job_queue"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_id: Mapped[str] = mapped_column(
        String(64), nullable=False, unique=True, default=generate_job_id
    )
    user_id: Mapped[str] = mapped_column(
        String(255), nullable=False, index=True, comment="Owning user"
    )
    team_id: Mapped[str | None] = mapped_column(
        String(255), nullable=True, index=True, comment="Owning team"
    )
    type: Mapped[str] = mapped_column(
        Text, nullable=False, comment="Job type identifier"
    )
    payload: Mapped[dict[str, Any]] = mapped_column(
        JSON, nullable=False, default=dict, comment="Job-specific parameters"
    )

    # Job state
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=JobStatus.PENDING.value,
        index=True,
        comment="pending|processing|completed|failed|cancelled",
    )
    queue_position: Mapped[int | None] = mapped_column(
        Integer, nullable=True, comment="Advisory rank among pending jobs"
    )
    priority: Mapped[int] = mapped_column(
        SmallInteger, nullable=False, default=0, comment="Higher dequeues first"
    )
    attempts: Mapped[int] = mapped_column(
        SmallInteger, nullable=False, default=0, comment="Number of attempts made"
    )
    max_attempts: Mapped[int] = mapped_column(
        SmallInteger, nullable=False, default=3, comment="Attempt cap"
    )

    # Results
    result: Mapped[dict[str, Any] | None] = mapped_column(
        JSON, nullable=True, comment="Job result data"
    )
    error: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Last error message"
    )

    # Timestamps
    heartbeat_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True, comment="Last worker heartbeat"
    )
    started_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        index=True,
        server_default=func.now(),
        default=utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
        default=utcnow,
        onupdate=utcnow,
    )

    # Filled in by JobService.get_job for pending jobs, never persisted
    estimated_completion_at = None

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed', 'cancelled')",
            name="job_queue_status_check",
        ),
        CheckConstraint("attempts <= max_attempts", name="job_queue_attempts_check"),
    )

    def is_active(self) -> bool:
        """Check if job is pending or processing."""
        return self.status in ACTIVE_STATUSES


Index(
    "ix_job_queue_priority_status_created",
    Job.priority.desc(),
    Job.status,
    Job.created_at,
)


class JobLog(Base):
    """Append-only diagnostic entry for a job."""

    __tablename__ = "job_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("job_queue.job_id"), nullable=False, index=True
    )
    level: Mapped[str] = mapped_column(String(10), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    details: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
        default=utcnow,
    )

    __table_args__ = (
        CheckConstraint(
            "level IN ('info', 'warning', 'error')", name="job_logs_level_check"
        ),
    )

"""
Job queue Pydantic schemas.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from orderqueue.v1.infra.jobs.models import JobLogLevel, JobStatus


class JobCreate(BaseModel):
    """Schema for creating a new job."""

    type: str = Field(..., description="Job type identifier")
    payload: dict[str, Any] = Field(default_factory=dict, description="Job parameters")
    priority: int = Field(
        default=0, ge=-32768, le=32767, description="Higher values dequeue first"
    )
    max_attempts: int | None = Field(
        default=None, ge=1, le=10, description="Attempt cap (defaults to settings)"
    )


class JobResponse(BaseModel):
    """Schema for job API responses."""

    model_config = ConfigDict(from_attributes=True)

    job_id: str
    user_id: str
    team_id: str | None = None
    type: str
    payload: dict[str, Any]
    status: str
    queue_position: int | None = None
    priority: int
    attempts: int
    max_attempts: int

    result: dict[str, Any] | None = None
    error: str | None = None

    started_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime
    estimated_completion_at: datetime | None = None


class JobLogResponse(BaseModel):
    """Schema for a single job log entry."""

    model_config = ConfigDict(from_attributes=True)

    job_id: str
    level: JobLogLevel
    message: str
    details: dict[str, Any] | None = None
    created_at: datetime


class JobListFilters(BaseModel):
    """Schema for job listing filters."""

    status: JobStatus | None = Field(default=None, description="Filter by job status")
    type: str | None = Field(default=None, description="Filter by job type")
    created_from: datetime | None = Field(
        default=None, description="Only jobs created at or after this time"
    )
    created_to: datetime | None = Field(
        default=None, description="Only jobs created at or before this time"
    )
    limit: int = Field(
        default=50, ge=1, le=1000, description="Maximum results to return"
    )
    offset: int = Field(default=0, ge=0, description="Results offset for pagination")


class JobListResponse(BaseModel):
    """Schema for job list API response."""

    jobs: list[JobResponse]
    total: int
    limit: int
    offset: int


class QueueStatsResponse(BaseModel):
    """Queue statistics over the last 24 hours."""

    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: int = 0
    total: int = 0
    avg_processing_time_s: float = 0


class WorkerStatus(BaseModel):
    """Snapshot of a worker instance."""

    worker_id: str
    running: bool
    current_jobs: list[dict[str, Any]] = Field(default_factory=list)

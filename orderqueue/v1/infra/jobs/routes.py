"""
Job queue API endpoints.

Submission, monitoring and cancellation. Jobs run in the worker process.
"""

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from orderqueue.config.logging import get_logger
from orderqueue.config.settings import Settings, SettingsDep
from orderqueue.infra.database import get_session
from orderqueue.v1.core.exceptions import NotFoundError, create_success_response
from orderqueue.v1.core.registries import JobRegistry, get_job_registry
from orderqueue.v1.core.security import Principal, PrincipalDep
from orderqueue.v1.infra.jobs.models import JobStatus
from orderqueue.v1.infra.jobs.schemas import (
    JobCreate,
    JobListFilters,
    JobListResponse,
    JobLogResponse,
    JobResponse,
)
from orderqueue.v1.infra.jobs.service import JobService

logger = get_logger(__name__)
router = APIRouter(prefix="/jobs", tags=["jobs"])


def get_job_service(
    settings: Settings = SettingsDep,
    registry: JobRegistry = Depends(get_job_registry),
) -> JobService:
    return JobService(settings, registry)


@router.post("", response_model=dict, status_code=201)
async def create_job(
    job_create: JobCreate,
    principal: Principal = PrincipalDep,
    session: AsyncSession = Depends(get_session),
    job_service: JobService = Depends(get_job_service),
) -> dict[str, Any]:
    """Submit a new job to the queue."""
    job = await job_service.create_job(session, job_create, principal)

    logger.info(
        "Job submitted via API",
        job_id=job.job_id,
        type=job.type,
        user_id=principal.user_id,
    )

    return create_success_response(
        data=JobResponse.model_validate(job).model_dump(mode="json"),
        message="Job added to queue",
    )


@router.get("", response_model=dict)
async def list_jobs(
    status: JobStatus | None = Query(default=None, description="Filter by status"),
    type: str | None = Query(default=None, description="Filter by job type"),
    created_from: datetime | None = Query(default=None, description="Created at or after"),
    created_to: datetime | None = Query(default=None, description="Created at or before"),
    limit: int = Query(default=50, ge=1, le=1000, description="Maximum results"),
    offset: int = Query(default=0, ge=0, description="Results offset"),
    principal: Principal = PrincipalDep,
    session: AsyncSession = Depends(get_session),
    job_service: JobService = Depends(get_job_service),
) -> dict[str, Any]:
    """List the caller's jobs with filtering and pagination."""
    filters = JobListFilters(
        status=status,
        type=type,
        created_from=created_from,
        created_to=created_to,
        limit=limit,
        offset=offset,
    )
    jobs, total = await job_service.list_jobs(session, principal, filters)

    response_data = JobListResponse(
        jobs=[JobResponse.model_validate(job) for job in jobs],
        total=total,
        limit=limit,
        offset=offset,
    )
    return create_success_response(data=response_data.model_dump(mode="json"))


@router.get("/stats", response_model=dict)
async def get_queue_stats(
    session: AsyncSession = Depends(get_session),
    job_service: JobService = Depends(get_job_service),
) -> dict[str, Any]:
    """Queue statistics for the last 24 hours."""
    stats = await job_service.get_queue_stats(session)
    return create_success_response(data=stats.model_dump(mode="json"))


@router.get("/{job_id}", response_model=dict)
async def get_job(
    job_id: str,
    principal: Principal = PrincipalDep,
    session: AsyncSession = Depends(get_session),
    job_service: JobService = Depends(get_job_service),
) -> dict[str, Any]:
    """Get a specific job, including its estimated completion time."""
    job = await job_service.get_job(session, job_id, principal)
    if job is None:
        raise NotFoundError("Job not found", details={"job_id": job_id})

    return create_success_response(
        data=JobResponse.model_validate(job).model_dump(mode="json")
    )


@router.get("/{job_id}/logs", response_model=dict)
async def get_job_logs(
    job_id: str,
    principal: Principal = PrincipalDep,
    session: AsyncSession = Depends(get_session),
    job_service: JobService = Depends(get_job_service),
) -> dict[str, Any]:
    """Chronological log entries for a job."""
    logs = await job_service.get_job_logs(session, job_id, principal)
    if logs is None:
        raise NotFoundError("Job not found", details={"job_id": job_id})

    return create_success_response(
        data=[JobLogResponse.model_validate(log).model_dump(mode="json") for log in logs]
    )


@router.post("/{job_id}/cancel", response_model=dict)
async def cancel_job(
    job_id: str,
    principal: Principal = PrincipalDep,
    session: AsyncSession = Depends(get_session),
    job_service: JobService = Depends(get_job_service),
) -> dict[str, Any]:
    """Cancel a pending or processing job."""
    cancelled = await job_service.cancel_job(session, job_id, principal)
    if not cancelled:
        raise NotFoundError(
            "Job not found or cannot be cancelled", details={"job_id": job_id}
        )

    return create_success_response(
        data={"job_id": job_id, "status": JobStatus.CANCELLED.value},
        message="Job cancelled successfully",
    )

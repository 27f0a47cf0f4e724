from datetime import UTC, datetime, timedelta

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import func, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from orderqueue.config.logging import get_logger
from orderqueue.config.settings import Settings, SettingsDep
from orderqueue.infra.database import get_session
from orderqueue.v1.core.exceptions import create_success_response
from orderqueue.v1.infra.jobs.models import Job, JobStatus, utcnow

logger = get_logger(__name__)
router = APIRouter()


class DatabaseHealth(BaseModel):
    """Database health status."""

    connected: bool
    response_time_ms: float | None = None
    error: str | None = None


class QueueHealth(BaseModel):
    """Job queue health status."""

    processing: int = 0
    stuck_jobs_count: int = 0
    queue_depth: int = 0
    last_heartbeat_age_seconds: int | None = None


@router.get("/healthz", response_model=dict)
async def health_check(
    settings: Settings = SettingsDep, session: AsyncSession = Depends(get_session)
):
    """Health check endpoint with database and queue status."""

    timestamp = datetime.now(UTC).isoformat()

    db_health = await _check_database_health(session)
    overall_ok = db_health.connected

    queue_health = None
    if db_health.connected:
        try:
            queue_health = await _check_queue_health(session, settings)
        except SQLAlchemyError as e:
            # Queue health failure doesn't fail overall health
            logger.warning("Queue health check failed", error=str(e))
            await session.rollback()
            queue_health = QueueHealth()

    health_data = {
        "ok": overall_ok,
        "version": settings.version,
        "environment": settings.environment,
        "timestamp": timestamp,
        "database": db_health.model_dump(),
        "queue": queue_health.model_dump() if queue_health else None,
    }

    return create_success_response(data=health_data)


async def _check_database_health(session: AsyncSession) -> DatabaseHealth:
    """Check database connectivity and response time."""
    start_time = datetime.now(UTC)

    try:
        await session.execute(text("SELECT 1"))

        end_time = datetime.now(UTC)
        response_time_ms = (end_time - start_time).total_seconds() * 1000

        return DatabaseHealth(
            connected=True, response_time_ms=round(response_time_ms, 2)
        )

    except SQLAlchemyError as e:
        return DatabaseHealth(connected=False, error=str(e))


async def _check_queue_health(session: AsyncSession, settings: Settings) -> QueueHealth:
    """Processing count, stuck jobs and queue depth."""
    processing = JobStatus.PROCESSING.value
    now = utcnow()

    processing_count = (
        await session.execute(select(func.count(Job.id)).where(Job.status == processing))
    ).scalar() or 0

    last_heartbeat = (
        await session.execute(
            select(func.max(Job.heartbeat_at)).where(
                Job.status == processing, Job.heartbeat_at.is_not(None)
            )
        )
    ).scalar()

    last_heartbeat_age_seconds = None
    if last_heartbeat:
        # SQLite hands back naive UTC datetimes
        if last_heartbeat.tzinfo is None:
            last_heartbeat = last_heartbeat.replace(tzinfo=UTC)
        last_heartbeat_age_seconds = int((now - last_heartbeat).total_seconds())

    stuck_cutoff = now - timedelta(seconds=settings.job_stuck_after_s)
    stuck_jobs_count = (
        await session.execute(
            select(func.count(Job.id)).where(
                Job.status == processing,
                func.coalesce(Job.heartbeat_at, Job.started_at) < stuck_cutoff,
            )
        )
    ).scalar() or 0

    queue_depth = (
        await session.execute(
            select(func.count(Job.id)).where(Job.status == JobStatus.PENDING.value)
        )
    ).scalar() or 0

    return QueueHealth(
        processing=processing_count,
        stuck_jobs_count=stuck_jobs_count,
        queue_depth=queue_depth,
        last_heartbeat_age_seconds=last_heartbeat_age_seconds,
    )

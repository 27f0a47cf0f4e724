"""
Job store: persistence, state transitions and queue bookkeeping for jobs.
"""

from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from orderqueue.config.logging import get_logger
from orderqueue.config.settings import Settings
from orderqueue.v1.core.exceptions import ValidationError
from orderqueue.v1.core.registries import JobRegistry, job_registry
from orderqueue.v1.core.security import Principal
from orderqueue.v1.infra.jobs.models import (
    ACTIVE_STATUSES,
    ALLOWED_TRANSITIONS,
    TERMINAL_STATUSES,
    Job,
    JobLog,
    JobLogLevel,
    JobStatus,
    generate_job_id,
    utcnow,
)
from orderqueue.v1.infra.jobs.schemas import (
    JobCreate,
    JobListFilters,
    QueueStatsResponse,
)

logger = get_logger(__name__)

NO_SYNC = {"synchronize_session": False}


def _owner_clause(principal: Principal):
    """Rows visible to a principal: its own jobs, or its team's."""
    if principal.team_id:
        return or_(Job.user_id == principal.user_id, Job.team_id == principal.team_id)
    return Job.user_id == principal.user_id


def _seconds(value: timedelta | float) -> float:
    if isinstance(value, timedelta):
        return value.total_seconds()
    return float(value)


class JobService:
    """Service for managing queued jobs and their logs."""

    def __init__(self, settings: Settings, registry: JobRegistry | None = None):
        self.settings = settings
        self.registry = registry if registry is not None else job_registry

    # Submission

    async def create_job(
        self,
        session: AsyncSession,
        job_create: JobCreate,
        principal: Principal | None,
    ) -> Job:
        """
        Validate and enqueue a new job.

        Args:
            session: Database session
            job_create: Job type, payload and scheduling parameters
            principal: Owner of the job (user and optional team)

        Returns:
            The persisted job, ``pending`` with its initial queue position

        Raises:
            ValidationError: missing owner, unknown type or invalid payload
        """
        if principal is None or not principal.user_id:
            raise ValidationError("user_id is required to submit a job")

        payload = self._validate_payload(job_create)
        position = await self._count_active(session) + 1

        job = Job(
            job_id=generate_job_id(),
            user_id=principal.user_id,
            team_id=principal.team_id,
            type=job_create.type,
            payload=payload,
            status=JobStatus.PENDING.value,
            queue_position=position,
            priority=job_create.priority,
            attempts=0,
            max_attempts=job_create.max_attempts or self.settings.job_max_attempts,
        )

        try:
            session.add(job)
            await session.commit()
        except SQLAlchemyError:
            await session.rollback()
            raise

        logger.info(
            "Job enqueued",
            job_id=job.job_id,
            type=job.type,
            priority=job.priority,
            position=position,
            user_id=principal.user_id,
        )

        await self.append_log(
            session,
            job.job_id,
            JobLogLevel.INFO,
            "Job created and added to queue",
            {"position": position, "type": job.type},
        )
        await session.refresh(job)
        return job

    def _validate_payload(self, job_create: JobCreate) -> dict[str, Any]:
        try:
            handler = self.registry.get(job_create.type)
        except KeyError:
            raise ValidationError(
                f"Unknown job type: {job_create.type}",
                details={"registered_types": self.registry.list()},
            ) from None

        try:
            return handler.validate_payload(job_create.payload)
        except ValueError as e:
            raise ValidationError(
                f"Invalid payload for job type {job_create.type}",
                details={"error": str(e)},
            ) from None

    async def _count_active(self, session: AsyncSession) -> int:
        result = await session.execute(
            select(func.count(Job.id)).where(Job.status.in_(ACTIVE_STATUSES))
        )
        return result.scalar() or 0

    # Reads

    async def _find_job(
        self, session: AsyncSession, job_id: str, principal: Principal | None = None
    ) -> Job | None:
        query = (
            select(Job)
            .where(Job.job_id == job_id)
            .execution_options(populate_existing=True)
        )
        if principal is not None:
            query = query.where(_owner_clause(principal))

        result = await session.execute(query)
        return result.scalar_one_or_none()

    async def get_job(
        self, session: AsyncSession, job_id: str, principal: Principal | None = None
    ) -> Job | None:
        """Get a job by ID, scoped to the principal's user/team when given."""
        job = await self._find_job(session, job_id, principal)
        if job is not None and job.status == JobStatus.PENDING.value:
            job.estimated_completion_at = await self.estimate_completion(session, job)
        return job

    async def estimate_completion(
        self, session: AsyncSession, job: Job
    ) -> datetime | None:
        """Average recent wall-clock duration for the job's type, times its position."""
        result = await session.execute(
            select(Job.started_at, Job.completed_at)
            .where(
                Job.type == job.type,
                Job.status == JobStatus.COMPLETED.value,
                Job.started_at.is_not(None),
                Job.completed_at.is_not(None),
            )
            .order_by(Job.completed_at.desc())
            .limit(self.settings.job_eta_sample_size)
        )
        durations = [
            (completed_at - started_at).total_seconds()
            for started_at, completed_at in result.all()
        ]
        if not durations:
            return None

        average = sum(durations) / len(durations)
        return datetime.now(UTC) + timedelta(
            seconds=average * (job.queue_position or 1)
        )

    async def list_jobs(
        self,
        session: AsyncSession,
        principal: Principal,
        filters: JobListFilters | None = None,
    ) -> tuple[list[Job], int]:
        """List the principal's jobs, newest first, with the unpaginated total."""
        filters = filters or JobListFilters()
        base_query = select(Job).where(_owner_clause(principal))

        if filters.status:
            base_query = base_query.where(Job.status == filters.status.value)
        if filters.type:
            base_query = base_query.where(Job.type == filters.type)
        if filters.created_from:
            base_query = base_query.where(Job.created_at >= filters.created_from)
        if filters.created_to:
            base_query = base_query.where(Job.created_at <= filters.created_to)

        count_query = select(func.count()).select_from(base_query.subquery())
        total = (await session.execute(count_query)).scalar() or 0

        jobs_query = (
            base_query.order_by(Job.created_at.desc(), Job.id.desc())
            .offset(filters.offset)
            .limit(filters.limit)
            .execution_options(populate_existing=True)
        )
        jobs = (await session.execute(jobs_query)).scalars().all()
        return list(jobs), total

    async def get_job_logs(
        self, session: AsyncSession, job_id: str, principal: Principal | None = None
    ) -> list[JobLog] | None:
        """Chronological logs of a job; None when the job is not visible."""
        if principal is not None:
            if await self._find_job(session, job_id, principal) is None:
                return None

        result = await session.execute(
            select(JobLog)
            .where(JobLog.job_id == job_id)
            .order_by(JobLog.created_at.asc(), JobLog.id.asc())
        )
        return list(result.scalars().all())

    async def count_processing(self, session: AsyncSession) -> int:
        result = await session.execute(
            select(func.count(Job.id)).where(
                Job.status == JobStatus.PROCESSING.value
            )
        )
        return result.scalar() or 0

    async def get_status(self, session: AsyncSession, job_id: str) -> str | None:
        result = await session.execute(select(Job.status).where(Job.job_id == job_id))
        return result.scalar_one_or_none()

    async def is_cancelled(self, session: AsyncSession, job_id: str) -> bool:
        return await self.get_status(session, job_id) == JobStatus.CANCELLED.value

    # Transitions

    async def update_job_status(
        self,
        session: AsyncSession,
        job_id: str,
        status: JobStatus | str,
        result: dict[str, Any] | None = None,
        error: str | None = None,
        expected_status: JobStatus | str | None = None,
    ) -> bool:
        """
        Move a job to a new status with a single compare-and-set UPDATE.

        The row only changes if its current status is a legal predecessor of
        ``status`` (and equals ``expected_status`` when given). Returns False
        when the row was missing or in another state.
        """
        new_status = JobStatus(status).value
        allowed = ALLOWED_TRANSITIONS[new_status]
        if expected_status is not None:
            expected = JobStatus(expected_status).value
            allowed = tuple(s for s in allowed if s == expected)
        if not allowed:
            raise ValueError(
                f"Illegal transition to {new_status} from {expected_status}"
            )

        now = utcnow()
        values: dict[str, Any] = {"status": new_status, "updated_at": now}
        if new_status == JobStatus.PROCESSING.value:
            values["started_at"] = func.coalesce(Job.started_at, now)
            values["heartbeat_at"] = now
        if new_status in TERMINAL_STATUSES:
            values["completed_at"] = now
        if new_status != JobStatus.PENDING.value:
            values["queue_position"] = None
        if result is not None:
            values["result"] = result
        if error is not None:
            values["error"] = error

        outcome = await session.execute(
            update(Job)
            .where(Job.job_id == job_id, Job.status.in_(allowed))
            .values(**values)
            .execution_options(**NO_SYNC)
        )
        await session.commit()

        if outcome.rowcount == 0:
            logger.warning(
                "Job status transition rejected",
                job_id=job_id,
                status=new_status,
                allowed_from=list(allowed),
            )
            return False

        details: dict[str, Any] = {}
        if error is not None:
            details["error"] = error
        if result is not None:
            details["result"] = result
        await self.append_log(
            session,
            job_id,
            JobLogLevel.INFO,
            f"Job status changed to {new_status}",
            details or None,
        )
        return True

    async def claim_next_job(self, session: AsyncSession) -> Job | None:
        """
        Dequeue the next eligible job and mark it processing.

        Order is priority desc, then FIFO. The claim is a compare-and-set on
        ``status='pending'`` that also bumps ``attempts``, so two workers can
        never both own the same row.
        """
        claim_query = (
            select(Job)
            .where(
                Job.status == JobStatus.PENDING.value,
                Job.attempts < Job.max_attempts,
            )
            .order_by(Job.priority.desc(), Job.created_at.asc(), Job.id.asc())
            .limit(1)
            .with_for_update(skip_locked=True)
            .execution_options(populate_existing=True)
        )
        job = (await session.execute(claim_query)).scalar_one_or_none()
        if job is None:
            await session.commit()
            return None

        now = utcnow()
        outcome = await session.execute(
            update(Job)
            .where(
                Job.id == job.id,
                Job.status == JobStatus.PENDING.value,
                Job.attempts < Job.max_attempts,
            )
            .values(
                status=JobStatus.PROCESSING.value,
                attempts=Job.attempts + 1,
                started_at=func.coalesce(Job.started_at, now),
                heartbeat_at=now,
                queue_position=None,
                updated_at=now,
            )
            .execution_options(**NO_SYNC)
        )
        await session.commit()

        if outcome.rowcount == 0:
            logger.info("Lost race claiming job", job_id=job.job_id)
            return None

        await session.refresh(job)
        await self.append_log(
            session,
            job.job_id,
            JobLogLevel.INFO,
            "Job status changed to processing",
            {"attempt": job.attempts, "max_attempts": job.max_attempts},
        )
        await session.refresh(job)
        return job

    async def touch_heartbeat(self, session: AsyncSession, job_id: str) -> None:
        """Record that the worker owning a processing job is still alive."""
        await session.execute(
            update(Job)
            .where(Job.job_id == job_id, Job.status == JobStatus.PROCESSING.value)
            .values(heartbeat_at=utcnow())
            .execution_options(**NO_SYNC)
        )
        await session.commit()

    async def cancel_job(
        self, session: AsyncSession, job_id: str, principal: Principal | None
    ) -> bool:
        """Cancel a pending or processing job owned by the principal."""
        job = await self._find_job(session, job_id, principal)
        if job is None or not job.is_active():
            return False

        cancelled = await self.update_job_status(
            session, job_id, JobStatus.CANCELLED, error="Job cancelled by user"
        )
        if not cancelled:
            return False

        await self.recompute_queue_positions(session)

        logger.info(
            "Job cancelled",
            job_id=job_id,
            user_id=principal.user_id if principal else None,
        )
        return True

    # Logs

    async def append_log(
        self,
        session: AsyncSession,
        job_id: str,
        level: JobLogLevel | str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> bool:
        """
        Append a log entry for a job.

        Best effort: a storage failure is reported through structlog and
        swallowed so it can never replace the job's real outcome.
        """
        entry = JobLog(
            job_id=job_id,
            level=JobLogLevel(level).value,
            message=message,
            details=details,
        )
        try:
            session.add(entry)
            await session.commit()
            return True
        except SQLAlchemyError as e:
            await session.rollback()
            logger.warning(
                "Failed to append job log",
                job_id=job_id,
                log_message=message,
                error=str(e),
            )
            return False

    # Maintenance

    async def recompute_queue_positions(self, session: AsyncSession) -> int:
        """
        Renumber pending jobs 1..N in dequeue order.

        Jobs that left ``pending`` lose their position. Returns N.
        """
        result = await session.execute(
            select(Job.id, Job.queue_position)
            .where(Job.status == JobStatus.PENDING.value)
            .order_by(Job.priority.desc(), Job.created_at.asc(), Job.id.asc())
        )
        rows = result.all()

        changes = [
            {"id": row.id, "queue_position": position}
            for position, row in enumerate(rows, start=1)
            if row.queue_position != position
        ]
        if changes:
            await session.execute(update(Job), changes)

        await session.execute(
            update(Job)
            .where(
                Job.status != JobStatus.PENDING.value,
                Job.queue_position.is_not(None),
            )
            .values(queue_position=None)
            .execution_options(**NO_SYNC)
        )
        await session.commit()
        return len(rows)

    async def reclaim_stuck_jobs(
        self, session: AsyncSession, stale_after: timedelta | float | None = None
    ) -> int:
        """
        Fail processing jobs whose worker stopped reporting.

        A job is stuck when its last heartbeat (or its start time, if it never
        sent one) is older than ``stale_after``. Reclaimed jobs go straight to
        ``failed``: the worker that owned them is presumed dead.
        """
        stale_seconds = _seconds(
            stale_after if stale_after is not None else self.settings.job_stuck_after_s
        )
        now = utcnow()
        cutoff = now - timedelta(seconds=stale_seconds)
        last_seen = func.coalesce(Job.heartbeat_at, Job.started_at)
        stuck_filter = (
            Job.status == JobStatus.PROCESSING.value,
            last_seen < cutoff,
        )

        stuck_ids = (
            (await session.execute(select(Job.job_id).where(*stuck_filter)))
            .scalars()
            .all()
        )
        if not stuck_ids:
            await session.commit()
            return 0

        error = f"Job timed out after {round(stale_seconds / 60, 1):g} minutes"
        outcome = await session.execute(
            update(Job)
            .where(Job.job_id.in_(stuck_ids), *stuck_filter)
            .values(
                status=JobStatus.FAILED.value,
                error=error,
                completed_at=now,
                updated_at=now,
                queue_position=None,
            )
            .execution_options(**NO_SYNC)
        )
        await session.commit()

        for job_id in stuck_ids:
            await self.append_log(
                session,
                job_id,
                JobLogLevel.ERROR,
                "Job reclaimed after its worker stopped reporting",
                {"error": error, "stale_after_s": stale_seconds},
            )

        logger.warning(
            "Reclaimed stuck jobs",
            stuck_job_count=outcome.rowcount,
            stale_after_s=stale_seconds,
        )
        return outcome.rowcount

    async def cleanup_old_jobs(
        self, session: AsyncSession, retention: timedelta | None = None
    ) -> int:
        """Delete terminal jobs (and their logs first) finished before the cutoff."""
        retention = retention or timedelta(days=self.settings.job_cleanup_after_days)
        cutoff = utcnow() - retention
        expired = (
            Job.status.in_(TERMINAL_STATUSES),
            Job.completed_at < cutoff,
        )

        await session.execute(
            delete(JobLog)
            .where(JobLog.job_id.in_(select(Job.job_id).where(*expired)))
            .execution_options(**NO_SYNC)
        )
        result = await session.execute(
            delete(Job).where(*expired).execution_options(**NO_SYNC)
        )
        deleted_count = result.rowcount
        await session.commit()

        if deleted_count > 0:
            logger.info(
                "Cleaned up old jobs",
                deleted_count=deleted_count,
                retention_days=retention.total_seconds() / 86400,
            )

        return deleted_count

    async def get_queue_stats(self, session: AsyncSession) -> QueueStatsResponse:
        """Per-status counts and mean processing time over the last 24 hours."""
        since = utcnow() - timedelta(hours=24)

        status_result = await session.execute(
            select(Job.status, func.count(Job.id))
            .where(Job.created_at >= since)
            .group_by(Job.status)
        )
        by_status = dict(status_result.all())

        duration_result = await session.execute(
            select(Job.started_at, Job.completed_at).where(
                Job.created_at >= since,
                Job.status == JobStatus.COMPLETED.value,
                Job.started_at.is_not(None),
                Job.completed_at.is_not(None),
            )
        )
        durations = [
            (completed_at - started_at).total_seconds()
            for started_at, completed_at in duration_result.all()
        ]

        return QueueStatsResponse(
            pending=by_status.get(JobStatus.PENDING.value, 0),
            processing=by_status.get(JobStatus.PROCESSING.value, 0),
            completed=by_status.get(JobStatus.COMPLETED.value, 0),
            failed=by_status.get(JobStatus.FAILED.value, 0),
            cancelled=by_status.get(JobStatus.CANCELLED.value, 0),
            total=sum(by_status.values()),
            avg_processing_time_s=round(sum(durations) / len(durations), 1)
            if durations
            else 0,
        )

"""
Database-backed job worker: claims pending jobs and runs their handlers.
"""

import asyncio
import os
import socket
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from orderqueue.config.logging import get_logger, job_context
from orderqueue.config.settings import Settings
from orderqueue.v1.core.exceptions import JobCancelledError
from orderqueue.v1.core.registries import JobRegistry, job_registry
from orderqueue.v1.infra.jobs.context import JobContext
from orderqueue.v1.infra.jobs.models import JobLogLevel, JobStatus
from orderqueue.v1.infra.jobs.schemas import JobResponse, WorkerStatus
from orderqueue.v1.infra.jobs.service import JobService

logger = get_logger(__name__)

STORAGE_ERROR_BACKOFF_S = 5.0


class JobWorker:
    """
    Database-backed job worker.

    Each tick reclaims stuck jobs, respects the global concurrency ceiling,
    claims the next pending job with a compare-and-set and hands it to the
    registered handler under an outer timeout. Handler failures become
    status transitions (retry or failed); storage errors abort the tick.
    """

    def __init__(
        self,
        settings: Settings,
        session_factory: async_sessionmaker,
        registry: JobRegistry | None = None,
        service: JobService | None = None,
    ):
        self.settings = settings
        self.session_factory = session_factory
        self.registry = registry if registry is not None else job_registry
        self.service = service or JobService(settings, self.registry)
        self.worker_id = f"{socket.gethostname()}-{os.getpid()}-{id(self)}"
        self.running = False
        self.active_jobs: dict[str, JobResponse] = {}
        self._tasks: set[asyncio.Task] = set()
        self._stop_event = asyncio.Event()
        self._drain_timeout_s = settings.job_drain_timeout_s

    # Single-step API

    async def tick(self) -> JobResponse | None:
        """Reclaim, check the ceiling, claim one job. Returns the claimed job."""
        async with self.session_factory() as session:
            await self.service.reclaim_stuck_jobs(session)

            processing = await self.service.count_processing(session)
            if processing >= self.settings.job_max_concurrent:
                logger.debug(
                    "Concurrency ceiling reached",
                    processing=processing,
                    max_concurrent=self.settings.job_max_concurrent,
                )
                return None

            job = await self.service.claim_next_job(session)
            if job is None:
                return None

            # Snapshot before further commits can expire the instance
            claimed = JobResponse.model_validate(job)
            await self.service.recompute_queue_positions(session)

        logger.info(
            "Claimed job",
            worker_id=self.worker_id,
            job_id=claimed.job_id,
            type=claimed.type,
            attempt=claimed.attempts,
            max_attempts=claimed.max_attempts,
        )
        return claimed

    async def process(self, job: JobResponse) -> str:
        """Run the handler for a claimed job and record the outcome."""
        self.active_jobs[job.job_id] = job
        try:
            with job_context(job.job_id, job.type, job.attempts):
                return await self._run_handler(job)
        finally:
            self.active_jobs.pop(job.job_id, None)

    async def _run_handler(self, job: JobResponse) -> str:
        try:
            handler = self.registry.get(job.type)
        except KeyError:
            return await self._fail(job, f"Unknown job type: {job.type}")

        timeout = handler.timeout_s or self.settings.job_timeout_s

        try:
            async with asyncio.timeout(timeout):
                async with self.session_factory() as session:
                    ctx = JobContext(
                        job_id=job.job_id,
                        job_type=job.type,
                        user_id=job.user_id,
                        team_id=job.team_id,
                        attempt=job.attempts,
                        max_attempts=job.max_attempts,
                        service=self.service,
                        session=session,
                    )
                    await ctx.log(
                        JobLogLevel.INFO,
                        f"Processing job (attempt {job.attempts}/{job.max_attempts})",
                        {"worker_id": self.worker_id, "timeout_s": timeout},
                    )
                    result = await handler.handle(session, ctx, job.payload)
        except JobCancelledError as e:
            logger.info("Job left processing while running", status=e.job_status)
            return e.job_status or JobStatus.CANCELLED.value
        except TimeoutError:
            return await self._fail(job, f"Job processing timed out after {timeout:g}s")
        except SQLAlchemyError:
            raise
        except Exception as e:
            logger.warning(
                "Job handler raised", error=str(e), exception=e.__class__.__name__
            )
            return await self._fail(job, str(e) or e.__class__.__name__)

        return await self._complete(job, result)

    async def _complete(self, job: JobResponse, result: dict[str, Any] | None) -> str:
        async with self.session_factory() as session:
            completed = await self.service.update_job_status(
                session,
                job.job_id,
                JobStatus.COMPLETED,
                result=result,
                expected_status=JobStatus.PROCESSING,
            )
            if completed:
                await self.service.append_log(
                    session,
                    job.job_id,
                    JobLogLevel.INFO,
                    "Job completed successfully",
                    {"attempt": job.attempts},
                )
                logger.info("Job completed")
            else:
                logger.warning("Job finished but was no longer processing")

            await self.service.recompute_queue_positions(session)
            if completed:
                return JobStatus.COMPLETED.value
            return await self.service.get_status(session, job.job_id) or "missing"

    async def _fail(self, job: JobResponse, error: str) -> str:
        retry = job.attempts < job.max_attempts
        target = JobStatus.PENDING if retry else JobStatus.FAILED

        async with self.session_factory() as session:
            moved = await self.service.update_job_status(
                session,
                job.job_id,
                target,
                error=error,
                expected_status=JobStatus.PROCESSING,
            )
            if moved and retry:
                logger.warning(
                    "Job failed, will retry",
                    error=error,
                    attempt=job.attempts,
                    max_attempts=job.max_attempts,
                )
                await self.service.append_log(
                    session,
                    job.job_id,
                    JobLogLevel.WARNING,
                    f"Job failed, will retry (attempt {job.attempts}/{job.max_attempts})",
                    {"error": error},
                )
            elif moved:
                logger.error("Job failed permanently", error=error, attempts=job.attempts)
                await self.service.append_log(
                    session,
                    job.job_id,
                    JobLogLevel.ERROR,
                    "Job failed permanently",
                    {"error": error, "attempts": job.attempts},
                )
            else:
                logger.warning("Job failed but was no longer processing", error=error)

            await self.service.recompute_queue_positions(session)
            status = await self.service.get_status(session, job.job_id)

        if moved and retry and self.settings.job_retry_delay_s > 0:
            await asyncio.sleep(self.settings.job_retry_delay_s)

        return status or "missing"

    async def run_once(self) -> bool:
        """One tick plus processing. Returns False when nothing was claimed."""
        job = await self.tick()
        if job is None:
            return False
        await self.process(job)
        return True

    async def run_batch(self, max_jobs: int = 10) -> int:
        """
        Periodic trigger entry point.

        Runs up to ``max_jobs`` ticks, stopping at the first idle one.
        Returns the number of jobs processed.
        """
        processed = 0
        for _ in range(max_jobs):
            if not await self.run_once():
                break
            processed += 1

        logger.info("Worker batch finished", worker_id=self.worker_id, processed=processed)
        return processed

    # Continuous loop

    async def start(self) -> None:
        """Start the job worker main loop."""
        if self.running:
            raise RuntimeError("Worker is already running")

        self.running = True
        self._stop_event.clear()
        logger.info(
            "Starting job worker",
            worker_id=self.worker_id,
            max_concurrent=self.settings.job_max_concurrent,
            poll_interval_s=self.settings.job_poll_interval_s,
        )

        try:
            while self.running:
                try:
                    if len(self._tasks) >= self.settings.job_max_concurrent:
                        await self._idle(self.settings.job_poll_interval_s)
                        continue

                    job = await self.tick()
                    if job is None:
                        await self._idle(self.settings.job_poll_interval_s)
                        continue

                    task = asyncio.create_task(self.process(job))
                    self._tasks.add(task)
                    task.add_done_callback(self._on_task_done)

                except Exception:
                    logger.exception("Error in worker loop", worker_id=self.worker_id)
                    await self._idle(STORAGE_ERROR_BACKOFF_S)
        finally:
            self.running = False
            await self._drain(self._drain_timeout_s)

    def request_stop(self) -> None:
        """Ask the main loop to exit. start() drains in-flight jobs before returning."""
        self.running = False
        self._stop_event.set()

    async def stop(self, timeout_s: float | None = None) -> None:
        """Stop the worker gracefully, waiting for in-flight jobs."""
        logger.info("Stopping job worker", worker_id=self.worker_id)
        if timeout_s is not None:
            self._drain_timeout_s = timeout_s
        self.request_stop()
        await self._drain(self._drain_timeout_s)

    async def _drain(self, timeout_s: float) -> None:
        if self._tasks:
            await asyncio.wait(set(self._tasks), timeout=timeout_s)

        if self.active_jobs:
            logger.warning(
                "Worker stopped with active jobs",
                worker_id=self.worker_id,
                active_jobs=len(self.active_jobs),
            )

    def get_status(self) -> WorkerStatus:
        return WorkerStatus(
            worker_id=self.worker_id,
            running=self.running,
            current_jobs=[
                {
                    "job_id": job.job_id,
                    "type": job.type,
                    "attempt": job.attempts,
                    "started_at": job.started_at,
                }
                for job in self.active_jobs.values()
            ],
        )

    async def _idle(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except TimeoutError:
            pass

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Job task crashed",
                worker_id=self.worker_id,
                error=str(exc),
                exception=exc.__class__.__name__,
            )

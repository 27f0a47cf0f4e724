import asyncio
from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from orderqueue.v1.core.registries import JobRegistry
from orderqueue.v1.infra.jobs.models import utcnow
from orderqueue.v1.infra.jobs.schemas import JobCreate
from orderqueue.v1.infra.jobs.service import JobService
from orderqueue.v1.infra.jobs.worker import JobWorker


class RecordingHandler:
    """Test handler that runs a scripted list of outcomes, one per attempt."""

    def __init__(self, outcomes=None, timeout_s=None, delay=0.0):
        self.outcomes = list(outcomes or [])
        self.timeout_s = timeout_s
        self.delay = delay
        self.calls = []

    def validate_payload(self, payload):
        if "fail_validation" in payload:
            raise ValueError("bad payload")
        return payload

    async def handle(self, session, ctx, payload):
        self.calls.append((ctx.job_id, ctx.attempt))
        await ctx.log("info", "Handler running", {"attempt": ctx.attempt})
        if self.delay:
            await asyncio.sleep(self.delay)
        outcome = self.outcomes.pop(0) if self.outcomes else {"done": True}
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class CancellingHandler:
    """Cancels its own job mid-run, then checks for cancellation."""

    timeout_s = None

    def validate_payload(self, payload):
        return payload

    async def handle(self, session, ctx, payload):
        await ctx.service.cancel_job(session, ctx.job_id, None)
        await ctx.check_cancelled()
        return {"unreachable": True}


@pytest.fixture
def handler():
    return RecordingHandler()


@pytest.fixture
def test_registry(handler):
    registry = JobRegistry()
    registry.register("test_job", handler)
    registry.register("cancelling_job", CancellingHandler())
    return registry


@pytest.fixture
def service(settings, test_registry):
    return JobService(settings, test_registry)


@pytest.fixture
def test_worker(settings, session_factory, test_registry, service):
    return JobWorker(settings, session_factory, test_registry, service)


@pytest.fixture
def enqueue(service, session_factory, principal):
    async def submit(job_type="test_job", **kwargs):
        async with session_factory() as session:
            job = await service.create_job(
                session, JobCreate(type=job_type, payload={"n": 1}, **kwargs), principal
            )
            return job.job_id

    return submit


async def fetch(service, session_factory, job_id):
    async with session_factory() as session:
        job = await service.get_job(session, job_id)
        logs = await service.get_job_logs(session, job_id)
        return job, [log.message for log in logs]


class TestProcessing:
    async def test_successful_job(self, test_worker, service, session_factory, enqueue, handler):
        job_id = await enqueue()

        assert await test_worker.run_once() is True

        job, messages = await fetch(service, session_factory, job_id)
        assert job.status == "completed"
        assert job.result == {"done": True}
        assert job.attempts == 1
        assert job.completed_at is not None
        assert handler.calls == [(job_id, 1)]
        assert messages == [
            "Job created and added to queue",
            "Job status changed to processing",
            "Processing job (attempt 1/3)",
            "Handler running",
            "Job status changed to completed",
            "Job completed successfully",
        ]

    async def test_idle_when_queue_empty(self, test_worker):
        assert await test_worker.run_once() is False

    async def test_retries_then_succeeds(
        self, test_worker, service, session_factory, enqueue, handler
    ):
        handler.outcomes = [RuntimeError("flaky"), {"done": "second try"}]
        job_id = await enqueue()

        assert await test_worker.run_once() is True
        job, messages = await fetch(service, session_factory, job_id)
        assert job.status == "pending"
        assert job.error == "flaky"
        assert job.queue_position == 1
        assert "Job failed, will retry (attempt 1/3)" in messages

        assert await test_worker.run_once() is True
        job, _ = await fetch(service, session_factory, job_id)
        assert job.status == "completed"
        assert job.attempts == 2
        assert job.result == {"done": "second try"}

    async def test_fails_permanently_after_max_attempts(
        self, test_worker, service, session_factory, enqueue, handler
    ):
        handler.outcomes = [RuntimeError("boom")] * 3
        job_id = await enqueue()

        assert await test_worker.run_batch(max_jobs=10) == 3

        job, messages = await fetch(service, session_factory, job_id)
        assert job.status == "failed"
        assert job.attempts == 3
        assert job.error == "boom"
        assert job.queue_position is None
        assert messages[-1] == "Job failed permanently"
        assert messages.count("Job status changed to pending") == 2

    async def test_single_attempt_job_fails_immediately(
        self, test_worker, service, session_factory, enqueue, handler
    ):
        handler.outcomes = [ValueError("nope")]
        job_id = await enqueue(max_attempts=1)

        await test_worker.run_once()

        job, _ = await fetch(service, session_factory, job_id)
        assert job.status == "failed"
        assert job.error == "nope"

    async def test_handler_timeout(
        self, test_worker, service, session_factory, enqueue, handler
    ):
        handler.timeout_s = 0.05
        handler.delay = 1.0
        job_id = await enqueue(max_attempts=1)

        await test_worker.run_once()

        job, _ = await fetch(service, session_factory, job_id)
        assert job.status == "failed"
        assert job.error == "Job processing timed out after 0.05s"

    async def test_default_timeout_applies(
        self, settings, session_factory, test_registry, service, enqueue, handler
    ):
        worker = JobWorker(
            settings.model_copy(update={"job_timeout_s": 0.05}),
            session_factory,
            test_registry,
            service,
        )
        handler.delay = 1.0
        job_id = await enqueue(max_attempts=1)

        await worker.run_once()

        job, _ = await fetch(service, session_factory, job_id)
        assert job.error == "Job processing timed out after 0.05s"

    async def test_unknown_type_fails(
        self, test_worker, service, session_factory, enqueue, test_registry
    ):
        job_id = await enqueue(max_attempts=1)
        test_registry._implementations.pop("test_job")

        await test_worker.run_once()

        job, _ = await fetch(service, session_factory, job_id)
        assert job.status == "failed"
        assert job.error == "Unknown job type: test_job"

    async def test_cancellation_leaves_row_cancelled(
        self, test_worker, service, session_factory, enqueue
    ):
        job_id = await enqueue("cancelling_job")

        assert await test_worker.run_once() is True

        job, messages = await fetch(service, session_factory, job_id)
        assert job.status == "cancelled"
        assert job.error == "Job cancelled by user"
        assert job.result is None
        assert "Job completed successfully" not in messages

    async def test_storage_errors_propagate(
        self, test_worker, service, session_factory, enqueue, handler
    ):
        handler.outcomes = [OperationalError("UPDATE job_queue", {}, Exception("db gone"))]
        job_id = await enqueue()

        with pytest.raises(OperationalError):
            await test_worker.run_once()

        # The job is left processing for the reclaimer
        job, _ = await fetch(service, session_factory, job_id)
        assert job.status == "processing"
        assert test_worker.active_jobs == {}


class TestScheduling:
    async def test_priority_order(
        self, test_worker, enqueue, handler
    ):
        low = await enqueue(priority=1)
        high = await enqueue(priority=9)

        await test_worker.run_batch()

        assert [job_id for job_id, _ in handler.calls] == [high, low]

    async def test_concurrency_ceiling(
        self, test_worker, service, session_factory, enqueue
    ):
        await enqueue()
        second = await enqueue()
        async with session_factory() as session:
            await service.claim_next_job(session)

        assert await test_worker.tick() is None

        job, _ = await fetch(service, session_factory, second)
        assert job.status == "pending"

    async def test_tick_reclaims_stuck_jobs(
        self, test_worker, service, session_factory, enqueue, set_job_fields
    ):
        stuck = await enqueue()
        waiting = await enqueue()
        async with session_factory() as session:
            await service.claim_next_job(session)
        stale = utcnow() - timedelta(minutes=30)
        await set_job_fields(stuck, started_at=stale, heartbeat_at=stale)

        claimed = await test_worker.tick()

        assert claimed.job_id == waiting
        job, _ = await fetch(service, session_factory, stuck)
        assert job.status == "failed"

    async def test_run_batch_respects_max_jobs(
        self, test_worker, service, session_factory, enqueue
    ):
        for _ in range(3):
            await enqueue()

        assert await test_worker.run_batch(max_jobs=2) == 2

        async with session_factory() as session:
            stats = await service.get_queue_stats(session)
        assert stats.completed == 2
        assert stats.pending == 1


class TestLifecycle:
    async def test_status_reports_active_jobs(
        self, test_worker, enqueue, handler
    ):
        seen = []

        async def snapshot(session, ctx, payload):
            seen.append(test_worker.get_status())
            return {}

        handler.handle = snapshot
        job_id = await enqueue()

        await test_worker.run_once()

        assert seen[0].current_jobs[0]["job_id"] == job_id
        assert seen[0].current_jobs[0]["attempt"] == 1
        status = test_worker.get_status()
        assert status.running is False
        assert status.current_jobs == []
        assert status.worker_id == test_worker.worker_id

    async def test_start_and_stop(
        self, test_worker, service, session_factory, enqueue
    ):
        job_id = await enqueue()

        loop_task = asyncio.create_task(test_worker.start())
        for _ in range(200):
            job, _ = await fetch(service, session_factory, job_id)
            if job.status == "completed":
                break
            await asyncio.sleep(0.01)

        assert test_worker.running is True
        await test_worker.stop(timeout_s=1)
        await asyncio.wait_for(loop_task, timeout=1)

        assert test_worker.running is False
        assert job.status == "completed"

    async def test_cannot_start_twice(self, test_worker):
        loop_task = asyncio.create_task(test_worker.start())
        await asyncio.sleep(0.01)

        with pytest.raises(RuntimeError, match="already running"):
            await test_worker.start()

        await test_worker.stop()
        await asyncio.wait_for(loop_task, timeout=1)

    async def test_loop_exit_waits_for_in_flight_job(
        self, test_worker, service, session_factory, enqueue, handler
    ):
        handler.delay = 0.3
        job_id = await enqueue()

        loop_task = asyncio.create_task(test_worker.start())
        for _ in range(200):
            if handler.calls:
                break
            await asyncio.sleep(0.01)
        assert handler.calls

        test_worker.request_stop()
        await asyncio.wait_for(loop_task, timeout=2)

        job, _ = await fetch(service, session_factory, job_id)
        assert job.status == "completed"
        assert test_worker.active_jobs == {}

    async def test_stop_from_another_task_drains_job(
        self, test_worker, service, session_factory, enqueue, handler
    ):
        handler.delay = 0.3
        job_id = await enqueue()

        loop_task = asyncio.create_task(test_worker.start())
        for _ in range(200):
            if handler.calls:
                break
            await asyncio.sleep(0.01)

        stop_task = asyncio.create_task(test_worker.stop())
        await asyncio.wait_for(loop_task, timeout=2)

        # The loop itself returns only after the job settles
        job, _ = await fetch(service, session_factory, job_id)
        assert job.status == "completed"
        await stop_task

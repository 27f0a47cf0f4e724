"""Worker Commands - Run the job worker against the database"""

import asyncio
import signal
from collections.abc import Awaitable, Callable
from datetime import timedelta
from typing import TypeVar

import typer
from rich.console import Console

from orderqueue.config.logging import setup_logging
from orderqueue.config.settings import get_settings
from orderqueue.infra.database import Database
from orderqueue.v1.infra.jobs import registry_init  # noqa: F401 registers handlers
from orderqueue.v1.infra.jobs.service import JobService
from orderqueue.v1.infra.jobs.worker import JobWorker

from ..utils.formatting import print_info, print_success

console = Console()
app = typer.Typer(name="worker", help="Job worker and queue maintenance commands")

T = TypeVar("T")


def _with_database(action: Callable[[Database], Awaitable[T]]) -> T:
    """Run an async action against a fresh database connection."""
    settings = get_settings()
    setup_logging()

    async def runner() -> T:
        database = Database(settings)
        try:
            return await action(database)
        finally:
            await database.close()

    return asyncio.run(runner())


@app.command("run")
def run_worker():
    """▶️ Run the worker loop until interrupted"""
    settings = get_settings()
    print_info(
        f"Starting worker (max concurrent: {settings.job_max_concurrent}, "
        f"poll interval: {settings.job_poll_interval_s}s)"
    )

    async def action(database: Database) -> None:
        worker = JobWorker(settings, database.SessionLocal)
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, worker.request_stop)
        await worker.start()

    _with_database(action)
    print_success("Worker stopped")


@app.command("drain")
def drain_queue(
    max_jobs: int = typer.Option(10, "--max-jobs", "-n", min=1, help="Jobs to process"),
):
    """⏩ Process up to N queued jobs and exit (cron entry point)"""

    async def action(database: Database) -> int:
        worker = JobWorker(get_settings(), database.SessionLocal)
        return await worker.run_batch(max_jobs)

    processed = _with_database(action)
    print_success(f"Processed {processed} jobs")


@app.command("reclaim")
def reclaim_stuck(
    stale_after: float | None = typer.Option(
        None, "--stale-after", help="Seconds without a heartbeat (default from settings)"
    ),
):
    """🧯 Fail processing jobs whose worker stopped reporting"""

    async def action(database: Database) -> int:
        async with database.SessionLocal() as session:
            return await JobService(get_settings()).reclaim_stuck_jobs(
                session, stale_after
            )

    reclaimed = _with_database(action)
    print_success(f"Reclaimed {reclaimed} stuck jobs")


@app.command("cleanup")
def cleanup_jobs(
    days: int | None = typer.Option(
        None, "--days", "-d", min=1, help="Retention in days (default from settings)"
    ),
):
    """🧹 Delete finished jobs and their logs past retention"""
    retention = timedelta(days=days) if days else None

    async def action(database: Database) -> int:
        async with database.SessionLocal() as session:
            return await JobService(get_settings()).cleanup_old_jobs(session, retention)

    deleted = _with_database(action)
    print_success(f"Deleted {deleted} old jobs")

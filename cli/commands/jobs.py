"""Jobs Commands - Submit and monitor queued jobs through the API"""

import json

import typer
from rich.console import Console
from rich.panel import Panel

from ..client.base import OrderQueueError
from ..client.endpoints import OrderQueueClient
from ..utils.config_manager import config
from ..utils.formatting import (
    create_job_panel,
    create_jobs_table,
    create_logs_table,
    create_stats_panel,
    print_error,
    print_info,
    print_success,
)

console = Console()
app = typer.Typer(name="jobs", help="Job submission and monitoring commands")


@app.command("submit")
def submit_job(
    type: str = typer.Argument(..., help="Job type (e.g. create_order)"),
    payload: str = typer.Option("{}", "--payload", "-p", help="Job payload as JSON"),
    priority: int = typer.Option(0, "--priority", help="Higher values run first"),
    max_attempts: int | None = typer.Option(
        None, "--max-attempts", help="Attempt cap for this job"
    ),
):
    """📤 Submit a job to the queue"""
    try:
        payload_data = json.loads(payload)
    except json.JSONDecodeError as e:
        print_error(f"Payload is not valid JSON: {e}")
        raise typer.Exit(1) from None

    if not isinstance(payload_data, dict):
        print_error("Payload must be a JSON object")
        raise typer.Exit(1)

    try:
        with OrderQueueClient(config.get("api.base_url")) as client:
            job = client.submit_job(type, payload_data, priority, max_attempts)
    except OrderQueueError as e:
        print_error(f"Failed to submit job: {e}")
        raise typer.Exit(1) from None

    print_success(f"Job {job.get('job_id')} added to queue")
    console.print(f"Queue position: [yellow]{job.get('queue_position')}[/yellow]")


@app.command("list")
def list_jobs(
    status: str | None = typer.Option(None, "--status", "-s", help="Filter by status"),
    type: str | None = typer.Option(None, "--type", "-t", help="Filter by job type"),
    limit: int | None = typer.Option(
        None, "--limit", "-l", help="Number of jobs to show"
    ),
    offset: int = typer.Option(0, "--offset", "-o", help="Skip first N jobs"),
):
    """📋 List your jobs, newest first"""
    limit = limit or int(config.get("display.jobs_per_page", 20))

    try:
        with OrderQueueClient(config.get("api.base_url")) as client:
            data = client.list_jobs(status=status, type=type, limit=limit, offset=offset)
    except OrderQueueError as e:
        print_error(f"Failed to list jobs: {e}")
        raise typer.Exit(1) from None

    jobs = data.get("jobs", [])
    total = data.get("total", len(jobs))

    if not jobs:
        console.print(
            Panel(
                "📭 [yellow]No jobs found![/yellow]\n\n"
                f"• Status: {status or 'any'}\n"
                f"• Type: {type or 'any'}",
                title="Empty Results",
                border_style="yellow",
            )
        )
        return

    console.print(create_jobs_table(jobs))
    console.print(f"\n📊 Showing [cyan]{len(jobs)}[/cyan] of [yellow]{total}[/yellow] jobs")

    if offset + limit < total:
        console.print(f"💡 Use [cyan]--offset {offset + limit}[/cyan] to see more")


@app.command("show")
def show_job(job_id: str = typer.Argument(..., help="Job ID to show")):
    """🔍 Show a job with its queue position and ETA"""
    try:
        with OrderQueueClient(config.get("api.base_url")) as client:
            job = client.get_job(job_id)
    except OrderQueueError as e:
        print_error(f"Failed to fetch job: {e}")
        raise typer.Exit(1) from None

    console.print(create_job_panel(job))


@app.command("logs")
def show_logs(job_id: str = typer.Argument(..., help="Job ID")):
    """📜 Show the log entries of a job"""
    try:
        with OrderQueueClient(config.get("api.base_url")) as client:
            logs = client.get_job_logs(job_id)
    except OrderQueueError as e:
        print_error(f"Failed to fetch job logs: {e}")
        raise typer.Exit(1) from None

    if not logs:
        print_info("No log entries yet")
        return

    console.print(create_logs_table(logs))


@app.command("cancel")
def cancel_job(job_id: str = typer.Argument(..., help="Job ID to cancel")):
    """🛑 Cancel a pending or processing job"""
    try:
        with OrderQueueClient(config.get("api.base_url")) as client:
            client.cancel_job(job_id)
    except OrderQueueError as e:
        print_error(f"Failed to cancel job: {e}")
        raise typer.Exit(1) from None

    print_success(f"Job {job_id} cancelled")


@app.command("stats")
def show_stats():
    """📊 Show queue statistics for the last 24 hours"""
    try:
        with OrderQueueClient(config.get("api.base_url")) as client:
            stats = client.get_stats()
    except OrderQueueError as e:
        print_error(f"Failed to fetch queue statistics: {e}")
        raise typer.Exit(1) from None

    console.print(create_stats_panel(stats))

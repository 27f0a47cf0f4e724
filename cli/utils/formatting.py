"""Rich Formatting Utilities for CLI Output"""

from typing import Any

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

console = Console()

STATUS_STYLES = {
    "pending": "yellow",
    "processing": "cyan",
    "completed": "green",
    "failed": "red",
    "cancelled": "dim",
}

LEVEL_STYLES = {
    "info": "blue",
    "warning": "yellow",
    "error": "red",
}


def print_success(message: str):
    """Print success message with green styling"""
    console.print(f"[green]✓ {message}[/green]")


def print_error(message: str):
    """Print error message with red styling"""
    console.print(f"[red]✗ {message}[/red]")


def print_warning(message: str):
    """Print warning message with yellow styling"""
    console.print(f"[yellow]⚠ {message}[/yellow]")


def print_info(message: str):
    """Print info message with blue styling"""
    console.print(f"[blue]ℹ {message}[/blue]")


def format_status(status: str) -> str:
    style = STATUS_STYLES.get(status, "white")
    return f"[{style}]{status}[/{style}]"


def create_jobs_table(jobs: list[dict[str, Any]]) -> Table:
    """Create a formatted table for a job listing"""
    table = Table(title="Jobs", box=box.ROUNDED)

    table.add_column("Job ID", justify="left", style="cyan", no_wrap=True)
    table.add_column("Type", justify="center", style="magenta")
    table.add_column("Status", justify="center")
    table.add_column("Position", justify="right", style="yellow")
    table.add_column("Attempts", justify="center")
    table.add_column("Created", justify="left", style="dim")

    for job in jobs:
        position = job.get("queue_position")
        table.add_row(
            job.get("job_id", ""),
            job.get("type", ""),
            format_status(job.get("status", "")),
            str(position) if position else "—",
            f"{job.get('attempts', 0)}/{job.get('max_attempts', 0)}",
            (job.get("created_at") or "")[:19],
        )

    return table


def create_job_panel(job: dict[str, Any]) -> Panel:
    """Create a detail panel for a single job"""
    lines = [
        f"• Type: [magenta]{job.get('type')}[/magenta]",
        f"• Status: {format_status(job.get('status', ''))}",
        f"• Priority: [cyan]{job.get('priority', 0)}[/cyan]",
        f"• Attempts: [cyan]{job.get('attempts', 0)}/{job.get('max_attempts', 0)}[/cyan]",
    ]
    if job.get("queue_position"):
        lines.append(f"• Queue position: [yellow]{job['queue_position']}[/yellow]")
    if job.get("estimated_completion_at"):
        lines.append(f"• Estimated completion: [yellow]{job['estimated_completion_at']}[/yellow]")
    if job.get("error"):
        lines.append(f"• Error: [red]{job['error']}[/red]")
    result = job.get("result") or {}
    if result.get("actualCompletionStatus"):
        lines.append(
            f"• Order outcome: {format_status(result['actualCompletionStatus'])}"
        )

    return Panel("\n".join(lines), title=f"Job {job.get('job_id')}", border_style="blue")


def create_logs_table(logs: list[dict[str, Any]]) -> Table:
    """Create a formatted table for job log entries"""
    table = Table(title="Job Logs", box=box.ROUNDED)

    table.add_column("Time", justify="left", style="dim", no_wrap=True)
    table.add_column("Level", justify="center")
    table.add_column("Message", justify="left", style="white")

    for entry in logs:
        level = entry.get("level", "info")
        style = LEVEL_STYLES.get(level, "white")
        table.add_row(
            (entry.get("created_at") or "")[:19],
            f"[{style}]{level}[/{style}]",
            entry.get("message", ""),
        )

    return table


def create_stats_panel(stats: dict[str, Any]) -> Panel:
    """Create formatted panel for queue statistics"""
    content = f"""
📊 [bold blue]Last 24 hours[/bold blue]

• Pending: [yellow]{stats.get("pending", 0)}[/yellow]
• Processing: [cyan]{stats.get("processing", 0)}[/cyan]
• Completed: [green]{stats.get("completed", 0)}[/green]
• Failed: [red]{stats.get("failed", 0)}[/red]
• Cancelled: [dim]{stats.get("cancelled", 0)}[/dim]
• Total: [blue]{stats.get("total", 0)}[/blue]
• Avg processing time: [magenta]{stats.get("avg_processing_time_s", 0)}s[/magenta]
"""

    return Panel(content, title="Queue Statistics", border_style="green")

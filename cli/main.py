"""Order Queue CLI - Main Entry Point"""

import typer
from rich.console import Console
from rich.panel import Panel

from .client.base import OrderQueueError
from .client.endpoints import OrderQueueClient
from .commands import config, jobs, worker
from .utils.config_manager import config as config_manager
from .utils.formatting import print_error, print_info

console = Console()

# Create main Typer app
app = typer.Typer(
    name="orderqueue",
    help="📦 Order Queue - fulfillment job queue CLI",
    rich_markup_mode="rich",
)

# Add command subapps
app.add_typer(jobs.app, name="jobs")
app.add_typer(worker.app, name="worker")
app.add_typer(config.app, name="config")


@app.command()
def status():
    """📊 Check API connectivity and queue health"""
    base_url = config_manager.get("api.base_url")
    print_info(f"Checking connection to: {base_url}")

    try:
        with OrderQueueClient(base_url) as client:
            health = client.health_check()
    except OrderQueueError as e:
        print_error(f"Failed to connect: {e}")
        console.print(Panel(
            f"🚫 [red]Connection Failed[/red]\n\n"
            f"Make sure the Order Queue API is running at:\n"
            f"[blue]{base_url}[/blue]\n\n"
            f"You can update the API URL with:\n"
            f"[cyan]orderqueue config set api.base_url <url>[/cyan]",
            title="Connection Error",
            border_style="red"
        ))
        raise typer.Exit(1) from None

    queue = health.get("queue") or {}
    console.print(Panel(
        f"🚀 [green]Connected Successfully![/green]\n\n"
        f"• Version: [cyan]{health.get('version', 'unknown')}[/cyan]\n"
        f"• Environment: [yellow]{health.get('environment', 'unknown')}[/yellow]\n"
        f"• API URL: [blue]{base_url}[/blue]\n"
        f"• Queue depth: [yellow]{queue.get('queue_depth', 0)}[/yellow]\n"
        f"• Processing: [cyan]{queue.get('processing', 0)}[/cyan]\n"
        f"• Stuck jobs: [red]{queue.get('stuck_jobs_count', 0)}[/red]",
        title="System Status",
        border_style="green"
    ))


@app.callback()
def main(ctx: typer.Context):
    """
    📦 Order Queue CLI

    Submit and monitor fulfillment jobs, run the worker, and manage
    CLI settings.
    """


if __name__ == "__main__":
    app()

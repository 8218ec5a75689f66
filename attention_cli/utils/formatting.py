"""Rich Formatting Utilities for CLI Output"""

from typing import Any

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

console = Console()

STATUS_STYLES = {
    "QUEUED": "yellow",
    "RUNNING": "blue",
    "SUCCEEDED": "green",
    "FAILED": "red",
    "COMPLETED": "green",
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


def _styled_status(status: str) -> str:
    style = STATUS_STYLES.get(status, "white")
    return f"[{style}]{status}[/{style}]"


def _format_time(value: Any) -> str:
    if value is None:
        return "-"
    return value.strftime("%Y-%m-%d %H:%M:%S")


def create_runs_table(runs: list[Any]) -> Table:
    """Create a formatted table for the runs list"""
    table = Table(title="Runs", box=box.ROUNDED)

    table.add_column("ID", justify="left", style="cyan", no_wrap=True)
    table.add_column("Shop", justify="left", style="magenta")
    table.add_column("Status", justify="center")
    table.add_column("Queued", justify="right")
    table.add_column("Succeeded", justify="right", style="green")
    table.add_column("Failed", justify="right", style="red")
    table.add_column("Created", justify="center", style="yellow")
    table.add_column("Completed", justify="center", style="yellow")

    for run in runs:
        table.add_row(
            str(run.id),
            run.shop,
            _styled_status(run.status),
            str(run.products_queued),
            str(run.succeeded),
            str(run.failed),
            _format_time(run.created_at),
            _format_time(run.completed_at),
        )

    return table


def create_jobs_table(
    jobs: list[Any], titles: dict[str, str] | None = None, title: str = "Jobs"
) -> Table:
    """Create a formatted table for insight jobs"""
    titles = titles or {}
    table = Table(title=title, box=box.ROUNDED)

    table.add_column("ID", justify="left", style="cyan", no_wrap=True)
    table.add_column("Product", justify="left", style="white")
    table.add_column("Status", justify="center")
    table.add_column("Attempts", justify="right")
    table.add_column("Next retry", justify="center", style="yellow")
    table.add_column("Last error", justify="left", style="red")

    for job in jobs:
        product = titles.get(job.product_id, job.product_id)
        table.add_row(
            str(job.id)[:8],
            product,
            _styled_status(job.status),
            str(job.attempts),
            _format_time(job.next_retry_at),
            (job.last_error or "-")[:60],
        )

    return table


def create_run_panel(run: Any) -> Panel:
    """Create formatted panel with the counters of one run"""
    pending = max(run.products_queued - run.succeeded - run.failed, 0)
    content = f"""
• Shop: [magenta]{run.shop}[/magenta]
• Status: {_styled_status(run.status)}
• Products queued: [blue]{run.products_queued}[/blue]
• Succeeded: [green]{run.succeeded}[/green]
• Failed: [red]{run.failed}[/red]
• Pending: [yellow]{pending}[/yellow]
• Created: {_format_time(run.created_at)}
• Completed: {_format_time(run.completed_at)}
"""

    return Panel(content, title=f"Run {run.id}", border_style="cyan")

"""Attention Insights CLI - Main Entry Point"""

from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel

from attention.config.settings import get_settings

from .commands import queue, runs

console = Console()

# Create main Typer app
app = typer.Typer(
    name="attention-cli",
    help="🔦 Attention Insights - job queue operator CLI",
    rich_markup_mode="rich",
)

# Queue commands
app.command("worker")(queue.run_worker)
app.command("tick")(queue.tick)
app.command("reconcile")(queue.reconcile)
app.command("reclaim")(queue.reclaim)

# Inspection commands
app.command("runs")(runs.list_runs)
app.command("run")(runs.show_run)
app.command("jobs")(runs.list_jobs)


@app.command()
def version():
    """📎 Show CLI version information"""
    from . import __version__

    settings = get_settings()
    console.print(Panel(
        f"🔦 [bold cyan]Attention Insights CLI[/bold cyan]\n\n"
        f"• Version: [green]{__version__}[/green]\n"
        f"• Environment: [yellow]{settings.environment}[/yellow]\n"
        f"• Executor: [blue]{settings.executor.value}[/blue]",
        title="Version Info",
        border_style="cyan"
    ))


def version_callback(value: bool):
    """Print the version and stop before any command is required"""
    if value:
        from . import __version__
        console.print(f"Attention Insights CLI v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit",
        callback=version_callback,
        is_eager=True,
    ),
):
    """
    🔦 Attention Insights CLI

    Run the insight job worker, reconcile runs and inspect the queue.
    """


if __name__ == "__main__":
    app()

"""
SiteWatch CLI Main Entry Point

The main Typer application that assembles all command groups.
"""

import asyncio
from datetime import datetime
from typing import Annotated

import structlog
import typer
from rich.console import Console
from rich.panel import Panel
from rich.text import Text

from sitewatch import __version__

# Configure structlog
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.dev.ConsoleRenderer(colors=True),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger(__name__)
console = Console()

# Create the main app
app = typer.Typer(
    name="sitewatch",
    help="SiteWatch - Scheduled website validation with alerts",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(
            Panel(
                Text.from_markup(
                    f"[bold cyan]SiteWatch[/bold cyan] v{__version__}\n"
                    "[dim]Scheduled website validation with alerts[/dim]"
                ),
                title="Version",
                border_style="cyan",
            )
        )
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose",
            "-v",
            help="Enable verbose output.",
        ),
    ] = False,
) -> None:
    """
    SiteWatch - Scheduled website validation

    Checks sites on an interval by status code, page content or a
    JavaScript rule, retries flaky failures and alerts on state changes.
    """
    if verbose:
        import logging

        logging.basicConfig(level=logging.DEBUG)


# Import and register sub-commands
from sitewatch.cli.sites import app as sites_app

app.add_typer(sites_app, name="site", help="Manage monitored sites")


@app.command()
def run(
    data: Annotated[
        str,
        typer.Option("--data", "-d", help="Path of the sites file"),
    ] = "",
) -> None:
    """
    Run the scheduler in the foreground.

    Sites added, changed or removed from another shell are picked up on the
    next reconcile. Use Ctrl+C to stop.

    Example:
        sitewatch run
        sitewatch run --data ~/.sitewatch/sites.json
    """
    from sitewatch.config import get_settings
    from sitewatch.engine import get_scheduler
    from sitewatch.notifications import get_notification_router
    from sitewatch.store import get_site_store

    settings = get_settings()

    async def _daemon() -> None:
        store = get_site_store(persist_path=data or None)
        scheduler = get_scheduler()

        report = await scheduler.ensure_scheduled_validations()

        console.print(Panel(
            f"[green]Scheduler started[/green]\n\n"
            f"[cyan]Active sites:[/cyan] {len(report.scheduled)}\n"
            f"[cyan]Reconcile every:[/cyan] {settings.reconcile_interval_seconds}s\n"
            f"[dim]Press Ctrl+C to stop[/dim]",
            title="SiteWatch",
            border_style="green",
        ))

        await scheduler.start()

        try:
            while True:
                await asyncio.sleep(settings.reconcile_interval_seconds)
                await store.reload()
                await scheduler.ensure_scheduled_validations()
                await store.cleanup_old_results()
        except asyncio.CancelledError:
            pass
        finally:
            await scheduler.stop()
            await get_notification_router().close()
            console.print("[yellow]Scheduler stopped[/yellow]")

    try:
        asyncio.run(_daemon())
    except KeyboardInterrupt:
        console.print("\n[yellow]Shutting down...[/yellow]")


@app.command()
def info() -> None:
    """Show information about SiteWatch."""
    from rich.table import Table

    from sitewatch.config import get_settings
    from sitewatch.store import get_site_store

    settings = get_settings()
    sites = asyncio.run(get_site_store().list_sites())
    active = [s for s in sites if not s.disabled]

    table = Table(title="SiteWatch Information", show_header=False, border_style="cyan")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="white")

    table.add_row("Version", __version__)
    table.add_row("Data File", str(settings.data_path) if settings.data_path else "memory only")
    table.add_row("Sites", f"{len(sites)} ({len(active)} active)")
    table.add_row("Notify Channels", ", ".join(settings.notify_channels) or "none")
    table.add_row("Max Concurrent Checks", str(settings.max_concurrent_checks))
    table.add_row("Checked At", datetime.now().strftime("%Y-%m-%d %H:%M:%S"))

    console.print(table)


if __name__ == "__main__":
    app()

"""
Site CLI Commands

Commands for managing monitored sites.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated

import structlog
import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from sitewatch.engine import (
    Failed,
    Header,
    RetryPolicy,
    RetryScheduled,
    Site,
    Status,
    Success,
    ValidationMode,
    ValidationOutcome,
    create_validation_job,
)
from sitewatch.store import SiteStore, get_site_store

logger = structlog.get_logger(__name__)
console = Console()

app = typer.Typer(
    name="site",
    help="Manage monitored sites",
    no_args_is_help=True,
)

_UNITS_MS = {"ms": 1, "s": 1000, "m": 60_000, "h": 3_600_000, "d": 86_400_000}


def parse_duration(value: str, default_unit: str = "m") -> int:
    """Parse a duration string (e.g., '500ms', '30s', '10m', '6h', '1d') to milliseconds."""
    value = value.lower().strip()

    for unit in ("ms", "s", "m", "h", "d"):
        if value.endswith(unit):
            number = value[: -len(unit)].strip()
            break
    else:
        number, unit = value, default_unit

    amount = float(number)
    if amount <= 0:
        raise ValueError(f"Duration must be positive: {value}")
    return int(amount * _UNITS_MS[unit])


def format_duration(ms: int) -> str:
    """Format milliseconds as a human-readable duration."""
    if ms < 1000:
        return f"{ms}ms"
    seconds = ms // 1000
    if seconds < 60:
        return f"{seconds}s"
    minutes = seconds // 60
    if minutes < 60:
        return f"{minutes}m"
    hours, minutes = divmod(minutes, 60)
    if hours < 24:
        return f"{hours}h {minutes}m" if minutes else f"{hours}h"
    days, hours = divmod(hours, 24)
    return f"{days}d {hours}h" if hours else f"{days}d"


def parse_header(raw: str) -> Header:
    """Parse a 'Key: Value' header."""
    key, sep, value = raw.partition(":")
    if not sep or not key.strip():
        raise ValueError(f"Header must look like 'Key: Value': {raw}")
    return Header(key=key.strip(), value=value.strip())


def describe_outcome(outcome: ValidationOutcome) -> str:
    """One-line rich markup for an outcome."""
    if isinstance(outcome, Success):
        return "[green]✓ ok[/green]"
    if isinstance(outcome, RetryScheduled):
        return f"[yellow]↻ retry {outcome.attempt}[/yellow] {outcome.reason or ''}"
    if isinstance(outcome, Failed):
        return f"[red]✗[/red] {outcome.reason}"
    return str(outcome)


_STATUS_STYLE = {
    Status.OK: "[green]●[/green] ok",
    Status.WAITING: "[dim]○[/dim] waiting",
    Status.ERROR: "[red]✗[/red] error",
}


async def _find_or_exit(store: SiteStore, site_id: str) -> Site:
    site = await store.find_site(site_id)
    if not site:
        console.print(f"[red]Site not found: {site_id}[/red]")
        raise typer.Exit(1)
    return site


@app.command("add")
def add_site(
    url: Annotated[str, typer.Argument(help="URL to check")],
    name: Annotated[str, typer.Option("--name", "-n", help="Site name")] = "",
    tag: Annotated[
        list[str],
        typer.Option("--tag", "-t", help="Tag (repeatable)"),
    ] = [],
    interval: Annotated[
        str,
        typer.Option("--interval", "-i", help="Check interval (e.g., 30s, 10m, 1h)"),
    ] = "10m",
    timeout: Annotated[
        str,
        typer.Option("--timeout", help="Network timeout (e.g., 10s, 500ms)"),
    ] = "10s",
    mode: Annotated[
        str,
        typer.Option(
            "--mode",
            "-m",
            help="Validation mode: status_code, term_search, javascript",
        ),
    ] = "status_code",
    term: Annotated[str, typer.Option("--term", help="Search term for term_search")] = "",
    script_file: Annotated[
        Path | None,
        typer.Option("--script-file", help="JavaScript file for javascript mode"),
    ] = None,
    header: Annotated[
        list[str],
        typer.Option("--header", "-H", help="Request header 'Key: Value' (repeatable)"),
    ] = [],
    cert: Annotated[
        str,
        typer.Option("--cert", help="Client certificate PEM (path or file:// URI)"),
    ] = "",
    retries: Annotated[int, typer.Option("--retries", help="Retries before reporting failure")] = 0,
    retry_minutes: Annotated[
        int,
        typer.Option("--retry-minutes", help="Minutes between retries"),
    ] = 0,
    disabled: Annotated[bool, typer.Option("--disabled", help="Add without scheduling")] = False,
    check_now: Annotated[
        bool,
        typer.Option("--check-now", help="Check the site immediately after adding"),
    ] = False,
) -> None:
    """
    Add a site to monitor.

    Examples:
        sitewatch site add https://example.com
        sitewatch site add https://example.com -m term_search --term "Welcome" -i 5m
        sitewatch site add https://api.example.com -H "Authorization: Bearer x" --retries 2 --retry-minutes 1
    """
    try:
        validation_mode = ValidationMode.from_value(mode)
    except ValueError:
        console.print(f"[red]Invalid validation mode: {mode}[/red]")
        console.print(f"Valid modes: {', '.join(m.value for m in ValidationMode)}")
        raise typer.Exit(1)

    try:
        check_interval_ms = parse_duration(interval, default_unit="m")
        network_timeout_ms = parse_duration(timeout, default_unit="s")
        headers = [parse_header(h) for h in header]
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    validation_args: str | None = None
    if validation_mode == ValidationMode.TERM_SEARCH:
        if not term:
            console.print("[red]term_search mode needs --term[/red]")
            raise typer.Exit(1)
        validation_args = term
    elif validation_mode == ValidationMode.JAVASCRIPT:
        if script_file is None or not script_file.is_file():
            console.print("[red]javascript mode needs an existing --script-file[/red]")
            raise typer.Exit(1)
        validation_args = script_file.read_text()

    try:
        site = Site(
            name=name,
            url=url,
            tags=[t.strip().lower() for t in tag if t.strip()],
            check_interval_ms=check_interval_ms,
            network_timeout_ms=network_timeout_ms,
            validation_mode=validation_mode,
            validation_args=validation_args,
            headers=headers,
            client_certificate=cert or None,
            retry_policy=RetryPolicy(count=retries, minutes=retry_minutes),
            disabled=disabled,
        )
    except ValueError as e:
        console.print(f"[red]Invalid site: {e}[/red]")
        raise typer.Exit(1)

    async def _add() -> None:
        store = get_site_store()
        await store.save_site(site)
        logger.info("Site added", site_id=site.id, url=site.url)

        if check_now:
            console.print("[cyan]Running initial check...[/cyan]")
            await _check_once(store, site)

    asyncio.run(_add())

    console.print(Panel(
        f"[green]✓ Site added[/green]\n\n"
        f"[cyan]ID:[/cyan] {site.id}\n"
        f"[cyan]URL:[/cyan] {site.url}\n"
        f"[cyan]Mode:[/cyan] {site.validation_mode.value}\n"
        f"[cyan]Interval:[/cyan] {format_duration(site.check_interval_ms)}\n"
        f"[cyan]Retries:[/cyan] {retries} every {retry_minutes}m",
        title="New Site",
        border_style="green",
    ))


@app.command("list")
def list_sites(
    tag: Annotated[
        list[str],
        typer.Option("--tag", "-t", help="Only sites with any of these tags"),
    ] = [],
) -> None:
    """
    List monitored sites.

    Example:
        sitewatch site list
        sitewatch site list -t production
    """
    async def _list() -> None:
        store = get_site_store()
        sites = await store.list_sites(tags=tag or None)

        if not sites:
            console.print("[dim]No sites found.[/dim]")
            return

        table = Table(title="Sites", border_style="cyan")
        table.add_column("ID", style="dim", width=12)
        table.add_column("Name", style="cyan")
        table.add_column("URL", style="white")
        table.add_column("Mode", style="dim")
        table.add_column("Status", justify="center")
        table.add_column("Interval")
        table.add_column("Tags", style="dim")

        for site in sites:
            status = "[dim]disabled[/dim]" if site.disabled else _STATUS_STYLE[site.status]
            table.add_row(
                site.id[:12],
                site.display_name[:30],
                site.url[:40],
                site.validation_mode.value,
                status,
                format_duration(site.check_interval_ms),
                ", ".join(site.tags),
            )

        console.print(table)
        console.print(f"\n[dim]Total: {len(sites)} sites[/dim]")

    asyncio.run(_list())


@app.command("show")
def show_site(
    site_id: Annotated[str, typer.Argument(help="Site ID (or unique prefix)")],
) -> None:
    """Show details and recent results of a site."""
    async def _show() -> None:
        store = get_site_store()
        site = await _find_or_exit(store, site_id)

        content = Text()
        for label, value in [
            ("ID", site.id),
            ("Name", site.display_name),
            ("URL", site.url),
            ("Mode", site.validation_mode.value),
            ("Interval", format_duration(site.check_interval_ms)),
            ("Timeout", format_duration(site.network_timeout_ms)),
            ("Retries", f"{site.retry_policy.count} every {site.retry_policy.minutes}m"),
            ("Headers", ", ".join(h.key for h in site.headers) or "-"),
            ("Certificate", site.client_certificate or "-"),
            ("Tags", ", ".join(site.tags) or "-"),
            ("Disabled", "yes" if site.disabled else "no"),
        ]:
            content.append(f"{label}: ", style="cyan")
            content.append(f"{value}\n")

        if site.validation_args:
            content.append("\nValidation args:\n", style="cyan")
            content.append(site.validation_args[:500] + "\n", style="dim")

        console.print(Panel(content, title="Site Details", border_style="cyan"))

        results = await store.get_results(site.id, limit=10)
        if results:
            result_table = Table(title="Recent Results", border_style="dim")
            result_table.add_column("Time", style="dim")
            result_table.add_column("Outcome")

            for r in results:
                result_table.add_row(
                    r.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
                    describe_outcome(r.outcome),
                )

            console.print(result_table)

    asyncio.run(_show())


async def _check_once(store: SiteStore, site: Site) -> ValidationOutcome:
    job = create_validation_job()
    report = await job.run(site)
    if report.outcome.is_terminal:
        await store.record_result(site.id, report.outcome, job.clock())
    console.print(f"{site.display_name}: {describe_outcome(report.outcome)}")
    console.print(f"[dim]Duration: {report.duration_seconds:.2f}s[/dim]")
    return report.outcome


@app.command("check")
def check_site(
    site_id: Annotated[str, typer.Argument(help="Site ID to check")],
) -> None:
    """
    Check a site once, right now.

    Retries are not applied: a failing check is reported immediately.
    """
    async def _check() -> ValidationOutcome:
        store = get_site_store()
        site = await _find_or_exit(store, site_id)
        console.print(f"[cyan]Checking {site.display_name}...[/cyan]")
        return await _check_once(store, site)

    outcome = asyncio.run(_check())
    if not isinstance(outcome, Success):
        raise typer.Exit(1)


def _set_disabled(site_id: str, disabled: bool) -> None:
    async def _update() -> Site:
        store = get_site_store()
        site = await _find_or_exit(store, site_id)
        updated = await store.set_disabled(site.id, disabled)
        return updated or site

    site = asyncio.run(_update())
    if disabled:
        console.print(f"[yellow]Site disabled: {site.display_name}[/yellow]")
    else:
        console.print(f"[green]Site enabled: {site.display_name}[/green]")


@app.command("enable")
def enable_site(
    site_id: Annotated[str, typer.Argument(help="Site ID to enable")],
) -> None:
    """Resume checking a site."""
    _set_disabled(site_id, False)


@app.command("disable")
def disable_site(
    site_id: Annotated[str, typer.Argument(help="Site ID to disable")],
) -> None:
    """Stop checking a site without deleting it."""
    _set_disabled(site_id, True)


@app.command("remove")
def remove_site(
    site_id: Annotated[str, typer.Argument(help="Site ID to remove")],
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Skip confirmation"),
    ] = False,
) -> None:
    """Remove a site and its results."""
    async def _remove() -> None:
        store = get_site_store()
        site = await _find_or_exit(store, site_id)

        if not force:
            confirm = typer.confirm(f"Remove site '{site.display_name}'?")
            if not confirm:
                raise typer.Abort()

        await store.delete_site(site.id)
        console.print(f"[red]Site removed: {site.display_name}[/red]")

    asyncio.run(_remove())

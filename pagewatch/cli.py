"""Command line interface for Pagewatch."""

import asyncio
import logging
import sys
from datetime import timedelta
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from . import __version__
from .config import settings
from .core.exceptions import PagewatchError
from .core.types import UsageKind
from .database import close_db_engine, init_db
from .engine import build_engine
from .utils.logging_config import log_operation, setup_logging


console = Console()
logger = logging.getLogger(__name__)

STATUS_STYLES = {
    "ok": "green",
    "blocked": "magenta",
    "selector_missing": "yellow",
    "error": "red",
}


async def _with_engine(operation):
    engine = build_engine()
    try:
        return await operation(engine)
    finally:
        await engine.close()
        await close_db_engine()


@click.group()
@click.version_option(version=__version__)
@click.option('--log-level', default=None, help='Override LOG_LEVEL')
def cli(log_level: Optional[str]):
    """Pagewatch - webpage value monitoring."""
    setup_logging(level=log_level or settings.log_level, log_file=settings.log_file)


@cli.command('init-db')
def init_db_command():
    """Create database tables."""
    async def _init():
        try:
            await init_db()
        finally:
            await close_db_engine()

    asyncio.run(_init())
    console.print("[bold green]✅ Database initialized[/bold green]")


@cli.command()
@click.argument('monitor_id', type=int)
def check(monitor_id: int):
    """Check one monitor now."""
    async def _check(engine):
        log_operation(logger, 'check_now', 'started', monitor_id=monitor_id)
        result = await engine.check_now(monitor_id)
        log_operation(logger, 'check_now', 'completed', monitor_id=monitor_id, check_status=result.status.value)
        return result

    try:
        result = asyncio.run(_with_engine(_check))
    except PagewatchError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        sys.exit(1)

    style = STATUS_STYLES.get(result.status.value, "white")
    console.print(f"Status: [{style}]{result.status.value}[/{style}]")
    console.print(f"Value: {result.current_value!r}")
    if result.changed:
        console.print(f"[bold green]Changed[/bold green] from {result.previous_value!r}")
    if result.error:
        console.print(f"Error: {result.error}")
    if result.healed_selector:
        console.print(f"Selector auto-healed to [cyan]{result.healed_selector}[/cyan]")
    if result.paused:
        console.print("[bold yellow]Monitor was auto-paused[/bold yellow]")


@cli.command()
@click.argument('monitor_id', type=int)
@click.option('--expected', '-e', default=None, help='Text the selector should yield')
def suggest(monitor_id: int, expected: Optional[str]):
    """Suggest selectors for a monitor's page."""
    try:
        report = asyncio.run(_with_engine(lambda engine: engine.suggest_selectors(monitor_id, expected)))
    except PagewatchError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        sys.exit(1)

    current = report.current_selector
    console.print(
        f"Current selector [cyan]{current.selector}[/cyan]: {current.count} matches"
        + ("" if current.valid else f" [red]({current.error or 'no match'})[/red]")
    )
    if report.note:
        console.print(f"[yellow]{report.note}[/yellow]")

    table = Table(title=f"Suggestions ({report.page_title or 'untitled page'})")
    table.add_column("#", justify="right")
    table.add_column("Selector", style="cyan")
    table.add_column("Matches", justify="right")
    table.add_column("Sample")
    for index, suggestion in enumerate(report.suggestions, start=1):
        table.add_row(str(index), suggestion.selector, str(suggestion.count), suggestion.sample_text)
    console.print(table)


@cli.command()
def tick():
    """Run a single scheduler tick."""
    report = asyncio.run(_with_engine(lambda engine: engine.scheduler.run_tick()))
    console.print(f"Considered {report.considered}, dispatched {report.dispatched}")
    for status, count in sorted(report.statuses.items()):
        console.print(f"• {status}: {count}")
    console.print(f"Changes: {report.changes}, paused: {report.paused}, crashed: {report.crashed}")


@cli.command()
def run():
    """Run the scheduler until interrupted."""
    async def _run(engine):
        await engine.scheduler.start()
        console.print("[bold green]Scheduler running, Ctrl+C to stop[/bold green]")
        try:
            while engine.scheduler.running:
                await asyncio.sleep(1)
        finally:
            await engine.scheduler.stop()

    try:
        asyncio.run(_with_engine(_run))
    except KeyboardInterrupt:
        console.print("\nStopped")


@cli.command()
@click.option('--kind', type=click.Choice([k.value for k in UsageKind]), default=None)
@click.option('--days', default=30, show_default=True, help='Window size in days')
def usage(kind: Optional[str], days: int):
    """Show render/email usage."""
    async def _usage(engine):
        since = engine.quota.clock() - timedelta(days=days)
        return await engine.quota.usage_since(since, UsageKind(kind) if kind else None)

    summary = asyncio.run(_with_engine(_usage))
    console.print(f"Usage since {summary.since:%Y-%m-%d}: {summary.total} "
                  f"({summary.successes} ok, {summary.failures} failed)")

    table = Table(title="Top consumers")
    table.add_column("User")
    table.add_column("Count", justify="right")
    for user_id, count in summary.top_consumers(10):
        table.add_row(user_id, str(count))
    console.print(table)


@cli.command()
@click.option('--host', default='0.0.0.0', show_default=True)
@click.option('--port', default=8000, show_default=True)
def serve(host: str, port: int):
    """Serve the HTTP API with the scheduler."""
    import uvicorn
    uvicorn.run("pagewatch.main:app", host=host, port=port)


if __name__ == '__main__':
    cli()

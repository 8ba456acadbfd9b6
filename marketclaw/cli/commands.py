"""CLI commands for marketclaw."""

import asyncio
import time
from typing import Any, Awaitable, Callable

import typer
from rich.console import Console
from rich.table import Table

from marketclaw import __logo__, __version__

app = typer.Typer(
    name="marketclaw",
    help=f"{__logo__} marketclaw - job scheduling with calendar sync",
    no_args_is_help=True,
)

console = Console()


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} marketclaw v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=version_callback, is_eager=True
    ),
):
    """marketclaw - job scheduling with calendar sync."""
    pass


# ============================================================================
# Shared helpers
# ============================================================================


async def _print_job(job) -> None:
    """Execution callback for CLI-driven runs: show what the job carries."""
    payload = job.payload.model_dump(by_alias=True, exclude_none=True)
    console.print(f"{__logo__} [bold]{job.name}[/bold] ({job.type}) payload={payload}")


def _make_scheduler(arm_timers: bool = False):
    from marketclaw.config.loader import load_config
    from marketclaw.providers.factory import create_scheduler

    return create_scheduler(load_config(), on_job_execute=_print_job, arm_timers=arm_timers)


def _with_scheduler(fn: Callable[[Any], Awaitable[Any]]) -> Any:
    """Load the job store offline (no timers), run ``fn`` against it."""
    from marketclaw.errors import StoreCorruptError

    async def run():
        scheduler = _make_scheduler()
        try:
            await scheduler.load()
        except StoreCorruptError as e:
            console.print(f"[red]Error: {e}[/red]")
            raise typer.Exit(1)
        try:
            return await fn(scheduler)
        finally:
            scheduler.stop_all()

    return asyncio.run(run())


def _format_ms(ms: int | None) -> str:
    if not ms:
        return ""
    return time.strftime("%Y-%m-%d %H:%M", time.localtime(ms / 1000))


# ============================================================================
# Job Commands
# ============================================================================

jobs_app = typer.Typer(help="Manage scheduled jobs")
app.add_typer(jobs_app, name="jobs")


@jobs_app.command("list")
def jobs_list(
    all: bool = typer.Option(False, "--all", "-a", help="Include disabled jobs"),
    type: str = typer.Option(None, "--type", "-t", help="Filter by job type"),
    product: str = typer.Option(None, "--product", "-p", help="Filter by product id"),
):
    """List scheduled jobs."""
    async def fetch(scheduler):
        return scheduler.list_jobs(
            type=type, enabled=None if all else True, product_id=product
        )

    jobs = _with_scheduler(fetch)

    if not jobs:
        console.print("No scheduled jobs.")
        return

    table = Table(title="Scheduled Jobs")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Type")
    table.add_column("Schedule")
    table.add_column("Status")
    table.add_column("Next Run")
    table.add_column("Runs", justify="right")
    table.add_column("Calendar")

    for job in jobs:
        if job.one_shot:
            sched = f"once at {_format_ms(job.execute_at)}"
        else:
            sched = job.cron_expression or ""

        status = "[green]enabled[/green]" if job.enabled else "[dim]disabled[/dim]"

        cal = ""
        if job.calendar_sync:
            if job.calendar_sync.sync_error:
                cal = f"[red]{job.calendar_sync.sync_error[:30]}[/red]"
            elif job.calendar_sync.event_id:
                cal = job.calendar_sync.event_id

        table.add_row(
            job.id, job.name, job.type, sched, status,
            _format_ms(job.next_run), str(job.run_count), cal,
        )

    console.print(table)


@jobs_app.command("add")
def jobs_add(
    name: str = typer.Option(..., "--name", "-n", help="Job name"),
    when: str = typer.Option(
        None, "--when", "-w", help="Phrase, e.g. 'every day', 'in 20 minutes', 'at 3pm'"
    ),
    cron_expr: str = typer.Option(
        None, "--cron", "-c", help="Cron expression (e.g. '0 9 * * *')"
    ),
    at: str = typer.Option(None, "--at", help="Run once at time (ISO format)"),
    job_type: str = typer.Option("reminder", "--type", "-t", help="post, reminder, task or heartbeat"),
    content: str = typer.Option(None, "--content", "-m", help="Post content or reminder message"),
    description: str = typer.Option(None, "--description", help="Job description"),
    product: str = typer.Option(None, "--product", "-p", help="Associated product id"),
    channel: str = typer.Option(None, "--channel", help="Channel (e.g. 'telegram', 'twitter')"),
    no_calendar: bool = typer.Option(False, "--no-calendar", help="Do not mirror to the calendar"),
):
    """Add a scheduled job."""
    from marketclaw.scheduler.timeparse import (
        is_one_shot,
        parse_to_cron,
        parse_to_timestamp,
    )

    execute_at = None
    if when:
        if is_one_shot(when):
            execute_at = parse_to_timestamp(when)
        else:
            cron_expr = parse_to_cron(when)
        if execute_at is None and cron_expr is None:
            console.print(f"[red]Error: Could not parse schedule \"{when}\"[/red]")
            raise typer.Exit(1)
    elif at:
        execute_at = parse_to_timestamp(at)
        if execute_at is None:
            console.print(f"[red]Error: Invalid ISO time \"{at}\"[/red]")
            raise typer.Exit(1)
    elif not cron_expr:
        console.print("[red]Error: Must specify --when, --cron, or --at[/red]")
        raise typer.Exit(1)

    if job_type not in ("post", "reminder", "task", "heartbeat"):
        console.print(f"[red]Error: Unknown job type \"{job_type}\"[/red]")
        raise typer.Exit(1)

    async def add(scheduler):
        return await scheduler.add_job(
            name,
            cron_expression=cron_expr,
            execute_at=execute_at,
            type=job_type,
            description=description,
            payload={"content": content, "productId": product, "channel": channel},
            sync_to_calendar=False if no_calendar else None,
        )

    job = _with_scheduler(add)
    console.print(f"[green]✓[/green] Added job '{job.name}' ({job.id})")
    if job.next_run:
        console.print(f"  Next run: {_format_ms(job.next_run)}")
    else:
        console.print("  [yellow]Not armed: schedule is invalid[/yellow]")
    if job.calendar_sync and job.calendar_sync.sync_error:
        console.print(f"  [yellow]Calendar: {job.calendar_sync.sync_error}[/yellow]")


@jobs_app.command("remove")
def jobs_remove(
    job_id: str = typer.Argument(..., help="Job ID to remove"),
):
    """Remove a scheduled job."""
    if _with_scheduler(lambda s: s.remove_job(job_id)):
        console.print(f"[green]✓[/green] Removed job {job_id}")
    else:
        console.print(f"[red]Job {job_id} not found[/red]")
        raise typer.Exit(1)


@jobs_app.command("enable")
def jobs_enable(
    job_id: str = typer.Argument(..., help="Job ID"),
    disable: bool = typer.Option(False, "--disable", help="Disable instead of enable"),
):
    """Enable or disable a job."""
    async def toggle(scheduler):
        if disable:
            return await scheduler.disable_job(job_id)
        return await scheduler.enable_job(job_id)

    if _with_scheduler(toggle):
        status = "disabled" if disable else "enabled"
        console.print(f"[green]✓[/green] Job {job_id} {status}")
    else:
        console.print(f"[red]Job {job_id} not found[/red]")
        raise typer.Exit(1)


@jobs_app.command("run")
def jobs_run(
    job_id: str = typer.Argument(..., help="Job ID to run"),
):
    """Manually run a job."""
    try:
        found = _with_scheduler(lambda s: s.run_now(job_id))
    except typer.Exit:
        raise
    except Exception as e:
        console.print(f"[red]Job {job_id} failed: {e}[/red]")
        raise typer.Exit(1)

    if found:
        console.print("[green]✓[/green] Job executed")
    else:
        console.print(f"[red]Job {job_id} not found[/red]")
        raise typer.Exit(1)


@jobs_app.command("parse")
def jobs_parse(
    text: str = typer.Argument(..., help="Schedule phrase to interpret"),
):
    """Show how a schedule phrase would be interpreted."""
    from marketclaw.scheduler.timeparse import (
        is_one_shot,
        parse_to_cron,
        parse_to_timestamp,
    )

    if is_one_shot(text):
        ts = parse_to_timestamp(text)
        if ts is None:
            console.print(f"[red]Could not parse \"{text}\"[/red]")
            raise typer.Exit(1)
        console.print(f"one-shot at {_format_ms(ts)} ({ts})")
        return

    expr = parse_to_cron(text)
    if expr is None:
        console.print(f"[red]Could not parse \"{text}\"[/red]")
        raise typer.Exit(1)
    console.print(f"recurring: {expr}")


# ============================================================================
# Calendar Commands
# ============================================================================

calendar_app = typer.Typer(help="Calendar sync")
app.add_typer(calendar_app, name="calendar")


@calendar_app.command("status")
def calendar_status():
    """Check whether the calendar backend is reachable."""
    from marketclaw.config.loader import load_config
    from marketclaw.providers.factory import create_calendar_backend

    config = load_config()
    backend = create_calendar_backend(config)
    if backend is None:
        console.print("Calendar backend: [dim]none[/dim]")
        return

    connected = asyncio.run(backend.is_connected())
    sync = "[green]on[/green]" if config.calendar.enabled else "[dim]off[/dim]"
    state = "[green]connected[/green]" if connected else "[red]not connected[/red]"
    console.print(f"Calendar backend: {config.calendar.backend} ({state}), sync {sync}")
    console.print(f"Default calendar: {config.calendar.default_calendar_id or 'primary'}")


# ============================================================================
# Serve
# ============================================================================


@app.command()
def serve(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Run the scheduler in the foreground until interrupted."""
    from loguru import logger

    from marketclaw.errors import StoreCorruptError
    from marketclaw.logging_config import setup_logging

    setup_logging("DEBUG" if verbose else None)
    console.print(f"{__logo__} Starting marketclaw scheduler...")

    async def run():
        scheduler = _make_scheduler(arm_timers=True)
        try:
            await scheduler.start()
        except StoreCorruptError as e:
            console.print(f"[red]Error: {e}[/red]")
            raise typer.Exit(1)
        status = scheduler.status()
        console.print(
            f"[green]✓[/green] Scheduler running: {status['jobs']} jobs, {status['armed']} armed"
        )
        try:
            await asyncio.Event().wait()
        finally:
            scheduler.stop_all()
            logger.info("Scheduler stopped")

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        console.print("\nGoodbye!")


if __name__ == "__main__":
    app()

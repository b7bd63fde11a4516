"""JobWarden CLI application."""

from __future__ import annotations

import asyncio
import signal
import sys
from pathlib import Path
from typing import Optional

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from jobwarden import __version__
from jobwarden.config import DEFAULT_CONFIG_FILE, create_default_config, load_config
from jobwarden.core.watchdog import create_watchdog
from jobwarden.db import Database
from jobwarden.errors import ConfigError
from jobwarden.models import JobFilter, JobOutcome, JobStatus, JobWardenConfig, SweepSummary

# Initialize
app = typer.Typer(
    name="jobwarden",
    help="JobWarden - archives finished jobs and requeues stuck ones",
    no_args_is_help=True,
)
console = Console()

OUTCOME_STYLES = {
    JobOutcome.ARCHIVED: "green",
    JobOutcome.REQUEUED: "green",
    JobOutcome.ALREADY_HANDLED: "dim",
    JobOutcome.FAILED: "red",
    JobOutcome.FAILED_TO_UNLOCK: "bold red",
}


def setup_logging(level: str = "INFO", log_file: Path | None = None, verbose: bool = False) -> None:
    """Setup logging configuration."""
    logger.remove()

    if verbose:
        level = "DEBUG"

    # Console logging
    logger.add(
        sys.stderr,
        format="<level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>",
        level=level,
        colorize=True,
    )

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file,
            format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function} - {message}",
            level=level,
            rotation="10 MB",
            retention=5,
        )


def _load(config_path: Optional[Path]) -> JobWardenConfig:
    try:
        return load_config(config_path)
    except ConfigError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)


def _print_summary(summary: SweepSummary) -> None:
    if not summary.results:
        console.print(f"[dim]{summary.sweep}: no candidates[/dim]")
        return

    table = Table(title=f"{summary.sweep.capitalize()} sweep")
    table.add_column("Job", style="cyan")
    table.add_column("Outcome")
    table.add_column("Stage")
    table.add_column("Reason")

    for result in summary.results:
        style = OUTCOME_STYLES.get(result.outcome, "")
        table.add_row(
            result.job_id,
            f"[{style}]{result.outcome.value}[/{style}]" if style else result.outcome.value,
            result.stage.value,
            result.reason or "-",
        )

    console.print(table)


# ============================================================================
# Watchdog Commands
# ============================================================================


@app.command("run")
def run_watchdog(
    interval: Optional[int] = typer.Option(None, "--interval", "-i", help="Milliseconds between sweeps"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Config file"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
) -> None:
    """Run the watchdog in the foreground until interrupted."""
    config = _load(config_path)
    setup_logging(config.daemon.log_level, config.daemon.log_file, verbose)

    async def _run() -> None:
        watchdog = create_watchdog(config)
        stop = asyncio.Event()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop.set)

        watchdog.start_periodic_update(interval)
        try:
            await stop.wait()
        finally:
            watchdog.stop_periodic_update()
            # Sweeps still running when the loop closes get cancelled and unlock their jobs
            await watchdog.drain(config.watchdog.shutdown_timeout)

    try:
        asyncio.run(_run())
    except Exception as e:
        logger.error(f"Watchdog error: {e}")
        raise typer.Exit(1)


@app.command("sweep")
def sweep_once(
    archive: bool = typer.Option(True, "--archive/--no-archive", help="Archive expired completed jobs"),
    timeouts: bool = typer.Option(True, "--timeouts/--no-timeouts", help="Requeue timed out jobs"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Config file"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
) -> None:
    """Run a single pass of the sweeps and show the outcome per job."""
    config = _load(config_path)
    setup_logging(config.daemon.log_level, config.daemon.log_file, verbose)

    async def _sweep() -> list[SweepSummary]:
        watchdog = create_watchdog(config)
        sweeps = []
        if archive:
            sweeps.append(watchdog.archiver.sweep_archivable())
        if timeouts:
            sweeps.append(watchdog.invalidator.sweep_timed_out())
        summaries = list(await asyncio.gather(*sweeps))

        reports = await watchdog.archiver.wait_for_cleanups()
        leftovers = [r for r in reports if not r.clean and not r.skipped]
        if leftovers:
            console.print(f"[yellow]{len(leftovers)} container(s) not fully cleaned up[/yellow]")
        return summaries

    try:
        summaries = asyncio.run(_sweep())
    except Exception as e:
        console.print(f"[red]Sweep failed: {e}[/red]")
        raise typer.Exit(1)

    for summary in summaries:
        _print_summary(summary)

    if any(summary.failed for summary in summaries):
        raise typer.Exit(2)


# ============================================================================
# Job Commands
# ============================================================================


@app.command("jobs")
def list_jobs(
    status: Optional[str] = typer.Option(None, "--status", "-s", help="Filter by status"),
    locked: bool = typer.Option(False, "--locked", help="Show only locked jobs"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Config file"),
) -> None:
    """List jobs in the live store."""
    config = _load(config_path)

    flt = JobFilter(status_lock=True if locked else None)
    if status:
        try:
            flt.statuses = [JobStatus(status.lower())]
        except ValueError:
            valid = ", ".join(s.value for s in JobStatus)
            console.print(f"[red]Unknown status '{status}'. Valid: {valid}[/red]")
            raise typer.Exit(1)

    try:
        jobs = Database(config.database.path).find_jobs(flt)
    except Exception as e:
        console.print(f"[red]Error loading jobs: {e}[/red]")
        raise typer.Exit(1)

    if not jobs:
        console.print("[yellow]No jobs match the filter[/yellow]")
        return

    table = Table(title="Jobs")
    table.add_column("Job", style="cyan")
    table.add_column("Status")
    table.add_column("Locked")
    table.add_column("Started")
    table.add_column("Ended")
    table.add_column("Executor")

    for job in jobs:
        table.add_row(
            job.id,
            job.status.value,
            "[yellow]yes[/yellow]" if job.status_lock else "no",
            job.start_date.isoformat(sep=" ", timespec="minutes") if job.start_date else "-",
            job.end_date.isoformat(sep=" ", timespec="minutes") if job.end_date else "-",
            job.executor_url or "-",
        )

    console.print(table)


# ============================================================================
# Misc Commands
# ============================================================================


@app.command("init")
def init_config(
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Config file"),
) -> None:
    """Write the default configuration file."""
    path = config_path or DEFAULT_CONFIG_FILE
    if create_default_config(path):
        console.print(f"[green]✓ Created {path}[/green]")
    else:
        console.print(f"[yellow]Config already exists at {path}[/yellow]")


@app.command("version")
def version() -> None:
    """Show version."""
    console.print(f"jobwarden {__version__}")


def main() -> None:
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()

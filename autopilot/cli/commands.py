"""
AutoPilot CLI

Commands:
- serve     run the daemon in the foreground
- list      show job statuses from the status file
- create    write a new job file
- remove    delete a job file
- validate  parse job files and show how each would run
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Final, List, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from autopilot import __logo__, __version__


# ============================================================================
# CLI App
# ============================================================================

APP_NAME: Final[str] = "autopilot"

app = typer.Typer(
    name=APP_NAME,
    help=f"{__logo__} AutoPilot - condition-driven job automation",
    no_args_is_help=True,
)

console = Console()

STATUS_STYLES: Final[dict[str, str]] = {
    "Success": "green",
    "Running": "cyan",
    "Pending": "yellow",
    "Waiting": "yellow",
    "Unsatisfied": "magenta",
    "Failed": "red",
    "Cancelled": "red",
    "Unknown": "dim",
}


# ============================================================================
# Version / global options
# ============================================================================

def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} autopilot v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Path to config.json (its directory becomes the root)"
    ),
    version: bool = typer.Option(
        None, "--version", "-V", callback=version_callback, is_eager=True
    ),
):
    """AutoPilot - condition-driven job automation."""
    ctx.obj = {"config_path": config}


def _load(ctx: typer.Context):
    from autopilot.config.loader import load_config

    config_path = (ctx.obj or {}).get("config_path")
    return load_config(config_path)


# ============================================================================
# Serve
# ============================================================================


@app.command()
def serve(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Run the AutoPilot daemon in the foreground."""
    from autopilot.runtime.autopilot import AutoPilot
    from autopilot.utils.helpers import setup_logging

    config = _load(ctx)
    paths = config.runtime_paths.ensure()

    setup_logging(
        paths.logs_dir,
        level=config.logging.level,
        verbose=verbose,
        rotation=config.logging.rotation,
        retention=config.logging.retention,
    )

    console.print(f"{__logo__} Starting AutoPilot | root={paths.root}")
    pilot = AutoPilot(config)

    try:
        asyncio.run(pilot.serve())
    except KeyboardInterrupt:
        console.print("\nShutting down...")


# ============================================================================
# List
# ============================================================================


@app.command("list")
def list_jobs(ctx: typer.Context):
    """Show every job with its last persisted status."""
    from autopilot.status.store import StatusStore

    config = _load(ctx)
    snapshot = StatusStore(config.runtime_paths.status_file).read()

    if not snapshot.statuses:
        console.print("No jobs found")
        return

    table = Table(title=f"Jobs ({snapshot.time or 'never updated'})")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Status")

    for record in snapshot.statuses:
        style = STATUS_STYLES.get(record.status.value, "white")
        table.add_row(record.id, record.name, f"[{style}]{record.status.value}[/{style}]")

    console.print(table)


# ============================================================================
# Create
# ============================================================================


@app.command()
def create(
    ctx: typer.Context,
    task: List[str] = typer.Option(..., "--task", "-t", help="Shell command, repeatable, runs in order"),
    name: Optional[str] = typer.Option(None, "--name", "-n"),
    description: Optional[str] = typer.Option(None, "--description", "-d"),
    condition: List[str] = typer.Option(
        [], "--condition", help='Condition JSON, e.g. {"type":"variable","condition":{...}}'
    ),
    when: Optional[str] = typer.Option(
        None, "--when", "-w", help="once | daily | weekly | monthly | yearly | cron"
    ),
    date: Optional[str] = typer.Option(None, "--date", help="YYYY/MM/DD (once)"),
    time: Optional[str] = typer.Option(None, "--time", help="HH:MM"),
    cron: Optional[str] = typer.Option(None, "--cron", help="Cron expression (cron)"),
    check_interval: Optional[int] = typer.Option(
        None, "--check-interval", help="Poll period in ms for untriggered jobs"
    ),
):
    """Create a job file."""
    from autopilot.errors import InvalidJobError
    from autopilot.job.loader import create_job_file

    config = _load(ctx)
    paths = config.runtime_paths.ensure()

    record: dict = {
        "conditions": [],
        "tasks": [{"command": command} for command in task],
    }
    if name:
        record["name"] = name
    if description:
        record["description"] = description
    if check_interval is not None:
        record["check_interval"] = str(check_interval)

    try:
        record["conditions"] = [json.loads(raw) for raw in condition]
        if when:
            record["when"] = _when_record(when, date=date, time=time, cron=cron)
        job, path = create_job_file(paths.jobs_dir, record)
    except (json.JSONDecodeError, InvalidJobError) as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        raise typer.Exit(1)

    console.print(f"[green]✓[/green] Created {job.id} at {path}")


def _when_record(kind: str, *, date: Optional[str], time: Optional[str], cron: Optional[str]) -> dict:
    from autopilot.errors import InvalidJobError

    kind = kind.lower()
    if kind == "cron":
        if not cron:
            raise InvalidJobError("--when cron requires --cron")
        return {"type": "cron", "trigger": cron}
    if not time:
        raise InvalidJobError(f"--when {kind} requires --time")
    if kind == "once":
        if not date:
            raise InvalidJobError("--when once requires --date")
        return {"type": "once", "trigger": {"date": date, "time": time}}
    return {"type": kind, "trigger": {"time": time}}


# ============================================================================
# Remove
# ============================================================================


@app.command()
def remove(
    ctx: typer.Context,
    job_id: str = typer.Argument(..., help="Job id as shown by `autopilot list`"),
):
    """Delete a job file."""
    from autopilot.job.loader import remove_job_file

    config = _load(ctx)
    if not remove_job_file(config.runtime_paths.jobs_dir, job_id):
        console.print(f"[red]No job with id {job_id}[/red]")
        raise typer.Exit(1)

    console.print(f"[green]✓[/green] Removed {job_id} (reload the daemon to apply)")


# ============================================================================
# Validate
# ============================================================================


@app.command()
def validate(ctx: typer.Context):
    """Parse every job file and show how each job would run."""
    from autopilot.conditions.types import describe
    from autopilot.errors import InvalidJobError, InvalidScheduleError
    from autopilot.job.loader import job_files, load_job_file
    from autopilot.scheduler.trigger import resolve_when
    from autopilot.scheduler.service import next_cron_match
    from autopilot.scheduler.types import OneShot
    from autopilot.utils.helpers import now_local

    config = _load(ctx)
    files = job_files(config.runtime_paths.jobs_dir)
    if not files:
        console.print("No job files found")
        return

    table = Table(title="Job files")
    table.add_column("File", style="dim")
    table.add_column("ID", style="cyan")
    table.add_column("Mode")
    table.add_column("Conditions")

    broken = 0
    for path in files:
        try:
            job = load_job_file(path)
        except (InvalidJobError, OSError) as e:
            broken += 1
            table.add_row(path.name, "-", f"[red]invalid: {escape(str(e))}[/red]", "")
            continue

        if job.when is None:
            mode = "now" if job.check_interval_ms is None else f"poll every {job.check_interval_ms}ms"
        else:
            try:
                spec = resolve_when(job.when)
                if isinstance(spec, OneShot):
                    mode = f"once at {spec.at:%Y-%m-%d %H:%M:%S}"
                else:
                    upcoming = next_cron_match(spec.expression, now_local())
                    mode = f"cron '{spec.expression}' next {upcoming:%Y-%m-%d %H:%M}"
            except InvalidScheduleError as e:
                broken += 1
                mode = f"[red]{escape(str(e))}[/red]"

        table.add_row(path.name, job.id, mode, describe(job.condition))

    console.print(table)
    if broken:
        raise typer.Exit(1)


if __name__ == "__main__":
    app()

"""
Branch Vault CLI - command-line interface.

Runs one backup cycle from the terminal or a scheduler. Configuration
comes from the process environment; flags override the snapshot date
and the retention window.
"""

from datetime import date
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from branch_vault.core.config import BackupConfig
from branch_vault.core.exceptions import ConfigurationMissingError
from branch_vault.core.logging import configure_logging
from branch_vault.core.models import format_snapshot_date, parse_snapshot_date
from branch_vault.orchestrator.core import BackupOrchestrator, CycleOutcome, CycleResult, PhaseStatus

app = typer.Typer(
    name="branch-vault",
    help="Branch Vault - versioned database and object backups per environment branch",
    add_completion=False,
)
console = Console()


def _version_callback(value: bool) -> None:
    if value:
        from branch_vault import __version__

        console.print(f"Branch Vault v{__version__}")
        raise typer.Exit()


def _snapshot_date_callback(value: Optional[str]) -> Optional[date]:
    if value is None:
        return None
    try:
        return parse_snapshot_date(value)
    except ValueError:
        raise typer.BadParameter(f"'{value}' is not a date in YYYY-MM-DD format")


def _print_summary(result: CycleResult) -> None:
    style = {
        CycleOutcome.COMPLETED: "green",
        CycleOutcome.NO_OP: "yellow",
        CycleOutcome.FAILED: "red",
    }[result.outcome]

    table = Table(
        title=f"Backup {format_snapshot_date(result.snapshot_date)} [{result.environment}]"
    )
    table.add_column("Phase", style="cyan")
    table.add_column("Status")
    table.add_column("Duration", justify="right")

    for phase in result.phases:
        phase_style = {
            PhaseStatus.COMPLETED: "green",
            PhaseStatus.FAILED: "red",
            PhaseStatus.SKIPPED: "dim",
        }[phase.status]
        duration = f"{phase.execution_time_ms:.0f}ms" if phase.execution_time_ms else "-"
        table.add_row(
            phase.phase.value,
            f"[{phase_style}]{phase.status.value}[/{phase_style}]",
            duration,
        )

    console.print(table)
    console.print(f"Outcome: [{style}]{result.outcome.value}[/{style}]")
    if result.commit_sha:
        console.print(f"Commit: {result.commit_sha[:12]}")
    if result.error is not None:
        console.print(f"[red]Error ({result.error_kind or type(result.error).__name__}):[/red] {result.error}")


@app.command()
def backup(
    snapshot_date: Optional[str] = typer.Option(
        None,
        "--date",
        help="Snapshot date YYYY-MM-DD (default: today)",
        callback=_snapshot_date_callback,
    ),
    retention: Optional[int] = typer.Option(
        None, "--retention", min=0, help="Retention window in days (default: RETENTION or 7)"
    ),
    resume: bool = typer.Option(
        True,
        "--resume/--no-resume",
        help="Push a pending commit from a failed run instead of dumping again",
    ),
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
):
    """Run one backup cycle: sync branch, dump, export, commit, push, prune."""
    try:
        config = BackupConfig.from_env()
    except ConfigurationMissingError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(1)

    if retention is not None:
        config = config.model_copy(update={"retention_days": retention})

    configure_logging(config.log_file, config.log_level, secrets=config.secrets())

    with BackupOrchestrator(config) as orchestrator:
        result = orchestrator.run(
            snapshot_date=snapshot_date,
            retention_days=config.retention_days,
            resume=resume,
        )

    _print_summary(result)
    raise typer.Exit(result.exit_code)


def main():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()

"""``edgeswap history RUN_ID`` and ``edgeswap runs``: ledger-backed views.

Both commands read only the run ledger, so they work for finished runs
long after the process that executed them has exited.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from edgeswap.core.run_ledger import LedgerIntegrityError, RunLedger
from edgeswap.monitor.projection import MonitorProjection
from edgeswap.monitor.renderer import MonitorRenderer

console = Console()


def _open_ledger(ledger_db: str) -> RunLedger:
    db_path = Path(ledger_db)
    if not db_path.exists():
        console.print(f"[bold red]Ledger not found:[/bold red] {ledger_db}")
        console.print("[dim]Run a rollout first with: edgeswap simulate[/dim]")
        raise typer.Exit(code=1)
    return RunLedger(db_path)


def history_cmd(
    run_id: str = typer.Argument(..., help="The run ID to show."),
    verify_chain: bool = typer.Option(
        False,
        "--verify-chain",
        "-V",
        help="Verify the hash chain integrity before displaying.",
    ),
    ledger_db: str = typer.Option(
        ".edgeswap/ledger.db",
        "--ledger",
        "-l",
        help="Path to the ledger SQLite database.",
    ),
) -> None:
    """Show every stage outcome recorded for a run."""
    ledger = _open_ledger(ledger_db)
    renderer = MonitorRenderer(console=console)

    if not ledger.get_run_entries(run_id):
        console.print(f"[bold red]Run not found:[/bold red] {run_id}")
        all_runs = ledger.get_all_run_ids()
        if all_runs:
            console.print("\n[bold]Available runs:[/bold]")
            for rid in all_runs[:10]:
                console.print(f"  [cyan]{rid}[/cyan]")
            if len(all_runs) > 10:
                console.print(f"  [dim]... and {len(all_runs) - 10} more[/dim]")
        raise typer.Exit(code=1)

    if verify_chain:
        try:
            valid = ledger.verify_chain(run_id)
        except LedgerIntegrityError as exc:
            console.print(f"[bold red]Chain verification failed:[/bold red] {exc}")
            valid = False
        renderer.print_chain_verification(run_id, valid)
        if not valid:
            raise typer.Exit(code=2)

    renderer.print_snapshot(MonitorProjection(ledger).snapshot(run_id))


def runs_cmd(
    service: str = typer.Option(None, "--service", "-s", help="Only show runs of this service."),
    ledger_db: str = typer.Option(
        ".edgeswap/ledger.db",
        "--ledger",
        "-l",
        help="Path to the ledger SQLite database.",
    ),
) -> None:
    """List recorded runs, most recent first."""
    ledger = _open_ledger(ledger_db)
    snapshots = MonitorProjection(ledger).list_snapshots(service)
    if not snapshots:
        console.print("[dim]No runs recorded.[/dim]")
        return
    console.print(MonitorRenderer(console=console).render_run_list(snapshots))

"""Rich terminal renderer for run snapshots.

Color scheme
------------
- green     : succeeded, approval accepted, purged
- red       : failures, conflicts, approval rejected
- yellow    : approval pending, provisioning error (retryable)
- dim       : not reached, skipped
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from edgeswap.models.stages import RunStatus, StageOutcome

if TYPE_CHECKING:
    from edgeswap.monitor.projection import RunSnapshot


_OUTCOME_STYLES: dict[str, str] = {
    StageOutcome.SUCCEEDED.value: "green",
    StageOutcome.APPROVAL_ACCEPTED.value: "green",
    StageOutcome.PURGED.value: "green",
    StageOutcome.APPROVAL_PENDING.value: "yellow",
    StageOutcome.PROVISIONING_ERROR.value: "yellow",
    StageOutcome.SKIPPED.value: "dim",
    StageOutcome.APPROVAL_REJECTED.value: "bold red",
    StageOutcome.FAILED.value: "bold red",
    StageOutcome.CONFLICT.value: "bold red",
    StageOutcome.DEPENDENCY_ERROR.value: "bold red",
    StageOutcome.AGENT_FAILURE.value: "bold red",
    StageOutcome.PURGE_FAILED.value: "bold red",
}

_STATUS_STYLES: dict[RunStatus, str] = {
    RunStatus.RUNNING: "yellow",
    RunStatus.SUCCEEDED: "green",
    RunStatus.FAILED: "bold red",
    RunStatus.PURGED: "magenta",
}


class MonitorRenderer:
    """Renders ``RunSnapshot`` as Rich terminal output.

    Parameters
    ----------
    console:
        Rich Console instance.  A new one is created if not provided.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def render_snapshot(self, snapshot: RunSnapshot) -> Panel:
        """Render a snapshot as a Panel holding the stage table and a summary."""
        status_style = _STATUS_STYLES.get(snapshot.status, "")
        chain_status = (
            "[green]valid[/green]" if snapshot.chain_valid else "[bold red]BROKEN[/bold red]"
        )
        summary = "  |  ".join(
            [
                f"[bold]Service:[/bold] {snapshot.service}",
                f"[bold]Stage:[/bold] {snapshot.current_stage.value}",
                f"[bold]Status:[/bold] [{status_style}]{snapshot.status.value}[/{status_style}]",
                f"[bold]Entries:[/bold] {snapshot.entry_count}",
                f"[bold]Chain:[/bold] {chain_status}",
            ]
        )
        return Panel(
            Group(self._build_stage_table(snapshot), Text(""), Text.from_markup(summary)),
            title=f"[bold]Run {snapshot.run_id}[/bold]",
            subtitle=f"Last updated: {snapshot.last_updated.strftime('%Y-%m-%d %H:%M:%S UTC')}",
            border_style="blue",
            padding=(1, 2),
        )

    def _build_stage_table(self, snapshot: RunSnapshot) -> Table:
        table = Table(show_header=True, header_style="bold cyan", expand=True)
        table.add_column("Stage", min_width=12)
        table.add_column("Outcome", min_width=18, justify="center")
        table.add_column("Artifact", min_width=16)
        table.add_column("Details", min_width=20)

        for row in snapshot.stages:
            if row.outcome:
                style = _OUTCOME_STYLES.get(row.outcome, "")
                outcome = f"[{style}]{row.outcome}[/{style}]" if style else row.outcome
                if row.attempts > 1:
                    outcome += f" [dim]x{row.attempts}[/dim]"
            else:
                outcome = "[dim]-[/dim]"
            table.add_row(
                row.display_name,
                outcome,
                Text(row.artifact_ref or "-", style="dim" if not row.artifact_ref else ""),
                Text(row.detail or "-", overflow="fold"),
            )
        return table

    def render_run_list(self, snapshots: list[RunSnapshot]) -> Table:
        table = Table(show_header=True, header_style="bold cyan")
        table.add_column("Run ID")
        table.add_column("Service")
        table.add_column("Stage")
        table.add_column("Status")
        table.add_column("Started")
        for snap in snapshots:
            style = _STATUS_STYLES.get(snap.status, "")
            table.add_row(
                snap.run_id,
                snap.service,
                snap.current_stage.value,
                f"[{style}]{snap.status.value}[/{style}]",
                snap.started_at.strftime("%Y-%m-%d %H:%M:%S") if snap.started_at else "-",
            )
        return table

    def print_snapshot(self, snapshot: RunSnapshot) -> None:
        self.console.print(self.render_snapshot(snapshot))

    def print_chain_verification(self, run_id: str, valid: bool) -> None:
        if valid:
            self.console.print(f"[green]Hash chain for run {run_id} is valid.[/green]")
        else:
            self.console.print(f"[bold red]Hash chain for run {run_id} is BROKEN![/bold red]")

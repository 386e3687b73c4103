"""``edgeswap simulate``: one rollout end to end against a local edge.

Wires an in-memory edge network, the filesystem object store and the
SQLite config store and ledger from settings; seeds the service on
first use (later invocations continue from the stored parameters); fires
a source change; answers the approval prompt; prints the outcome.  The
ledger persists, so ``edgeswap history`` works on the run afterwards.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel

from edgeswap.config import DeploySettings
from edgeswap.core.agent import LocalBuildAgent
from edgeswap.core.edge import InMemoryEdgeNetwork
from edgeswap.models.events import ApprovalOutcome, SourceChangedEvent
from edgeswap.models.run import ApproveState
from edgeswap.monitor.projection import MonitorProjection
from edgeswap.monitor.renderer import MonitorRenderer
from edgeswap.notify.sinks.local_file import LocalFileSink
from edgeswap.runtime import build_runtime, seed_local_service

console = Console()


def simulate_cmd(
    accept: bool = typer.Option(
        True, "--accept/--reject", help="Approve or reject the staging deployment."
    ),
    service: str = typer.Option(None, "--service", "-s", help="Service name."),
    cleanup: Optional[bool] = typer.Option(
        None, "--cleanup/--no-cleanup", help="Delete staging after promote."
    ),
    commit_id: str = typer.Option("", "--commit", help="Commit id of the simulated change."),
    data_dir: str = typer.Option(
        ".edgeswap", "--data-dir", "-d", help="Directory for local stores."
    ),
) -> None:
    """Deploy a new version to staging, decide, and show the result."""
    root = Path(data_dir)
    overrides: dict[str, object] = {
        "ledger_path": root / "ledger.db",
        "config_store_path": root / "parameters.db",
        "object_store_path": root / "objects",
        "events_path": root / "events",
    }
    if service:
        overrides["service_name"] = service
    if cleanup is not None:
        overrides["staging_cleanup_enabled"] = cleanup
    settings = DeploySettings(**overrides)

    edge = InMemoryEdgeNetwork()
    runtime = build_runtime(
        settings,
        edge=edge,
        agent=LocalBuildAgent(root / "builds"),
        sinks=[LocalFileSink(settings.events_path / "approvals")],
    )
    params = seed_local_service(runtime, edge, hosting_bucket=str(settings.object_store_path))
    if cleanup is not None:
        runtime.parameters.set_staging_cleanup_enabled(cleanup)
    production_id = params.production_distribution_id

    runtime.bus.publish(
        SourceChangedEvent(
            service=settings.service_name,
            repository=settings.repository,
            branch=settings.branch,
            commit_id=commit_id,
        )
    )
    runtime.bus.deliver()

    run = runtime.orchestrator.active_run
    if run is None or not isinstance(run.state, ApproveState):
        console.print("[bold red]Run did not reach approval.[/bold red]")
        if run is not None:
            MonitorRenderer(console=console).print_snapshot(
                MonitorProjection(runtime.ledger).snapshot(run.run_id)
            )
        raise typer.Exit(code=1)

    predicate = run.state.policy.predicate
    with_header = edge.route(production_id, {predicate.header: predicate.value})
    without_header = edge.route(production_id, {})
    console.print(
        Panel(
            "\n".join(
                [
                    f"[bold]Run:[/bold]        {run.run_id}",
                    f"[bold]Staging:[/bold]    {run.state.staging.id} ({run.state.version})",
                    f"[bold]Link:[/bold]       {run.state.approval_link}",
                    f"[bold]With header:[/bold]    {with_header.served_version}",
                    f"[bold]Without header:[/bold] {without_header.served_version}",
                ]
            ),
            title="[bold]Awaiting approval[/bold]",
            border_style="yellow",
            padding=(1, 2),
        )
    )

    outcome = ApprovalOutcome.ACCEPTED if accept else ApprovalOutcome.REJECTED
    runtime.gateway.decide(run.run_id, outcome, decided_by="simulate")
    runtime.bus.deliver()

    final = runtime.parameters.load()
    production = edge.get_distribution(production_id)
    MonitorRenderer(console=console).print_snapshot(
        MonitorProjection(runtime.ledger).snapshot(run.run_id)
    )
    console.print(
        f"Production [cyan]{production_id}[/cyan] serves "
        f"[bold]{production.served_version}[/bold]; "
        f"frontend version [bold]{final.frontend_version}[/bold]; "
        f"staging [bold]{final.staging_distribution_id}[/bold]"
    )
    console.print(f"[bold]{run.run_id}[/bold]")

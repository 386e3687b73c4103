"""``edgeswap params show|init``: inspect or seed the config store."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from edgeswap.core.config_store import ParameterRepository, SqliteConfigStore
from edgeswap.errors import ParameterNotFoundError
from edgeswap.models.deployment import SingleHeaderPredicate

console = Console()

params_app = typer.Typer(no_args_is_help=True, rich_markup_mode="rich")


def _repository(store_db: str, service: str) -> ParameterRepository:
    return ParameterRepository(SqliteConfigStore(Path(store_db)), service)


@params_app.command(name="show", help="Print every parameter of a service.")
def show_cmd(
    service: str = typer.Option("frontend", "--service", "-s", help="Service name."),
    store_db: str = typer.Option(
        ".edgeswap/parameters.db",
        "--store",
        help="Path to the config store SQLite database.",
    ),
) -> None:
    repo = _repository(store_db, service)
    try:
        params = repo.load()
    except ParameterNotFoundError as exc:
        console.print(f"[bold red]{exc}[/bold red]")
        console.print(f"[dim]Seed it first with: edgeswap params init --service {service}[/dim]")
        raise typer.Exit(code=1)

    table = Table(title=f"Parameters for {service}", header_style="bold cyan")
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    values = params.model_dump()
    values["single_header_predicate"] = params.single_header_predicate.serialize()
    for field, key in repo.paths.all_keys().items():
        value = values[field]
        if isinstance(value, bool):
            value = "true" if value else "false"
        table.add_row(key, str(value))
    console.print(table)


@params_app.command(name="init", help="Seed the fixed infrastructure parameters of a service.")
def init_cmd(
    production_id: str = typer.Option(
        ..., "--production-id", "-p", help="Production distribution id."
    ),
    service: str = typer.Option("frontend", "--service", "-s", help="Service name."),
    version: str = typer.Option("v1", "--version", help="Version production serves now."),
    header: str = typer.Option("aws-cf-cd-staging", "--header", help="Staging header name."),
    header_value: str = typer.Option("true", "--header-value", help="Staging header value."),
    cleanup: bool = typer.Option(
        True, "--cleanup/--no-cleanup", help="Delete staging after a successful promote."
    ),
    bucket: str = typer.Option("", "--bucket", help="Hosting bucket name."),
    store_db: str = typer.Option(
        ".edgeswap/parameters.db",
        "--store",
        help="Path to the config store SQLite database.",
    ),
) -> None:
    repo = _repository(store_db, service)
    params = repo.initialize(
        production_distribution_id=production_id,
        frontend_version=version,
        staging_cleanup_enabled=cleanup,
        single_header_predicate=SingleHeaderPredicate(header=header, value=header_value),
        hosting_bucket=bucket,
    )
    console.print(
        f"[bold green]Seeded[/bold green] {service}: production "
        f"[cyan]{params.production_distribution_id}[/cyan] serving {params.frontend_version}"
    )

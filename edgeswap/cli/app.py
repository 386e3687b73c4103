"""Main Typer application: registers all CLI commands.

Entry point: ``edgeswap`` (configured via pyproject.toml scripts).
"""

from __future__ import annotations

import logging

import typer
from rich.logging import RichHandler

from edgeswap.cli.commands.history import history_cmd, runs_cmd
from edgeswap.cli.commands.params import params_app
from edgeswap.cli.commands.simulate import simulate_cmd
from edgeswap.config import DeploySettings

app = typer.Typer(
    name="edgeswap",
    help="edgeswap: staged blue/green rollouts for static frontends on the edge.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


@app.callback()
def main_callback(
    log_level: str = typer.Option(
        None,
        "--log-level",
        help="Logging level (defaults to EDGESWAP_LOG_LEVEL or INFO).",
    ),
) -> None:
    """Configure logging once for every command."""
    level = (log_level or DeploySettings().log_level).upper()
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(show_path=False, rich_tracebacks=True)],
        force=True,
    )


# Register subcommands
app.command(name="simulate", help="Run one rollout end to end against a local edge network.")(simulate_cmd)
app.command(name="history", help="Show the recorded history of a run.")(history_cmd)
app.command(name="runs", help="List recorded runs.")(runs_cmd)
app.add_typer(params_app, name="params", help="Inspect or seed a service's parameters.")


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()

"""
MAILDECK - Main CLI Application

Command-line interface for running and inspecting the campaign server.
"""
import asyncio
import json
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from config import get_config
from core.errors import ConfigError, StartupError
from observability import setup_observability, shutdown_observability

# Initialize app
app = typer.Typer(
    name="maildeck",
    help="MAILDECK - Campaign Server",
    add_completion=False
)

console = Console()


def _load_config():
    try:
        return get_config()
    except (OSError, ValueError) as e:
        error = ConfigError(f"Could not load configuration: {e}", cause=e)
        console.print(f"[red]Error: {error.message}[/red]")
        raise typer.Exit(1) from e


def _setup_logging(config, verbose: bool = False) -> None:
    setup_observability(config, log_level="DEBUG" if verbose else None)


@app.command()
def serve(
    simplified: bool = typer.Option(
        False, "--simplified", help="Skip background services (UI debugging)"
    ),
    startup_timeout: Optional[float] = typer.Option(
        None, "--startup-timeout", help="Fail startup if not ready within this many seconds"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Run the full startup sequence and serve until interrupted."""
    from core.bootstrap import main as bootstrap_main

    config = _load_config()
    if simplified:
        config.startup.with_services = False
    if startup_timeout is not None:
        config.startup.startup_timeout = startup_timeout if startup_timeout > 0 else None

    _setup_logging(config, verbose)
    try:
        code = bootstrap_main(config)
    finally:
        shutdown_observability()
    raise typer.Exit(code)


@app.command()
def migrate(
    revision: str = typer.Option("head", "--revision", "-r", help="Target revision"),
):
    """Apply schema migrations without starting the server."""
    from db.migrations import run_migrations

    config = _load_config()
    _setup_logging(config)
    try:
        asyncio.run(run_migrations(config.database.url, revision))
    except StartupError as e:
        console.print(f"[red]Error: {e.message}[/red]")
        raise typer.Exit(e.exit_code)
    console.print(f"[green]Schema migrated to {revision}[/green]")


@app.command("check-db")
def check_db():
    """Check storage connectivity and legacy schema compatibility."""
    from db.dbcheck import check_storage
    from db.engine import StorageEngine

    config = _load_config()
    _setup_logging(config)

    async def _check() -> None:
        engine = StorageEngine(config.database)
        try:
            await check_storage(engine)
        finally:
            await engine.close()

    try:
        asyncio.run(_check())
    except StartupError as e:
        console.print(f"[red]Storage check failed: {e.message}[/red]")
        raise typer.Exit(e.exit_code)
    console.print("[green]Storage is reachable[/green]")


@app.command()
def stages(
    simplified: bool = typer.Option(
        False, "--simplified", help="Show the startup without background services"
    ),
):
    """Show the composed startup order."""
    from core.bootstrap import ServerContext, build_simplified_stages, build_stages
    from core.sequencer import BootstrapSequencer

    config = _load_config()
    ctx = ServerContext.from_config(config, app_factory=lambda tier: None)
    build = build_simplified_stages if simplified else build_stages
    sequencer = BootstrapSequencer(build(ctx))

    console.print(Panel.fit(
        f"[bold blue]{config.title}[/bold blue] startup sequence",
        border_style="blue"
    ))

    table = Table()
    table.add_column("#", justify="right")
    table.add_column("Stage", style="cyan")
    table.add_column("Privileged")
    table.add_column("Requires")
    table.add_column("Description")

    for row in sequencer.describe():
        if row["drops_privileges"]:
            flag = "[yellow]drops[/yellow]"
        elif row["privileged"]:
            flag = "[red]root[/red]"
        else:
            flag = ""
        table.add_row(
            str(row["index"]),
            row["name"],
            flag,
            ", ".join(row["requires"]),
            row["description"],
        )

    console.print(table)
    target = ctx.privileges.describe()
    if target:
        console.print(f"Privileges are dropped to [bold]{target}[/bold]")


@app.command("show-config")
def show_config():
    """Print the effective configuration (secrets excluded)."""
    config = _load_config()
    console.print_json(json.dumps(config.to_dict(), default=str))


def main():
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()

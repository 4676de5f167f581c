"""Typer CLI for Invitely."""

from __future__ import annotations

import json
import os
import subprocess
import sys
from pathlib import Path

from sqlalchemy.exc import OperationalError
import typer
import uvicorn

from .config import DEFAULTS, load_settings, settings, settings_as_dict, update_config_file
from .errors import InvitelyError
from .gateway import StoreGateway
from .reconciler import AttendanceReconciler
from .storage import init_db, upgrade_database

app = typer.Typer(help="Invitely command-line interface")


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context) -> None:
    """Show help when no subcommand is provided."""
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


def _readonly_database(exc: OperationalError) -> bool:
    message = str(getattr(exc, "orig", exc)).lower()
    return "readonly" in message or "read-only" in message


@app.command("upgrade-db")
def upgrade_db(
    no_backup: bool = typer.Option(
        False,
        "--no-backup",
        help="Skip creating a .bak copy of the database before upgrading",
    ),
) -> None:
    """Upgrade the SQLite database schema if needed."""
    try:
        actions = upgrade_database(make_backup=not no_backup)
    except OperationalError as exc:
        if _readonly_database(exc):
            typer.secho(
                "Unable to upgrade because the database is read-only. "
                f"Ensure write access to {settings.database_path}.",
                err=True,
                fg=typer.colors.RED,
            )
            raise typer.Exit(code=1)
        raise

    if not actions:
        typer.echo("Database already up to date.")
        return

    typer.echo("Database upgrade complete:")
    for action in actions:
        typer.echo(f"- {action}")


@app.command("runserver")
def runserver(
    host: str = typer.Option(settings.app_host, "--host", help="Host to bind"),
    port: int = typer.Option(settings.app_port, "--port", help="Port to bind"),
):
    """Start the FastAPI app under uvicorn."""
    init_db()
    config = uvicorn.Config(
        "invitely.api:app",
        host=host,
        port=port,
        reload=False,
        log_level=settings.log_level,
        proxy_headers=True,
        forwarded_allow_ips="*",
    )
    server = uvicorn.Server(config)
    typer.echo(f"Starting Invitely on {host}:{port}")
    server.run()


@app.command("attendees")
def attendees(
    event_id: str = typer.Argument(..., help="Event id"),
    owner: str | None = typer.Option(
        None, "--as-owner", help="Owner id; includes guests hidden from the public list"
    ),
) -> None:
    """Print the current attendance counts and visible guest list."""
    init_db()
    gateway = StoreGateway()
    try:
        event = gateway.select_one("events", id=event_id)
    except InvitelyError as exc:
        typer.secho(exc.message, err=True, fg=typer.colors.RED)
        raise typer.Exit(code=1)
    if event is None:
        typer.secho(f"Event {event_id} not found.", err=True, fg=typer.colors.RED)
        raise typer.Exit(code=1)
    reconciler = AttendanceReconciler(gateway, event_id, owner_id=event["owner_id"])
    reconciler.load_snapshot()
    typer.echo(json.dumps(reconciler.snapshot(owner), indent=2))


@app.command("config")
def configure(
    show: bool = typer.Option(
        False, "--show", help="Show the current effective configuration"
    ),
    set_values: list[str] = typer.Option(
        None,
        "--set",
        help=f"KEY=VALUE to persist; keys: {', '.join(sorted(DEFAULTS))}",
    ),
    config_path: Path | None = typer.Option(
        None, "--config-path", help="Path to invitely.toml (default: ./invitely.toml)"
    ),
):
    """View or update the persistent configuration file."""
    updates: dict[str, str] = {}
    for item in set_values or []:
        key, sep, value = item.partition("=")
        key = key.strip()
        if not sep or key not in DEFAULTS:
            typer.secho(f"Unknown setting: {item}", err=True, fg=typer.colors.RED)
            raise typer.Exit(code=1)
        updates[key] = value.strip()

    target_path = config_path or settings.config_path
    if updates:
        settings_ref = update_config_file(updates, path=target_path)
        typer.echo(f"Updated configuration in {target_path}")
    else:
        settings_ref = load_settings(target_path)
    if show or not updates:
        effective = settings_as_dict(settings_ref)
        effective["config_path"] = str(target_path)
        typer.echo(json.dumps(effective, indent=2))


@app.command("test")
def run_tests(pytest_args: list[str] = typer.Argument(None, help="Extra pytest args")):
    """Run the test suite."""
    env = os.environ.copy()
    env.setdefault("PYTHONPATH", ".")
    cmd = [sys.executable, "-m", "pytest", *(pytest_args or [])]
    typer.echo(f"Running tests: {' '.join(cmd)}")
    result = subprocess.run(cmd, env=env)
    raise typer.Exit(code=result.returncode)


if __name__ == "__main__":
    app()

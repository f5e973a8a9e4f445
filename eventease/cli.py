"""Typer CLI for EventEase."""

from __future__ import annotations

import json
from pathlib import Path

from sqlalchemy.exc import OperationalError
import typer
import uvicorn

from .config import (
    load_settings,
    settings,
    settings_as_dict,
    update_config_file,
)
from .crud import set_user_role
from .database import get_session
from .errors import InvalidInput
from .storage import (
    ensure_signing_secret,
    init_db,
    rotate_signing_secret,
    upgrade_database,
)

app = typer.Typer(help="EventEase command-line interface")


def _is_read_only(exc: OperationalError) -> bool:
    message = str(getattr(exc, "orig", exc)).lower()
    return "readonly" in message or "read-only" in message


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context) -> None:
    """Show help when no subcommand is provided."""
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


@app.command("signing-secret")
def signing_secret() -> None:
    """Print the stored token signing secret."""
    if settings.jwt_secret:
        typer.secho(
            "A jwt_secret is configured; the stored secret is not used.",
            err=True,
            fg=typer.colors.YELLOW,
        )
    init_db()
    typer.echo(ensure_signing_secret())


@app.command("rotate-signing-secret")
def rotate_secret() -> None:
    """Rotate the stored token signing secret, invalidating every issued token."""
    try:
        init_db()
        secret = rotate_signing_secret()
    except OperationalError as exc:
        if _is_read_only(exc):
            typer.secho(
                "Unable to rotate the signing secret because the database is read-only. "
                f"Ensure the process can write to {settings.database_path} "
                "(run with sudo or adjust file ownership/permissions).",
                err=True,
                fg=typer.colors.RED,
            )
            raise typer.Exit(code=1)
        raise
    if settings.jwt_secret:
        typer.secho(
            "A jwt_secret is configured and still takes precedence over the stored secret.",
            err=True,
            fg=typer.colors.YELLOW,
        )
    typer.echo(secret)


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
        if _is_read_only(exc):
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

    ensure_signing_secret()
    typer.echo("Database upgrade complete:")
    for action in actions:
        typer.echo(f"- {action}")


@app.command("set-role")
def set_role(
    email: str = typer.Argument(..., help="Email of the user to update"),
    role: str = typer.Argument(..., help="ADMIN, STAFF or EVENT_OWNER"),
) -> None:
    """Change a user's role."""
    init_db()
    try:
        with get_session() as session:
            user = set_user_role(session, email=email, role=role)
            new_role = user.role
    except InvalidInput as exc:
        typer.secho(exc.message, err=True, fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.secho(f"{email} is now {new_role}", fg=typer.colors.GREEN)


@app.command("runserver")
def runserver(
    host: str = typer.Option(settings.app_host, "--host", help="Host to bind"),
    port: int = typer.Option(settings.app_port, "--port", help="Port to bind"),
):
    """Start the FastAPI app under uvicorn."""
    init_db()
    config = uvicorn.Config(
        "eventease.api:app",
        host=host,
        port=port,
        reload=False,
        proxy_headers=True,
        forwarded_allow_ips="*",
    )
    server = uvicorn.Server(config)
    typer.echo(f"Starting EventEase on {host}:{port}")
    server.run()


@app.command("config")
def configure(
    show: bool = typer.Option(
        False, "--show", help="Show the current effective configuration"
    ),
    jwt_secret: str | None = typer.Option(
        None, "--jwt-secret", help="Fixed token signing secret (overrides the stored one)"
    ),
    token_ttl_days: int | None = typer.Option(
        None, "--token-ttl-days", min=1, help="Days an issued token stays valid"
    ),
    allow_privileged_view: bool | None = typer.Option(
        None,
        "--allow-privileged-view/--deny-privileged-view",
        help="Let ADMIN and STAFF users see private events",
    ),
    allow_privileged_mutation: bool | None = typer.Option(
        None,
        "--allow-privileged-mutation/--deny-privileged-mutation",
        help="Let ADMIN and STAFF users edit and delete any event",
    ),
    admission_attempts: int | None = typer.Option(
        None,
        "--admission-attempts",
        min=1,
        help="Times an RSVP is retried after losing a concurrent race",
    ),
    default_event_duration_hours: int | None = typer.Option(
        None,
        "--default-event-duration-hours",
        min=1,
        help="Calendar export length for events without an end date",
    ),
    host: str | None = typer.Option(None, "--host", help="Default host for runserver"),
    port: int | None = typer.Option(None, "--port", help="Default port for runserver"),
    config_path: Path | None = typer.Option(
        None, "--config-path", help="Path to eventease.toml (default: ./eventease.toml)"
    ),
):
    """View or update the persistent configuration file."""

    updates = {
        "jwt_secret": jwt_secret,
        "token_ttl_days": token_ttl_days,
        "allow_privileged_view": allow_privileged_view,
        "allow_privileged_mutation": allow_privileged_mutation,
        "admission_attempts": admission_attempts,
        "default_event_duration_hours": default_event_duration_hours,
        "app_host": host,
        "app_port": port,
    }
    clean_updates = {k: v for k, v in updates.items() if v is not None}

    target_path = config_path or settings.config_path
    if clean_updates:
        settings_ref = update_config_file(clean_updates, path=target_path)
        typer.echo(f"Updated configuration in {target_path}")
    else:
        settings_ref = load_settings(target_path)
    if show or not clean_updates:
        effective = settings_as_dict(settings_ref)
        effective["config_path"] = str(target_path)
        typer.echo(json.dumps(effective, indent=2))


if __name__ == "__main__":
    app()

"""Typer CLI for RSVPDesk."""

from __future__ import annotations

import asyncio
import json
import os
import shutil
import subprocess
import sys
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
from .export import EXPORT_KINDS, export_filename, render_export
from .records import (
    LANDING_PAGE_PATH,
    RSVPS_PATH,
    LandingPageSettings,
    records_from_children,
)
from .remote import RemoteStore
from .scheduler import stop_scheduler
from .seed import seed_fake_data
from .storage import (
    ensure_root_token,
    fetch_root_token,
    init_db,
    rotate_root_token,
    upgrade_database,
    vacuum_database,
)

app = typer.Typer(help="RSVPDesk command-line interface")


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context) -> None:
    """Show help when no subcommand is provided."""
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


def _readonly_exit(exc: OperationalError, action: str) -> None:
    message = str(getattr(exc, "orig", exc)).lower()
    if "readonly" in message or "read-only" in message:
        typer.secho(
            f"Unable to {action} because the database is read-only. "
            f"Ensure the process can write to {settings.database_path}.",
            err=True,
            fg=typer.colors.RED,
        )
        raise typer.Exit(code=1)


@app.command("admin-token")
def admin_token() -> None:
    """Print the admin login token."""
    init_db()
    typer.echo(fetch_root_token())


@app.command("rotate-admin-token")
def rotate_admin_token() -> None:
    """Rotate the admin login token and sign out every admin session."""
    try:
        init_db()
        token = rotate_root_token()
    except OperationalError as exc:
        _readonly_exit(exc, "rotate the admin token")
        raise
    typer.echo(token)


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
        _readonly_exit(exc, "upgrade")
        raise

    if not actions:
        typer.echo("Database already up to date.")
        return

    ensure_root_token()
    typer.echo("Database upgrade complete:")
    for action in actions:
        typer.echo(f"- {action}")


@app.command("vacuum")
def vacuum() -> None:
    """Run SQLite VACUUM now."""
    init_db()
    vacuum_database()
    typer.echo("Database vacuum complete.")


@app.command("runserver")
def runserver(
    host: str = typer.Option(settings.app_host, "--host", help="Host to bind"),
    port: int = typer.Option(settings.app_port, "--port", help="Port to bind"),
):
    """Start the web app."""
    init_db()
    config = uvicorn.Config(
        "rsvpdesk.api:app",
        host=host,
        port=port,
        reload=False,
        proxy_headers=True,
        forwarded_allow_ips="*",
    )
    server = uvicorn.Server(config)
    try:
        typer.echo(f"Starting RSVPDesk on {host}:{port}")
        server.run()
    finally:
        stop_scheduler()


async def _read_export_data():
    store = RemoteStore()
    rsvps = await store.get(RSVPS_PATH)
    page = await store.get(LANDING_PAGE_PATH)
    return (
        records_from_children(rsvps.children()),
        LandingPageSettings.from_value(page.val()),
    )


@app.command("export")
def export(
    kind: str = typer.Argument(..., help="Export format: pdf or xlsx"),
    output: Path | None = typer.Option(
        None, "--output", "-o", help="Target file (default: <export_basename>.<kind>)"
    ),
) -> None:
    """Write the full RSVP list to a PDF or spreadsheet file."""
    kind = kind.lower()
    if kind not in EXPORT_KINDS:
        typer.secho(
            f"Unknown export format {kind!r}; choose pdf or xlsx.",
            err=True,
            fg=typer.colors.RED,
        )
        raise typer.Exit(code=1)
    init_db()
    records, page_settings = asyncio.run(_read_export_data())
    title = (page_settings.title if page_settings else "") or settings.default_title
    target = output or Path(export_filename(kind))
    target.write_bytes(render_export(kind, records, title))
    typer.echo(f"Exported {len(records)} RSVPs to {target}")


@app.command("seed-data")
def seed_data(
    count: int = typer.Option(
        settings.seed_rsvps, "--count", min=0, help="Number of RSVPs to create"
    ),
    days_back: int = typer.Option(
        14, "--days-back", min=0, help="Spread submission times over this many days"
    ),
):
    """Populate the store with fake RSVPs for testing."""
    stats = seed_fake_data(count=count, days_back=days_back)
    typer.echo(f"Seed complete: {stats['rsvps']} RSVPs created.")


@app.command("config")
def configure(
    show: bool = typer.Option(
        False, "--show", help="Show the current effective configuration"
    ),
    rsvps_per_page: int | None = typer.Option(
        None, "--rsvps-per-page", min=1, help="Admin table page size"
    ),
    guest_min: int | None = typer.Option(
        None, "--guest-min", min=1, help="Smallest accepted guest count"
    ),
    guest_max: int | None = typer.Option(
        None, "--guest-max", min=1, help="Largest accepted guest count"
    ),
    default_title: str | None = typer.Option(
        None, "--default-title", help="Landing page title when none is saved"
    ),
    base_url: str | None = typer.Option(
        None, "--base-url", help="Public URL used for uploaded background links"
    ),
    export_basename: str | None = typer.Option(
        None, "--export-basename", help="File name (without extension) for exports"
    ),
    reset_page_on_search: bool | None = typer.Option(
        None,
        "--reset-page-on-search/--keep-page-on-search",
        help="Jump back to page 1 when the admin search term changes",
    ),
    max_upload_mb: int | None = typer.Option(
        None, "--max-upload-mb", min=1, help="Background upload size limit"
    ),
    session_max_age_hours: int | None = typer.Option(
        None, "--session-max-age-hours", min=1, help="Idle admin session lifetime"
    ),
    vacuum_hours: int | None = typer.Option(
        None, "--vacuum-hours", min=1, help="Hours between SQLite VACUUM runs"
    ),
    enable_scheduler: bool | None = typer.Option(
        None,
        "--enable-scheduler/--disable-scheduler",
        help="Toggle background housekeeping jobs",
    ),
    seed_rsvps: int | None = typer.Option(
        None, "--seed-rsvps", min=0, help="Default seed-data RSVP count"
    ),
    host: str | None = typer.Option(None, "--host", help="Default host for runserver"),
    port: int | None = typer.Option(None, "--port", help="Default port for runserver"),
    config_path: Path | None = typer.Option(
        None, "--config-path", help="Path to rsvpdesk.toml (default: ./rsvpdesk.toml)"
    ),
):
    """View or update the persistent configuration file."""

    updates = {
        "rsvps_per_page": rsvps_per_page,
        "guest_min": guest_min,
        "guest_max": guest_max,
        "default_title": default_title,
        "base_url": base_url,
        "export_basename": export_basename,
        "reset_page_on_search": reset_page_on_search,
        "max_upload_mb": max_upload_mb,
        "session_max_age_hours": session_max_age_hours,
        "sqlite_vacuum_hours": vacuum_hours,
        "enable_scheduler": enable_scheduler,
        "seed_rsvps": seed_rsvps,
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


@app.command("test")
def run_tests(pytest_args: list[str] = typer.Argument(None, help="Extra pytest args")):
    """Run the test suite with helpful defaults."""
    env = os.environ.copy()
    env.setdefault("PYTHONPATH", ".")
    uv_path = shutil.which("uv")
    if uv_path:
        cmd = [uv_path, "run", "pytest"]
    else:
        typer.echo("uv not found, falling back to python -m pytest")
        cmd = [sys.executable, "-m", "pytest"]
    if pytest_args:
        cmd.extend(pytest_args)
    typer.echo(f"Running tests: {' '.join(cmd)}")
    result = subprocess.run(cmd, env=env)
    raise typer.Exit(code=result.returncode)


if __name__ == "__main__":
    app()

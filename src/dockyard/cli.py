"""CLI: init, serve, mcp, status, projects, token, env."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from dockyard.config import Config
from dockyard.errors import DockyardError
from dockyard.storage.sqlite_store import SQLiteStore

_STATUS_STYLE = {
    "queued": "yellow",
    "building": "cyan",
    "active": "green",
    "error": "red",
}


def _load_config(path: str | None) -> Config:
    return Config.load(Path(path).expanduser().resolve() if path else None)


def _require_db(config: Config) -> None:
    if not config.db_path.exists():
        click.echo(f"Error: No database at {config.db_path}. Run 'dockyard init' first.", err=True)
        sys.exit(1)


@click.group()
@click.version_option(package_name="dockyard")
def main() -> None:
    """Dockyard: deploy GitHub repositories as serverless containers."""


@main.command()
@click.argument("path", type=click.Path(), default="~/.dockyard")
def init(path: str) -> None:
    """Initialize a data directory and its record store."""
    config = _load_config(path)

    async def _init() -> None:
        store = SQLiteStore(config.db_path, wal_mode=config.wal_mode)
        await store.initialize()
        await store.close()
        config.save()

    asyncio.run(_init())
    click.echo(f"Initialized data directory at {config.data_path}")
    click.echo(f"Database: {config.db_path}")
    click.echo("Set DOCKYARD_JWT_SECRET and DOCKYARD_CALLBACK_SECRET before serving.")


@main.command()
@click.option("--data", "path", type=click.Path(), default=None, help="Data directory")
@click.option("--host", default=None, help="Bind address (default from config)")
@click.option("--port", type=int, default=None, help="Port (default from config)")
def serve(path: str | None, host: str | None, port: int | None) -> None:
    """Start the HTTP API."""
    import uvicorn

    from dockyard.api.app import create_app

    config = _load_config(path)
    _require_db(config)
    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if not config.jwt_secret:
        click.echo("Error: DOCKYARD_JWT_SECRET is not set; refusing to serve", err=True)
        sys.exit(1)
    if not config.callback_secret:
        click.echo("Warning: callback secret is empty; build callbacks will be rejected", err=True)

    uvicorn.run(
        create_app(config),
        host=host or config.host,
        port=port or config.port,
        log_level=config.log_level.lower(),
    )


@main.command()
@click.option("--data", "path", type=click.Path(), default=None, help="Data directory")
@click.option("--transport", type=click.Choice(["stdio"]), default="stdio")
def mcp(path: str | None, transport: str) -> None:
    """Start the operator MCP server."""
    config = _load_config(path)
    _require_db(config)

    from dockyard.server import create_server

    server = create_server(config)
    server.run(transport=transport)  # type: ignore[arg-type]


@main.command()
@click.option("--data", "path", type=click.Path(), default=None, help="Data directory")
def status(path: str | None) -> None:
    """Show record store status."""
    config = _load_config(path)
    _require_db(config)

    async def _status() -> dict:
        store = SQLiteStore(config.db_path, wal_mode=config.wal_mode)
        try:
            await store.initialize()
            return await store.get_stats()
        finally:
            await store.close()

    stats = asyncio.run(_status())
    click.echo(json.dumps(stats, indent=2))


@main.command()
@click.option("--data", "path", type=click.Path(), default=None, help="Data directory")
@click.option("--owner", default=None, help="Only projects owned by this email")
@click.option("--lang", type=click.Choice(["en", "ru"]), default="en")
def projects(path: str | None, owner: str | None, lang: str) -> None:
    """List projects as stored, without probing the platform."""
    from dockyard.core.status import status_label
    from dockyard.models.project import Project

    config = _load_config(path)
    _require_db(config)

    async def _list() -> list[Project]:
        store = SQLiteStore(config.db_path, wal_mode=config.wal_mode)
        try:
            await store.initialize()
            return [Project(**row) for row in await store.list_projects(owner=owner)]
        finally:
            await store.close()

    rows = asyncio.run(_list())
    if not rows:
        click.echo("No projects.")
        return

    table = Table(title=f"Projects ({len(rows)})")
    table.add_column("ID", style="bold")
    table.add_column("Status")
    table.add_column("Owner")
    table.add_column("Repository")
    table.add_column("Domain")
    table.add_column("Autodeploy", justify="center")
    for p in rows:
        style = _STATUS_STYLE.get(p.status.value, "white")
        table.add_row(
            p.id,
            f"[{style}]{status_label(p.status, lang)}[/{style}]",
            p.owner_login or p.owner,
            p.repo_url,
            p.domain or "-",
            "yes" if p.autodeploy else "no",
        )
    Console().print(table)


@main.command()
@click.argument("email")
@click.option("--login", default=None, help="Source-control login")
@click.option("--role", type=click.Choice(["user", "admin"]), default="user")
@click.option("--exp-minutes", type=int, default=60, show_default=True)
@click.option("--data", "path", type=click.Path(), default=None, help="Data directory")
def token(email: str, login: str | None, role: str, exp_minutes: int, path: str | None) -> None:
    """Issue a signed bearer token for EMAIL."""
    from dockyard.auth.jwt import create_token

    config = _load_config(path)
    if not config.jwt_secret:
        click.echo("Error: DOCKYARD_JWT_SECRET is not set", err=True)
        sys.exit(1)

    issued = create_token(
        email, config.jwt_secret, login=login, role=role, exp_minutes=exp_minutes
    )
    Console().print(
        Panel(
            f"{issued}\n\nEmail: {email}\nRole: {role}\nExpires in: {exp_minutes} min",
            title="Bearer Token",
        )
    )


@main.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.option("--json", "as_json", is_flag=True, help="Print the build-runner JSON form")
def env(file: str, as_json: bool) -> None:
    """Validate an env file (.env or .json) and print it normalized."""
    from dockyard.core import envvars

    source = Path(file)
    try:
        pairs = envvars.parse_file(source.name, source.read_text(encoding="utf-8"))
    except DockyardError as e:
        click.echo(f"Error: {e.message}", err=True)
        sys.exit(1)

    if as_json:
        click.echo(envvars.serialize_for_dispatch(pairs))
    else:
        click.echo(envvars.to_dotenv(pairs))
    click.echo(f"{len(pairs)} variable(s)", err=True)

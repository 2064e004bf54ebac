"""
gitsmithy CLI - serve a directory of git repositories.

Usage:
    gitsmithy serve --root ~/Projects --port 3456
    gitsmithy init my-project
    gitsmithy list
"""

import logging
import os
import sys
from pathlib import Path

import click
import uvicorn
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from gitsmithy.config import get_settings
from gitsmithy.services.errors import GitSmithyError
from gitsmithy.services.registry import RepositoryRegistry

console = Console()


def setup_logging(verbose: bool) -> None:
    """Configure logging based on verbosity."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def _root_option(func):
    return click.option(
        "--root",
        "-r",
        type=click.Path(file_okay=False, path_type=Path),
        default=None,
        help="Directory holding the repositories (default: $GITSMITHY_ROOT or ~/Projects)",
    )(func)


def _load_registry(root: Path | None) -> RepositoryRegistry:
    registry = RepositoryRegistry(root or get_settings().repos_root)
    try:
        registry.load()
    except GitSmithyError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    return registry


@click.group()
@click.version_option(package_name="gitsmithy")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def cli(verbose: bool):
    """gitsmithy - a small web front end for local git repositories."""
    setup_logging(verbose)


@cli.command()
@_root_option
@click.option("--host", "-h", default=None, help="Interface to bind (default: $GITSMITHY_HOST or localhost)")
@click.option("--port", "-p", type=int, default=None, help="Port to listen on (default: $GITSMITHY_PORT or 3456)")
@click.option("--reload", is_flag=True, help="Restart on code changes (development)")
def serve(root: Path | None, host: str | None, port: int | None, reload: bool):
    """Serve the browse API and the git Smart HTTP endpoints."""
    if root is not None:
        # The app builds its settings from the environment on import
        os.environ["GITSMITHY_ROOT"] = str(root.expanduser().resolve())
        get_settings.cache_clear()
    settings = get_settings()
    host = host or settings.host
    port = port or settings.port

    if not settings.repos_root.is_dir():
        console.print(f"[red]Error:[/red] {settings.repos_root} is not a directory")
        sys.exit(1)

    console.print(Panel(
        f"Serving [cyan]{settings.repos_root}[/cyan]\n"
        f"Browse:  http://{host}:{port}/api/repos\n"
        f"Clone:   git clone http://{host}:{port}/<repo>"
    ))
    uvicorn.run("gitsmithy.main:app", host=host, port=port, reload=reload)


@cli.command()
@click.argument("name")
@_root_option
def init(name: str, root: Path | None):
    """
    Create a new bare repository NAME under the root.

    Example:
        gitsmithy init my-project
        git remote add smithy http://localhost:3456/my-project
        git push smithy --all
    """
    registry = _load_registry(root)
    try:
        handle = registry.create(name)
    except GitSmithyError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    console.print(f"Created bare repository [green]{handle.slug}[/green] at {handle.path}")


@cli.command(name="list")
@_root_option
def list_repos(root: Path | None):
    """List the repositories found under the root."""
    registry = _load_registry(root)
    handles = registry.list()
    if not handles:
        console.print(f"No repositories under {registry.root}")
        return

    table = Table(title=f"Repositories in {registry.root}")
    table.add_column("Name", style="cyan")
    table.add_column("Path")
    table.add_column("Bare")
    for handle in handles:
        table.add_row(handle.slug, str(handle.path), "yes" if handle.repo.bare else "no")
    console.print(table)


if __name__ == "__main__":
    cli()

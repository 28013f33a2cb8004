"""Workspace initialization.

Scans the workspace for git repositories and writes (or refreshes) the
workspace document with their locations.
"""

from __future__ import annotations

import typer
from rich import box
from rich.table import Table

from multirepo.core.console import console
from multirepo.core.decorators import handle_exceptions
from multirepo.core.discovery import discover_repositories, load_user_overrides


@handle_exceptions
def init(ctx: typer.Context) -> None:
    """Discover repositories and write the workspace document."""
    state = ctx.obj
    workspace_cfg = state.config.workspace
    root = state.workspace_root

    overrides = load_user_overrides(root)
    search_paths = workspace_cfg.search_paths
    exclude = workspace_cfg.exclude
    if overrides is not None:
        search_paths = overrides.search_paths or search_paths
        exclude = overrides.exclude or exclude
        console.print("[dim]Using search paths from .multi-repo.user.json[/dim]")

    state.logger.debug("Searching %s for %s (excluding %s)", root, search_paths, exclude)
    locations = discover_repositories(root, search_paths, exclude)
    if not locations:
        console.print(f"[yellow]No git repositories found under {root}.[/yellow]")

    document, created = state.store.initialize(locations, overrides)

    table = Table(title=f"Repositories in {root}", box=box.SIMPLE_HEAVY, expand=True)
    table.add_column("Name", style="cyan", no_wrap=True)
    table.add_column("Path", style="white")
    for name, relative in sorted(document.project_locations.items()):
        table.add_row(name, relative)
    console.print(table)

    verb = "Created" if created else "Updated"
    console.print(f"[green]{verb}[/green] {state.store.path} with {len(locations)} repositories.")

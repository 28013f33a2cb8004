from __future__ import annotations

import logging
import signal
from dataclasses import dataclass, field
from pathlib import Path
from time import perf_counter
from types import FrameType

import typer
from rich import box
from rich.panel import Panel
from rich.table import Table

from . import __version__
from .core.config import AppConfig, ConfigLoadResult, load_config
from .core.console import console, setup_logging
from .core.discovery import find_workspace_root
from .core.orchestrator import Orchestrator
from .core.registry import discover_commands
from .core.store import FeatureStore

app = typer.Typer(help="multi-repo: coordinate features across several git repositories.")
logger = logging.getLogger(__name__)


class ApplicationLifecycle:
    """CLI signal handling.

    Interrupting a command half-way can leave worktree registrations behind;
    the handler tells the user how to clean them up.
    """

    def __init__(self) -> None:
        self._shutdown_requested: bool = False

    def handle_shutdown(self, signum: int, frame: FrameType | None) -> None:
        if self._shutdown_requested:
            console.print("\n[red]Force exit - manual cleanup may be needed:[/red]")
            console.print("  git worktree prune")
            raise SystemExit(128 + signum)

        self._shutdown_requested = True
        console.print("\n[yellow]Interrupted.[/yellow]")
        console.print("[yellow]If stale worktrees remain, run in each repository:[/yellow]\n  git worktree prune")
        raise SystemExit(128 + signum)

    def register_signal_handlers(self) -> None:
        signal.signal(signal.SIGINT, self.handle_shutdown)
        signal.signal(signal.SIGTERM, self.handle_shutdown)


@dataclass
class AppState:
    config: AppConfig
    config_meta: ConfigLoadResult
    logger: logging.Logger
    workspace_root: Path
    lifecycle: ApplicationLifecycle = field(default=None)  # type: ignore[assignment]
    _orchestrator: Orchestrator | None = field(default=None, repr=False)

    @property
    def store(self) -> FeatureStore:
        return self.orchestrator.store

    @property
    def orchestrator(self) -> Orchestrator:
        if self._orchestrator is None:
            store = FeatureStore(
                self.workspace_root,
                document_name=self.config.workspace.document_name,
                features_dir=self.config.workspace.features_dir,
            )
            self._orchestrator = Orchestrator(store, self.config)
        return self._orchestrator


@app.callback()
def main(
    ctx: typer.Context,
    config: Path | None = typer.Option(
        None, "--config", "-c", help="Path to a multi-repo config file (TOML or JSON)."
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
    workspace: Path | None = typer.Option(
        None,
        "--workspace",
        "-w",
        help="Workspace root (defaults to the nearest parent holding the workspace document).",
    ),
) -> None:
    loaded_config, meta = load_config(config_path=config)
    logger = setup_logging(level=loaded_config.log_level, verbose=verbose)

    lifecycle = ApplicationLifecycle()
    lifecycle.register_signal_handlers()

    if workspace is not None:
        workspace_root = workspace.expanduser().resolve()
    else:
        workspace_root = find_workspace_root(Path.cwd(), loaded_config.workspace.document_name)

    ctx.obj = AppState(
        config=loaded_config,
        config_meta=meta,
        logger=logger,
        workspace_root=workspace_root,
        lifecycle=lifecycle,
    )

    if meta.error:
        console.print(
            Panel(
                f"[bold red]Configuration Error - Safe Mode Active[/bold red]\n\n"
                f"Failed to load {meta.path}:\n{meta.error}\n\n"
                f"[yellow]Using default settings.[/yellow]",
                border_style="red",
            )
        )
    else:
        logger.debug(
            "Loaded configuration from %s (env overrides: %s, workspace: %s)",
            meta.path,
            sorted(meta.env_overrides),
            workspace_root,
        )


@app.command("config")
def show_config(ctx: typer.Context) -> None:
    """Show the active configuration and where it came from."""
    state: AppState = ctx.obj
    config = state.config
    meta = state.config_meta

    table = Table(title="Config", box=box.SIMPLE, expand=True)
    table.add_column("Key", style="cyan", no_wrap=True)
    table.add_column("Value", style="white")

    for key, value in config.model_dump(mode="json").items():
        table.add_row(key, str(value))
    table.add_row("workspace_root", str(state.workspace_root))

    console.print(table)

    meta_lines = [
        f"Path: {meta.path}",
        "File loaded: yes" if meta.file_loaded else "File loaded: no (using defaults + env)",
    ]

    if meta.env_overrides:
        meta_lines.append("Env overrides: " + ", ".join(sorted(meta.env_overrides)))

    console.print(Panel("\n".join(meta_lines), title="Config source", box=box.SIMPLE))


@app.command("version")
def show_version() -> None:
    """Print the multirepo version."""
    console.print(__version__)


def _register_commands() -> None:
    commands_path = Path(__file__).resolve().parent / "commands"
    typer_modules, function_commands = discover_commands(commands_path)

    for name, module in typer_modules:
        app.add_typer(module.app, name=name)

    for spec in function_commands:
        app.command(spec.name)(spec.handler)


def _register_commands_with_timing() -> None:
    start = perf_counter()
    _register_commands()
    elapsed = perf_counter() - start
    logger.debug("Command registry initialized in %.3f seconds", elapsed)


_register_commands_with_timing()


def cli() -> None:
    app()


if __name__ == "__main__":
    cli()

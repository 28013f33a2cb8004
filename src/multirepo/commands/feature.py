"""Feature lifecycle commands.

Provides CLI commands for:
    - Creating a feature with one worktree per repository
    - Tracking per-repository status and overall progress
    - Showing conflicts between features and a safe execution plan
    - Running a command in every worktree of a feature
    - Completing, cleaning up and pruning feature branches
"""

from __future__ import annotations

import asyncio

import typer
from rich import box
from rich.markup import escape
from rich.panel import Panel
from rich.prompt import Confirm
from rich.table import Table
from rich.text import Text

from multirepo.core.console import console
from multirepo.core.decorators import handle_exceptions
from multirepo.core.models import Feature, ProjectState
from multirepo.core.orchestrator import (
    BulkReport,
    CompleteAction,
    elapsed_time,
    format_duration,
)
from multirepo.core.result import CircularDependencyError
from multirepo.core.scheduler import ExecutionPlan

app = typer.Typer(help="Create, track and tear down features spanning several repositories.")

_STATUS_STYLES = {
    ProjectState.PENDING: "yellow",
    ProjectState.IN_PROGRESS: "blue",
    ProjectState.COMPLETED: "green",
}


def _status_label(status: ProjectState) -> str:
    style = _STATUS_STYLES.get(status, "white")
    return f"[{style}]{status.value}[/{style}]"


def _print_report(report: BulkReport, title: str) -> None:
    if report.outcomes:
        table = Table(title=title, box=box.SIMPLE, expand=True)
        table.add_column("Item", style="cyan", no_wrap=True)
        table.add_column("Repository", style="white", no_wrap=True)
        table.add_column("Result", style="white")
        for outcome in report.outcomes:
            detail = escape(outcome.detail)
            result = f"[green]ok[/green] {detail}" if outcome.ok else f"[red]{detail}[/red]"
            table.add_row(outcome.subject, outcome.repository, result)
        console.print(table)

    console.print(f"[green]Succeeded: {report.succeeded}[/green]")
    if report.failed:
        console.print(f"[red]Failed: {report.failed}[/red]")


def _print_plan(plan: ExecutionPlan) -> None:
    if plan.conflicts:
        conflicts = Table(title="Conflicts", box=box.SIMPLE, expand=True)
        conflicts.add_column("Features", style="cyan", no_wrap=True)
        conflicts.add_column("Shared repositories", style="yellow")
        for record in plan.conflicts:
            conflicts.add_row(
                f"{record.feature1} / {record.feature2}", ", ".join(record.conflicting_projects)
            )
        console.print(conflicts)
    else:
        console.print("[green]No conflicts between features.[/green]")

    lines = [
        f"Batch {index}: {', '.join(batch)}" for index, batch in enumerate(plan.batches, start=1)
    ]
    console.print(Panel("\n".join(lines) or "Nothing to schedule.", title="Execution plan"))


def _feature_table(feature: Feature) -> Table:
    completed, total = feature.progress
    table = Table(
        title=f"{feature.id}: {escape(feature.name)} [{completed}/{total}] {feature.progress_percent}%",
        box=box.SIMPLE_HEAVY,
        expand=True,
    )
    table.add_column("Repository", style="cyan", no_wrap=True)
    table.add_column("Status", no_wrap=True)
    table.add_column("Branch", style="white", no_wrap=True)
    table.add_column("Worktree", style="dim")
    for project in feature.projects:
        table.add_row(
            project.name,
            _status_label(project.status),
            project.branch,
            project.worktree_path or "-",
        )
    return table


@app.command("create")
@handle_exceptions
def create(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Human-readable feature name."),
    project: list[str] = typer.Option(
        ..., "--project", "-p", help="Repository taking part in the feature (repeatable)."
    ),
) -> None:
    """Create a feature and a worktree per repository."""
    orchestrator = ctx.obj.orchestrator
    outcome = asyncio.run(orchestrator.create_feature(name, project))
    feature = outcome.feature

    console.print(
        Panel(
            f"[green]Created[/green] {feature.id}: {escape(feature.name)}\n"
            f"Tracking directory: {escape(str(outcome.tracking_directory))}",
            title="Feature",
        )
    )
    for advisory in outcome.advisories:
        console.print(f"[yellow]{advisory}[/yellow]")
    _print_report(outcome.report, "Worktrees")

    others = orchestrator.conflicts_for(feature.id)
    if others:
        console.print(
            f"[yellow]Shares repositories with {', '.join(others)}; "
            "run `multi-repo feature plan` for a safe order.[/yellow]"
        )
    if outcome.report.failed:
        raise typer.Exit(code=1)


@app.command("status")
@handle_exceptions
def status(ctx: typer.Context) -> None:
    """Show every feature's progress, conflicts and the execution plan."""
    orchestrator = ctx.obj.orchestrator
    features = orchestrator.store.features()
    if not features:
        console.print("[yellow]No features found.[/yellow]")
        return

    for feature in features:
        console.print(_feature_table(feature))

    try:
        _print_plan(orchestrator.plan(features))
    except CircularDependencyError as exc:
        console.print(f"[red]{exc.message}: {', '.join(exc.remaining)}[/red]")


@app.command("plan")
@handle_exceptions
def plan(ctx: typer.Context) -> None:
    """Show conflicts between features and the batches they can run in."""
    _print_plan(ctx.obj.orchestrator.plan())


@app.command("update")
@handle_exceptions
def update(
    ctx: typer.Context,
    feature_id: str = typer.Argument(..., help="Feature id, e.g. FEAT-001."),
    repository: str = typer.Argument(..., help="Repository within the feature."),
    new_status: ProjectState = typer.Argument(..., help="pending, in_progress or completed."),
) -> None:
    """Change one repository's status within a feature."""
    feature = ctx.obj.orchestrator.update_status(feature_id, repository, new_status)
    completed, total = feature.progress
    console.print(
        f"[green]Updated[/green] {escape(repository)} in {feature.id} to {_status_label(new_status)}"
    )
    console.print(f"Progress: {completed}/{total} ({feature.progress_percent}%)")
    if feature.completed_at is not None:
        console.print("[green]All repositories completed.[/green]")


@app.command("inspect")
@handle_exceptions
def inspect(
    ctx: typer.Context,
    feature_id: str = typer.Argument(..., help="Feature id, e.g. FEAT-001."),
) -> None:
    """Compare recorded statuses with what the worktrees show."""
    outcomes = asyncio.run(ctx.obj.orchestrator.inspect_feature(feature_id))
    table = Table(title=f"Inspection of {escape(feature_id)}", box=box.SIMPLE_HEAVY, expand=True)
    table.add_column("Repository", style="cyan", no_wrap=True)
    table.add_column("Recorded", no_wrap=True)
    table.add_column("Worktree shows", no_wrap=True)
    table.add_column("Note", style="dim")
    for outcome in outcomes:
        inferred = _status_label(outcome.inferred) if outcome.inferred else "[red]unknown[/red]"
        note = outcome.error or ("" if outcome.worktree_exists else "worktree missing")
        table.add_row(outcome.repository, _status_label(outcome.recorded), inferred, note)
    console.print(table)


@app.command("run")
@handle_exceptions
def run(
    ctx: typer.Context,
    feature_id: str = typer.Argument(..., help="Feature id, e.g. FEAT-001."),
    command: list[str] = typer.Argument(..., help="Command to run; put it after `--`."),
) -> None:
    """Run a command in every worktree of a feature."""
    outcomes = asyncio.run(ctx.obj.orchestrator.run_in_worktrees(feature_id, command))
    if not outcomes:
        console.print("[yellow]No worktrees found for this feature.[/yellow]")
        return

    for outcome in outcomes:
        header = f"{outcome.repository} ({outcome.project_type})"
        if outcome.result is None:
            console.print(Panel(Text(str(outcome.error), style="red"), title=header, border_style="red"))
            continue
        body = (outcome.result.stdout + outcome.result.stderr).rstrip() or "(no output)"
        style = "green" if outcome.ok else "red"
        console.print(
            Panel(Text(body), title=f"{header} exit {outcome.result.returncode}", border_style=style)
        )

    succeeded = sum(1 for o in outcomes if o.ok)
    failed = len(outcomes) - succeeded
    console.print(f"[green]Succeeded: {succeeded}[/green]")
    if failed:
        console.print(f"[red]Failed: {failed}[/red]")
        raise typer.Exit(code=1)


@app.command("stats")
@handle_exceptions
def stats(
    ctx: typer.Context,
    feature_id: str = typer.Argument(..., help="Feature id, e.g. FEAT-001."),
) -> None:
    """Show time tracking, status counts and git statistics for a feature."""
    report = asyncio.run(ctx.obj.orchestrator.collect_stats(feature_id))
    feature = report.feature

    table = Table(title=f"{feature.id}: {escape(feature.name)}", box=box.SIMPLE, expand=True)
    table.add_column("Metric", style="cyan", no_wrap=True)
    table.add_column("Value", style="white")
    table.add_row("Created", feature.created_at.strftime("%Y-%m-%d %H:%M"))
    if feature.started_at:
        table.add_row("Started", feature.started_at.strftime("%Y-%m-%d %H:%M"))
    if feature.completed_at:
        table.add_row("Completed", feature.completed_at.strftime("%Y-%m-%d %H:%M"))
    if report.elapsed is not None:
        label = "Duration" if report.finished else "Elapsed"
        table.add_row(label, format_duration(report.elapsed))
    for state, count in report.counts.items():
        table.add_row(state.value, str(count))
    completed, total = feature.progress
    table.add_row("Progress", f"{completed}/{total} ({feature.progress_percent}%)")
    table.add_row("Commits", str(report.stats.total_commits))
    table.add_row("Files changed", str(report.stats.files_changed))
    table.add_row("Lines", f"+{report.stats.lines_added} / -{report.stats.lines_deleted}")
    console.print(table)

    if report.skipped:
        console.print(f"[dim]No git statistics for: {', '.join(report.skipped)}[/dim]")


@app.command("complete")
@handle_exceptions
def complete(
    ctx: typer.Context,
    feature_id: str = typer.Argument(..., help="Feature id, e.g. FEAT-001."),
    action: CompleteAction = typer.Option(
        CompleteAction.REMOVE,
        "--action",
        "-a",
        help=(
            "remove: worktrees only; merge: merge then remove; full: merge, remove and delete branches. "
            "A repository whose merge fails keeps its worktree and branch; resolve it, then rerun "
            "or use --action remove."
        ),
    ),
    keep: bool = typer.Option(False, "--keep", help="Keep the feature in the workspace document."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
) -> None:
    """Finish a feature: merge and/or remove its worktrees."""
    orchestrator = ctx.obj.orchestrator
    feature = orchestrator.store.get(feature_id)

    unfinished = [p for p in feature.projects if p.status != ProjectState.COMPLETED]
    if unfinished:
        console.print("[yellow]Not all repositories are completed:[/yellow]")
        for project in unfinished:
            console.print(f"  - {project.name} ({project.status.value})")
        if not yes and not Confirm.ask("Proceed anyway?", default=False, console=console):
            console.print("[dim]Operation cancelled.[/dim]")
            return

    report = asyncio.run(orchestrator.complete_feature(feature.id, action, keep=keep))
    _print_report(report, f"Completing {feature.id} ({action.value})")
    if report.failed:
        console.print(
            f"[yellow]{feature.id} kept in the workspace document; "
            "fix the failures above and run complete again.[/yellow]"
        )
        raise typer.Exit(code=1)
    if not keep:
        console.print(f"[green]{feature.id} removed from the workspace document.[/green]")


@app.command("cleanup")
@handle_exceptions
def cleanup(
    ctx: typer.Context,
    feature_ids: list[str] = typer.Argument(None, help="Features to remove."),
    all_features: bool = typer.Option(False, "--all", help="Remove every feature."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
) -> None:
    """Remove features together with their worktrees and branches."""
    orchestrator = ctx.obj.orchestrator
    features = orchestrator.store.features()
    selected = [f.id for f in features] if all_features else list(feature_ids or [])
    if not selected:
        console.print("[yellow]No features selected. Pass feature ids or --all.[/yellow]")
        return

    console.print(f"Features to delete: {escape(', '.join(selected))}")
    if not yes and not Confirm.ask(
        "Delete these features, their worktrees and branches?", default=False, console=console
    ):
        console.print("[dim]Operation cancelled.[/dim]")
        return

    report = asyncio.run(orchestrator.cleanup_features(selected))
    _print_report(report, "Cleanup")
    if report.failed:
        raise typer.Exit(code=1)


@app.command("prune-branches")
@handle_exceptions
def prune_branches(
    ctx: typer.Context,
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
) -> None:
    """Delete every local feature branch in every known repository."""
    orchestrator = ctx.obj.orchestrator
    found, scan_errors = asyncio.run(orchestrator.scan_feature_branches())
    for failure in scan_errors.failures:
        console.print(f"[yellow]Could not scan {failure.repository}: {failure.detail}[/yellow]")

    total = sum(len(branches) for branches in found.values())
    if total == 0:
        console.print("[green]No feature branches found to prune.[/green]")
        return

    table = Table(title=f"{total} feature branches", box=box.SIMPLE, expand=True)
    table.add_column("Repository", style="cyan", no_wrap=True)
    table.add_column("Branches", style="white")
    for repository, branches in sorted(found.items()):
        table.add_row(repository, ", ".join(branches))
    console.print(table)

    if not yes and not Confirm.ask(
        f"Delete all {total} feature branches? This cannot be undone!", default=False, console=console
    ):
        console.print("[dim]Operation cancelled.[/dim]")
        return

    report = asyncio.run(orchestrator.prune_branches(found))
    _print_report(report, "Pruned branches")
    if report.failed:
        raise typer.Exit(code=1)

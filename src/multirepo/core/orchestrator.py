"""Feature-level flows built on the store, the worktree lifecycle and the scheduler.

Every flow that touches several repositories keeps going when one of them
fails and reports per-item outcomes in a `BulkReport`. Repositories of one
feature are handled concurrently; operations against the same repository
never overlap.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import TypeVar

from multirepo.core.config import AppConfig
from multirepo.core.execution import CommandResult, detect_project_type, run_command
from multirepo.core.models import Feature, FeatureStats, ProjectState, ProjectStatus, utcnow
from multirepo.core.result import Err, GitError, MultiRepoError, Ok
from multirepo.core.scheduler import ExecutionPlan, build_execution_plan, detect_conflicts
from multirepo.core.store import FeatureStore
from multirepo.git import Change, ProvisionResult, Repository, WorktreeLifecycle

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CompleteAction(str, Enum):
    """What `complete_feature` does in each repository."""

    REMOVE = "remove"
    MERGE = "merge"
    FULL = "full"


@dataclass
class ItemOutcome:
    """One step of a bulk flow in one repository."""

    subject: str
    repository: str
    ok: bool
    detail: str = ""


@dataclass
class BulkReport:
    """Per-item outcomes of a flow that continues past failures."""

    outcomes: list[ItemOutcome] = field(default_factory=list)

    def success(self, subject: str, repository: str, detail: str = "") -> None:
        self.outcomes.append(ItemOutcome(subject, repository, True, detail))

    def failure(self, subject: str, repository: str, detail: str) -> None:
        logger.warning("%s in %s failed: %s", subject, repository, detail)
        self.outcomes.append(ItemOutcome(subject, repository, False, detail))

    def extend(self, other: BulkReport) -> None:
        self.outcomes.extend(other.outcomes)

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o.ok)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if not o.ok)

    @property
    def failures(self) -> list[ItemOutcome]:
        return [o for o in self.outcomes if not o.ok]


@dataclass
class CreateReport:
    feature: Feature
    tracking_directory: Path
    provisioned: list[ProvisionResult] = field(default_factory=list)
    advisories: list[str] = field(default_factory=list)
    report: BulkReport = field(default_factory=BulkReport)


@dataclass
class RunOutcome:
    repository: str
    worktree_path: Path
    project_type: str
    result: CommandResult | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.result is not None and self.result.ok


@dataclass
class InspectOutcome:
    repository: str
    recorded: ProjectState
    inferred: ProjectState | None
    worktree_exists: bool
    error: str | None = None


@dataclass
class StatsReport:
    """Time tracking plus git figures summed over a feature's worktrees."""

    feature: Feature
    stats: FeatureStats
    counts: dict[ProjectState, int]
    elapsed: timedelta | None
    finished: bool
    skipped: list[str] = field(default_factory=list)


def format_duration(delta: timedelta) -> str:
    """`3h 25m` style rendering."""
    minutes = int(delta.total_seconds() // 60)
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h {minutes}m"


def elapsed_time(feature: Feature, now: datetime | None = None) -> tuple[timedelta | None, bool]:
    """Duration of the work so far and whether the feature is finished."""
    if feature.started_at is None:
        return None, False
    if feature.completed_at is not None:
        return feature.completed_at - feature.started_at, True
    return (now or utcnow()) - feature.started_at, False


async def _gather_per_repository(
    names: Iterable[str], fn: Callable[[str], Awaitable[T]]
) -> list[T]:
    """Run `fn` once per distinct repository name, concurrently."""
    return list(await asyncio.gather(*(fn(name) for name in dict.fromkeys(names))))


class Orchestrator:
    """Coordinates the feature store with per-repository worktree lifecycles."""

    def __init__(self, store: FeatureStore, config: AppConfig | None = None) -> None:
        self._store = store
        self._config = config or AppConfig()
        self._lifecycles: dict[str, WorktreeLifecycle] = {}

    @property
    def store(self) -> FeatureStore:
        return self._store

    @property
    def config(self) -> AppConfig:
        return self._config

    def lifecycle(self, repository_name: str) -> WorktreeLifecycle:
        """One lifecycle per repository for the life of this orchestrator."""
        if repository_name not in self._lifecycles:
            git_cfg = self._config.git
            repo = Repository(
                self._store.project_path(repository_name),
                default_branch_candidates=git_cfg.default_branch_candidates,
                remote=git_cfg.remote,
            )
            self._lifecycles[repository_name] = WorktreeLifecycle(
                repo, branch_prefix=git_cfg.branch_prefix
            )
        return self._lifecycles[repository_name]

    def worktree_path(self, feature: Feature, project: ProjectStatus) -> Path:
        """Recorded worktree path, anchored at the workspace root when relative."""
        if project.worktree_path:
            path = Path(project.worktree_path)
            return path if path.is_absolute() else self._store.workspace_root / path
        return self._store.tracking_directory(feature) / project.name

    # -------------------------------------------------------------------------
    # Planning
    # -------------------------------------------------------------------------

    def plan(self, features: Sequence[Feature] | None = None) -> ExecutionPlan:
        selected = self._store.features() if features is None else list(features)
        return build_execution_plan(selected, self._config.scheduling.direction_policy)

    def conflicts_for(self, feature_id: str) -> list[str]:
        """Ids of other features sharing a repository with `feature_id`."""
        others: list[str] = []
        for record in detect_conflicts(self._store.features()):
            if record.feature1 == feature_id:
                others.append(record.feature2)
            elif record.feature2 == feature_id:
                others.append(record.feature1)
        return others

    # -------------------------------------------------------------------------
    # Creation
    # -------------------------------------------------------------------------

    async def create_feature(self, name: str, repositories: Sequence[str]) -> CreateReport:
        """Record the feature, then give every repository its own worktree.

        A repository that fails to provision is reported and keeps its
        pending status; the others carry on.
        """
        repositories = list(dict.fromkeys(repositories))
        feature_id = self._store.next_feature_id()
        branch = f"{self._config.git.branch_prefix}{feature_id}"
        feature = self._store.create(
            name,
            [ProjectStatus(name=repository, branch=branch) for repository in repositories],
            feature_id=feature_id,
        )
        tracking = self._store.tracking_directory(feature)
        tracking.mkdir(parents=True, exist_ok=True)

        outcome = CreateReport(feature=feature, tracking_directory=tracking)

        async def provision(repository: str) -> tuple[str, ProvisionResult | GitError]:
            match await self.lifecycle(repository).provision(feature.id, repository, tracking):
                case Ok(result):
                    return repository, result
                case Err(err):
                    return repository, err

        for repository, result in await _gather_per_repository(feature.repository_names, provision):
            if isinstance(result, ProvisionResult):
                self._store.record_worktree(
                    feature.id, repository, result.worktree_path, result.source_branch
                )
                outcome.provisioned.append(result)
                if result.advisory:
                    outcome.advisories.append(result.advisory)
                outcome.report.success("provision", repository, str(result.worktree_path))
            else:
                outcome.report.failure("provision", repository, result.message)

        outcome.feature = self._store.get(feature.id)
        return outcome

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    def update_status(self, feature_id: str, repository: str, status: ProjectState) -> Feature:
        return self._store.transition_project_status(feature_id, repository, status)

    async def inspect_feature(self, feature_id: str) -> list[InspectOutcome]:
        """Infer each repository's state from its worktree without touching the document."""
        feature = self._store.get(feature_id)

        async def inspect(repository: str) -> InspectOutcome:
            project = feature.project(repository)
            assert project is not None
            path = self.worktree_path(feature, project)
            lifecycle = self.lifecycle(repository)
            match await lifecycle.inspect(path, project.source_branch):
                case Ok(state):
                    return InspectOutcome(repository, project.status, state, path.exists())
                case Err(err):
                    return InspectOutcome(repository, project.status, None, path.exists(), err.message)

        return await _gather_per_repository(feature.repository_names, inspect)

    # -------------------------------------------------------------------------
    # Teardown
    # -------------------------------------------------------------------------

    async def _complete_project(
        self, feature: Feature, project: ProjectStatus, action: CompleteAction
    ) -> BulkReport:
        report = BulkReport()
        lifecycle = self.lifecycle(project.name)
        path = self.worktree_path(feature, project)

        if action in (CompleteAction.MERGE, CompleteAction.FULL):
            match await lifecycle.absorb(project.branch, path):
                case Ok(merged):
                    report.success("merge", project.name, f"{merged.source} -> {merged.target}")
                case Err(err):
                    report.failure("merge", project.name, str(err))
                    return report

        match await lifecycle.decommission(path):
            case Ok(removed):
                report.success("remove worktree", project.name, _describe_change(removed.change))
            case Err(err):
                report.failure("remove worktree", project.name, str(err))
                return report

        if action == CompleteAction.FULL:
            match await lifecycle.retire_branch(
                project.branch, force=self._config.git.force_branch_delete, worktree_path=path
            ):
                case Ok(change):
                    report.success("delete branch", project.name, _describe_change(change))
                case Err(err):
                    report.failure("delete branch", project.name, str(err))
        return report

    async def complete_feature(
        self, feature_id: str, action: CompleteAction, *, keep: bool = False
    ) -> BulkReport:
        """Merge and/or tear down every repository of a feature.

        Each repository stops at its first failing step; other repositories
        are unaffected. Unless `keep` is set the feature is then forgotten,
        but only when every step succeeded so a failed run can be retried.
        """
        feature = self._store.get(feature_id)
        action = CompleteAction(action)

        async def complete(repository: str) -> BulkReport:
            project = feature.project(repository)
            assert project is not None
            try:
                return await self._complete_project(feature, project, action)
            except MultiRepoError as exc:
                failed = BulkReport()
                failed.failure(action.value, repository, str(exc))
                return failed

        report = BulkReport()
        for partial in await _gather_per_repository(feature.repository_names, complete):
            report.extend(partial)

        if report.failed:
            logger.warning(
                "Keeping %s in the workspace document: %d step(s) failed", feature.id, report.failed
            )
        elif not keep:
            self._store.delete(feature.id)
        return report

    async def _cleanup_project(self, feature: Feature, project: ProjectStatus) -> BulkReport:
        report = BulkReport()
        try:
            lifecycle = self.lifecycle(project.name)
        except MultiRepoError as exc:
            report.failure("cleanup", project.name, str(exc))
            return report

        path = self.worktree_path(feature, project)
        match await lifecycle.decommission(path, best_effort=True, force=True):
            case Ok(removed) if removed.ok:
                report.success("remove worktree", project.name, _describe_change(removed.change))
            case Ok(removed):
                report.failure("remove worktree", project.name, str(removed.error))
            case Err(err):
                report.failure("remove worktree", project.name, str(err))

        match await lifecycle.retire_branch(
            project.branch, force=self._config.git.force_branch_delete, worktree_path=path
        ):
            case Ok(change):
                report.success("delete branch", project.name, _describe_change(change))
            case Err(err):
                report.failure("delete branch", project.name, str(err))
        return report

    async def cleanup_features(self, feature_ids: Sequence[str]) -> BulkReport:
        """Remove worktrees and branches of each feature, then forget it.

        Features are processed one after another because two features may
        share a repository. Outcomes use the feature id as subject. A feature
        with any failed step stays recorded so cleanup can be retried.
        """
        report = BulkReport()
        for feature_id in feature_ids:
            feature = self._store.find(feature_id)
            if feature is None:
                report.failure(feature_id, "-", f"Feature {feature_id} not found")
                continue

            async def cleanup(repository: str, feature: Feature = feature) -> BulkReport:
                project = feature.project(repository)
                assert project is not None
                return await self._cleanup_project(feature, project)

            steps = BulkReport()
            for partial in await _gather_per_repository(feature.repository_names, cleanup):
                steps.extend(partial)
            if steps.failed:
                detail = "; ".join(f"{o.repository}: {o.subject}" for o in steps.failures)
                report.failure(feature.id, "-", f"kept for retry, failed {detail}")
                continue

            try:
                self._store.delete(feature.id)
            except MultiRepoError as exc:
                report.failure(feature.id, "-", str(exc))
                continue
            report.success(feature.id, "-", feature.name)
        return report

    async def scan_feature_branches(self) -> tuple[dict[str, list[str]], BulkReport]:
        """Local branches matching the feature prefix (case-insensitive), per repository."""
        prefix = self._config.git.branch_prefix.lower()
        errors = BulkReport()

        async def scan(repository: str) -> tuple[str, list[str] | GitError]:
            match await self.lifecycle(repository).repo.list_local_branches():
                case Ok(branches):
                    return repository, [b for b in branches if b.lower().startswith(prefix)]
                case Err(err):
                    return repository, err

        found: dict[str, list[str]] = {}
        for repository, result in await _gather_per_repository(
            self._store.available_projects(), scan
        ):
            if isinstance(result, list):
                if result:
                    found[repository] = result
            else:
                errors.failure("scan", repository, result.message)
        return found, errors

    async def prune_branches(self, branches: dict[str, list[str]]) -> BulkReport:
        """Force-delete the given branches; one outcome per branch."""

        async def prune(repository: str) -> BulkReport:
            report = BulkReport()
            repo = self.lifecycle(repository).repo
            for branch in branches[repository]:
                match await repo.delete_local_branch(branch, force=True):
                    case Ok(_):
                        report.success(branch, repository)
                    case Err(err):
                        report.failure(branch, repository, err.message)
            return report

        report = BulkReport()
        for partial in await _gather_per_repository(branches, prune):
            report.extend(partial)
        return report

    # -------------------------------------------------------------------------
    # Commands and statistics
    # -------------------------------------------------------------------------

    async def run_in_worktrees(self, feature_id: str, argv: Sequence[str]) -> list[RunOutcome]:
        """Run `argv` in every worktree of the feature that exists on disk, one at a time."""
        feature = self._store.get(feature_id)
        outcomes: list[RunOutcome] = []
        for project in feature.projects:
            path = self.worktree_path(feature, project)
            if not path.exists():
                logger.info("Skipping %s: no worktree at %s", project.name, path)
                continue
            outcome = RunOutcome(project.name, path, detect_project_type(path))
            match await run_command(argv, path):
                case Ok(result):
                    outcome.result = result
                case Err(err):
                    outcome.error = err.message
            outcomes.append(outcome)
        return outcomes

    async def collect_stats(self, feature_id: str) -> StatsReport:
        """Sum commit and diff figures over existing worktrees and persist them."""
        feature = self._store.get(feature_id)

        async def measure(repository: str) -> tuple[str, tuple[int, int, int, int] | None]:
            project = feature.project(repository)
            assert project is not None
            if not self.worktree_path(feature, project).exists():
                return repository, None
            repo = self.lifecycle(repository).repo
            match await repo.resolve_default_branch():
                case Err(err):
                    logger.debug("No trunk for %s: %s", repository, err.message)
                    return repository, None
                case Ok(trunk):
                    pass
            match await repo.commit_count(f"{trunk}..{project.branch}"):
                case Err(err):
                    logger.debug("Cannot count commits in %s: %s", repository, err.message)
                    return repository, None
                case Ok(commits):
                    pass
            match await repo.diff_shortstat(trunk, project.branch):
                case Err(err):
                    logger.debug("Cannot diff %s: %s", repository, err.message)
                    return repository, None
                case Ok(diff):
                    return repository, (
                        commits,
                        diff.files_changed,
                        diff.insertions,
                        diff.deletions,
                    )

        totals = [0, 0, 0, 0]
        skipped: list[str] = []
        for repository, figures in await _gather_per_repository(feature.repository_names, measure):
            if figures is None:
                skipped.append(repository)
                continue
            totals = [a + b for a, b in zip(totals, figures)]

        stats = FeatureStats(
            total_commits=totals[0],
            files_changed=totals[1],
            lines_added=totals[2],
            lines_deleted=totals[3],
        )
        feature = self._store.record_stats(feature.id, stats)
        elapsed, finished = elapsed_time(feature)
        return StatsReport(
            feature=feature,
            stats=stats,
            counts={state: feature.count(state) for state in ProjectState},
            elapsed=elapsed,
            finished=finished,
            skipped=skipped,
        )


def _describe_change(change: Change | None) -> str:
    if change == Change.ALREADY_SATISFIED:
        return "already done"
    return "done"


__all__ = [
    "BulkReport",
    "CompleteAction",
    "CreateReport",
    "InspectOutcome",
    "ItemOutcome",
    "Orchestrator",
    "RunOutcome",
    "StatsReport",
    "elapsed_time",
    "format_duration",
]

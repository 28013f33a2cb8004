"""Git worktree lifecycle for one repository taking part in a feature.

States per worktree path:

    NOT_PROVISIONED -> PROVISIONED -> MERGED | ABANDONED -> REMOVED

Every operation is safe to repeat: a worktree that already exists, a worktree
already removed and a branch already deleted all come back as
``Change.ALREADY_SATISFIED`` rather than as errors.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from multirepo.core.models import ProjectState
from multirepo.core.result import Err, GitError, MergeConflictError, Ok, Result
from multirepo.git.client import DETACHED, Change, MergeOutcome, Repository

logger = logging.getLogger(__name__)


class WorktreeState(Enum):
    NOT_PROVISIONED = "not_provisioned"
    PROVISIONED = "provisioned"
    MERGED = "merged"
    ABANDONED = "abandoned"
    REMOVED = "removed"


@dataclass(frozen=True)
class ProvisionResult:
    """Outcome of provisioning one repository's worktree.

    Attributes:
        worktree_path: Where the worktree lives
        branch: Feature branch checked out in the worktree
        source_branch: Branch the feature branch was created from (None on re-entry
            or when HEAD was detached)
        advisory: Non-fatal warning, e.g. the source branch is behind its upstream
        change: APPLIED when a worktree was created, ALREADY_SATISFIED on re-entry
    """

    worktree_path: Path
    branch: str
    source_branch: str | None
    advisory: str | None
    change: Change


@dataclass(frozen=True)
class DecommissionResult:
    worktree_path: Path
    change: Change | None
    error: GitError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class WorktreeLifecycle:
    """Creates, inspects, merges and tears down feature worktrees of one repository.

    Attributes:
        repo: The repository whose branches and worktrees are managed
        branch_prefix: Prefix of feature branch names

    Not safe for concurrent use against the same repository; callers
    serialize per repository.
    """

    def __init__(self, repo: Repository, *, branch_prefix: str = "feature/") -> None:
        self._repo = repo
        self._branch_prefix = branch_prefix
        self._states: dict[Path, WorktreeState] = {}

    @property
    def repo(self) -> Repository:
        return self._repo

    def branch_name(self, feature_id: str) -> str:
        return f"{self._branch_prefix}{feature_id}"

    def state_of(self, worktree_path: Path) -> WorktreeState:
        """Last known state of a worktree path in this session."""
        key = worktree_path.expanduser().resolve()
        if key in self._states:
            return self._states[key]
        return WorktreeState.PROVISIONED if key.exists() else WorktreeState.NOT_PROVISIONED

    def _record(self, worktree_path: Path, state: WorktreeState) -> None:
        self._states[worktree_path.expanduser().resolve()] = state

    async def provision(
        self,
        feature_id: str,
        repository_name: str,
        target_directory: Path,
    ) -> Result[ProvisionResult, GitError]:
        """Create `<target_directory>/<repository_name>` on branch `feature/<feature_id>`.

        The branch is cut from whatever branch the repository currently has
        checked out, so in-progress work can be extended. An existing path is
        treated as already provisioned and returned untouched.
        """
        worktree_path = target_directory / repository_name
        branch = self.branch_name(feature_id)

        if worktree_path.exists():
            logger.info("Worktree already exists at %s", worktree_path)
            self._record(worktree_path, WorktreeState.PROVISIONED)
            return Ok(
                ProvisionResult(
                    worktree_path=worktree_path.resolve(),
                    branch=branch,
                    source_branch=None,
                    advisory=None,
                    change=Change.ALREADY_SATISFIED,
                )
            )

        match await self._repo.current_branch():
            case Err(err):
                return Err(err)
            case Ok(source_branch):
                pass

        advisory: str | None = None
        if source_branch == DETACHED:
            source_ref = "HEAD"
            advisory = f"{repository_name}: HEAD is detached; branching from the current commit"
        else:
            source_ref = source_branch
            match await self._repo.divergence_from_remote(source_branch):
                case Err(err):
                    return Err(err)
                case Ok(divergence) if divergence.behind > 0:
                    advisory = (
                        f"{repository_name}: {source_branch} is {divergence.behind} commit(s) "
                        "behind its upstream; consider pulling first"
                    )
                case Ok(_):
                    pass

        match await self._repo.branch_exists(branch):
            case Err(err):
                return Err(err)
            case Ok(False):
                match await self._repo.create_branch_from(branch, source_ref):
                    case Err(err):
                        return Err(err)
                    case Ok(_):
                        logger.debug("Created %s from %s in %s", branch, source_ref, self._repo.path)
            case Ok(True):
                logger.info("Reusing existing branch %s in %s", branch, self._repo.path)

        # A worktree deleted by hand stays registered until pruned and blocks re-adding.
        match await self._repo.prune_worktrees():
            case Err(err):
                return Err(err)
            case Ok(_):
                pass

        target_directory.mkdir(parents=True, exist_ok=True)
        match await self._repo.add_worktree(worktree_path, branch):
            case Err(err):
                return Err(err)
            case Ok(created):
                self._record(created, WorktreeState.PROVISIONED)
                logger.info("Created worktree %s", created)
                return Ok(
                    ProvisionResult(
                        worktree_path=created,
                        branch=branch,
                        source_branch=None if source_branch == DETACHED else source_branch,
                        advisory=advisory,
                        change=Change.APPLIED,
                    )
                )

    async def decommission(
        self,
        worktree_path: Path,
        *,
        best_effort: bool = False,
        force: bool = False,
    ) -> Result[DecommissionResult, GitError]:
        """Remove a worktree; in best-effort mode failures are reported, not returned as Err."""
        match await self._repo.remove_worktree(worktree_path, force=force):
            case Ok(change):
                self._record(worktree_path, WorktreeState.REMOVED)
                return Ok(DecommissionResult(worktree_path=worktree_path, change=change))
            case Err(err):
                if not best_effort:
                    return Err(err)
                logger.warning("Could not remove worktree %s: %s", worktree_path, err)
                return Ok(DecommissionResult(worktree_path=worktree_path, change=None, error=err))

    async def absorb(
        self, feature_branch: str, worktree_path: Path | None = None
    ) -> Result[MergeOutcome, GitError]:
        """Merge the feature branch back into the repository's trunk."""
        match await self._repo.merge_into(feature_branch):
            case Ok(outcome):
                logger.info("Merged %s into %s", outcome.source, outcome.target)
                if worktree_path is not None:
                    self._record(worktree_path, WorktreeState.MERGED)
                return Ok(outcome)
            case Err(MergeConflictError() as err):
                logger.warning(
                    "Merge of %s stopped on conflicts: %s",
                    feature_branch,
                    ", ".join(err.conflicted_files),
                )
                return Err(err)
            case Err(err):
                return Err(err)

    async def retire_branch(
        self,
        feature_branch: str,
        *,
        force: bool = True,
        worktree_path: Path | None = None,
    ) -> Result[Change, GitError]:
        """Delete the local feature branch; an absent branch is success."""
        # git refuses to delete a branch still registered to a worktree, even a vanished one.
        match await self._repo.prune_worktrees():
            case Err(err):
                return Err(err)
            case Ok(_):
                pass
        result = await self._repo.delete_local_branch(feature_branch, force=force)
        if result.is_ok() and worktree_path is not None:
            if self.state_of(worktree_path) is WorktreeState.PROVISIONED:
                self._record(worktree_path, WorktreeState.ABANDONED)
        return result

    async def inspect(
        self, worktree_path: Path, source_branch: str | None = None
    ) -> Result[ProjectState, GitError]:
        """Infer pending/in_progress from the worktree; never infers completed."""
        if not worktree_path.exists():
            return Ok(ProjectState.PENDING)

        worktree_repo = Repository(worktree_path)
        revisions = [f"{source_branch}..HEAD", "HEAD"] if source_branch else ["HEAD"]
        for revision in revisions:
            match await worktree_repo.commit_count(revision):
                case Ok(count):
                    return Ok(ProjectState.IN_PROGRESS if count > 0 else ProjectState.PENDING)
                case Err(err):
                    logger.debug("Cannot count %s in %s: %s", revision, worktree_path, err.message)
        # A branch without any commit yet has no HEAD to count from.
        return Ok(ProjectState.PENDING)


__all__ = [
    "DecommissionResult",
    "ProvisionResult",
    "WorktreeLifecycle",
    "WorktreeState",
]

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from multirepo.core.result import (
    BranchCreateError,
    BranchDeleteError,
    Err,
    GitError,
    MergeConflictError,
    MergeError,
    Ok,
    Result,
    WorktreeCreateError,
    WorktreeRemoveError,
)

logger = logging.getLogger(__name__)

# Sentinel returned by current_branch() when HEAD is not on a branch.
DETACHED = "(detached)"

DEFAULT_BRANCH_CANDIDATES: tuple[str, ...] = ("main", "master", "staging", "develop", "dev")

_REMOTE_HEAD_PATTERN = re.compile(r"refs/remotes/[^/]+/(.+)")
_SHORTSTAT_FILES = re.compile(r"(\d+) files? changed")
_SHORTSTAT_INSERTIONS = re.compile(r"(\d+) insertions?\(\+\)")
_SHORTSTAT_DELETIONS = re.compile(r"(\d+) deletions?\(-\)")


class Change(Enum):
    """Whether an idempotent operation did work or found it already done."""

    APPLIED = "applied"
    ALREADY_SATISFIED = "already_satisfied"


@dataclass(frozen=True)
class Divergence:
    """Commits ahead of / behind the upstream of a branch."""

    ahead: int
    behind: int


@dataclass(frozen=True)
class DiffStat:
    files_changed: int
    insertions: int
    deletions: int


@dataclass
class WorktreeInfo:
    """Information about a git worktree."""

    path: Path
    branch: str
    commit: str
    is_locked: bool
    prunable: bool


@dataclass(frozen=True)
class MergeOutcome:
    target: str
    source: str
    commit: str


async def _run_git(cwd: Path, *args: str) -> Result[str, GitError]:
    """Run git with asyncio and return stdout as text, wrapping failures."""
    if not cwd.exists():
        return Err(GitError("Repository path does not exist", context={"cwd": str(cwd)}))

    logger.debug("git %s (cwd=%s)", " ".join(args), cwd)
    try:
        process = await asyncio.create_subprocess_exec(
            "git",
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            stdin=asyncio.subprocess.DEVNULL,
            cwd=cwd,
        )
    except FileNotFoundError:
        return Err(GitError("git executable not found on PATH", context={"cwd": str(cwd)}))
    except OSError as exc:
        return Err(
            GitError(
                "Failed to start git",
                context={"cwd": str(cwd), "args": list(args), "error": str(exc)},
            )
        )

    stdout, stderr = await process.communicate()
    if process.returncode != 0:
        message = stderr.decode("utf-8", errors="replace").strip()
        stdout_text = stdout.decode("utf-8", errors="replace").strip()
        detail = message or stdout_text or f"git {' '.join(args)} failed"
        return Err(
            GitError(
                detail,
                context={"cwd": str(cwd), "args": list(args), "returncode": process.returncode},
            )
        )

    return Ok(stdout.decode("utf-8", errors="replace"))


def _returncode(err: GitError) -> int | None:
    code = err.context.get("returncode")
    return code if isinstance(code, int) else None


def _safe_int(value: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _parse_branch_lines(output: str) -> list[str]:
    """Parse `git for-each-ref --format=%(refname:short) refs/heads` output."""
    return [line.strip() for line in output.splitlines() if line.strip()]


def _parse_remote_head(output: str) -> str | None:
    """Extract the trunk name from `git symbolic-ref refs/remotes/<remote>/HEAD`."""
    match = _REMOTE_HEAD_PATTERN.search(output.strip())
    if match:
        return match.group(1).strip()
    return None


def _parse_left_right(output: str) -> Divergence:
    """Parse `git rev-list --left-right --count A...B` output ("<left>\\t<right>")."""
    parts = output.split()
    if len(parts) != 2:
        raise ValueError(f"unexpected rev-list output: {output!r}")
    return Divergence(ahead=int(parts[0]), behind=int(parts[1]))


def _parse_shortstat(output: str) -> DiffStat:
    """Parse "X files changed, Y insertions(+), Z deletions(-)" (any part may be absent)."""
    files = _SHORTSTAT_FILES.search(output)
    added = _SHORTSTAT_INSERTIONS.search(output)
    deleted = _SHORTSTAT_DELETIONS.search(output)
    return DiffStat(
        files_changed=_safe_int(files.group(1)) if files else 0,
        insertions=_safe_int(added.group(1)) if added else 0,
        deletions=_safe_int(deleted.group(1)) if deleted else 0,
    )


def _parse_worktree_list(output: str) -> list[WorktreeInfo]:
    """Parse `git worktree list --porcelain` output."""
    worktrees: list[WorktreeInfo] = []
    current: dict[str, str] = {}

    def _flush() -> None:
        worktrees.append(
            WorktreeInfo(
                path=Path(current.get("worktree", "")),
                branch=current.get("branch", "").replace("refs/heads/", ""),
                commit=current.get("HEAD", ""),
                is_locked="locked" in current,
                prunable="prunable" in current,
            )
        )

    for line in output.splitlines():
        if not line.strip():
            if current:
                _flush()
                current = {}
            continue

        if line.startswith("worktree "):
            current["worktree"] = line[9:]
        elif line.startswith("HEAD "):
            current["HEAD"] = line[5:]
        elif line.startswith("branch "):
            current["branch"] = line[7:]
        elif line == "locked" or line.startswith("locked "):
            current["locked"] = "true"
        elif line == "prunable" or line.startswith("prunable "):
            current["prunable"] = "true"

    # Handle last entry if no trailing newline
    if current:
        _flush()

    return worktrees


def _same_path(a: Path, b: Path) -> bool:
    return a.expanduser().resolve() == b.expanduser().resolve()


class Repository:
    """Async git wrapper for one repository directory.

    Stateless apart from the memoised default branch, which lives on the
    instance so handles for different repositories never share it.
    """

    def __init__(
        self,
        root: Path,
        *,
        default_branch_candidates: Sequence[str] = DEFAULT_BRANCH_CANDIDATES,
        remote: str = "origin",
    ) -> None:
        self._root = root
        self._candidates = tuple(default_branch_candidates)
        self._remote = remote
        self._default_branch: str | None = None

    @property
    def path(self) -> Path:
        return self._root

    # -------------------------------------------------------------------------
    # Branch queries
    # -------------------------------------------------------------------------

    async def list_local_branches(self) -> Result[list[str], GitError]:
        match await _run_git(
            self._root, "for-each-ref", "--format=%(refname:short)", "refs/heads"
        ):
            case Ok(output):
                return Ok(_parse_branch_lines(output))
            case Err(err):
                return Err(err)

    async def current_branch(self) -> Result[str, GitError]:
        match await _run_git(self._root, "symbolic-ref", "--quiet", "--short", "HEAD"):
            case Ok(output):
                return Ok(output.strip())
            case Err(err):
                # --quiet exits 1 without output when HEAD is detached
                if _returncode(err) == 1:
                    return Ok(DETACHED)
                return Err(err)

    async def branch_exists(self, name: str) -> Result[bool, GitError]:
        match await _run_git(
            self._root, "show-ref", "--verify", "--quiet", f"refs/heads/{name}"
        ):
            case Ok(_):
                return Ok(True)
            case Err(err):
                if _returncode(err) == 1:
                    return Ok(False)
                return Err(err)

    async def has_remotes(self) -> Result[bool, GitError]:
        match await _run_git(self._root, "remote"):
            case Ok(output):
                return Ok(bool(output.strip()))
            case Err(err):
                return Err(err)

    async def resolve_default_branch(self) -> Result[str, GitError]:
        """Determine the trunk: remote HEAD, then known names, then the current branch."""
        if self._default_branch is not None:
            return Ok(self._default_branch)

        match await self.has_remotes():
            case Err(err):
                return Err(err)
            case Ok(True):
                match await _run_git(
                    self._root, "symbolic-ref", f"refs/remotes/{self._remote}/HEAD"
                ):
                    case Ok(output):
                        name = _parse_remote_head(output)
                        if name:
                            self._default_branch = name
                            return Ok(name)
                    case Err(err):
                        logger.debug("No remote HEAD for %s: %s", self._root, err.message)
            case Ok(False):
                pass

        match await self.list_local_branches():
            case Err(err):
                return Err(err)
            case Ok(branches):
                for candidate in self._candidates:
                    if candidate in branches:
                        self._default_branch = candidate
                        return Ok(candidate)

        match await self.current_branch():
            case Err(err):
                return Err(err)
            case Ok(current):
                if current == DETACHED:
                    return Err(
                        GitError(
                            "Cannot resolve a default branch while HEAD is detached",
                            context={"cwd": str(self._root)},
                        )
                    )
                self._default_branch = current
                return Ok(current)

    # -------------------------------------------------------------------------
    # Branch mutations
    # -------------------------------------------------------------------------

    async def create_branch_from(self, new_name: str, source_branch: str) -> Result[str, GitError]:
        """Create `new_name` at `source_branch` without checking it out."""
        context = {"cwd": str(self._root), "branch": new_name, "source": source_branch}
        match await self.branch_exists(new_name):
            case Err(err):
                return Err(err)
            case Ok(True):
                return Err(BranchCreateError("Branch already exists", context=context))
            case Ok(False):
                pass

        match await _run_git(
            self._root, "rev-parse", "--verify", "--quiet", f"{source_branch}^{{commit}}"
        ):
            case Err(_):
                return Err(BranchCreateError("Source branch cannot be resolved", context=context))
            case Ok(_):
                pass

        match await _run_git(self._root, "branch", new_name, source_branch):
            case Ok(_):
                return Ok(new_name)
            case Err(err):
                return Err(BranchCreateError(err.message, context=context))

    async def delete_local_branch(self, name: str, *, force: bool = False) -> Result[Change, GitError]:
        context = {"cwd": str(self._root), "branch": name}
        match await self.branch_exists(name):
            case Err(err):
                return Err(err)
            case Ok(False):
                logger.info("Branch %s already absent in %s", name, self._root)
                return Ok(Change.ALREADY_SATISFIED)
            case Ok(True):
                pass

        flag = "-D" if force else "-d"
        match await _run_git(self._root, "branch", flag, name):
            case Ok(_):
                return Ok(Change.APPLIED)
            case Err(err):
                return Err(BranchDeleteError(err.message, context=context))

    async def checkout_branch(self, branch: str) -> Result[None, GitError]:
        result = await _run_git(self._root, "checkout", branch)
        return result.map(lambda _: None)

    # -------------------------------------------------------------------------
    # Worktree operations
    # -------------------------------------------------------------------------

    async def add_worktree(self, path: Path, branch: str) -> Result[Path, GitError]:
        """Check out an existing branch into a new worktree at `path`."""
        context = {"cwd": str(self._root), "path": str(path), "branch": branch}
        if path.exists():
            return Err(WorktreeCreateError("Worktree path already exists", context=context))

        match await self.branch_exists(branch):
            case Err(err):
                return Err(err)
            case Ok(False):
                return Err(WorktreeCreateError("Branch does not exist", context=context))
            case Ok(True):
                pass

        match await _run_git(self._root, "worktree", "add", str(path), branch):
            case Ok(_):
                return Ok(path.resolve())
            case Err(err):
                return Err(WorktreeCreateError(err.message, context=context))

    async def list_worktrees(self) -> Result[list[WorktreeInfo], GitError]:
        match await _run_git(self._root, "worktree", "list", "--porcelain"):
            case Ok(output):
                return Ok(_parse_worktree_list(output))
            case Err(err):
                return Err(err)

    async def prune_worktrees(self) -> Result[None, GitError]:
        """Prune stale worktree references."""
        result = await _run_git(self._root, "worktree", "prune")
        return result.map(lambda _: None)

    async def remove_worktree(self, path: Path, *, force: bool = False) -> Result[Change, GitError]:
        """Remove a registered worktree; a path already gone is a no-op."""
        context = {"cwd": str(self._root), "path": str(path)}
        if not path.exists():
            logger.info("Worktree %s already removed", path)
            return Ok(Change.ALREADY_SATISFIED)

        match await self.list_worktrees():
            case Err(err):
                return Err(err)
            case Ok(worktrees):
                if not any(_same_path(info.path, path) for info in worktrees):
                    return Err(
                        WorktreeRemoveError(
                            "Path is not a registered worktree of this repository",
                            context=context,
                        )
                    )

        args = ["worktree", "remove"]
        if force:
            args.append("--force")
        args.append(str(path))

        match await _run_git(self._root, *args):
            case Ok(_):
                return Ok(Change.APPLIED)
            case Err(err):
                return Err(WorktreeRemoveError(err.message, context=context))

    # -------------------------------------------------------------------------
    # Merge operations
    # -------------------------------------------------------------------------

    async def head(self, short: bool = True) -> Result[str, GitError]:
        args = ["rev-parse", "--short", "HEAD"] if short else ["rev-parse", "HEAD"]
        match await _run_git(self._root, *args):
            case Ok(output):
                return Ok(output.strip())
            case Err(err):
                return Err(err)

    async def get_conflict_files(self) -> Result[list[str], GitError]:
        match await _run_git(self._root, "diff", "--name-only", "--diff-filter=U"):
            case Ok(output):
                return Ok([line.strip() for line in output.splitlines() if line.strip()])
            case Err(err):
                return Err(err)

    async def merge_into(self, source_branch: str) -> Result[MergeOutcome, GitError]:
        """Check out the default branch and merge `source_branch` into it.

        Conflicts are reported, never resolved: the working tree is left
        mid-merge for a human.
        """
        match await self.resolve_default_branch():
            case Err(err):
                return Err(err)
            case Ok(target):
                pass

        context = {"cwd": str(self._root), "source": source_branch, "target": target}
        match await self.checkout_branch(target):
            case Err(err):
                return Err(MergeError(f"Cannot check out {target}: {err.message}", context=context))
            case Ok(_):
                pass

        match await _run_git(self._root, "merge", source_branch):
            case Ok(_):
                pass
            case Err(err):
                match await self.get_conflict_files():
                    case Ok(files) if files:
                        return Err(
                            MergeConflictError(
                                f"Merge of {source_branch} into {target} has conflicts",
                                conflicted_files=files,
                                context=context,
                            )
                        )
                    case _:
                        return Err(MergeError(err.message, context=context))

        match await self.head(short=False):
            case Ok(sha):
                return Ok(MergeOutcome(target=target, source=source_branch, commit=sha))
            case Err(err):
                return Err(err)

    # -------------------------------------------------------------------------
    # Status and statistics
    # -------------------------------------------------------------------------

    async def divergence_from_remote(self, branch: str | None = None) -> Result[Divergence, GitError]:
        """Ahead/behind counts against the upstream; (0, 0) without one."""
        ref = branch or "HEAD"
        match await _run_git(
            self._root, "rev-parse", "--abbrev-ref", "--symbolic-full-name", f"{ref}@{{upstream}}"
        ):
            case Err(_):
                return Ok(Divergence(ahead=0, behind=0))
            case Ok(output):
                upstream = output.strip()

        if not upstream:
            return Ok(Divergence(ahead=0, behind=0))

        match await _run_git(
            self._root, "rev-list", "--left-right", "--count", f"{ref}...{upstream}"
        ):
            case Err(err):
                return Err(err)
            case Ok(output):
                try:
                    return Ok(_parse_left_right(output))
                except ValueError as exc:
                    return Err(GitError(str(exc), context={"cwd": str(self._root), "ref": ref}))

    async def is_working_tree_clean(self) -> Result[bool, GitError]:
        match await _run_git(self._root, "status", "--porcelain"):
            case Ok(output):
                return Ok(not output.strip())
            case Err(err):
                return Err(err)

    async def commit_count(self, revision: str = "HEAD") -> Result[int, GitError]:
        """Number of commits reachable from `revision` (accepts `a..b` ranges)."""
        match await _run_git(self._root, "rev-list", "--count", revision):
            case Ok(output):
                return Ok(_safe_int(output.strip()))
            case Err(err):
                return Err(err)

    async def diff_shortstat(self, base: str, head: str) -> Result[DiffStat, GitError]:
        match await _run_git(self._root, "diff", "--shortstat", f"{base}...{head}"):
            case Ok(output):
                return Ok(_parse_shortstat(output))
            case Err(err):
                return Err(err)


__all__ = [
    "DETACHED",
    "Change",
    "DiffStat",
    "Divergence",
    "MergeOutcome",
    "Repository",
    "WorktreeInfo",
]

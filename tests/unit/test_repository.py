"""Tests for the async git Repository handle."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest

from conftest import commit_file, git, init_repo
from multirepo.core.result import (
    BranchCreateError,
    Err,
    MergeConflictError,
    Ok,
    WorktreeCreateError,
    WorktreeRemoveError,
)
from multirepo.git.client import (
    DETACHED,
    Change,
    DiffStat,
    Divergence,
    Repository,
    _parse_left_right,
    _parse_remote_head,
    _parse_shortstat,
    _parse_worktree_list,
)


class TestParsers:
    def test_remote_head(self) -> None:
        assert _parse_remote_head("refs/remotes/origin/main\n") == "main"
        assert _parse_remote_head("refs/remotes/upstream/release/2.x") == "release/2.x"
        assert _parse_remote_head("") is None

    def test_left_right(self) -> None:
        assert _parse_left_right("2\t5\n") == Divergence(ahead=2, behind=5)
        with pytest.raises(ValueError):
            _parse_left_right("garbage")

    def test_shortstat_full(self) -> None:
        output = " 3 files changed, 10 insertions(+), 2 deletions(-)\n"
        assert _parse_shortstat(output) == DiffStat(files_changed=3, insertions=10, deletions=2)

    def test_shortstat_partial(self) -> None:
        assert _parse_shortstat(" 1 file changed, 1 insertion(+)") == DiffStat(1, 1, 0)
        assert _parse_shortstat(" 1 file changed, 4 deletions(-)") == DiffStat(1, 0, 4)
        assert _parse_shortstat("") == DiffStat(0, 0, 0)

    def test_worktree_porcelain(self) -> None:
        output = (
            "worktree /repo\n"
            "HEAD abc123\n"
            "branch refs/heads/main\n"
            "\n"
            "worktree /repo/features/2024-01-01-x/repo\n"
            "HEAD def456\n"
            "branch refs/heads/feature/FEAT-001\n"
            "locked\n"
            "\n"
            "worktree /tmp/gone\n"
            "HEAD 000000\n"
            "detached\n"
            "prunable gitdir file points to non-existent location\n"
        )
        worktrees = _parse_worktree_list(output)
        assert [w.path for w in worktrees] == [
            Path("/repo"),
            Path("/repo/features/2024-01-01-x/repo"),
            Path("/tmp/gone"),
        ]
        assert worktrees[1].branch == "feature/FEAT-001"
        assert worktrees[1].is_locked
        assert worktrees[2].prunable
        assert worktrees[2].branch == ""


class TestBranches:
    @pytest.mark.asyncio
    async def test_list_and_current_branch(self, tmp_path: Path) -> None:
        repo_path = init_repo(tmp_path / "repo")
        git(repo_path, "branch", "other")
        repo = Repository(repo_path)

        assert (await repo.list_local_branches()).unwrap() == ["main", "other"]
        assert (await repo.current_branch()).unwrap() == "main"

    @pytest.mark.asyncio
    async def test_detached_head_is_reported(self, tmp_path: Path) -> None:
        repo_path = init_repo(tmp_path / "repo")
        git(repo_path, "checkout", "--detach", "HEAD")
        repo = Repository(repo_path)

        assert (await repo.current_branch()).unwrap() == DETACHED

    @pytest.mark.asyncio
    async def test_default_branch_from_candidates(self, tmp_path: Path) -> None:
        repo_path = init_repo(tmp_path / "repo", branch="trunk")
        git(repo_path, "branch", "develop")
        repo = Repository(repo_path)

        assert (await repo.resolve_default_branch()).unwrap() == "develop"

    @pytest.mark.asyncio
    async def test_default_branch_falls_back_to_current(self, tmp_path: Path) -> None:
        repo_path = init_repo(tmp_path / "repo", branch="trunk")
        repo = Repository(repo_path)

        assert (await repo.resolve_default_branch()).unwrap() == "trunk"

    @pytest.mark.asyncio
    async def test_default_branch_from_remote_head(self, tmp_path: Path) -> None:
        upstream = init_repo(tmp_path / "upstream", branch="staging")
        clone = tmp_path / "clone"
        git(tmp_path, "clone", str(upstream), str(clone))
        git(clone, "branch", "main")
        repo = Repository(clone)

        assert (await repo.resolve_default_branch()).unwrap() == "staging"

    @pytest.mark.asyncio
    async def test_default_branch_is_cached_per_instance(self, tmp_path: Path) -> None:
        first = Repository(init_repo(tmp_path / "a", branch="main"))
        second = Repository(init_repo(tmp_path / "b", branch="master"))

        assert (await first.resolve_default_branch()).unwrap() == "main"
        assert (await second.resolve_default_branch()).unwrap() == "master"
        with patch("multirepo.git.client.asyncio.create_subprocess_exec") as spawn:
            assert (await first.resolve_default_branch()).unwrap() == "main"
        spawn.assert_not_called()

    @pytest.mark.asyncio
    async def test_create_branch_from(self, tmp_path: Path) -> None:
        repo = Repository(init_repo(tmp_path / "repo"))

        assert (await repo.create_branch_from("feature/FEAT-001", "main")).unwrap() == "feature/FEAT-001"
        assert (await repo.branch_exists("feature/FEAT-001")).unwrap() is True
        # Not checked out
        assert (await repo.current_branch()).unwrap() == "main"

    @pytest.mark.asyncio
    async def test_create_existing_branch_fails(self, tmp_path: Path) -> None:
        repo = Repository(init_repo(tmp_path / "repo"))
        await repo.create_branch_from("feature/FEAT-001", "main")

        match await repo.create_branch_from("feature/FEAT-001", "main"):
            case Err(err):
                assert isinstance(err, BranchCreateError)
            case Ok(_):
                pytest.fail("Expected BranchCreateError")

    @pytest.mark.asyncio
    async def test_create_from_unknown_source_fails(self, tmp_path: Path) -> None:
        repo = Repository(init_repo(tmp_path / "repo"))

        result = await repo.create_branch_from("feature/FEAT-001", "does-not-exist")
        assert result.is_err()
        assert isinstance(result.error, BranchCreateError)  # type: ignore[union-attr]

    @pytest.mark.asyncio
    async def test_delete_branch_twice(self, tmp_path: Path) -> None:
        repo = Repository(init_repo(tmp_path / "repo"))
        await repo.create_branch_from("feature/FEAT-001", "main")

        assert (await repo.delete_local_branch("feature/FEAT-001", force=True)).unwrap() is Change.APPLIED
        assert (
            await repo.delete_local_branch("feature/FEAT-001", force=True)
        ).unwrap() is Change.ALREADY_SATISFIED


class TestWorktrees:
    @pytest.mark.asyncio
    async def test_add_and_remove(self, tmp_path: Path) -> None:
        repo = Repository(init_repo(tmp_path / "repo"))
        await repo.create_branch_from("feature/FEAT-001", "main")
        target = tmp_path / "features" / "repo"
        target.parent.mkdir()

        created = (await repo.add_worktree(target, "feature/FEAT-001")).unwrap()
        assert (created / "README.md").exists()
        listed = (await repo.list_worktrees()).unwrap()
        assert any(info.branch == "feature/FEAT-001" for info in listed)

        assert (await repo.remove_worktree(target)).unwrap() is Change.APPLIED
        assert not target.exists()

    @pytest.mark.asyncio
    async def test_add_to_existing_path_fails(self, tmp_path: Path) -> None:
        repo = Repository(init_repo(tmp_path / "repo"))
        await repo.create_branch_from("feature/FEAT-001", "main")
        occupied = tmp_path / "occupied"
        occupied.mkdir()

        result = await repo.add_worktree(occupied, "feature/FEAT-001")
        assert isinstance(result.error, WorktreeCreateError)  # type: ignore[union-attr]

    @pytest.mark.asyncio
    async def test_add_with_missing_branch_fails(self, tmp_path: Path) -> None:
        repo = Repository(init_repo(tmp_path / "repo"))

        result = await repo.add_worktree(tmp_path / "wt", "feature/missing")
        assert isinstance(result.error, WorktreeCreateError)  # type: ignore[union-attr]

    @pytest.mark.asyncio
    async def test_remove_missing_path_makes_no_git_call(self, tmp_path: Path) -> None:
        repo = Repository(init_repo(tmp_path / "repo"))

        with patch("multirepo.git.client.asyncio.create_subprocess_exec") as spawn:
            result = await repo.remove_worktree(tmp_path / "already-gone")

        assert result.unwrap() is Change.ALREADY_SATISFIED
        spawn.assert_not_called()

    @pytest.mark.asyncio
    async def test_remove_unregistered_path_fails(self, tmp_path: Path) -> None:
        repo = Repository(init_repo(tmp_path / "repo"))
        stray = tmp_path / "stray"
        stray.mkdir()

        result = await repo.remove_worktree(stray)
        assert isinstance(result.error, WorktreeRemoveError)  # type: ignore[union-attr]
        assert stray.exists()


class TestMergeAndStats:
    @pytest.mark.asyncio
    async def test_merge_into_default_branch(self, tmp_path: Path) -> None:
        repo_path = init_repo(tmp_path / "repo")
        git(repo_path, "checkout", "-b", "feature/FEAT-001")
        commit_file(repo_path, "feature.txt", "work\n")
        git(repo_path, "checkout", "main")
        repo = Repository(repo_path)

        outcome = (await repo.merge_into("feature/FEAT-001")).unwrap()
        assert outcome.target == "main"
        assert outcome.source == "feature/FEAT-001"
        assert (repo_path / "feature.txt").exists()

    @pytest.mark.asyncio
    async def test_merge_conflict_reports_files(self, tmp_path: Path) -> None:
        repo_path = init_repo(tmp_path / "repo")
        git(repo_path, "checkout", "-b", "feature/FEAT-001")
        commit_file(repo_path, "README.md", "feature side\n")
        git(repo_path, "checkout", "main")
        commit_file(repo_path, "README.md", "trunk side\n")
        repo = Repository(repo_path)

        match await repo.merge_into("feature/FEAT-001"):
            case Err(MergeConflictError() as err):
                assert err.conflicted_files == ["README.md"]
            case other:
                pytest.fail(f"Expected a merge conflict, got {other}")

        # Left mid-merge for a human
        assert (repo_path / ".git" / "MERGE_HEAD").exists()

    @pytest.mark.asyncio
    async def test_divergence_without_upstream(self, tmp_path: Path) -> None:
        repo = Repository(init_repo(tmp_path / "repo"))

        assert (await repo.divergence_from_remote()).unwrap() == Divergence(0, 0)

    @pytest.mark.asyncio
    async def test_divergence_behind_upstream(self, tmp_path: Path) -> None:
        upstream = init_repo(tmp_path / "upstream")
        clone = tmp_path / "clone"
        git(tmp_path, "clone", str(upstream), str(clone))
        commit_file(upstream, "new.txt", "x\n")
        git(clone, "fetch")
        repo = Repository(clone)

        assert (await repo.divergence_from_remote("main")).unwrap() == Divergence(ahead=0, behind=1)

    @pytest.mark.asyncio
    async def test_commit_count_and_shortstat(self, tmp_path: Path) -> None:
        repo_path = init_repo(tmp_path / "repo")
        git(repo_path, "checkout", "-b", "feature/FEAT-001")
        commit_file(repo_path, "a.txt", "one\ntwo\n")
        commit_file(repo_path, "b.txt", "three\n")
        repo = Repository(repo_path)

        assert (await repo.commit_count("main..feature/FEAT-001")).unwrap() == 2
        stat = (await repo.diff_shortstat("main", "feature/FEAT-001")).unwrap()
        assert stat == DiffStat(files_changed=2, insertions=3, deletions=0)

    @pytest.mark.asyncio
    async def test_missing_repository_path_is_err(self, tmp_path: Path) -> None:
        repo = Repository(tmp_path / "nope")

        result = await repo.current_branch()
        assert result.is_err()

    @pytest.mark.asyncio
    async def test_working_tree_clean(self, tmp_path: Path) -> None:
        repo_path = init_repo(tmp_path / "repo")
        repo = Repository(repo_path)

        assert (await repo.is_working_tree_clean()).unwrap() is True
        (repo_path / "scratch.txt").write_text("dirty\n")
        assert (await repo.is_working_tree_clean()).unwrap() is False

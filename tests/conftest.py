from __future__ import annotations

import json
import os
import subprocess
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest
from rich.console import Console
from typer.testing import CliRunner

# Detect CI environment (GitHub Actions sets CI=true)
IS_CI = os.environ.get("CI", "").lower() == "true"


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "local_only: marks tests that require local environment (skip in CI)",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip local_only tests when running in CI."""
    if not IS_CI:
        return
    skip_ci = pytest.mark.skip(reason="Skipped in CI (requires local environment)")
    for item in items:
        if "local_only" in item.keywords:
            item.add_marker(skip_ci)


ROOT = Path(__file__).resolve().parent.parent
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


def git(path: Path, *args: str) -> str:
    """Run git for test setup (not part of the system under test)."""
    completed = subprocess.run(
        ["git", *args], cwd=path, check=True, capture_output=True, text=True
    )
    return completed.stdout


def init_repo(path: Path, branch: str = "main") -> Path:
    """Create a repository with one commit on `branch`."""
    path.mkdir(parents=True, exist_ok=True)
    git(path, "init", "-b", branch)
    git(path, "config", "user.email", "test@test.com")
    git(path, "config", "user.name", "Test User")
    git(path, "config", "commit.gpgsign", "false")
    (path / "README.md").write_text(f"# {path.name}\n")
    git(path, "add", ".")
    git(path, "commit", "-m", "Initial commit")
    return path


def commit_file(path: Path, name: str, content: str, message: str | None = None) -> None:
    (path / name).write_text(content)
    git(path, "add", name)
    git(path, "commit", "-m", message or f"Update {name}")


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def make_repo(tmp_path: Path) -> Callable[..., Path]:
    """Factory creating committed repositories under the test's tmp dir."""

    def _make(relative: str, branch: str = "main") -> Path:
        return init_repo(tmp_path / relative, branch)

    return _make


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """Workspace with repoA, repoB and repoC under services/ and a document listing them."""
    root = tmp_path / "workspace"
    locations: dict[str, str] = {}
    for name in ("repoA", "repoB", "repoC"):
        init_repo(root / "services" / name)
        locations[name] = f"services/{name}"
    document = {
        "workspaceRoot": str(root),
        "features": [],
        "projectLocations": locations,
        "version": 1,
    }
    (root / ".multi-repo-config.json").write_text(json.dumps(document, indent=2))
    return root


@pytest.fixture(autouse=True)
def isolate_config(tmp_path: Path, monkeypatch: Any) -> Path:
    """Point config to a temp path so tests don't touch user state."""
    cfg_path = tmp_path / "config.toml"
    monkeypatch.setenv("MULTIREPO_CONFIG", str(cfg_path))
    for key in list(os.environ):
        if key.startswith("MR_"):
            monkeypatch.delenv(key, raising=False)
    return cfg_path


@pytest.fixture(autouse=True)
def capture_console(monkeypatch: Any) -> Console:
    """Use an in-memory Rich console during tests."""
    test_console = Console(record=True, width=200)
    import multirepo.commands.feature as feature_cmd
    import multirepo.commands.init as init_cmd
    import multirepo.core.console as core_console
    import multirepo.core.decorators as decorators
    import multirepo.main as mr_main

    monkeypatch.setattr(core_console, "console", test_console)
    monkeypatch.setattr(mr_main, "console", test_console)
    monkeypatch.setattr(feature_cmd, "console", test_console)
    monkeypatch.setattr(init_cmd, "console", test_console)
    monkeypatch.setattr(decorators, "console", test_console)
    return test_console

"""Running commands inside feature worktrees.

Provides:
- CommandResult for one finished command
- detect_project_type to label a worktree (Node.js, Python, Go, ...)
- run_command to execute an argv list in a directory without a shell
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

from multirepo.core.result import Err, ExternalToolError, Ok, Result

logger = logging.getLogger(__name__)

UNKNOWN_PROJECT_TYPE = "Unknown"

# First match wins; patterns are checked in the worktree root and one level down.
PROJECT_TYPE_MARKERS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("Node.js", ("package.json",)),
    ("SQL Server", ("*.sqlproj",)),
    (".NET", ("*.csproj", "*.fsproj", "*.vbproj", "*.sln")),
    ("Python", ("requirements.txt", "setup.py", "pyproject.toml", "Pipfile")),
    ("Java", ("pom.xml", "build.gradle", "build.gradle.kts")),
    ("Go", ("go.mod", "go.sum")),
    ("Rust", ("Cargo.toml",)),
    ("Ruby", ("Gemfile", "Rakefile")),
    ("PHP", ("composer.json",)),
    ("Docker", ("Dockerfile", "docker-compose.yml")),
)


@dataclass(slots=True)
class CommandResult:
    """Result of a command run in one worktree."""

    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def _matches(directory: Path, pattern: str) -> bool:
    if any(directory.glob(pattern)):
        return True
    return any(directory.glob(f"*/{pattern}"))


def detect_project_type(path: Path) -> str:
    """Best-effort label for the kind of project checked out at `path`."""
    if not path.is_dir():
        return UNKNOWN_PROJECT_TYPE
    for label, patterns in PROJECT_TYPE_MARKERS:
        if any(_matches(path, pattern) for pattern in patterns):
            return label
    return UNKNOWN_PROJECT_TYPE


async def run_command(
    argv: Sequence[str],
    cwd: Path,
    env: Mapping[str, str] | None = None,
) -> Result[CommandResult, ExternalToolError]:
    """Run `argv` in `cwd` and capture its output.

    A non-zero exit is still Ok; Err means the command could not be started.
    """
    tokens = list(argv)
    if not tokens:
        return Err(ExternalToolError("No command given", context={"cwd": str(cwd)}))

    logger.debug("Running %s in %s", tokens, cwd)
    try:
        proc = await asyncio.create_subprocess_exec(
            *tokens,
            cwd=cwd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=dict(env) if env is not None else None,
        )
    except FileNotFoundError as exc:
        return Err(
            ExternalToolError("Command not found", context={"error": str(exc), "cmd": tokens})
        )
    except OSError as exc:
        return Err(
            ExternalToolError(
                "Failed to start command", context={"error": str(exc), "cmd": tokens}
            )
        )

    stdout_bytes, stderr_bytes = await proc.communicate()
    return Ok(
        CommandResult(
            returncode=proc.returncode or 0,
            stdout=stdout_bytes.decode(errors="replace"),
            stderr=stderr_bytes.decode(errors="replace"),
        )
    )


__all__ = [
    "CommandResult",
    "PROJECT_TYPE_MARKERS",
    "UNKNOWN_PROJECT_TYPE",
    "detect_project_type",
    "run_command",
]

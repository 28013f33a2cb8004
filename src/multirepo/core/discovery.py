"""Repository discovery and workspace root detection.

Discovery only produces `name -> relative path` locations; the rest of the
system never scans the filesystem for repositories.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from pathlib import Path

from pydantic import ValidationError

from multirepo.core.config import DOCUMENT_NAME, USER_OVERRIDES_NAME
from multirepo.core.models import UserSearchConfig
from multirepo.core.result import ConfigurationError

logger = logging.getLogger(__name__)

WORKSPACE_MARKERS: tuple[str, ...] = ("FE", "BE", "frontend", "backend", "services", "packages", "apps")
MAX_PARENT_DEPTH = 10


def find_workspace_root(start: Path, document_name: str = DOCUMENT_NAME) -> Path:
    """Walk up from `start` to the directory holding the document or a conventional folder.

    Falls back to `start` when nothing is found within ten levels.
    """
    start = start.expanduser().resolve()
    current = start
    for _ in range(MAX_PARENT_DEPTH):
        if (current / document_name).exists():
            return current
        if any((current / marker).is_dir() for marker in WORKSPACE_MARKERS):
            return current
        if current.parent == current:
            break
        current = current.parent
    return start


def load_user_overrides(workspace_root: Path) -> UserSearchConfig | None:
    """Read `.multi-repo.user.json` (searchPaths / exclude) if the workspace has one."""
    path = workspace_root / USER_OVERRIDES_NAME
    if not path.exists():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigurationError(
            f"Cannot read {USER_OVERRIDES_NAME}: {exc}", context={"path": str(path)}
        ) from exc
    if not isinstance(data, dict):
        raise ConfigurationError(
            f"{USER_OVERRIDES_NAME} must hold a JSON object", context={"path": str(path)}
        )
    try:
        return UserSearchConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigurationError(
            f"Invalid {USER_OVERRIDES_NAME}: {exc.error_count()} error(s)",
            context={"path": str(path), "errors": exc.errors(include_url=False)},
        ) from exc


def _is_repository(path: Path) -> bool:
    return path.is_dir() and (path / ".git").exists()


def _excluded(relative: Path, exclude: set[str]) -> bool:
    return any(part in exclude for part in relative.parts)


def discover_repositories(
    workspace_root: Path,
    search_paths: Sequence[str],
    exclude: Sequence[str] = (),
) -> dict[str, str]:
    """Map repository name to its path relative to `workspace_root`.

    Each search path is a glob pattern relative to the root. When no pattern
    yields a repository, immediate children of the root are tried instead.
    """
    root = workspace_root.expanduser().resolve()
    excluded = set(exclude)
    projects: dict[str, str] = {}

    for pattern in search_paths:
        try:
            matches = sorted(root.glob(pattern))
        except (ValueError, OSError) as exc:
            logger.warning("Could not search pattern %r: %s", pattern, exc)
            continue
        for match in matches:
            relative = match.relative_to(root)
            if _excluded(relative, excluded) or not _is_repository(match):
                continue
            name = match.name
            if name in projects and projects[name] != relative.as_posix():
                logger.warning(
                    "Repository name %s found at %s and %s; keeping the first",
                    name,
                    projects[name],
                    relative.as_posix(),
                )
                continue
            projects[name] = relative.as_posix()

    if not projects and root.is_dir():
        for child in sorted(root.iterdir()):
            if child.name in excluded or not _is_repository(child):
                continue
            projects[child.name] = child.name

    logger.debug("Discovered %d repositories under %s", len(projects), root)
    return projects


__all__ = [
    "discover_repositories",
    "find_workspace_root",
    "load_user_overrides",
]

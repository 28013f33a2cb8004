"""
Unified Result types and error hierarchy for multirepo.

This module provides:
1. Result[T, E] type for explicit error handling at the git boundary
2. Domain-specific exception hierarchy shared by every layer

Usage:
    from multirepo.core.result import Ok, Err, Result, BranchCreateError

    def create() -> Result[str, BranchCreateError]:
        if exists:
            return Err(BranchCreateError("Branch already exists"))
        return Ok("feature/FEAT-001")

    result = create()
    if result.is_ok():
        print(result.value)
    else:
        print(result.error)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Generic, TypeVar

T = TypeVar("T")
U = TypeVar("U")
E = TypeVar("E", bound=Exception)
F = TypeVar("F", bound=Exception)


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """Represents a successful result containing a value."""

    value: T

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    def unwrap(self) -> T:
        """Return the contained value."""
        return self.value

    def unwrap_or(self, default: T) -> T:
        """Return the contained value (ignores default for Ok)."""
        return self.value

    def map(self, fn: Callable[[T], U]) -> Ok[U]:
        """Apply a function to the contained value."""
        return Ok(fn(self.value))

    def map_err(self, fn: Callable[[E], F]) -> Ok[T]:
        """No-op for Ok - returns self unchanged."""
        return self

    def and_then(self, fn: Callable[[T], Result[U, E]]) -> Result[U, E]:
        """Chain operations that may fail."""
        return fn(self.value)


@dataclass(frozen=True, slots=True)
class Err(Generic[E]):
    """Represents a failed result containing an error."""

    error: E

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def unwrap(self) -> T:
        """Raise the contained error."""
        raise self.error

    def unwrap_or(self, default: T) -> T:
        """Return the default value."""
        return default

    def map(self, fn: Callable[[T], U]) -> Err[E]:
        """No-op for Err - returns self unchanged."""
        return self

    def map_err(self, fn: Callable[[E], F]) -> Err[F]:
        """Apply a function to the contained error."""
        return Err(fn(self.error))

    def and_then(self, fn: Callable[[T], Result[U, E]]) -> Err[E]:
        """Short-circuit for Err - returns self unchanged."""
        return self


# Type alias for Result
Result = Ok[T] | Err[E]


# ---------------------------------------------------------------------------
# Domain-specific error hierarchy
# ---------------------------------------------------------------------------


class MultiRepoError(Exception):
    """Base exception for all multirepo errors.

    Every error carries a human message plus a context mapping naming the
    feature, repository or operation that failed.
    """

    def __init__(self, message: str, *, context: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} [{ctx_str}]"
        return self.message


class NotFoundError(MultiRepoError):
    """Raised when a feature, project or repository key is absent."""


class FeatureNotFoundError(NotFoundError):
    """Raised when a feature identifier is not in the document."""


class ProjectNotFoundError(NotFoundError):
    """Raised when a repository is not part of the given feature."""


class RepositoryNotFoundError(NotFoundError):
    """Raised when a repository name has no known location."""


class AlreadyExistsError(MultiRepoError):
    """Raised when creating something whose identifier is already taken."""


class ExternalToolError(MultiRepoError):
    """Raised when a git invocation fails.

    Examples:
    - git executable not found on PATH
    - Non-zero exit status
    - Output that cannot be parsed
    """


# The git layer speaks of GitError throughout.
GitError = ExternalToolError


class BranchCreateError(ExternalToolError):
    """Branch already exists or its source cannot be resolved."""


class WorktreeCreateError(ExternalToolError):
    """Worktree path is occupied or the branch does not exist."""


class WorktreeRemoveError(ExternalToolError):
    """Path is not a registered worktree, or git refused to remove it."""


class BranchDeleteError(ExternalToolError):
    """git refused to delete an existing branch."""


class MergeError(ExternalToolError):
    """Merge failed for a reason other than conflicting changes."""


class MergeConflictError(MergeError):
    """Merge stopped on conflicts that need a human to resolve.

    The repository is left in the conflicted state; nothing is resolved or
    aborted automatically.
    """

    def __init__(
        self,
        message: str,
        *,
        conflicted_files: list[str] | None = None,
        context: dict | None = None,
    ) -> None:
        super().__init__(message, context=context)
        self.conflicted_files = conflicted_files or []


class CircularDependencyError(MultiRepoError):
    """Raised when the feature dependency graph contains a cycle."""

    def __init__(self, message: str, *, remaining: list[str] | None = None) -> None:
        super().__init__(message, context={"remaining": remaining or []})
        self.remaining = remaining or []


class PersistenceError(MultiRepoError):
    """Raised when the workspace document is unreadable, corrupt or unwritable."""


class ConfigurationError(MultiRepoError):
    """Raised for configuration issues.

    Examples:
    - Workspace not initialized
    - Invalid config values
    """


__all__ = [
    # Result types
    "Ok",
    "Err",
    "Result",
    # Error hierarchy
    "MultiRepoError",
    "NotFoundError",
    "FeatureNotFoundError",
    "ProjectNotFoundError",
    "RepositoryNotFoundError",
    "AlreadyExistsError",
    "ExternalToolError",
    "GitError",
    "BranchCreateError",
    "WorktreeCreateError",
    "WorktreeRemoveError",
    "BranchDeleteError",
    "MergeError",
    "MergeConflictError",
    "CircularDependencyError",
    "PersistenceError",
    "ConfigurationError",
]

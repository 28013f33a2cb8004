from __future__ import annotations

import pytest

from multirepo.core.result import (
    CircularDependencyError,
    Err,
    FeatureNotFoundError,
    GitError,
    MergeConflictError,
    MergeError,
    MultiRepoError,
    NotFoundError,
    Ok,
)


def test_ok_helpers() -> None:
    result = Ok(2)

    assert result.is_ok() and not result.is_err()
    assert result.unwrap() == 2
    assert result.unwrap_or(0) == 2
    assert result.map(lambda v: v * 10) == Ok(20)
    assert result.and_then(lambda v: Err(GitError(f"bad {v}"))).is_err()


def test_err_helpers() -> None:
    error = GitError("boom")
    result = Err(error)

    assert result.is_err()
    assert result.unwrap_or(7) == 7
    assert result.map(lambda v: v * 10) is result
    assert result.map_err(lambda e: MergeError(e.message)).error.message == "boom"
    with pytest.raises(GitError):
        result.unwrap()


def test_error_str_includes_context() -> None:
    error = FeatureNotFoundError("Feature FEAT-009 not found", context={"feature": "FEAT-009"})

    assert str(error) == "Feature FEAT-009 not found [feature=FEAT-009]"
    assert isinstance(error, NotFoundError)
    assert isinstance(error, MultiRepoError)


def test_merge_conflict_is_a_merge_error() -> None:
    assert issubclass(MergeConflictError, MergeError)
    assert issubclass(MergeError, GitError)


def test_circular_dependency_names_remaining_features() -> None:
    error = CircularDependencyError("Circular dependency", remaining=["FEAT-002", "FEAT-003"])

    assert error.remaining == ["FEAT-002", "FEAT-003"]
    assert error.context == {"remaining": ["FEAT-002", "FEAT-003"]}

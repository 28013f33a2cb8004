"""Conflict detection and execution planning across features.

Two features conflict when they touch at least one repository in common.
Conflicting features are serialized; everything else may run in parallel.
The plan is a list of batches computed with Kahn's algorithm over
"B waits for A" edges, one edge per conflicting pair.

Pure functions over an in-memory list of features; no I/O.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from itertools import combinations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from multirepo.core.config import DirectionPolicyName
from multirepo.core.models import Feature
from multirepo.core.result import CircularDependencyError

# Given a conflicting pair in enumeration order, return (runs first, waits).
DirectionPolicy = Callable[[Feature, Feature], tuple[Feature, Feature]]


class ConflictRecord(BaseModel):
    """Two features and every repository they both touch."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    feature1: str
    feature2: str
    conflicting_projects: list[str]


class ExecutionPlan(BaseModel):
    """Ordered batches of feature ids plus the conflicts that shaped them."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    batches: list[list[str]] = Field(default_factory=list)
    conflicts: list[ConflictRecord] = Field(default_factory=list)


def enumeration_order(first: Feature, second: Feature) -> tuple[Feature, Feature]:
    """The feature listed first in the input runs first."""
    return first, second


def oldest_first(first: Feature, second: Feature) -> tuple[Feature, Feature]:
    """The feature created earlier runs first; ties keep enumeration order."""
    if second.created_at < first.created_at:
        return second, first
    return first, second


_POLICIES: dict[DirectionPolicyName, DirectionPolicy] = {
    DirectionPolicyName.OLDEST_FIRST: oldest_first,
    DirectionPolicyName.ENUMERATION: enumeration_order,
}


def resolve_policy(policy: DirectionPolicyName | str | DirectionPolicy) -> DirectionPolicy:
    if callable(policy):
        return policy
    return _POLICIES[DirectionPolicyName(policy)]


def conflicting_projects(feature1: Feature, feature2: Feature) -> list[str]:
    """Repositories both features touch, in the first feature's order."""
    other = set(feature2.repository_names)
    return [name for name in feature1.repository_names if name in other]


def features_conflict(feature1: Feature, feature2: Feature) -> bool:
    return bool(conflicting_projects(feature1, feature2))


def detect_conflicts(features: Sequence[Feature]) -> list[ConflictRecord]:
    """One record per unordered pair of features sharing a repository."""
    conflicts: list[ConflictRecord] = []
    for feature1, feature2 in combinations(features, 2):
        if feature1.id == feature2.id:
            continue
        shared = conflicting_projects(feature1, feature2)
        if shared:
            conflicts.append(
                ConflictRecord(
                    feature1=feature1.id,
                    feature2=feature2.id,
                    conflicting_projects=shared,
                )
            )
    return conflicts


def build_execution_plan(
    features: Sequence[Feature],
    policy: DirectionPolicyName | str | DirectionPolicy = DirectionPolicyName.OLDEST_FIRST,
) -> ExecutionPlan:
    """Batch features so no two in one batch share a repository.

    Raises:
        CircularDependencyError: the direction policy produced a cycle; no
            partial plan is returned.
    """
    direction = resolve_policy(policy)
    conflicts = detect_conflicts(features)
    by_id = {feature.id: feature for feature in features}
    order = list(by_id)

    dependents: dict[str, list[str]] = {fid: [] for fid in order}
    in_degree: dict[str, int] = {fid: 0 for fid in order}

    for conflict in conflicts:
        first, then = direction(by_id[conflict.feature1], by_id[conflict.feature2])
        dependents[first.id].append(then.id)
        in_degree[then.id] += 1

    batches: list[list[str]] = []
    remaining = list(order)
    while remaining:
        batch = [fid for fid in remaining if in_degree[fid] == 0]
        if not batch:
            raise CircularDependencyError(
                "Circular dependency detected in features", remaining=remaining
            )
        batches.append(batch)
        for fid in batch:
            for dependent in dependents[fid]:
                in_degree[dependent] -= 1
        scheduled = set(batch)
        remaining = [fid for fid in remaining if fid not in scheduled]

    return ExecutionPlan(batches=batches, conflicts=conflicts)


__all__ = [
    "ConflictRecord",
    "DirectionPolicy",
    "ExecutionPlan",
    "build_execution_plan",
    "conflicting_projects",
    "detect_conflicts",
    "enumeration_order",
    "features_conflict",
    "oldest_first",
    "resolve_policy",
]

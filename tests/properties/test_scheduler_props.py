"""Property-based tests for conflict detection and batching using Hypothesis.

These tests verify core properties of the scheduler:
- features with disjoint repository sets never conflict
- features sharing a repository always conflict, once per pair
- no batch contains two conflicting features
- every feature is scheduled exactly once
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from hypothesis import given, settings
from hypothesis import strategies as st

from multirepo.core.config import DirectionPolicyName
from multirepo.core.models import Feature, ProjectStatus
from multirepo.core.scheduler import build_execution_plan, detect_conflicts, features_conflict

# === Strategies ===

repo_names = st.sampled_from([f"repo{c}" for c in "ABCDEFGH"])

repo_sets = st.lists(repo_names, min_size=1, max_size=4, unique=True)


@st.composite
def feature_sets(draw: st.DrawFn) -> list[Feature]:
    count = draw(st.integers(min_value=0, max_value=8))
    base = datetime(2024, 1, 1, tzinfo=UTC)
    features: list[Feature] = []
    for index in range(count):
        feature_id = f"FEAT-{index + 1:03d}"
        created = base + timedelta(minutes=draw(st.integers(min_value=0, max_value=60)))
        features.append(
            Feature(
                id=feature_id,
                name=feature_id,
                created_at=created,
                updated_at=created,
                projects=[
                    ProjectStatus(name=repo, branch=f"feature/{feature_id}")
                    for repo in draw(repo_sets)
                ],
            )
        )
    return features


def _feature(feature_id: str, repos: list[str]) -> Feature:
    return Feature(
        id=feature_id,
        name=feature_id,
        projects=[ProjectStatus(name=r, branch=f"feature/{feature_id}") for r in repos],
    )


# === Property Tests ===


@given(repos=repo_sets, data=st.data())
@settings(max_examples=100)
def test_disjoint_features_never_conflict(repos: list[str], data: st.DataObject) -> None:
    remaining = sorted({f"repo{c}" for c in "ABCDEFGH"} - set(repos))
    other = data.draw(st.lists(st.sampled_from(remaining), min_size=1, max_size=3, unique=True))

    assert detect_conflicts([_feature("F1", repos), _feature("F2", other)]) == []


@given(first=repo_sets, second=repo_sets, shared=repo_names)
@settings(max_examples=100)
def test_shared_repository_always_conflicts(first: list[str], second: list[str], shared: str) -> None:
    f1 = _feature("F1", list(dict.fromkeys([*first, shared])))
    f2 = _feature("F2", list(dict.fromkeys([shared, *second])))

    conflicts = detect_conflicts([f1, f2])

    assert len(conflicts) == 1
    assert shared in conflicts[0].conflicting_projects
    assert set(conflicts[0].conflicting_projects) == set(f1.repository_names) & set(f2.repository_names)


@given(features=feature_sets())
@settings(max_examples=200)
def test_one_record_per_conflicting_pair(features: list[Feature]) -> None:
    pairs = [(r.feature1, r.feature2) for r in detect_conflicts(features)]

    assert len(pairs) == len(set(pairs))
    assert all(a != b for a, b in pairs)


@given(features=feature_sets(), policy=st.sampled_from(list(DirectionPolicyName)))
@settings(max_examples=200)
def test_batches_are_conflict_free_and_complete(
    features: list[Feature], policy: DirectionPolicyName
) -> None:
    plan = build_execution_plan(features, policy)
    by_id = {f.id: f for f in features}

    scheduled = [fid for batch in plan.batches for fid in batch]
    assert sorted(scheduled) == sorted(by_id)

    for batch in plan.batches:
        for i, left in enumerate(batch):
            for right in batch[i + 1 :]:
                assert not features_conflict(by_id[left], by_id[right])

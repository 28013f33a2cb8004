"""Git operations for feature worktrees.

This package provides async git operations:
    - Repository: Non-blocking branch, worktree and merge commands
    - WorktreeLifecycle: Provision, inspect, merge and tear down feature worktrees
"""

from __future__ import annotations

from .client import (
    DETACHED,
    Change,
    DiffStat,
    Divergence,
    MergeOutcome,
    Repository,
    WorktreeInfo,
)
from .worktree import DecommissionResult, ProvisionResult, WorktreeLifecycle, WorktreeState

__all__ = [
    "DETACHED",
    "Change",
    "DecommissionResult",
    "DiffStat",
    "Divergence",
    "MergeOutcome",
    "ProvisionResult",
    "Repository",
    "WorktreeInfo",
    "WorktreeLifecycle",
    "WorktreeState",
]

"""Persisted workspace models.

The workspace document is one JSON file per workspace. Field names are
written in camelCase so documents produced by earlier releases of the tool
keep loading unchanged.

Key classes:
- ProjectState: Per-repository status within a feature
- ProjectStatus: One repository's participation in a feature
- Feature: A unit of cross-repository work
- WorkspaceDocument: The whole persisted document
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

DOCUMENT_VERSION = 1


def utcnow() -> datetime:
    return datetime.now(UTC)


class ProjectState(str, Enum):
    """Lifecycle status of one repository inside a feature."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class _Document(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class ProjectStatus(_Document):
    """One repository's participation in a feature.

    Attributes:
        name: Repository name, a key of the workspace's project locations
        status: pending, in_progress or completed
        branch: Feature branch name in that repository
        worktree_path: Where the feature worktree is checked out
        last_updated: When the status last changed
        source_branch: Branch the feature branch was cut from, if known
    """

    name: str
    status: ProjectState = ProjectState.PENDING
    branch: str
    worktree_path: str = ""
    last_updated: datetime | None = None
    source_branch: str | None = None


class FeatureStats(_Document):
    total_commits: int | None = None
    files_changed: int | None = None
    lines_added: int | None = None
    lines_deleted: int | None = None


class Feature(_Document):
    """A unit of cross-repository work."""

    id: str
    name: str
    projects: list[ProjectStatus] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    stats: FeatureStats | None = None

    @field_validator("projects")
    @classmethod
    def unique_project_names(cls, v: list[ProjectStatus]) -> list[ProjectStatus]:
        seen: set[str] = set()
        for project in v:
            if project.name in seen:
                raise ValueError(f"repository {project.name!r} listed twice in one feature")
            seen.add(project.name)
        return v

    @property
    def repository_names(self) -> list[str]:
        return [project.name for project in self.projects]

    def project(self, name: str) -> ProjectStatus | None:
        for project in self.projects:
            if project.name == name:
                return project
        return None

    @property
    def progress(self) -> tuple[int, int]:
        """(completed projects, total projects)."""
        completed = sum(1 for p in self.projects if p.status == ProjectState.COMPLETED)
        return completed, len(self.projects)

    @property
    def progress_percent(self) -> int:
        completed, total = self.progress
        if total == 0:
            return 0
        return round(completed * 100 / total)

    def count(self, state: ProjectState) -> int:
        return sum(1 for p in self.projects if p.status == state)


class UserSearchConfig(_Document):
    search_paths: list[str] | None = None
    exclude: list[str] | None = None


class WorkspaceDocument(_Document):
    """The persisted document: features plus repository locations."""

    workspace_root: str
    features: list[Feature] = Field(default_factory=list)
    project_locations: dict[str, str] = Field(default_factory=dict)
    user_config: UserSearchConfig | None = None
    version: int | None = None

    def feature(self, feature_id: str) -> Feature | None:
        for feature in self.features:
            if feature.id == feature_id:
                return feature
        return None


__all__ = [
    "DOCUMENT_VERSION",
    "Feature",
    "FeatureStats",
    "ProjectState",
    "ProjectStatus",
    "UserSearchConfig",
    "WorkspaceDocument",
    "utcnow",
]

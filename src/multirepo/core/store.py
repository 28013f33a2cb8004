"""Feature store backed by the workspace JSON document.

Every read loads a fresh snapshot from disk and every mutation is a
read-modify-write of the whole document, committed with a single atomic
file replace. One writer at a time is assumed; there is no locking.
"""

from __future__ import annotations

import json
import logging
import os
import re
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

from pydantic import ValidationError

from multirepo.core.config import DOCUMENT_NAME
from multirepo.core.models import (
    DOCUMENT_VERSION,
    Feature,
    FeatureStats,
    ProjectState,
    ProjectStatus,
    UserSearchConfig,
    WorkspaceDocument,
    utcnow,
)
from multirepo.core.result import (
    AlreadyExistsError,
    FeatureNotFoundError,
    MultiRepoError,
    PersistenceError,
    ProjectNotFoundError,
    RepositoryNotFoundError,
)

logger = logging.getLogger(__name__)

_FEATURE_ID_PATTERN = re.compile(r"^FEAT-(\d+)$")
_SLUG_PATTERN = re.compile(r"[^a-zA-Z0-9]")


def _write_document(path: Path, payload: str) -> None:
    """Atomically rewrite the document."""
    temp_path = path.with_suffix(".tmp")
    try:
        with temp_path.open("w", encoding="utf-8") as fh:
            fh.write(payload)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(temp_path, path)
    except OSError:
        temp_path.unlink(missing_ok=True)
        raise


def next_feature_id(features: Sequence[Feature]) -> str:
    """One above the highest FEAT-NNN identifier in use."""
    highest = 0
    for feature in features:
        match = _FEATURE_ID_PATTERN.match(feature.id)
        if match:
            highest = max(highest, int(match.group(1)))
    return f"FEAT-{highest + 1:03d}"


def _apply_transition(feature: Feature, project: ProjectStatus, new_status: ProjectState) -> None:
    now = utcnow()
    project.status = new_status
    project.last_updated = now

    if new_status == ProjectState.IN_PROGRESS and feature.started_at is None:
        feature.started_at = now

    all_completed = bool(feature.projects) and all(
        p.status == ProjectState.COMPLETED for p in feature.projects
    )
    if all_completed:
        if feature.completed_at is None:
            feature.completed_at = now
    else:
        feature.completed_at = None

    feature.updated_at = now


class FeatureStore:
    """Load, save and mutate the workspace document.

    Attributes:
        workspace_root: Directory holding the document and the repositories
        path: Location of the JSON document
    """

    def __init__(
        self,
        workspace_root: Path,
        *,
        document_name: str = DOCUMENT_NAME,
        features_dir: str = "features",
    ) -> None:
        self._workspace_root = workspace_root.expanduser().resolve()
        self._path = self._workspace_root / document_name
        self._features_dir = features_dir

    @property
    def workspace_root(self) -> Path:
        return self._workspace_root

    @property
    def path(self) -> Path:
        return self._path

    def exists(self) -> bool:
        return self._path.exists()

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def load(self) -> WorkspaceDocument:
        if not self._path.exists():
            raise PersistenceError(
                "Workspace document not found. Run `multi-repo init` first.",
                context={"path": str(self._path)},
            )
        try:
            raw = self._path.read_text(encoding="utf-8")
        except OSError as exc:
            raise PersistenceError(
                "Cannot read workspace document", context={"path": str(self._path), "error": str(exc)}
            ) from exc

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise PersistenceError(
                f"Workspace document is not valid JSON: {exc}", context={"path": str(self._path)}
            ) from exc

        try:
            return WorkspaceDocument.model_validate(data)
        except ValidationError as exc:
            raise PersistenceError(
                f"Workspace document is corrupt: {exc.error_count()} invalid field(s)",
                context={"path": str(self._path), "error": str(exc)},
            ) from exc

    def save(self, document: WorkspaceDocument) -> None:
        document.version = DOCUMENT_VERSION
        payload = document.model_dump_json(by_alias=True, exclude_none=True, indent=2)
        try:
            _write_document(self._path, payload + "\n")
        except OSError as exc:
            raise PersistenceError(
                "Cannot write workspace document",
                context={"path": str(self._path), "error": str(exc)},
            ) from exc

    @contextmanager
    def _mutate(self) -> Iterator[WorkspaceDocument]:
        """Load the whole document, let the caller change it, write it back.

        Nothing is written when the block raises.
        """
        document = self.load()
        yield document
        self.save(document)

    def initialize(
        self,
        project_locations: Mapping[str, str],
        user_config: UserSearchConfig | None = None,
    ) -> tuple[WorkspaceDocument, bool]:
        """Create the document, or refresh its repository locations if it exists.

        Returns the document and whether it was newly created.
        """
        if self.exists():
            with self._mutate() as document:
                document.project_locations = dict(project_locations)
                if user_config is not None:
                    document.user_config = user_config
            return document, False

        document = WorkspaceDocument(
            workspace_root=str(self._workspace_root),
            project_locations=dict(project_locations),
            user_config=user_config,
        )
        self.save(document)
        logger.info("Initialized workspace document at %s", self._path)
        return document, True

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def features(self) -> list[Feature]:
        return self.load().features

    def find(self, feature_id: str) -> Feature | None:
        return self.load().feature(feature_id)

    def get(self, feature_id: str) -> Feature:
        feature = self.find(feature_id)
        if feature is None:
            raise FeatureNotFoundError(
                f"Feature {feature_id} not found", context={"feature": feature_id}
            )
        return feature

    def next_feature_id(self) -> str:
        return next_feature_id(self.features())

    def available_projects(self) -> list[str]:
        return list(self.load().project_locations)

    def project_path(self, repository_name: str) -> Path:
        locations = self.load().project_locations
        relative = locations.get(repository_name)
        if not relative:
            raise RepositoryNotFoundError(
                f"Project {repository_name} not found in configuration",
                context={"repository": repository_name},
            )
        return self._workspace_root / relative

    def tracking_directory(self, feature: Feature) -> Path:
        """`<root>/<features_dir>/<YYYY-MM-DD>-<name with non-alphanumerics as dashes>`."""
        date = feature.created_at.date().isoformat()
        slug = _SLUG_PATTERN.sub("-", feature.name)
        return self._workspace_root / self._features_dir / f"{date}-{slug}"

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def create(
        self,
        name: str,
        projects: Sequence[ProjectStatus],
        *,
        feature_id: str | None = None,
        created_at: datetime | None = None,
    ) -> Feature:
        """Add a feature with every project pending and persist it."""
        if not projects:
            raise MultiRepoError("A feature needs at least one repository", context={"name": name})

        with self._mutate() as document:
            for project in projects:
                if project.name not in document.project_locations:
                    raise RepositoryNotFoundError(
                        f"Project {project.name} not found in configuration",
                        context={"repository": project.name},
                    )

            identifier = feature_id or next_feature_id(document.features)
            if document.feature(identifier) is not None:
                raise AlreadyExistsError(
                    f"Feature {identifier} already exists", context={"feature": identifier}
                )

            now = created_at or utcnow()
            feature = Feature(
                id=identifier,
                name=name,
                created_at=now,
                updated_at=now,
                projects=[
                    project.model_copy(update={"status": ProjectState.PENDING, "last_updated": None})
                    for project in projects
                ],
            )
            document.features.append(feature)

        logger.info("Created feature %s (%s)", feature.id, feature.name)
        return feature

    def transition_project_status(
        self, feature_id: str, repository_name: str, new_status: ProjectState
    ) -> Feature:
        """Set one project's status and the feature's started/completed timestamps together."""
        with self._mutate() as document:
            feature = document.feature(feature_id)
            if feature is None:
                raise FeatureNotFoundError(
                    f"Feature {feature_id} not found", context={"feature": feature_id}
                )
            project = feature.project(repository_name)
            if project is None:
                raise ProjectNotFoundError(
                    f"Project {repository_name} not found in feature {feature_id}",
                    context={"feature": feature_id, "repository": repository_name},
                )
            _apply_transition(feature, project, ProjectState(new_status))

        logger.debug("%s/%s -> %s", feature_id, repository_name, new_status)
        return feature

    def record_worktree(
        self,
        feature_id: str,
        repository_name: str,
        worktree_path: Path,
        source_branch: str | None,
    ) -> Feature:
        """Remember where a project's worktree was provisioned and from which branch."""
        with self._mutate() as document:
            feature = document.feature(feature_id)
            if feature is None:
                raise FeatureNotFoundError(
                    f"Feature {feature_id} not found", context={"feature": feature_id}
                )
            project = feature.project(repository_name)
            if project is None:
                raise ProjectNotFoundError(
                    f"Project {repository_name} not found in feature {feature_id}",
                    context={"feature": feature_id, "repository": repository_name},
                )
            project.worktree_path = str(worktree_path)
            if source_branch is not None:
                project.source_branch = source_branch
            feature.updated_at = utcnow()
        return feature

    def record_stats(self, feature_id: str, stats: FeatureStats) -> Feature:
        with self._mutate() as document:
            feature = document.feature(feature_id)
            if feature is None:
                raise FeatureNotFoundError(
                    f"Feature {feature_id} not found", context={"feature": feature_id}
                )
            feature.stats = stats
            feature.updated_at = utcnow()
        return feature

    def delete(self, feature_id: str) -> None:
        """Forget a feature. Its worktrees and branches are left untouched."""
        with self._mutate() as document:
            remaining = [f for f in document.features if f.id != feature_id]
            if len(remaining) == len(document.features):
                raise FeatureNotFoundError(
                    f"Feature {feature_id} not found", context={"feature": feature_id}
                )
            document.features = remaining
        logger.info("Deleted feature %s from %s", feature_id, self._path)


__all__ = ["FeatureStore", "next_feature_id"]

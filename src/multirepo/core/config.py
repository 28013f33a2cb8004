"""Application configuration management.

Handles loading and validating configuration from multiple sources:
    - TOML/JSON config files
    - Environment variables (MR_* prefix)
    - Default values

Key components:
    - AppConfig: Main configuration model
    - load_config(): Safe config loading with fallback
    - ConfigLoadResult: Metadata about config source
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Mapping
from contextlib import nullcontext
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any
from unittest.mock import patch

from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

CONFIG_ENV_VAR = "MULTIREPO_CONFIG"
DOCUMENT_NAME = ".multi-repo-config.json"
USER_OVERRIDES_NAME = ".multi-repo.user.json"


class ConfigError(RuntimeError):
    """Raised when configuration cannot be loaded or validated."""


class DirectionPolicyName(str, Enum):
    """How a conflicting pair of features is ordered by the scheduler."""

    OLDEST_FIRST = "oldest_first"
    ENUMERATION = "enumeration"


# -----------------------------------------------------------------------------
# Sub-configuration Models
# -----------------------------------------------------------------------------


class WorkspaceConfig(BaseModel):
    """Workspace document and discovery settings."""

    document_name: str = Field(
        default=DOCUMENT_NAME, description="File name of the workspace document."
    )
    features_dir: str = Field(
        default="features", description="Folder under the workspace root holding feature folders."
    )
    search_paths: list[str] = Field(
        default_factory=lambda: ["FE/*", "BE/*", "services/*", "packages/*", "apps/*"],
        description="Glob patterns, relative to the workspace root, searched for repositories.",
    )
    exclude: list[str] = Field(
        default_factory=lambda: ["node_modules", "dist", "build", ".git", "coverage"],
        description="Directory names never treated as repositories.",
    )


class GitConfig(BaseModel):
    """Branch naming and git behaviour."""

    branch_prefix: str = Field(default="feature/", description="Prefix for feature branches.")
    default_branch_candidates: list[str] = Field(
        default_factory=lambda: ["main", "master", "staging", "develop", "dev"],
        description="Trunk names tried in order when the remote HEAD is unknown.",
    )
    remote: str = Field(default="origin", description="Remote consulted for the trunk name.")
    force_branch_delete: bool = Field(
        default=True, description="Delete feature branches even when unmerged."
    )

    @field_validator("default_branch_candidates")
    @classmethod
    def non_empty_candidates(cls, v: list[str]) -> list[str]:
        cleaned = [name.strip() for name in v if name.strip()]
        if not cleaned:
            raise ValueError("default_branch_candidates must name at least one branch")
        return cleaned


class SchedulingConfig(BaseModel):
    """Conflict scheduling policy."""

    direction_policy: DirectionPolicyName = Field(
        default=DirectionPolicyName.OLDEST_FIRST,
        description="Which feature of a conflicting pair runs first.",
    )


@dataclass
class ConfigLoadResult:
    path: Path
    file_loaded: bool
    env_overrides: set[str]
    error: str | None = None


class AppConfig(BaseSettings):
    """Application-wide configuration with nested sub-configs."""

    model_config = SettingsConfigDict(
        env_prefix="MR_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    log_level: str = Field(default="INFO", description="Log level for multi-repo output.")
    workspace: WorkspaceConfig = Field(default_factory=WorkspaceConfig)
    git: GitConfig = Field(default_factory=GitConfig)
    scheduling: SchedulingConfig = Field(default_factory=SchedulingConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[
        PydanticBaseSettingsSource,
        PydanticBaseSettingsSource,
        PydanticBaseSettingsSource,
        PydanticBaseSettingsSource,
    ]:
        # Ensure environment variables override config file entries.
        return (env_settings, init_settings, dotenv_settings, file_secret_settings)


def _resolve_config_path(config_path: Path | None, env_vars: Mapping[str, str]) -> Path:
    candidate = config_path or env_vars.get(CONFIG_ENV_VAR) or (Path.home() / ".multirepo.toml")
    return Path(candidate).expanduser()


def _read_config_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}

    raw = path.read_text(encoding="utf-8")
    suffix = path.suffix.lower()
    parser = json.loads if suffix == ".json" else tomllib.loads

    try:
        data = parser(raw)
    except (json.JSONDecodeError, tomllib.TOMLDecodeError) as exc:
        raise ConfigError(f"Syntax error in {path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigError(f"Config root in {path} must be a mapping.")

    return data


def _detect_env_overrides(env_vars: Mapping[str, str]) -> set[str]:
    """Detect which fields are overridden by environment variables.

    For nested models, detects vars like MR_GIT__BRANCH_PREFIX.
    """
    prefix = AppConfig.model_config.get("env_prefix", "")
    delimiter = AppConfig.model_config.get("env_nested_delimiter", "__")
    overrides: set[str] = set()

    if f"{prefix}LOG_LEVEL" in env_vars:
        overrides.add("log_level")

    nested_models: dict[str, type[BaseModel]] = {
        "workspace": WorkspaceConfig,
        "git": GitConfig,
        "scheduling": SchedulingConfig,
    }

    for group_name, model_cls in nested_models.items():
        for field in model_cls.model_fields:
            env_key = f"{prefix}{group_name}{delimiter}{field}".upper()
            if env_key in env_vars:
                overrides.add(f"{group_name}.{field}")

    return overrides


def load_config(
    config_path: Path | None = None,
    env: Mapping[str, str] | None = None,
) -> tuple[AppConfig, ConfigLoadResult]:
    """
    Load configuration with Safe Mode fallback.
    If the file is invalid, returns default config + error message.
    """
    env_vars: Mapping[str, str] = os.environ if env is None else {**os.environ, **env}
    resolved_path = _resolve_config_path(config_path, env_vars)
    env_overrides = _detect_env_overrides(env_vars)

    error: str | None = None
    file_loaded = False
    file_data: dict[str, Any] = {}

    try:
        file_data = _read_config_file(resolved_path)
        file_loaded = resolved_path.exists()
    except ConfigError as exc:
        error = str(exc)

    context_manager = (
        patch.dict(os.environ, env_vars, clear=False) if env is not None else nullcontext()
    )

    try:
        with context_manager:
            config = AppConfig(**file_data)
    except ValidationError as exc:
        error = str(exc)
        config = AppConfig()

    load_result = ConfigLoadResult(
        path=resolved_path,
        file_loaded=file_loaded,
        env_overrides=env_overrides,
        error=error,
    )

    return config, load_result

"""Tests for configuration loading."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from multirepo.core.config import (
    DOCUMENT_NAME,
    AppConfig,
    DirectionPolicyName,
    GitConfig,
    load_config,
)


def test_defaults_without_file(isolate_config: Path) -> None:
    config, meta = load_config()

    assert meta.path == isolate_config
    assert meta.file_loaded is False
    assert meta.error is None
    assert config.git.branch_prefix == "feature/"
    assert config.git.default_branch_candidates == ["main", "master", "staging", "develop", "dev"]
    assert config.workspace.document_name == DOCUMENT_NAME
    assert config.workspace.search_paths == ["FE/*", "BE/*", "services/*", "packages/*", "apps/*"]
    assert config.scheduling.direction_policy is DirectionPolicyName.OLDEST_FIRST


def test_toml_file_is_loaded(isolate_config: Path) -> None:
    isolate_config.write_text(
        'log_level = "DEBUG"\n'
        "[git]\n"
        'branch_prefix = "feat/"\n'
        "[scheduling]\n"
        'direction_policy = "enumeration"\n'
    )

    config, meta = load_config()

    assert meta.file_loaded is True
    assert config.log_level == "DEBUG"
    assert config.git.branch_prefix == "feat/"
    assert config.scheduling.direction_policy is DirectionPolicyName.ENUMERATION


def test_json_file_is_loaded(tmp_path: Path) -> None:
    path = tmp_path / "multirepo.json"
    path.write_text(json.dumps({"workspace": {"features_dir": "work"}}))

    config, meta = load_config(config_path=path)

    assert meta.file_loaded is True
    assert config.workspace.features_dir == "work"


def test_env_overrides_file(isolate_config: Path) -> None:
    isolate_config.write_text('[git]\nremote = "upstream"\n')

    config, meta = load_config(env={"MR_GIT__REMOTE": "mirror", "MR_LOG_LEVEL": "WARNING"})

    assert config.git.remote == "mirror"
    assert config.log_level == "WARNING"
    assert meta.env_overrides == {"git.remote", "log_level"}


def test_broken_file_falls_back_to_defaults(isolate_config: Path) -> None:
    isolate_config.write_text("this is = = not toml")

    config, meta = load_config()

    assert meta.error is not None
    assert config.git.branch_prefix == "feature/"


def test_invalid_values_fall_back_to_defaults(isolate_config: Path) -> None:
    isolate_config.write_text('[scheduling]\ndirection_policy = "alphabetical"\n')

    config, meta = load_config()

    assert meta.error is not None
    assert config.scheduling.direction_policy is DirectionPolicyName.OLDEST_FIRST


def test_branch_candidates_must_not_be_empty() -> None:
    with pytest.raises(ValidationError):
        GitConfig(default_branch_candidates=["", "  "])


def test_app_config_round_trip() -> None:
    config = AppConfig(git={"force_branch_delete": False})

    assert config.git.force_branch_delete is False
    assert config.model_dump(mode="json")["scheduling"]["direction_policy"] == "oldest_first"

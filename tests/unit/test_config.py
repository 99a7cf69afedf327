"""Unit tests for gwt_compiler.config."""

import json
from pathlib import Path

import pytest
import yaml

from gwt_compiler.config import (
    REGISTRY_SKELETON,
    ensure_initialized,
    is_initialized,
    load_config,
    save_config,
)
from gwt_compiler.models import ProjectConfig
from gwt_compiler.registry import registry_from_dict


class TestSaveLoadConfig:
    def test_save_creates_file(self, tmp_path: Path) -> None:
        path = save_config(ProjectConfig(), tmp_path)
        assert path == tmp_path / ".gwt" / "config.json"
        assert path.exists()

    def test_roundtrip(self, tmp_path: Path) -> None:
        config = ProjectConfig(specs_dir="features", timeout=60, workers=4)
        save_config(config, tmp_path)
        assert load_config(tmp_path) == config

    def test_missing_keys_use_defaults(self, tmp_path: Path) -> None:
        (tmp_path / ".gwt").mkdir()
        (tmp_path / ".gwt" / "config.json").write_text(json.dumps({"specs_dir": "features"}))
        config = load_config(tmp_path)
        assert config.specs_dir == "features"
        assert config.registry == "specs/operations.yaml"
        assert config.timeout == 300

    def test_workers_at_least_one(self, tmp_path: Path) -> None:
        (tmp_path / ".gwt").mkdir()
        (tmp_path / ".gwt" / "config.json").write_text(json.dumps({"workers": 0}))
        assert load_config(tmp_path).workers == 1

    def test_unsupported_framework(self, tmp_path: Path) -> None:
        (tmp_path / ".gwt").mkdir()
        (tmp_path / ".gwt" / "config.json").write_text(json.dumps({"framework": "unittest"}))
        with pytest.raises(ValueError, match="only pytest"):
            load_config(tmp_path)

    def test_load_missing(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path)


class TestInitialized:
    def test_not_initialized(self, tmp_path: Path) -> None:
        assert not is_initialized(tmp_path)
        with pytest.raises(RuntimeError, match="gwtc init"):
            ensure_initialized(tmp_path)

    def test_initialized(self, initialized_project: Path) -> None:
        assert is_initialized(initialized_project)
        assert ensure_initialized(initialized_project) == ProjectConfig()


class TestRegistrySkeleton:
    def test_skeleton_is_a_valid_empty_registry(self) -> None:
        registry = registry_from_dict(yaml.safe_load(REGISTRY_SKELETON))
        assert registry.module == "acceptance.operations"
        assert registry.templates == ()

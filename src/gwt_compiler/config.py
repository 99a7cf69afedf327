"""Configuration management for gwt-compiler projects."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict
from pathlib import Path

from gwt_compiler.models import ProjectConfig

logger = logging.getLogger(__name__)

GWT_DIR = ".gwt"
CONFIG_FILE = "config.json"

REGISTRY_SKELETON = """\
# Statement templates bound to domain operations.
# `module` is the import path of the module that implements the operations.
module: acceptance.operations
# setup: reset_world
# teardown: reset_world
templates: []
#  - kind: GIVEN
#    pattern: no registered users
#    operation: clear_users
#  - kind: WHEN
#    pattern: a user registers with email "{email}" and password "{password}"
#    operation: register_user
#  - kind: THEN
#    pattern: there is {count} registered user
#    operation: count_users
#    params: {count: number}
#    expected: count
"""


def _config_path(project_root: Path) -> Path:
    return project_root / GWT_DIR / CONFIG_FILE


def save_config(config: ProjectConfig, project_root: Path) -> Path:
    """Save project config to .gwt/config.json. Returns the config path."""
    gwt_dir = project_root / GWT_DIR
    gwt_dir.mkdir(parents=True, exist_ok=True)
    path = _config_path(project_root)
    path.write_text(json.dumps(asdict(config), indent=2, default=str) + "\n")
    return path


def load_config(project_root: Path) -> ProjectConfig:
    """Load project config from .gwt/config.json."""
    path = _config_path(project_root)
    if not path.exists():
        raise FileNotFoundError(f"No config found at {path}")
    data = json.loads(path.read_text())
    defaults = ProjectConfig()
    config = ProjectConfig(
        version=data.get("version", defaults.version),
        framework=data.get("framework", defaults.framework),
        specs_dir=data.get("specs_dir", defaults.specs_dir),
        registry=data.get("registry", defaults.registry),
        ir_dir=data.get("ir_dir", defaults.ir_dir),
        output_dir=data.get("output_dir", defaults.output_dir),
        timeout=int(data.get("timeout", defaults.timeout)),
        workers=max(1, int(data.get("workers", defaults.workers))),
    )
    if config.framework != "pytest":
        raise ValueError(f"Unsupported test framework '{config.framework}'; only pytest is supported")
    logger.debug("Loaded config from %s", path)
    return config


def is_initialized(project_root: Path) -> bool:
    """Check if the project is initialized for gwt-compiler."""
    return _config_path(project_root).exists()


def ensure_initialized(project_root: Path) -> ProjectConfig:
    """Ensure the project is initialized. Raises if not."""
    if not is_initialized(project_root):
        raise RuntimeError(
            "Project is not initialized. Run `gwtc init` first."
        )
    return load_config(project_root)

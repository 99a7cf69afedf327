"""Standalone MCP server exposing the compile/check/run workflow."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from fastmcp import FastMCP

from gwt_compiler.config import ensure_initialized
from gwt_compiler.errors import RegistryError
from gwt_compiler.pipeline import compile_project, compile_spec, error_to_dict, run_project
from gwt_compiler.registry import load_registry

mcp = FastMCP("gwt-compiler")


def _spec_compile(input_path: str, project_root: str = ".") -> dict[str, Any]:
    root = Path(project_root).resolve()
    config = ensure_initialized(root)
    source = Path(input_path)
    if not source.is_absolute():
        source = root / source
    source = source.resolve()
    if not source.is_file() or not source.is_relative_to(root / config.specs_dir):
        message = f"{input_path} is not a spec file under {config.specs_dir}/"
        return {"ok": False, "errors": [{"stage": "pipeline", "message": message}]}

    try:
        registry = load_registry(root / config.registry)
    except RegistryError as e:
        return {"ok": False, "errors": [error_to_dict(e)]}

    report = compile_spec(source, root, config, registry)
    data = report.to_dict()
    data["ok"] = not report.errors
    return data


def _spec_check(project_root: str = ".") -> dict[str, Any]:
    root = Path(project_root).resolve()
    report = compile_project(root, emit=False)
    violations = [error_to_dict(e) for e in report.pipeline_errors]
    return {
        "ok": not violations,
        "count": len(violations),
        "violations": violations,
        "files": [f.to_dict() for f in report.files],
    }


def _spec_run(project_root: str = ".", select: list[str] | None = None) -> dict[str, Any]:
    root = Path(project_root).resolve()
    report = run_project(root, select=select)
    data = report.to_dict()
    data["ok"] = report.success
    return data


@mcp.tool()
def spec_compile(input_path: str, project_root: str = ".") -> dict[str, Any]:
    """Compile one GWT spec file into its IR, test module and manifest."""
    return _spec_compile(input_path=input_path, project_root=project_root)


@mcp.tool()
def spec_check(project_root: str = ".") -> dict[str, Any]:
    """Parse and resolve every spec, reporting syntax and binding problems."""
    return _spec_check(project_root=project_root)


@mcp.tool()
def spec_run(project_root: str = ".", select: list[str] | None = None) -> dict[str, Any]:
    """Run the whole pipeline and return the red/green report."""
    return _spec_run(project_root=project_root, select=select)


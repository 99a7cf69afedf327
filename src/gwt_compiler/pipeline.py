"""Pipeline orchestration: parse -> IR -> resolve -> emit -> run, per spec file."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from gwt_compiler.config import ensure_initialized
from gwt_compiler.errors import (
    AmbiguousOperationError,
    PipelineError,
    RegistryError,
    SpecSyntaxError,
    StructuralError,
    TestExecutionFailure,
    UnresolvedOperationError,
)
from gwt_compiler.generator import PytestGenerator, module_slug, prune_outputs, write_file_group
from gwt_compiler.ir import build_ir, ir_filename, is_ir_file, serialize_ir_json
from gwt_compiler.models import IRDocument, ProjectConfig
from gwt_compiler.parser import parse_spec_file
from gwt_compiler.registry import Registry, load_registry
from gwt_compiler.resolver import resolve_document, scenario_errors
from gwt_compiler.runner import RunReport, run_generated_tests

logger = logging.getLogger(__name__)

EXIT_GREEN = 0
EXIT_RED = 1
EXIT_PIPELINE_ERROR = 2


@dataclass
class FileReport:
    """What happened to one spec file on its way through the pipeline."""

    spec_file: str
    parsed: int = 0
    resolved: int = 0
    emitted: int = 0
    unresolved: int = 0
    output: str | None = None
    document: IRDocument | None = field(default=None, repr=False)
    errors: list[PipelineError] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "spec_file": self.spec_file,
            "parsed": self.parsed,
            "resolved": self.resolved,
            "emitted": self.emitted,
            "unresolved": self.unresolved,
            "output": self.output,
            "errors": [error_to_dict(e) for e in self.errors],
        }


@dataclass
class PipelineReport:
    """Run summary across every spec file, plus the test run if one happened."""

    files: list[FileReport] = field(default_factory=list)
    errors: list[PipelineError] = field(default_factory=list)
    run: RunReport | None = None
    pruned: list[str] = field(default_factory=list)

    @property
    def pipeline_errors(self) -> list[PipelineError]:
        collected = list(self.errors)
        for report in self.files:
            collected.extend(report.errors)
        return collected

    @property
    def exit_code(self) -> int:
        if self.pipeline_errors:
            return EXIT_PIPELINE_ERROR
        if self.run is not None and not self.run.success:
            return EXIT_RED
        return EXIT_GREEN

    @property
    def success(self) -> bool:
        return self.exit_code == EXIT_GREEN

    def counts_by_stage(self) -> dict[str, int]:
        counts = {"registry": 0, "parse": 0, "ir": 0, "resolve": 0, "emit": 0, "pipeline": 0}
        for error in self.pipeline_errors:
            counts[error.stage] = counts.get(error.stage, 0) + 1
        return counts

    def summary(self) -> str:
        lines: list[str] = []
        for error in self.errors:
            lines.append(f"Error [{error.stage}]: {error}")
        for report in self.files:
            lines.append(
                f"{report.spec_file}: {report.parsed} parsed, {report.resolved} resolved, "
                f"{report.emitted} emitted, {report.unresolved} unresolved"
            )
            for error in report.errors:
                lines.append(f"  [{error.stage}] {error}")

        stages = self.counts_by_stage()
        lines.append(
            "Pipeline errors: "
            + ", ".join(f"{stage} {count}" for stage, count in stages.items())
        )
        if self.run is not None:
            lines.append(self.run.summary())
            for failure in self.run.failures():
                lines.append(f"  [test] {failure}")
        verdict = "GREEN" if self.success else "RED"
        lines.append(f"Result: {verdict}")
        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": "green" if self.success else "red",
            "exit_code": self.exit_code,
            "pipeline_errors": self.counts_by_stage(),
            "errors": [error_to_dict(e) for e in self.errors],
            "files": [f.to_dict() for f in self.files],
            "pruned": list(self.pruned),
            "run": self.run.to_dict() if self.run is not None else None,
        }


def error_to_dict(error: PipelineError) -> dict[str, Any]:
    data: dict[str, Any] = {"stage": error.stage, "message": str(error)}
    if isinstance(error, SpecSyntaxError):
        data.update(file=error.source_file, line=error.line_number, token=error.token)
    elif isinstance(error, UnresolvedOperationError):
        data.update(
            file=error.source_file,
            line=error.line_number,
            scenario_id=error.scenario_id,
            statement=error.statement,
            reason=error.reason,
        )
    elif isinstance(error, AmbiguousOperationError):
        data.update(
            file=error.source_file,
            line=error.line_number,
            scenario_id=error.scenario_id,
            statement=error.statement,
            reason="ambiguous",
            candidates=list(error.candidates),
            patterns=list(error.patterns),
        )
    elif isinstance(error, TestExecutionFailure):
        data.update(
            file=error.source_file,
            scenario_id=error.scenario_id,
            statement=error.statement,
            test=error.test_name,
        )
    return data


def discover_specs(specs_dir: Path) -> list[Path]:
    """All spec files under the specs directory, in a stable order."""
    if not specs_dir.is_dir():
        return []
    return sorted(p for p in specs_dir.rglob("*.gwt") if p.is_file())


def _spec_name(path: Path, project_root: Path) -> str:
    try:
        return path.relative_to(project_root).as_posix()
    except ValueError:
        return path.as_posix()


def compile_spec(
    path: Path,
    project_root: Path,
    config: ProjectConfig,
    registry: Registry,
    emit: bool = True,
) -> FileReport:
    """Take one spec file through parse, lowering, resolution and emission.

    Failures are recorded on the returned report; only the affected file or
    scenario is skipped.
    """
    specs_dir = project_root / config.specs_dir
    name = _spec_name(path, project_root)
    slug = module_slug(path.relative_to(specs_dir).as_posix())
    report = FileReport(spec_file=name)

    output_dir = project_root / config.output_dir
    module_path = output_dir / f"test_{slug}.py"
    manifest_path = module_path.with_suffix(".json")
    ir_path = project_root / config.ir_dir / ir_filename(slug)

    try:
        spec = parse_spec_file(path, source_name=name)
        document = build_ir(spec)
    except (SpecSyntaxError, StructuralError) as exc:
        logger.warning("%s", exc)
        report.errors.append(exc)
        if emit:
            stale = [module_path, manifest_path]
            if is_ir_file(ir_path):
                stale.append(ir_path)
            write_file_group({}, remove=stale)
        return report

    document = resolve_document(document, registry)
    report.document = document
    report.parsed = len(document.scenarios)

    emittable = []
    for scenario in document.scenarios:
        problems = scenario_errors(document, scenario)
        if problems:
            report.errors.extend(problems)
            continue
        emittable.append(scenario)
    report.resolved = len(emittable)
    report.unresolved = report.parsed - report.resolved

    if not emit:
        write_file_group({ir_path: serialize_ir_json(document)})
        return report

    files = {ir_path: serialize_ir_json(document)}
    if emittable:
        module = PytestGenerator(registry).generate_module(document, slug, emittable)
        files[module_path] = module.code
        files[manifest_path] = module.manifest_json()
        report.emitted = len(module.tests)
        report.output = module.filename
    write_file_group(files, remove=[module_path, manifest_path])
    logger.info(
        "%s: %d scenario(s), %d emitted", name, report.parsed, report.emitted
    )
    return report


def parse_project(project_root: Path, config: ProjectConfig | None = None) -> PipelineReport:
    """Parse and lower every spec file, writing IR with every step still pending."""
    config = config or ensure_initialized(project_root)
    specs_dir = project_root / config.specs_dir
    report = PipelineReport()
    for path in discover_specs(specs_dir):
        name = _spec_name(path, project_root)
        slug = module_slug(path.relative_to(specs_dir).as_posix())
        file_report = FileReport(spec_file=name)
        report.files.append(file_report)
        try:
            document = build_ir(parse_spec_file(path, source_name=name))
        except (SpecSyntaxError, StructuralError) as exc:
            logger.warning("%s", exc)
            file_report.errors.append(exc)
            continue
        file_report.document = document
        file_report.parsed = len(document.scenarios)
        ir_path = project_root / config.ir_dir / ir_filename(slug)
        write_file_group({ir_path: serialize_ir_json(document)})
        file_report.output = ir_path.name
    return report


def compile_project(
    project_root: Path,
    config: ProjectConfig | None = None,
    emit: bool = True,
) -> PipelineReport:
    """Compile every spec file in the project against the registry."""
    config = config or ensure_initialized(project_root)
    report = PipelineReport()

    try:
        registry = load_registry(project_root / config.registry)
    except RegistryError as exc:
        logger.error("%s", exc)
        report.errors.append(exc)
        return report

    specs_dir = project_root / config.specs_dir
    specs: list[Path] = []
    owners: dict[str, Path] = {}
    collisions: list[FileReport] = []
    for path in discover_specs(specs_dir):
        slug = module_slug(path.relative_to(specs_dir).as_posix())
        if slug in owners:
            name = _spec_name(path, project_root)
            error = PipelineError(
                f"{name}: output name test_{slug}.py is already used by "
                f"{_spec_name(owners[slug], project_root)}"
            )
            collisions.append(FileReport(spec_file=name, errors=[error]))
            continue
        owners[slug] = path
        specs.append(path)

    def _compile(path: Path) -> FileReport:
        return compile_spec(path, project_root, config, registry, emit=emit)

    if config.workers > 1 and len(specs) > 1:
        with ThreadPoolExecutor(max_workers=config.workers) as pool:
            report.files = list(pool.map(_compile, specs))
    else:
        report.files = [_compile(p) for p in specs]
    report.files.extend(collisions)

    if emit:
        keep = {f.output for f in report.files if f.output}
        report.pruned = prune_outputs(project_root / config.output_dir, keep)
        _prune_ir(project_root / config.ir_dir, {ir_filename(slug) for slug in owners})
    return report


def _prune_ir(ir_dir: Path, live: set[str]) -> None:
    """Remove IR left behind by deleted specs; other JSON files are not touched."""
    if not ir_dir.is_dir():
        return
    for path in sorted(ir_dir.glob("*.json")):
        if path.name not in live and is_ir_file(path):
            path.unlink()
            logger.info("Removed stale IR %s", path)


def run_project(
    project_root: Path,
    config: ProjectConfig | None = None,
    select: list[str] | None = None,
) -> PipelineReport:
    """Compile the project, then run the generated tests (the runner entry point)."""
    config = config or ensure_initialized(project_root)
    report = compile_project(project_root, config)
    if any(isinstance(e, RegistryError) for e in report.errors):
        return report
    report.run = run_generated_tests(
        project_root / config.output_dir,
        project_root,
        timeout=config.timeout,
        select=select,
    )
    return report

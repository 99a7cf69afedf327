"""Test code generation from resolved GWT IR."""

from __future__ import annotations

import json
import logging
import os
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from gwt_compiler.errors import EmissionError
from gwt_compiler.models import (
    Comparison,
    IRDocument,
    IRScenario,
    IRStep,
    Parameter,
    Resolved,
    StepKind,
)
from gwt_compiler.registry import Registry

logger = logging.getLogger(__name__)

GENERATED_MARKER = "DO NOT EDIT - this file is regenerated from GWT specs."
FIXTURE_NAME = "isolated_world"
MAX_SLUG_LENGTH = 60

_OPERATORS: dict[Comparison, str] = {
    Comparison.EQ: "==",
    Comparison.NE: "!=",
    Comparison.GT: ">",
    Comparison.GE: ">=",
    Comparison.LT: "<",
    Comparison.LE: "<=",
}


@dataclass(frozen=True)
class StepSpan:
    """Where a step's code landed inside a generated test (1-indexed lines)."""

    kind: StepKind
    statement: str
    spec_line: int
    first_line: int
    last_line: int

    def shifted(self, offset: int) -> StepSpan:
        return StepSpan(
            self.kind, self.statement, self.spec_line,
            self.first_line + offset, self.last_line + offset,
        )


@dataclass(frozen=True)
class GeneratedTest:
    """One test function rendered from one IR scenario."""

    name: str
    scenario_id: str
    title: str
    lines: tuple[str, ...]
    steps: tuple[StepSpan, ...]  # line numbers relative to the "def" line

    @property
    def code(self) -> str:
        return "\n".join(self.lines)


@dataclass(frozen=True)
class GeneratedModule:
    """The single output unit for one spec file."""

    spec_file: str
    filename: str
    code: str
    tests: tuple[GeneratedTest, ...]
    manifest: dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def manifest_filename(self) -> str:
        return self.filename[:-3] + ".json"

    def manifest_json(self) -> str:
        return json.dumps(self.manifest, indent=2, sort_keys=True) + "\n"


class PytestGenerator:
    """Generates pytest test modules from resolved IR documents."""

    def __init__(self, registry: Registry) -> None:
        self.registry = registry

    @property
    def uses_fixture(self) -> bool:
        return bool(self.registry.setup or self.registry.teardown)

    def generate_module(
        self,
        document: IRDocument,
        slug: str,
        scenarios: Iterable[IRScenario] | None = None,
    ) -> GeneratedModule:
        """Generate a complete pytest module from a document's scenarios.

        ``scenarios`` narrows emission to a subset (in document order is the
        caller's responsibility); every step of every emitted scenario must be
        resolved.
        """
        selected = list(document.scenarios if scenarios is None else scenarios)
        lines = self._module_header(document)

        tests: list[GeneratedTest] = []
        used_names: set[str] = set()
        manifest_tests: dict[str, Any] = {}
        for scenario in selected:
            test = self.generate_test(scenario, used_names)
            used_names.add(test.name)
            offset = len(lines)
            lines.extend(test.lines)
            lines.extend(["", ""])
            tests.append(test)
            manifest_tests[test.name] = {
                "scenario_id": test.scenario_id,
                "title": test.title,
                "line": scenario.line_number,
                "steps": [_span_to_dict(s.shifted(offset)) for s in test.steps],
            }

        code = "\n".join(lines).rstrip() + "\n"
        filename = f"test_{slug}.py"
        manifest = {
            "generated": GENERATED_MARKER,
            "module": filename,
            "spec_file": document.spec_file,
            "tests": manifest_tests,
        }
        return GeneratedModule(
            spec_file=document.spec_file,
            filename=filename,
            code=code,
            tests=tuple(tests),
            manifest=manifest,
        )

    def _module_header(self, document: IRDocument) -> list[str]:
        lines = [
            f'"""Generated acceptance tests from {_doc_text(document.spec_file)}.',
            "",
            GENERATED_MARKER,
        ]
        if document.description:
            lines.extend(["", _doc_text(document.description)])
        lines.extend([
            '"""',
            "",
            "import pytest",
            "",
            f"import {self.registry.module} as ops",
            "",
            "",
        ])
        if self.uses_fixture:
            lines.extend(["@pytest.fixture", f"def {FIXTURE_NAME}():"])
            if self.registry.setup:
                lines.append(f"    ops.{self.registry.setup}()")
            lines.append("    yield")
            if self.registry.teardown:
                lines.append(f"    ops.{self.registry.teardown}()")
            lines.extend(["", ""])
        return lines

    def generate_test(
        self, scenario: IRScenario, used_names: set[str] | None = None
    ) -> GeneratedTest:
        """Render one scenario as a test function: setup, action, assertion."""
        name = self._make_test_name(scenario, used_names or set())
        signature = FIXTURE_NAME if self.uses_fixture else ""
        lines = [
            f"def {name}({signature}):",
            f'    """Scenario: {_doc_text(scenario.title or "untitled")}',
            "",
            f"    Scenario id: {scenario.scenario_id}",
            '    """',
        ]

        spans: list[StepSpan] = []
        when_count = 0
        for step in scenario.steps:
            resolution = step.resolution
            if not isinstance(resolution, Resolved):
                raise EmissionError(
                    f"Cannot emit scenario {scenario.scenario_id}: "
                    f"'{step.kind.value} {step.statement}.' is not resolved"
                )
            first = len(lines) + 1
            lines.append(f"    # {step.kind.value} {step.statement}.")
            call_args = list(resolution.bound_args)
            if step.kind is StepKind.GIVEN:
                lines.append(f"    {_call(resolution.operation_id, call_args)}")
            elif step.kind is StepKind.WHEN:
                when_count += 1
                call = _call(resolution.operation_id, call_args)
                lines.append(f"    when_{when_count} = {call}")
            else:
                result_var = f"when_{when_count}" if resolution.pass_result else None
                call = _call(resolution.operation_id, call_args, result_var)
                lines.append(f"    {_assertion(call, resolution, step)}")
            spans.append(StepSpan(
                kind=step.kind,
                statement=step.statement,
                spec_line=step.line_number,
                first_line=first,
                last_line=len(lines),
            ))

        return GeneratedTest(
            name=name,
            scenario_id=scenario.scenario_id,
            title=scenario.title,
            lines=tuple(lines),
            steps=tuple(spans),
        )

    def _make_test_name(self, scenario: IRScenario, used: set[str]) -> str:
        """Derive a test name from the scenario title (or first WHEN) and its id."""
        source = scenario.title
        if not source:
            whens = [s for s in scenario.steps if s.kind is StepKind.WHEN]
            source = whens[0].statement if whens else ""
        slug = re.sub(r"[^a-z0-9]+", "_", source.lower()).strip("_")
        slug = slug[:MAX_SLUG_LENGTH].rstrip("_") or "scenario"
        name = f"test_{slug}_{scenario.scenario_id[:8]}"
        candidate, n = name, 1
        while candidate in used:
            n += 1
            candidate = f"{name}_{n}"
        return candidate


def _call(operation_id: str, args: list[Parameter], result_var: str | None = None) -> str:
    rendered = [f"result={result_var}"] if result_var else []
    rendered.extend(f"{p.name}={p.value!r}" for p in args)
    return f"ops.{operation_id}({', '.join(rendered)})"


def _assertion(call: str, resolution: Resolved, step: IRStep) -> str:
    message = repr(f"{step.kind.value} {step.statement}.")
    comparison = resolution.comparison
    if comparison is Comparison.TRUTHY:
        return f"assert {call}, {message}"
    if comparison is Comparison.FALSY:
        return f"assert not {call}, {message}"
    if resolution.expected is None:
        raise EmissionError(f"Missing expected value for '{step.statement}'")
    expected = repr(resolution.expected.value)
    if comparison is Comparison.CONTAINS:
        return f"assert {expected} in {call}, {message}"
    return f"assert {call} {_OPERATORS[comparison]} {expected}, {message}"


def _doc_text(text: str) -> str:
    return text.replace("\\", "\\\\").replace('"""', '\\"\\"\\"')


def _span_to_dict(span: StepSpan) -> dict[str, Any]:
    return {
        "kind": span.kind.value,
        "statement": span.statement,
        "spec_line": span.spec_line,
        "first_line": span.first_line,
        "last_line": span.last_line,
    }


def module_slug(relative_spec_path: str) -> str:
    """Deterministic output name for a spec file path relative to the specs dir."""
    stem = relative_spec_path[:-4] if relative_spec_path.endswith(".gwt") else relative_spec_path
    return re.sub(r"[^a-z0-9]+", "_", stem.lower()).strip("_") or "spec"


# ── Output writing ──────────────────────────────────────────────────


def write_file_group(files: dict[Path, str], remove: Iterable[Path] = ()) -> None:
    """Write a group of files so readers see the old set or the new set.

    Every file is staged to a temporary sibling first; only when all staging
    writes succeeded are they swapped in with ``os.replace``.
    """
    staged: list[tuple[Path, Path]] = []
    try:
        for target, content in sorted(files.items()):
            target.parent.mkdir(parents=True, exist_ok=True)
            tmp = target.with_name(f".{target.name}.tmp")
            tmp.write_text(content, encoding="utf-8")
            staged.append((tmp, target))
    except OSError:
        for tmp, _ in staged:
            tmp.unlink(missing_ok=True)
        raise

    for tmp, target in staged:
        os.replace(tmp, target)
    for path in remove:
        if path not in files:
            path.unlink(missing_ok=True)


def is_generated(path: Path) -> bool:
    try:
        return GENERATED_MARKER in path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        return False


def prune_outputs(output_dir: Path, keep: set[str]) -> list[str]:
    """Remove generated modules (and manifests) whose spec file is gone."""
    removed: list[str] = []
    if not output_dir.is_dir():
        return removed
    for path in sorted(output_dir.glob("test_*.py")):
        if path.name in keep or not is_generated(path):
            continue
        path.unlink()
        path.with_suffix(".json").unlink(missing_ok=True)
        removed.append(path.name)
        logger.info("Removed stale generated module %s", path)
    return removed

"""Test execution and result reporting."""

from __future__ import annotations

import json
import logging
import os
import re
import subprocess
import sys
import tempfile
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from gwt_compiler.errors import TestExecutionFailure

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 300


class TestStatus(str, Enum):
    """Outcome of a single generated test."""

    __test__ = False

    PASSED = "passed"
    FAILED = "failed"
    ERROR = "error"
    SKIPPED = "skipped"


@dataclass
class TestOutcome:
    """Result of one generated test, traced back to its scenario."""

    __test__ = False

    name: str
    status: TestStatus
    module: str = ""
    spec_file: str = ""
    scenario_id: str = ""
    title: str = ""
    statement: str = ""
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status.value,
            "module": self.module,
            "spec_file": self.spec_file,
            "scenario_id": self.scenario_id,
            "title": self.title,
            "statement": self.statement,
            "message": self.message,
        }


@dataclass
class RunReport:
    """Aggregate of per-test outcomes plus a red/green verdict."""

    outcomes: list[TestOutcome] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    output: str = ""
    returncode: int | None = None

    def _count(self, status: TestStatus) -> int:
        return sum(1 for o in self.outcomes if o.status is status)

    @property
    def passed(self) -> int:
        return self._count(TestStatus.PASSED)

    @property
    def failed(self) -> int:
        return self._count(TestStatus.FAILED)

    @property
    def errored(self) -> int:
        return self._count(TestStatus.ERROR)

    @property
    def skipped(self) -> int:
        return self._count(TestStatus.SKIPPED)

    @property
    def total(self) -> int:
        return len(self.outcomes)

    @property
    def success(self) -> bool:
        """Green only when tests exist and every one of them passed."""
        if self.errors or not self.outcomes:
            return False
        return all(o.status is TestStatus.PASSED for o in self.outcomes)

    @property
    def status(self) -> str:
        return "green" if self.success else "red"

    def failures(self) -> list[TestExecutionFailure]:
        return [
            TestExecutionFailure(
                test_name=o.name,
                message=o.message or o.status.value,
                source_file=o.spec_file,
                scenario_id=o.scenario_id,
                statement=o.statement,
            )
            for o in self.outcomes
            if o.status in (TestStatus.FAILED, TestStatus.ERROR)
        ]

    def summary(self) -> str:
        line = (
            f"{self.passed} passed, {self.failed} failed, "
            f"{self.errored} error(s), {self.skipped} skipped"
        )
        parts = [f"Tests: {line} -> {self.status.upper()}"]
        if not self.outcomes and not self.errors:
            parts.append("No tests ran; a run without tests is red.")
        parts.extend(f"Runner error: {e}" for e in self.errors)
        return "\n".join(parts)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "passed": self.passed,
            "failed": self.failed,
            "errors": self.errored,
            "skipped": self.skipped,
            "total": self.total,
            "runner_errors": list(self.errors),
            "tests": [o.to_dict() for o in self.outcomes],
        }


def run_generated_tests(
    output_dir: Path,
    project_root: Path,
    timeout: int = DEFAULT_TIMEOUT,
    select: list[str] | None = None,
) -> RunReport:
    """Run generated tests in a pytest subprocess and collect per-test outcomes.

    ``select`` is an optional list of node ids (``test_x.py::test_name``)
    relative to ``output_dir``; they run in the order given.
    """
    modules = sorted(output_dir.glob("test_*.py")) if output_dir.is_dir() else []
    if not modules:
        return RunReport(output="No generated tests found. Run `gwtc generate` first.")

    if select:
        targets = [str(output_dir / node) for node in select]
    else:
        targets = [str(path) for path in modules]

    with tempfile.TemporaryDirectory(prefix="gwtc-") as tmp:
        junit_path = Path(tmp) / "junit.xml"
        cmd = [
            sys.executable, "-m", "pytest", *targets,
            "-q", "--tb=short", "-p", "no:cacheprovider", f"--rootdir={output_dir}",
            f"--junitxml={junit_path}", "-o", "junit_family=xunit2",
        ]
        env = os.environ.copy()
        env["PYTHONPATH"] = os.pathsep.join(
            p for p in (str(project_root), env.get("PYTHONPATH", "")) if p
        )
        logger.debug("Running %s", " ".join(cmd))
        try:
            proc = subprocess.run(
                cmd,
                cwd=project_root,
                env=env,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired:
            return RunReport(errors=[f"Test execution timed out after {timeout}s"])
        except FileNotFoundError:
            return RunReport(errors=["Python interpreter not found"])

        output = proc.stdout + proc.stderr
        if not junit_path.exists():
            return RunReport(
                errors=[f"pytest produced no report (exit code {proc.returncode})"],
                output=output,
                returncode=proc.returncode,
            )
        outcomes = parse_junit_xml(junit_path.read_text(encoding="utf-8"))

    attach_manifests(outcomes, load_manifests(output_dir))
    return RunReport(outcomes=outcomes, output=output, returncode=proc.returncode)


def parse_junit_xml(content: str) -> list[TestOutcome]:
    """Turn a JUnit XML report into test outcomes, in report order."""
    root = ET.fromstring(content)
    outcomes: list[TestOutcome] = []
    for case in root.iter("testcase"):
        status = TestStatus.PASSED
        message = ""
        for child, child_status in (
            ("failure", TestStatus.FAILED),
            ("error", TestStatus.ERROR),
            ("skipped", TestStatus.SKIPPED),
        ):
            element = case.find(child)
            if element is not None:
                status = child_status
                message = "\n".join(
                    part for part in (element.get("message", ""), element.text or "") if part
                )
                break
        classname = case.get("classname", "")
        module = classname.rsplit(".", 1)[-1] + ".py" if classname else ""
        outcomes.append(TestOutcome(
            name=case.get("name", ""),
            status=status,
            module=module,
            message=message.strip(),
        ))
    return outcomes


def load_manifests(output_dir: Path) -> dict[str, dict[str, Any]]:
    """Load emitter manifests keyed by generated module filename."""
    manifests: dict[str, dict[str, Any]] = {}
    for path in sorted(output_dir.glob("test_*.json")):
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Skipping unreadable manifest %s: %s", path, exc)
            continue
        manifests[data.get("module", path.stem + ".py")] = data
    return manifests


def attach_manifests(
    outcomes: list[TestOutcome], manifests: dict[str, dict[str, Any]]
) -> None:
    """Fill in spec file, scenario and failing statement for each outcome."""
    for outcome in outcomes:
        manifest = manifests.get(outcome.module)
        if manifest is None:
            continue
        outcome.spec_file = manifest.get("spec_file", "")
        entry = manifest.get("tests", {}).get(outcome.name)
        if entry is None:
            continue
        outcome.scenario_id = entry.get("scenario_id", "")
        outcome.title = entry.get("title", "")
        if outcome.status in (TestStatus.FAILED, TestStatus.ERROR):
            outcome.statement = _failing_statement(outcome, entry)


def _failing_statement(outcome: TestOutcome, entry: dict[str, Any]) -> str:
    lines = re.findall(rf"{re.escape(outcome.module)}:(\d+)", outcome.message)
    if lines:
        line = int(lines[-1])
        for step in entry.get("steps", []):
            if step["first_line"] <= line <= step["last_line"]:
                return f"{step['kind']} {step['statement']}."
    for step in entry.get("steps", []):
        text = f"{step['kind']} {step['statement']}."
        if text in outcome.message:
            return text
    return ""

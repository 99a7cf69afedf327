"""IR lowering and JSON serialization."""

from __future__ import annotations

import json
import logging
import re
from hashlib import sha256
from pathlib import Path
from typing import Any

from gwt_compiler.errors import StructuralError
from gwt_compiler.models import (
    KIND_ORDER,
    Ambiguous,
    Comparison,
    IRDocument,
    IRScenario,
    IRStep,
    Parameter,
    Resolved,
    ResolutionStatus,
    SpecFile,
    StepKind,
    Unresolved,
    UnresolvedReason,
)

logger = logging.getLogger(__name__)

SCENARIO_ID_LENGTH = 16
IR_MARKER = "gwt-compiler IR - regenerated from GWT specs on every compile."

_QUOTED_OR_SPACE = re.compile(r'"[^"]*"|\s+')

_SECTION_KEYS = {StepKind.GIVEN: "given", StepKind.WHEN: "when", StepKind.THEN: "then"}


def normalize_whitespace(text: str) -> str:
    """Collapse whitespace runs outside quoted literals to single spaces."""
    def _replace(m: re.Match[str]) -> str:
        token = m.group(0)
        return token if token.startswith('"') else " "

    return _QUOTED_OR_SPACE.sub(_replace, text).strip()


def scenario_id(steps: tuple[IRStep, ...] | list[IRStep]) -> str:
    """Content-derived identifier: a hash of the scenario's statements."""
    content = "\n".join(f"{s.kind.value} {s.statement}" for s in steps)
    return sha256(content.encode("utf-8")).hexdigest()[:SCENARIO_ID_LENGTH]


def build_ir(spec: SpecFile) -> IRDocument:
    """Lower a SpecFile into an IRDocument with every step pending resolution."""
    if not spec.scenarios:
        raise StructuralError(f"{spec.path}: spec file has no scenarios")

    scenarios: list[IRScenario] = []
    for scenario in spec.scenarios:
        if not scenario.steps:
            raise StructuralError(f"{spec.path}:{scenario.line_number}: scenario has no steps")
        steps: list[IRStep] = []
        for step in scenario.steps:
            if steps and KIND_ORDER[step.kind] < KIND_ORDER[steps[-1].kind]:
                raise StructuralError(
                    f"{spec.path}:{step.line_number}: {step.kind.value} after "
                    f"{steps[-1].kind.value}"
                )
            steps.append(IRStep(
                kind=step.kind,
                statement=normalize_whitespace(step.text),
                parameters=step.parameters,
                resolution=Unresolved(UnresolvedReason.PENDING),
                line_number=step.line_number,
            ))
        kinds = {s.kind for s in steps}
        if StepKind.WHEN not in kinds or StepKind.THEN not in kinds:
            raise StructuralError(
                f"{spec.path}:{scenario.line_number}: scenario needs at least one WHEN and one THEN"
            )
        scenarios.append(IRScenario(
            scenario_id=scenario_id(steps),
            steps=tuple(steps),
            title=normalize_whitespace(scenario.title),
            line_number=scenario.line_number,
        ))

    logger.debug("Lowered %s into %d IR scenario(s)", spec.path, len(scenarios))
    return IRDocument(
        spec_file=spec.path,
        scenarios=tuple(scenarios),
        description=normalize_whitespace(spec.description),
    )


# ── Serialization ───────────────────────────────────────────────────


def ir_to_dict(document: IRDocument) -> dict[str, Any]:
    return {
        "generated": IR_MARKER,
        "spec_file": document.spec_file,
        "description": document.description,
        "scenarios": [_scenario_to_dict(s) for s in document.scenarios],
    }


def _scenario_to_dict(scenario: IRScenario) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": scenario.scenario_id,
        "title": scenario.title,
        "line": scenario.line_number,
    }
    for kind, key in _SECTION_KEYS.items():
        data[key] = [_step_to_dict(s) for s in scenario.steps if s.kind is kind]
    return data


def _step_to_dict(step: IRStep) -> dict[str, Any]:
    data: dict[str, Any] = {
        "statement": step.statement,
        "line": step.line_number,
        "parameters": [p.to_dict() for p in step.parameters],
    }
    data.update(_resolution_to_dict(step.resolution))
    return data


def _resolution_to_dict(resolution: ResolutionStatus) -> dict[str, Any]:
    if isinstance(resolution, Resolved):
        return {
            "domain_operation": {
                "id": resolution.operation_id,
                "args": [p.to_dict() for p in resolution.bound_args],
                "pass_result": resolution.pass_result,
            },
            "expected": resolution.expected.to_dict() if resolution.expected else None,
            "comparison": resolution.comparison.value,
        }
    if isinstance(resolution, Ambiguous):
        return {
            "ambiguous": {
                "candidates": list(resolution.candidates),
                "patterns": list(resolution.patterns),
            }
        }
    return {
        "unresolved": {
            "reason": resolution.reason.value,
            "detail": resolution.detail,
            "candidates": list(resolution.candidates),
        }
    }


def ir_from_dict(data: dict[str, Any]) -> IRDocument:
    scenarios: list[IRScenario] = []
    for entry in data.get("scenarios", []):
        steps: list[IRStep] = []
        for kind, key in _SECTION_KEYS.items():
            steps.extend(_step_from_dict(kind, s) for s in entry.get(key, []))
        scenarios.append(IRScenario(
            scenario_id=entry["id"],
            steps=tuple(steps),
            title=entry.get("title", ""),
            line_number=entry.get("line", 0),
        ))
    return IRDocument(
        spec_file=data["spec_file"],
        scenarios=tuple(scenarios),
        description=data.get("description", ""),
    )


def _step_from_dict(kind: StepKind, data: dict[str, Any]) -> IRStep:
    return IRStep(
        kind=kind,
        statement=data["statement"],
        parameters=tuple(_param_from_dict(p) for p in data.get("parameters", [])),
        resolution=_resolution_from_dict(data),
        line_number=data.get("line", 0),
    )


def _param_from_dict(data: dict[str, Any]) -> Parameter:
    return Parameter(name=data["name"], value=data["value"], type_name=data["type"])


def _resolution_from_dict(data: dict[str, Any]) -> ResolutionStatus:
    if "domain_operation" in data:
        op = data["domain_operation"]
        expected = data.get("expected")
        return Resolved(
            operation_id=op["id"],
            bound_args=tuple(_param_from_dict(p) for p in op.get("args", [])),
            expected=_param_from_dict(expected) if expected else None,
            comparison=Comparison(data.get("comparison", "eq")),
            pass_result=bool(op.get("pass_result", False)),
        )
    if "ambiguous" in data:
        ambiguous = data["ambiguous"]
        return Ambiguous(
            candidates=tuple(ambiguous["candidates"]),
            patterns=tuple(ambiguous.get("patterns", [])),
        )
    unresolved = data.get("unresolved", {})
    return Unresolved(
        reason=UnresolvedReason(unresolved.get("reason", "pending")),
        detail=unresolved.get("detail", ""),
        candidates=tuple(unresolved.get("candidates", [])),
    )


def serialize_ir_json(document: IRDocument) -> str:
    return json.dumps(ir_to_dict(document), indent=2, sort_keys=True) + "\n"


def load_ir(path: Path) -> IRDocument:
    """Load an IR document from its JSON file."""
    return ir_from_dict(json.loads(path.read_text(encoding="utf-8")))


def ir_filename(slug: str) -> str:
    return f"{slug}.json"


def is_ir_file(path: Path) -> bool:
    """True only for JSON files this compiler wrote as IR."""
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return False
    return isinstance(data, dict) and data.get("generated") == IR_MARKER

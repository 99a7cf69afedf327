"""Domain operation resolution: binds IR statements to registry templates."""

from __future__ import annotations

import difflib
import logging
import re
from dataclasses import replace

from gwt_compiler.errors import AmbiguousOperationError, UnresolvedOperationError
from gwt_compiler.ir import normalize_whitespace
from gwt_compiler.models import (
    Ambiguous,
    IRDocument,
    IRScenario,
    Parameter,
    Resolved,
    ResolutionStatus,
    StepKind,
    Unresolved,
    UnresolvedReason,
)
from gwt_compiler.registry import OperationTemplate, Registry

logger = logging.getLogger(__name__)

_NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?")


class _TypeMismatch(ValueError):
    pass


def resolve_statement(
    kind: StepKind, statement: str, registry: Registry
) -> ResolutionStatus:
    """Match one statement against every template of its kind.

    Exactly one match resolves; several matches are ambiguous and are never
    narrowed down by registry order.
    """
    statement = normalize_whitespace(statement)
    templates = registry.templates_for(kind)
    matches: list[tuple[OperationTemplate, Resolved]] = []
    mismatches: list[tuple[str, str]] = []

    for template in templates:
        m = template.matcher.fullmatch(statement)
        if m is None:
            continue
        try:
            matches.append((template, _bind(template, m)))
        except _TypeMismatch as exc:
            mismatches.append((template.operation_id, str(exc)))

    if len(matches) == 1:
        return matches[0][1]
    if matches:
        return Ambiguous(
            candidates=tuple(r.operation_id for _, r in matches),
            patterns=tuple(t.pattern for t, _ in matches),
        )
    if mismatches:
        return Unresolved(
            reason=UnresolvedReason.TYPE_MISMATCH,
            detail="; ".join(f"{op}: {why}" for op, why in mismatches),
            candidates=tuple(op for op, _ in mismatches),
        )

    nearby = difflib.get_close_matches(
        statement, [t.pattern for t in templates], n=3, cutoff=0.4
    )
    detail = f"Closest templates: {', '.join(nearby)}" if nearby else ""
    return Unresolved(
        reason=UnresolvedReason.NO_MATCH, detail=detail, candidates=tuple(nearby)
    )


def _bind(template: OperationTemplate, m: re.Match[str]) -> Resolved:
    values: dict[str, Parameter] = {}
    for name, type_name in template.param_types:
        quoted = f'"{{{name}}}"' in template.pattern
        values[name] = coerce(name, m.group(name), type_name, quoted)

    expected = template.expected_value
    if template.expected is not None:
        expected = values.pop(template.expected)

    return Resolved(
        operation_id=template.operation_id,
        bound_args=tuple(values.values()),
        expected=expected,
        comparison=template.comparison,
        pass_result=template.pass_result,
    )


def coerce(name: str, text: str, type_name: str, quoted: bool = False) -> Parameter:
    """Convert captured placeholder text to a typed Parameter."""
    if type_name == "any":
        if quoted:
            type_name = "string"
        elif _NUMBER_RE.fullmatch(text):
            type_name = "number"
        elif text in ("true", "false"):
            type_name = "boolean"
        else:
            type_name = "string"

    if type_name == "number":
        if not _NUMBER_RE.fullmatch(text):
            raise _TypeMismatch(f"'{name}' expects a number, got {text!r}")
        value: str | int | float | bool = float(text) if "." in text else int(text)
        return Parameter(name=name, value=value, type_name="number")
    if type_name == "boolean":
        if text not in ("true", "false"):
            raise _TypeMismatch(f"'{name}' expects true or false, got {text!r}")
        return Parameter(name=name, value=text == "true", type_name="boolean")
    return Parameter(name=name, value=text, type_name="string")


def resolve_document(document: IRDocument, registry: Registry) -> IRDocument:
    """Return a copy of the document with every step's resolution set."""
    scenarios: list[IRScenario] = []
    for scenario in document.scenarios:
        steps = tuple(
            replace(step, resolution=resolve_statement(step.kind, step.statement, registry))
            for step in scenario.steps
        )
        scenarios.append(replace(scenario, steps=steps))

    resolved = replace(document, scenarios=tuple(scenarios))
    logger.debug(
        "Resolved %s: %d/%d scenario(s) fully bound",
        document.spec_file,
        sum(1 for s in resolved.scenarios if s.is_resolved),
        len(resolved.scenarios),
    )
    return resolved


def scenario_errors(
    document: IRDocument, scenario: IRScenario
) -> list[UnresolvedOperationError | AmbiguousOperationError]:
    """Describe every step of a scenario that did not resolve."""
    errors: list[UnresolvedOperationError | AmbiguousOperationError] = []
    for step in scenario.steps:
        statement = f"{step.kind.value} {step.statement}."
        resolution = step.resolution
        if isinstance(resolution, Resolved):
            continue
        if isinstance(resolution, Ambiguous):
            errors.append(AmbiguousOperationError(
                source_file=document.spec_file,
                scenario_id=scenario.scenario_id,
                statement=statement,
                candidates=resolution.candidates,
                line_number=step.line_number,
                patterns=resolution.patterns,
            ))
        else:
            errors.append(UnresolvedOperationError(
                source_file=document.spec_file,
                scenario_id=scenario.scenario_id,
                statement=statement,
                reason=resolution.reason.value,
                detail=resolution.detail,
                line_number=step.line_number,
            ))
    return errors

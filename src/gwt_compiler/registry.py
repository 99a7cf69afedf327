"""Operation template registry: statement patterns bound to domain operations."""

from __future__ import annotations

import keyword
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from gwt_compiler.errors import RegistryError
from gwt_compiler.ir import normalize_whitespace
from gwt_compiler.models import Comparison, Parameter, StepKind

logger = logging.getLogger(__name__)

PLACEHOLDER_RE = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")
_DOTTED_NAME_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*(?:\.[A-Za-z_][A-Za-z0-9_]*)*")

TEMPLATE_TYPES = ("string", "number", "boolean", "any")

_TEMPLATE_KEYS = {
    "kind", "pattern", "operation", "params", "expected", "expected_value",
    "compare", "pass_result",
}


@dataclass(frozen=True)
class OperationTemplate:
    """A phrase pattern with named placeholders bound to one operation."""

    kind: StepKind
    pattern: str
    operation_id: str
    param_types: tuple[tuple[str, str], ...] = ()
    expected: str | None = None
    expected_value: Parameter | None = None
    comparison: Comparison = Comparison.EQ
    pass_result: bool = False
    matcher: re.Pattern[str] = field(init=False, compare=False, repr=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "matcher", compile_pattern(self.pattern))

    @property
    def placeholders(self) -> list[str]:
        return [name for name, _ in self.param_types]

    def type_of(self, name: str) -> str:
        return dict(self.param_types)[name]


@dataclass(frozen=True)
class Registry:
    """Immutable set of templates plus the module that implements them."""

    module: str
    templates: tuple[OperationTemplate, ...]
    setup: str | None = None
    teardown: str | None = None
    path: str = "<memory>"

    def templates_for(self, kind: StepKind) -> tuple[OperationTemplate, ...]:
        return tuple(t for t in self.templates if t.kind is kind)


def load_registry(path: Path) -> Registry:
    """Load and validate a registry YAML file and pre-compile its matchers."""
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise RegistryError(f"Cannot read registry {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise RegistryError(f"Invalid YAML in {path}: {exc}") from exc

    registry = registry_from_dict(raw, source=str(path))
    logger.info("Loaded %d template(s) from %s", len(registry.templates), path)
    return registry


def registry_from_dict(raw: Any, source: str = "<memory>") -> Registry:
    if not isinstance(raw, dict):
        raise RegistryError(f"Invalid registry format in {source}: expected mapping")

    _require_keys(raw, ["module", "templates"], source)
    module = _dotted_name(raw["module"], "module", source)
    setup = _dotted_name(raw["setup"], "setup", source) if raw.get("setup") else None
    teardown = _dotted_name(raw["teardown"], "teardown", source) if raw.get("teardown") else None

    entries = raw["templates"]
    if not isinstance(entries, list):
        raise RegistryError(f"'templates' must be a list in {source}")

    templates: list[OperationTemplate] = []
    seen: set[tuple[StepKind, str]] = set()
    for index, spec in enumerate(entries):
        context = f"{source}: templates[{index}]"
        template = _build_template(spec, context)
        key = (template.kind, template.pattern)
        if key in seen:
            raise RegistryError(
                f"{context}: duplicate {template.kind.value} pattern '{template.pattern}'"
            )
        seen.add(key)
        templates.append(template)

    return Registry(
        module=module,
        templates=tuple(templates),
        setup=setup,
        teardown=teardown,
        path=source,
    )


def _build_template(spec: Any, context: str) -> OperationTemplate:
    if not isinstance(spec, dict):
        raise RegistryError(f"{context}: template must be a mapping")
    _require_keys(spec, ["kind", "pattern", "operation"], context)
    unknown = sorted(set(spec) - _TEMPLATE_KEYS)
    if unknown:
        raise RegistryError(f"{context}: unknown key(s) {', '.join(unknown)}")

    try:
        kind = StepKind(str(spec["kind"]))
    except ValueError as exc:
        raise RegistryError(f"{context}: invalid kind '{spec['kind']}'") from exc

    pattern = normalize_whitespace(str(spec["pattern"]))
    if pattern.endswith("."):
        pattern = pattern[:-1].rstrip()
    if not pattern:
        raise RegistryError(f"{context}: empty pattern")

    operation_id = _dotted_name(spec["operation"], "operation", context)
    param_types = _param_types(pattern, spec.get("params") or {}, context)
    names = [name for name, _ in param_types]

    expected = spec.get("expected")
    expected_value = spec.get("expected_value")
    compare_raw = spec.get("compare")
    pass_result = bool(spec.get("pass_result", False))
    if pass_result and "result" in names:
        raise RegistryError(f"{context}: 'result' is reserved when pass_result is set")

    if kind is not StepKind.THEN:
        for key in ("expected", "expected_value", "compare", "pass_result"):
            if key in spec:
                raise RegistryError(f"{context}: '{key}' only applies to THEN templates")
        return OperationTemplate(
            kind=kind,
            pattern=pattern,
            operation_id=operation_id,
            param_types=param_types,
        )

    try:
        comparison = Comparison(compare_raw) if compare_raw else Comparison.EQ
    except ValueError as exc:
        raise RegistryError(f"{context}: unknown comparison '{compare_raw}'") from exc

    if expected is not None and expected_value is not None:
        raise RegistryError(f"{context}: use either 'expected' or 'expected_value', not both")
    if expected is not None and expected not in names:
        raise RegistryError(f"{context}: expected placeholder '{expected}' is not in the pattern")

    if not comparison.takes_expected:
        if expected is not None or expected_value is not None:
            raise RegistryError(
                f"{context}: comparison '{comparison.value}' takes no expected value"
            )
    elif expected is None and expected_value is None:
        # Multi-placeholder THEN templates must say which one is expected.
        if len(names) == 1:
            expected = names[0]
        elif not names and compare_raw is None:
            comparison = Comparison.TRUTHY
        else:
            raise RegistryError(
                f"{context}: THEN template needs 'expected' to name its expected "
                f"placeholder (one of: {', '.join(names) or 'none'})"
            )

    return OperationTemplate(
        kind=kind,
        pattern=pattern,
        operation_id=operation_id,
        param_types=param_types,
        expected=expected,
        expected_value=_constant(expected_value, context) if expected_value is not None else None,
        comparison=comparison,
        pass_result=pass_result,
    )


def _param_types(pattern: str, declared: Any, context: str) -> tuple[tuple[str, str], ...]:
    if not isinstance(declared, dict):
        raise RegistryError(f"{context}: 'params' must be a mapping of name to type")

    names = PLACEHOLDER_RE.findall(pattern)
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise RegistryError(f"{context}: placeholder(s) repeated: {', '.join(duplicates)}")
    reserved = sorted(n for n in names if keyword.iskeyword(n))
    if reserved:
        raise RegistryError(f"{context}: placeholder name(s) are Python keywords: {', '.join(reserved)}")
    undeclared = sorted(set(declared) - set(names))
    if undeclared:
        raise RegistryError(f"{context}: params not in pattern: {', '.join(undeclared)}")

    result: list[tuple[str, str]] = []
    for name in names:
        type_name = str(declared.get(name, "any"))
        if type_name not in TEMPLATE_TYPES:
            raise RegistryError(f"{context}: unknown type '{type_name}' for '{name}'")
        result.append((name, type_name))
    return tuple(result)


def _constant(value: Any, context: str) -> Parameter:
    if isinstance(value, bool):
        return Parameter(name="expected", value=value, type_name="boolean")
    if isinstance(value, (int, float)):
        return Parameter(name="expected", value=value, type_name="number")
    if isinstance(value, str):
        return Parameter(name="expected", value=value, type_name="string")
    raise RegistryError(f"{context}: unsupported expected_value {value!r}")


def compile_pattern(pattern: str) -> re.Pattern[str]:
    """Turn a template pattern into a full-match regex.

    Literal text is escaped; a placeholder wrapped in double quotes captures
    everything up to the closing quote, any other placeholder captures a
    non-empty lazy span.
    """
    parts: list[str] = []
    position = 0
    for m in PLACEHOLDER_RE.finditer(pattern):
        parts.append(re.escape(pattern[position:m.start()]))
        quoted = pattern[:m.start()].endswith('"') and pattern[m.end():].startswith('"')
        capture = '[^"]*' if quoted else ".+?"
        parts.append(f"(?P<{m.group(1)}>{capture})")
        position = m.end()
    parts.append(re.escape(pattern[position:]))
    return re.compile("^" + "".join(parts) + "$")


def _dotted_name(value: Any, key: str, context: str) -> str:
    if not isinstance(value, str) or not _DOTTED_NAME_RE.fullmatch(value):
        raise RegistryError(f"{context}: '{key}' must be a dotted Python name, got {value!r}")
    return value


def _require_keys(data: dict[str, Any], keys: list[str], context: str) -> None:
    for key in keys:
        if key not in data:
            raise RegistryError(f"Missing required key '{key}' in {context}")
